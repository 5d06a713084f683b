"""Data models for the orchestrator."""

from agentdesk.orchestrator.models.approvals import (
    HookDecision,
    PermissionRequest,
    PlanApprovalRequest,
    ToolUseRequest,
)
from agentdesk.orchestrator.models.config import SessionConfig
from agentdesk.orchestrator.models.conversation import ConversationRecord
from agentdesk.orchestrator.models.enums import (
    ApprovalKind,
    DeliveryStatus,
    LoopState,
    PermissionMode,
    SessionEventType,
    SystemPromptMode,
    ToolStatus,
)
from agentdesk.orchestrator.models.events import (
    AgentEvent,
    AssistantEvent,
    ResultEvent,
    SessionEvent,
    StreamDeltaEvent,
    SystemEvent,
    TextBlock,
    ThinkingBlock,
    ToolProgressEvent,
    ToolUseBlock,
    UnrecognizedEvent,
)
from agentdesk.orchestrator.models.turns import ImageContent, ImageSource, OutboundTurn, TextContent

__all__ = [
    "AgentEvent",
    "ApprovalKind",
    "AssistantEvent",
    "ConversationRecord",
    "DeliveryStatus",
    "HookDecision",
    "ImageContent",
    "ImageSource",
    "LoopState",
    "OutboundTurn",
    "PermissionMode",
    "PermissionRequest",
    "PlanApprovalRequest",
    "ResultEvent",
    "SessionConfig",
    "SessionEvent",
    "SessionEventType",
    "StreamDeltaEvent",
    "SystemEvent",
    "SystemPromptMode",
    "TextBlock",
    "TextContent",
    "ThinkingBlock",
    "ToolProgressEvent",
    "ToolStatus",
    "ToolUseBlock",
    "ToolUseRequest",
    "UnrecognizedEvent",
]
