"""Event models.

Two families live here:

- **Agent events**: the typed sequence consumed from one exchange with the
  remote agent service.  Service adapters translate their native messages
  into these before the processing loop sees them.
- **Session events**: lifecycle notifications re-emitted by the session pool,
  tagged with the owning conversation.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from agentdesk.orchestrator.models.enums import SessionEventType, ToolStatus

# -- Assistant content blocks ------------------------------------------------


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ThinkingBlock(BaseModel):
    type: Literal["thinking"] = "thinking"
    thinking: str


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str | None = None
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


AssistantBlock = Annotated[TextBlock | ThinkingBlock | ToolUseBlock, Field(discriminator="type")]


# -- Agent events ------------------------------------------------------------


class _AgentEventBase(BaseModel):
    session_id: str | None = None
    """External session id carried by the event, if any."""


class SystemEvent(_AgentEventBase):
    type: Literal["system"] = "system"
    subtype: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class AssistantEvent(_AgentEventBase):
    type: Literal["assistant"] = "assistant"
    blocks: list[AssistantBlock] = Field(default_factory=list)


class StreamDeltaEvent(_AgentEventBase):
    """A partial text delta for one content block of the reply in flight."""

    type: Literal["stream_delta"] = "stream_delta"
    text: str
    content_index: int = 0


class ToolProgressEvent(_AgentEventBase):
    type: Literal["tool_progress"] = "tool_progress"
    tool: str
    status: ToolStatus
    input: dict[str, Any] = Field(default_factory=dict)
    result: Any = None


class ResultEvent(_AgentEventBase):
    """Terminal event for one outbound turn."""

    type: Literal["result"] = "result"
    subtype: str | None = None
    is_error: bool = False
    result: str | None = None


class UnrecognizedEvent(_AgentEventBase):
    type: Literal["unrecognized"] = "unrecognized"
    kind: str
    data: dict[str, Any] = Field(default_factory=dict)


AgentEvent = Annotated[
    SystemEvent | AssistantEvent | StreamDeltaEvent | ToolProgressEvent | ResultEvent | UnrecognizedEvent,
    Field(discriminator="type"),
]


# -- Session events ----------------------------------------------------------


class SessionEvent(BaseModel):
    """Lifecycle notification tagged with its conversation."""

    event_type: SessionEventType
    conversation_id: str
    timestamp: datetime = Field(default_factory=datetime.now)
    payload: dict[str, Any] = Field(default_factory=dict)
