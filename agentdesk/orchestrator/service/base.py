"""Agent service interface.

The orchestrator treats the remote agent service as an opaque bidirectional
stream: one *exchange* per batch, fed by an async iterator of outbound turns
and producing an async iterator of typed agent events.  Implementations
translate their native wire format into ``agentdesk.orchestrator.models``.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from agentdesk.orchestrator.models.approvals import HookDecision, ToolUseRequest
from agentdesk.orchestrator.models.config import SessionConfig
from agentdesk.orchestrator.models.enums import PermissionMode
from agentdesk.orchestrator.models.events import AgentEvent
from agentdesk.orchestrator.models.turns import OutboundTurn

PreToolUseHook = Callable[[ToolUseRequest], Awaitable[HookDecision]]


@dataclass
class ExchangeRequest:
    """Everything needed to open one exchange."""

    conversation_id: str
    working_directory: str
    permission_mode: PermissionMode
    config: SessionConfig
    pre_tool_use: PreToolUseHook
    resume: str | None = None
    fork_session: bool = False
    env: dict[str, str] = field(default_factory=dict)

    @property
    def model_id(self) -> str:
        return self.config.model_id


@runtime_checkable
class Exchange(Protocol):
    """A live streaming request/response cycle."""

    def events(self) -> AsyncIterator[AgentEvent]:
        """Events in arrival order; the iterator ends when the exchange ends."""
        ...

    async def interrupt(self) -> None:
        """Ask the service to stop.  Advisory; callers bound it with a timeout."""
        ...

    async def set_permission_mode(self, mode: PermissionMode) -> None:
        """Change the permission mode of the running exchange."""
        ...

    async def aclose(self) -> None:
        """Release transport resources.  Safe to call more than once."""
        ...


@runtime_checkable
class AgentService(Protocol):
    async def open_exchange(self, request: ExchangeRequest, turns: AsyncIterable[OutboundTurn]) -> Exchange:
        """Start an exchange that consumes ``turns`` lazily."""
        ...
