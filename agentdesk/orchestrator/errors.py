"""Error taxonomy for the orchestrator.

Only ``ExternalServiceError`` is meant to reach callers of ``send()``.
Cancellation is recovered inside the session and surfaces solely through
``on_interrupted``; sink (callback) exceptions are logged and swallowed.
"""

from __future__ import annotations


class AgentDeskError(Exception):
    """Base class for orchestrator errors."""


class ExchangeCancelled(AgentDeskError):
    """The shared cancellation token fired while an exchange was running."""


class ExternalServiceError(AgentDeskError):
    """A non-cancellation failure of an exchange with the agent service.

    The underlying exception is chained as ``__cause__``.
    """

    def __init__(self, conversation_id: str, message: str) -> None:
        super().__init__(message)
        self.conversation_id = conversation_id


class SafetyGuardTripped(AgentDeskError):
    """The iteration-safety counter was exceeded; processing halted."""

    def __init__(self, attempts: int, limit: int) -> None:
        super().__init__(f"processing halted after {attempts} exchange attempts (limit={limit})")
        self.attempts = attempts
        self.limit = limit


class ConversationNotFoundError(LookupError):
    """No persisted conversation exists for the requested id."""


class ShuttingDownError(RuntimeError):
    """Raised when attempting to create a session during shutdown."""
