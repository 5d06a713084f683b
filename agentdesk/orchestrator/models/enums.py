"""Shared enumerations used across the orchestrator."""

from __future__ import annotations

from enum import StrEnum

# -- Permissions -------------------------------------------------------------


class PermissionMode(StrEnum):
    """How tool executions are approved.

    Values are the remote service's wire values.
    """

    ASK = "default"
    ACCEPT_EDITS = "acceptEdits"
    BYPASS_ALL = "bypassPermissions"
    PLAN = "plan"


class ApprovalKind(StrEnum):
    PERMISSION = "permission"
    PLAN = "plan"


# -- Session -----------------------------------------------------------------


class LoopState(StrEnum):
    """Processing-loop state of a single session.

    ``IDLE`` and ``INTERRUPTED`` are both at rest: no task runs and the next
    enqueue starts a new run.  ``INTERRUPTED`` only records that the last run
    was stopped by an interrupt, so preserved messages may be waiting for
    ``resume_processing()``.
    """

    IDLE = "idle"
    PROCESSING = "processing"
    INTERRUPTED = "interrupted"

    @property
    def at_rest(self) -> bool:
        return self is not LoopState.PROCESSING


class DeliveryStatus(StrEnum):
    """Terminal outcome of one queued message, as seen by its sender."""

    DELIVERED = "delivered"
    INTERRUPTED = "interrupted"
    HALTED = "halted"


class SystemPromptMode(StrEnum):
    APPEND = "append"
    CUSTOM = "custom"


# -- Events ------------------------------------------------------------------


class SessionEventType(StrEnum):
    """Lifecycle events re-emitted by the session pool."""

    PROCESSING_STARTED = "processing-started"
    PROCESSING_COMPLETE = "processing-complete"
    CLEAR_PERMISSIONS = "clear-permissions"
    MODE_CHANGED = "mode-changed"


class ToolStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
