"""Conversation store interface.

The store owns the persisted attributes of each conversation.  The session
pool reads a record once when it constructs a session and writes back only
the external session id and the permission mode.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from agentdesk.orchestrator.models.conversation import ConversationRecord
from agentdesk.orchestrator.models.enums import PermissionMode


@runtime_checkable
class ConversationStore(Protocol):
    """Async protocol for conversation records.

    Storage layout (keyed by conversation_id):
        {root}/conversations/{conversation_id}.json
    """

    async def create(
        self,
        *,
        title: str = "New Conversation",
        working_directory: str | None = None,
        mode: PermissionMode = PermissionMode.ASK,
    ) -> ConversationRecord:
        """Create and persist a fresh conversation."""
        ...

    async def get(self, conversation_id: str) -> ConversationRecord | None:
        """Return the record, or ``None`` if unknown."""
        ...

    async def list(self) -> list[ConversationRecord]:
        """All records, most recently updated first."""
        ...

    async def fork(self, conversation_id: str) -> ConversationRecord:
        """Branch a conversation.  Raises ``ConversationNotFoundError``."""
        ...

    async def update_mode(self, conversation_id: str, mode: PermissionMode) -> None: ...

    async def update_session_id(self, conversation_id: str, session_id: str) -> None: ...

    async def delete(self, conversation_id: str) -> None:
        """Delete a record.  No-op if not found."""
        ...
