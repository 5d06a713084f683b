"""Persisted conversation attributes the orchestrator reads and writes.

The conversation store owns these records; the session pool only reads the
fields it needs to construct a session and writes back the external session
id and permission mode.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from agentdesk.orchestrator.models.enums import PermissionMode


class ConversationRecord(BaseModel):
    conversation_id: str
    title: str = "New Conversation"
    working_directory: str | None = None
    session_id: str | None = None
    """External session id assigned by the remote service."""
    parent_session_id: str | None = None
    """Set on forks until the first exchange yields the fork's own id."""
    mode: PermissionMode = PermissionMode.ASK
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
