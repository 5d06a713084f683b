"""Conversation store implementations."""

from agentdesk.orchestrator.store.base import ConversationStore
from agentdesk.orchestrator.store.local import LocalConversationStore

__all__ = ["ConversationStore", "LocalConversationStore"]
