"""In-process session pool.

One ``AgentSession`` per conversation, created lazily from the persisted
conversation record.  Ephemeral: empty on process restart; durable
attributes live in the conversation store.

The pool also re-emits session lifecycle notifications as ``SessionEvent``
objects tagged with their conversation id.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Sequence
from typing import Any

from loguru import logger

from agentdesk.orchestrator.context import MessageCallbacks, SessionContext
from agentdesk.orchestrator.errors import ConversationNotFoundError, ShuttingDownError
from agentdesk.orchestrator.models.config import SessionConfig
from agentdesk.orchestrator.models.enums import DeliveryStatus, PermissionMode, SessionEventType
from agentdesk.orchestrator.models.events import SessionEvent
from agentdesk.orchestrator.service.base import AgentService
from agentdesk.orchestrator.session import AgentSession
from agentdesk.orchestrator.settings import AgentDeskSettings, get_settings
from agentdesk.orchestrator.store.base import ConversationStore

Listener = Callable[[SessionEvent], None]


class SessionPool:
    """Maps conversation ids to live sessions.

    Creation is serialized by a lock so concurrent first calls for the same
    conversation yield the same session.
    """

    def __init__(
        self,
        service: AgentService,
        store: ConversationStore,
        *,
        settings: AgentDeskSettings | None = None,
        config: SessionConfig | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._service = service
        self._store = store
        self._config = config or settings.session_config()
        self._max_attempts = settings.max_processing_attempts
        self._interrupt_timeout = settings.interrupt_timeout

        self._sessions: dict[str, AgentSession] = {}
        self._persisted_session_ids: dict[str, str | None] = {}
        self._create_lock = asyncio.Lock()
        self._listeners: list[Listener] = []
        self._shutting_down = False

    # -- Query -----------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._sessions

    def get(self, conversation_id: str) -> AgentSession | None:
        return self._sessions.get(conversation_id)

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    def active_conversations(self) -> list[str]:
        """Conversations whose loop is currently processing."""
        return [cid for cid, session in self._sessions.items() if session.is_processing]

    def get_permission_mode(self, conversation_id: str) -> PermissionMode:
        session = self._sessions.get(conversation_id)
        return session.permission_mode if session else PermissionMode.ASK

    def get_external_session_id(self, conversation_id: str) -> str | None:
        session = self._sessions.get(conversation_id)
        return session.external_session_id if session else None

    # -- Lifecycle -------------------------------------------------------------

    async def get_or_create(self, conversation_id: str) -> AgentSession:
        """Return the conversation's session, constructing it on first use.

        Raises ``ShuttingDownError`` once ``shutdown()`` began and
        ``ConversationNotFoundError`` if the store has no such conversation.
        """
        session = self._sessions.get(conversation_id)
        if session is not None:
            return session

        async with self._create_lock:
            session = self._sessions.get(conversation_id)
            if session is not None:
                return session
            if self._shutting_down:
                raise ShuttingDownError(conversation_id)

            record = await self._store.get(conversation_id)
            if record is None:
                raise ConversationNotFoundError(conversation_id)

            ctx = SessionContext(
                conversation_id=conversation_id,
                working_directory=record.working_directory or os.getcwd(),
                config=self._config,
                external_session_id=record.session_id,
                parent_session_id=record.parent_session_id,
                permission_mode=record.mode,
            )
            session = AgentSession(
                ctx,
                service=self._service,
                emit=self._emitter_for(conversation_id),
                max_processing_attempts=self._max_attempts,
                interrupt_timeout=self._interrupt_timeout,
            )
            self._sessions[conversation_id] = session
            self._persisted_session_ids[conversation_id] = record.session_id
            logger.debug(
                "Pool: created session {} (mode={}, resume={}, parent={})",
                conversation_id,
                record.mode,
                record.session_id,
                record.parent_session_id,
            )
            return session

    async def delete(self, conversation_id: str) -> bool:
        """Interrupt and evict a session.  Returns ``False`` if none existed."""
        session = self._sessions.get(conversation_id)
        if session is None:
            return False
        await session.interrupt()
        self._sessions.pop(conversation_id, None)
        self._persisted_session_ids.pop(conversation_id, None)
        logger.debug("Pool: evicted session {}", conversation_id)
        return True

    async def shutdown(self) -> None:
        """Interrupt and evict every session; refuse new ones afterwards."""
        self._shutting_down = True
        logger.info("Pool: shutdown initiated ({} sessions)", len(self._sessions))
        await asyncio.gather(*(self.delete(cid) for cid in list(self._sessions)))

    # -- Operations ------------------------------------------------------------

    async def send(
        self,
        conversation_id: str,
        text: str,
        attachments: Sequence[str] = (),
        callbacks: MessageCallbacks | None = None,
    ) -> DeliveryStatus:
        session = await self.get_or_create(conversation_id)
        try:
            return await session.send(text, attachments, callbacks)
        finally:
            await self._persist_session_id(session)

    async def interrupt(self, conversation_id: str) -> bool:
        session = self._sessions.get(conversation_id)
        if session is None:
            logger.debug("Pool: interrupt for unknown session {}", conversation_id)
            return False
        await session.interrupt()
        return True

    async def set_permission_mode(self, conversation_id: str, mode: PermissionMode) -> None:
        await self._store.update_mode(conversation_id, mode)
        session = await self.get_or_create(conversation_id)
        await session.set_permission_mode(mode)

    def respond_to_permission(
        self,
        conversation_id: str,
        request_id: str,
        approved: bool,
        updated_input: dict[str, Any] | None = None,
    ) -> bool:
        session = self._sessions.get(conversation_id)
        if session is None:
            logger.warning("Pool: permission response for unknown session {}", conversation_id)
            return False
        return session.respond_to_permission(request_id, approved, updated_input)

    def respond_to_plan_approval(self, conversation_id: str, request_id: str, approved: bool) -> bool:
        session = self._sessions.get(conversation_id)
        if session is None:
            logger.warning("Pool: plan response for unknown session {}", conversation_id)
            return False
        return session.respond_to_plan_approval(request_id, approved)

    def broadcast_config_reload(self, config: SessionConfig) -> int:
        """Replace the pool config and stage it on every live session."""
        self._config = config
        for session in self._sessions.values():
            session.reload_config(config)
        logger.info("Pool: config reload staged on {} session(s)", len(self._sessions))
        return len(self._sessions)

    async def _persist_session_id(self, session: AgentSession) -> None:
        cid = session.conversation_id
        current = session.external_session_id
        if current is None or self._persisted_session_ids.get(cid) == current:
            return
        try:
            await self._store.update_session_id(cid, current)
        except Exception:
            logger.opt(exception=True).error("Pool: failed to persist session id for {}", cid)
            return
        self._persisted_session_ids[cid] = current
        logger.debug("Pool: persisted session id {} for {}", current, cid)

    # -- Events ----------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a lifecycle listener.  Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emitter_for(self, conversation_id: str) -> Callable[[SessionEventType, dict[str, Any]], None]:
        def _emit(event_type: SessionEventType, payload: dict[str, Any]) -> None:
            event = SessionEvent(event_type=event_type, conversation_id=conversation_id, payload=payload)
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception:
                    logger.exception("Pool: listener failed on {} for {}", event_type, conversation_id)

        return _emit
