"""AgentSession -- one conversation's state machine.

Composes the processing loop, permission gate and interrupt controller over
a shared ``SessionContext``.  Every public method is safe to call from the
event loop at any time; the loop is started lazily by ``enqueue``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from os import PathLike
from typing import Any

from loguru import logger

from agentdesk.orchestrator.context import MessageCallbacks, QueuedMessage, SessionContext
from agentdesk.orchestrator.execution.interrupt import InterruptController
from agentdesk.orchestrator.execution.loop import ProcessingLoop
from agentdesk.orchestrator.execution.permissions import PermissionGate
from agentdesk.orchestrator.models.config import SessionConfig
from agentdesk.orchestrator.models.enums import DeliveryStatus, LoopState, PermissionMode, SessionEventType
from agentdesk.orchestrator.service.base import AgentService

Emitter = Callable[[SessionEventType, dict[str, Any]], None]


def _discard(event_type: SessionEventType, payload: dict[str, Any]) -> None:
    return None


class AgentSession:
    def __init__(
        self,
        ctx: SessionContext,
        *,
        service: AgentService,
        emit: Emitter | None = None,
        max_processing_attempts: int = 100,
        interrupt_timeout: float = 1.0,
    ) -> None:
        self._ctx = ctx
        self._emit = emit or _discard
        self._interrupt_timeout = interrupt_timeout

        self.gate = PermissionGate(
            ctx.conversation_id,
            get_mode=lambda: ctx.permission_mode,
            on_plan_approved=self._on_plan_approved,
        )
        self.interrupts = InterruptController(
            ctx.conversation_id,
            gate=self.gate,
            emit=self._emit,
            on_interrupt=self._notify_interrupted,
            is_processing=lambda: self.is_processing,
            timeout=interrupt_timeout,
        )
        self.loop = ProcessingLoop(
            ctx,
            service=service,
            gate=self.gate,
            interrupts=self.interrupts,
            emit=self._emit,
            max_attempts=max_processing_attempts,
        )

    # -- Introspection ---------------------------------------------------------

    @property
    def conversation_id(self) -> str:
        return self._ctx.conversation_id

    @property
    def context(self) -> SessionContext:
        return self._ctx

    @property
    def state(self) -> LoopState:
        return self.loop.state

    @property
    def is_processing(self) -> bool:
        return self.loop.is_running

    @property
    def queue_length(self) -> int:
        return len(self._ctx.queue)

    @property
    def external_session_id(self) -> str | None:
        return self._ctx.external_session_id

    @property
    def permission_mode(self) -> PermissionMode:
        return self._ctx.permission_mode

    # -- Messages --------------------------------------------------------------

    def enqueue(
        self,
        text: str,
        attachments: Sequence[str | PathLike[str]] = (),
        callbacks: MessageCallbacks | None = None,
    ) -> asyncio.Future[DeliveryStatus]:
        """Queue a user turn and start the loop if it is at rest.

        Returns a future that resolves with the message's delivery status, or
        raises ``ExternalServiceError`` if its exchange failed.
        """
        message = QueuedMessage(
            text=text,
            attachments=tuple(str(a) for a in attachments),
            callbacks=callbacks or MessageCallbacks(),
        )
        self._ctx.queue.append(message)
        logger.debug("Enqueued message [{}] (queue={})", self.conversation_id, len(self._ctx.queue))
        if not self.loop.is_running:
            self.loop.start()
        return message.outcome

    async def send(
        self,
        text: str,
        attachments: Sequence[str | PathLike[str]] = (),
        callbacks: MessageCallbacks | None = None,
    ) -> DeliveryStatus:
        return await self.enqueue(text, attachments, callbacks)

    def clear_queue(self) -> int:
        """Discard preserved messages.  Their futures resolve ``interrupted``."""
        dropped = list(self._ctx.queue)
        self._ctx.queue.clear()
        for message in dropped:
            message.settle(DeliveryStatus.INTERRUPTED)
        if dropped:
            logger.info("Cleared {} queued message(s) [{}]", len(dropped), self.conversation_id)
        return len(dropped)

    async def resume_processing(self) -> bool:
        """Drain messages preserved by an interrupt or a safety halt.

        Returns ``False`` if there was nothing to do.
        """
        if self.loop.is_running or not self._ctx.queue:
            return False
        logger.info("Resuming processing [{}] ({} queued)", self.conversation_id, len(self._ctx.queue))
        await self.loop.start()
        return True

    async def wait_idle(self, timeout: float | None = None) -> bool:
        return await self.loop.wait(timeout)

    # -- Control ---------------------------------------------------------------

    async def interrupt(self) -> None:
        await self.interrupts.interrupt()
        if not await self.loop.wait(self._interrupt_timeout):
            logger.warning("Processing loop still winding down after interrupt [{}]", self.conversation_id)

    async def _notify_interrupted(self) -> None:
        await self.loop.notify_interrupted()

    async def set_permission_mode(self, mode: PermissionMode) -> None:
        previous = self._ctx.permission_mode
        self._ctx.permission_mode = mode
        logger.info("Permission mode [{}]: {} -> {}", self.conversation_id, previous, mode)

        exchange = self.interrupts.exchange
        if exchange is not None:
            try:
                await exchange.set_permission_mode(mode)
            except Exception:
                logger.opt(exception=True).warning("Could not push mode to live exchange [{}]", self.conversation_id)

        self._emit(SessionEventType.MODE_CHANGED, {"mode": mode.value, "previous": previous.value})

    async def _on_plan_approved(self) -> None:
        await self.set_permission_mode(PermissionMode.ACCEPT_EDITS)

    def respond_to_permission(
        self,
        request_id: str,
        approved: bool,
        updated_input: dict[str, Any] | None = None,
    ) -> bool:
        return self.gate.respond_to_permission(request_id, approved, updated_input)

    def respond_to_plan_approval(self, request_id: str, approved: bool) -> bool:
        return self.gate.respond_to_plan_approval(request_id, approved)

    def reload_config(self, config: SessionConfig) -> None:
        """Stage ``config``; it takes effect at the next exchange start."""
        self._ctx.pending_config = config
        logger.debug("Config reload staged [{}]", self.conversation_id)
