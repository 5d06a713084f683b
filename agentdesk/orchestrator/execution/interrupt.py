"""Interrupt controller -- cooperative cancellation of a session's work.

``interrupt()`` runs in this order:

1. Set the stop flag so the processing loop starts no further exchange.
2. Reject every pending approval and announce ``clear-permissions``.
3. Fire the current exchange's ``CancelToken``.  This alone halts the loop:
   it is checked at every event-consumption step.
4. Notify ``on_interrupted`` for in-flight and still-queued messages.
5. Ask the remote service to stop, bounded by ``timeout``.  Failure or
   timeout there is logged and ignored since the token already guarantees
   no further progress.

The queue is never cleared; the session goes back to rest and can resume.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from loguru import logger

from agentdesk.orchestrator.context import CancelToken
from agentdesk.orchestrator.models.enums import SessionEventType

if TYPE_CHECKING:
    from agentdesk.orchestrator.execution.permissions import PermissionGate
    from agentdesk.orchestrator.service.base import Exchange

Emitter = Callable[[SessionEventType, dict[str, Any]], None]


class InterruptController:
    def __init__(
        self,
        conversation_id: str,
        *,
        gate: PermissionGate,
        emit: Emitter,
        on_interrupt: Callable[[], Awaitable[None]],
        is_processing: Callable[[], bool],
        timeout: float = 1.0,
    ) -> None:
        self._conversation_id = conversation_id
        self._gate = gate
        self._emit = emit
        self._on_interrupt = on_interrupt
        self._is_processing = is_processing
        self._timeout = timeout
        self._stop_requested = False
        self._token: CancelToken | None = None
        self._exchange: Exchange | None = None

    # -- Loop-facing -----------------------------------------------------------

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    @property
    def exchange(self) -> Exchange | None:
        return self._exchange

    def reset(self) -> None:
        """Clear the stop flag at the start of a processing run."""
        self._stop_requested = False

    def arm(self) -> CancelToken:
        """Create the token for the next exchange.

        A stop requested before the exchange opened cancels it immediately.
        """
        self._token = CancelToken()
        if self._stop_requested:
            self._token.cancel()
        return self._token

    def attach(self, exchange: Exchange) -> None:
        self._exchange = exchange

    def detach(self) -> None:
        self._exchange = None
        self._token = None

    # -- Control ---------------------------------------------------------------

    async def interrupt(self) -> None:
        self._stop_requested = True
        processing = self._is_processing()
        logger.info("Interrupt requested [{}] (processing={})", self._conversation_id, processing)

        rejected = self._gate.reject_all("interrupted")
        self._emit(SessionEventType.CLEAR_PERMISSIONS, {"rejected": rejected})

        if self._token is not None:
            self._token.cancel()

        if processing:
            await self._on_interrupt()

        exchange = self._exchange
        if exchange is None:
            return
        try:
            await asyncio.wait_for(exchange.interrupt(), timeout=self._timeout)
        except TimeoutError:
            logger.warning(
                "Service interrupt timed out after {}s [{}]; relying on cancellation token",
                self._timeout,
                self._conversation_id,
            )
        except Exception:
            logger.opt(exception=True).warning("Service interrupt failed [{}]; continuing", self._conversation_id)
        else:
            logger.debug("Service interrupt acknowledged [{}]", self._conversation_id)
