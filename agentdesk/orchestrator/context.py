"""Runtime context shared by the processing loop, permission gate and
interrupt controller of one session.

Nothing here is persisted.  ``SessionContext`` is the mutable per-conversation
state; ``QueuedMessage`` carries the caller's borrowed callback bundle until
the message reaches a terminal outcome; ``CancelToken`` is the cooperative
cancellation signal of a single exchange.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from agentdesk.orchestrator.errors import ExchangeCancelled
from agentdesk.orchestrator.models.config import SessionConfig
from agentdesk.orchestrator.models.enums import DeliveryStatus, PermissionMode

# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class CancelToken:
    """One-shot cancellation signal.

    ``cancel()`` is idempotent.  Callbacks registered with ``add_callback`` run
    synchronously inside the first ``cancel()`` call, in registration order.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancel callback failed")

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExchangeCancelled

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback`` to run on cancel; returns a remover.

        If the token is already cancelled the callback runs immediately.
        """
        if self._event.is_set():
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove


# ---------------------------------------------------------------------------
# Callbacks
# ---------------------------------------------------------------------------


@dataclass
class MessageCallbacks:
    """Capability set supplied with each queued message.

    Every sink is optional.  Sinks may be plain callables or coroutine
    functions; coroutine results are awaited in dispatch order.
    """

    on_token: Callable[[str], Any] | None = None
    on_thinking: Callable[[str], Any] | None = None
    on_tool_use: Callable[[str, Any], Any] | None = None
    on_tool_result: Callable[[str, Any], Any] | None = None
    on_permission_request: Callable[[Any], Any] | None = None
    on_plan_approval_request: Callable[[Any], Any] | None = None
    on_interrupted: Callable[[], Any] | None = None
    on_result: Callable[[], Any] | None = None


async def invoke_sink(sink: Callable[..., Any] | None, *args: Any, name: str = "callback") -> None:
    """Call a caller-supplied sink, awaiting it if needed.

    Exceptions raised by the sink are logged and swallowed: a broken consumer
    never aborts the processing loop.
    """
    if sink is None:
        return
    try:
        result = sink(*args)
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("Sink {} raised; ignoring", name)


# ---------------------------------------------------------------------------
# Queue entries
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class QueuedMessage:
    """A user turn waiting in (or drained from) the outbound queue."""

    text: str
    attachments: tuple[str, ...] = ()
    callbacks: MessageCallbacks = field(default_factory=MessageCallbacks)
    outcome: asyncio.Future[DeliveryStatus] = field(default_factory=lambda: asyncio.get_running_loop().create_future())

    def settle(self, status: DeliveryStatus) -> None:
        """Resolve the sender's future once; later outcomes are ignored."""
        if not self.outcome.done():
            self.outcome.set_result(status)

    def fail(self, exc: BaseException) -> None:
        if not self.outcome.done():
            self.outcome.set_exception(exc)


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------


@dataclass
class SessionContext:
    """Mutable per-conversation state.

    Mutated only by the owning session's processing loop, except for
    ``permission_mode`` (also set by explicit mode changes) and ``queue``
    appends from ``enqueue``.
    """

    conversation_id: str
    working_directory: str
    config: SessionConfig
    external_session_id: str | None = None
    parent_session_id: str | None = None
    permission_mode: PermissionMode = PermissionMode.ASK
    queue: deque[QueuedMessage] = field(default_factory=deque)

    pending_config: SessionConfig | None = None
    """Set by a config reload; swapped into ``config`` at the next exchange start."""

    @property
    def is_fork_pending(self) -> bool:
        """First exchange of a fork: resume the parent and branch off."""
        return self.parent_session_id is not None and self.external_session_id is None

    def resume_target(self) -> tuple[str | None, bool]:
        """Return ``(resume_id, fork_flag)`` for the next exchange."""
        if self.is_fork_pending:
            return self.parent_session_id, True
        return self.external_session_id, False

    def apply_pending_config(self) -> bool:
        if self.pending_config is None:
            return False
        self.config = self.pending_config
        self.pending_config = None
        return True
