"""Processing loop -- the per-session state machine.

States: ``idle -> processing -> {idle, interrupted}``.

While the queue is non-empty and no stop was requested, each iteration:

1. Drains the queue into a batch; slot ``i`` of the batch owns message
   ``i``'s callbacks.  The slot index starts at 0.
2. Applies any reloaded configuration and opens one exchange, resuming the
   external session (or the parent's, with the fork flag, on a fork's first
   exchange).
3. Streams the batch's turns lazily and dispatches events in arrival order.
   Each ``result`` event finalizes the current slot and advances the index,
   so message N+1's callbacks never fire before message N's result.
4. Fails the undelivered messages if the stream ended before their
   results.  The iteration-safety counter resets after every exchange that
   delivered its whole batch, so it bounds runs of consecutive failures.

Cancellation is cooperative: the exchange token is checked at every
event-consumption step.  Non-cancellation failures fail the in-flight
messages' futures with ``ExternalServiceError`` and the loop carries on with
whatever is still queued.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from functools import partial
from typing import Any

from loguru import logger

from agentdesk.orchestrator.context import (
    CancelToken,
    MessageCallbacks,
    QueuedMessage,
    SessionContext,
    invoke_sink,
)
from agentdesk.orchestrator.errors import ExchangeCancelled, ExternalServiceError, SafetyGuardTripped
from agentdesk.orchestrator.execution.input import TurnProducer
from agentdesk.orchestrator.execution.interrupt import InterruptController
from agentdesk.orchestrator.execution.permissions import PermissionGate
from agentdesk.orchestrator.execution.reconciler import StreamingReconciler
from agentdesk.orchestrator.models.approvals import HookDecision, ToolUseRequest
from agentdesk.orchestrator.models.enums import DeliveryStatus, LoopState, SessionEventType, ToolStatus
from agentdesk.orchestrator.models.events import (
    AgentEvent,
    AssistantEvent,
    ResultEvent,
    StreamDeltaEvent,
    SystemEvent,
    TextBlock,
    ThinkingBlock,
    ToolProgressEvent,
    ToolUseBlock,
)
from agentdesk.orchestrator.service.base import AgentService, Exchange, ExchangeRequest

Emitter = Callable[[SessionEventType, dict[str, Any]], None]

# ---------------------------------------------------------------------------
# Event consumption
# ---------------------------------------------------------------------------

_END = object()


async def _pull(events: AsyncIterator[AgentEvent]) -> Any:
    try:
        return await anext(events)
    except StopAsyncIteration:
        return _END


async def next_event(events: AsyncIterator[AgentEvent], token: CancelToken) -> AgentEvent | None:
    """Await the next event, or raise ``ExchangeCancelled`` if ``token`` fires first.

    Returns ``None`` when the stream ended.  An event racing the token is
    dropped in favour of cancellation.
    """
    token.raise_if_cancelled()
    pull = asyncio.ensure_future(_pull(events))
    cancelled = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({pull, cancelled}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        pull.cancel()
        raise
    finally:
        cancelled.cancel()

    if token.cancelled:
        pull.cancel()
        try:
            await pull
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.debug("Event stream raised while cancelling: {!r}", exc)
        raise ExchangeCancelled

    item = pull.result()
    return None if item is _END else item


async def _close_exchange(exchange: Exchange, conversation_id: str) -> None:
    try:
        await exchange.aclose()
    except Exception:
        logger.opt(exception=True).warning("Closing exchange failed [{}]", conversation_id)


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------


class ProcessingLoop:
    """Drains one session's queue, one exchange per batch."""

    def __init__(
        self,
        ctx: SessionContext,
        *,
        service: AgentService,
        gate: PermissionGate,
        interrupts: InterruptController,
        emit: Emitter,
        max_attempts: int = 100,
    ) -> None:
        self._ctx = ctx
        self._service = service
        self._gate = gate
        self._interrupts = interrupts
        self._emit = emit
        self._max_attempts = max_attempts

        self._reconciler = StreamingReconciler()
        self._batch: list[QueuedMessage] = []
        self._slot = 0
        self._attempts = 0
        self._interrupt_notified: set[QueuedMessage] = set()
        self._task: asyncio.Task[None] | None = None
        self.state = LoopState.IDLE

    # -- Introspection ---------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return not self.state.at_rest

    @property
    def slot_index(self) -> int:
        return self._slot

    @property
    def active_batch(self) -> list[QueuedMessage]:
        return list(self._batch)

    @property
    def reconciler(self) -> StreamingReconciler:
        return self._reconciler

    def current_callbacks(self) -> MessageCallbacks:
        if self._slot < len(self._batch):
            return self._batch[self._slot].callbacks
        return MessageCallbacks()

    # -- Lifecycle -------------------------------------------------------------

    def start(self) -> asyncio.Task[None]:
        """Start draining unless already running.  Returns the loop task."""
        if self._task is not None and self.is_running:
            return self._task
        self.state = LoopState.PROCESSING
        self._task = asyncio.create_task(self._run(), name=f"agentdesk-loop-{self._ctx.conversation_id}")
        self._task.add_done_callback(self._on_task_done)
        return self._task

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait for the current run to finish.  ``False`` on timeout."""
        task = self._task
        if task is None or task.done():
            return True
        done, _ = await asyncio.wait({task}, timeout=timeout)
        return bool(done)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            logger.warning("Processing loop task cancelled [{}]", self._ctx.conversation_id)
            self.state = LoopState.IDLE
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error("Processing loop crashed [{}]", self._ctx.conversation_id)
            self.state = LoopState.IDLE

    async def _run(self) -> None:
        ctx = self._ctx
        self._interrupt_notified = set()
        self._interrupts.reset()
        interrupted = False
        self._emit(SessionEventType.PROCESSING_STARTED, {"queued": len(ctx.queue)})

        try:
            while ctx.queue and not self._interrupts.stop_requested:
                self._attempts += 1
                if self._attempts > self._max_attempts:
                    self._halt()
                    break

                batch = self._take_batch()
                try:
                    await self._run_exchange(batch)
                except ExchangeCancelled:
                    interrupted = True
                    logger.info(
                        "Exchange interrupted [{}]; {} message(s) preserved in queue",
                        ctx.conversation_id,
                        len(ctx.queue),
                    )
                    await self.notify_interrupted()
                    break
                except Exception as exc:
                    self._fail_batch(exc)
                    continue
                finally:
                    self._batch = []
                    self._slot = 0
                    self._reconciler.reset()

                self._attempts = 0
        finally:
            interrupted = interrupted or self._interrupts.stop_requested
            if interrupted:
                # Messages enqueued while the exchange was closing.
                await self.notify_interrupted()
            self._attempts = 0
            self.state = LoopState.INTERRUPTED if interrupted else LoopState.IDLE
            self._emit(
                SessionEventType.PROCESSING_COMPLETE,
                {"interrupted": interrupted, "remaining_messages": len(ctx.queue)},
            )

    def _take_batch(self) -> list[QueuedMessage]:
        batch = list(self._ctx.queue)
        self._ctx.queue.clear()
        self._batch = batch
        self._slot = 0
        self._reconciler.reset()
        logger.info("Processing batch of {} message(s) [{}]", len(batch), self._ctx.conversation_id)
        return batch

    # -- Exchange --------------------------------------------------------------

    async def _run_exchange(self, batch: list[QueuedMessage]) -> None:
        """Run one exchange for ``batch``.

        Raises ``ExternalServiceError`` if the stream ended before every slot
        got its result.  Undelivered turns are never re-sent.
        """
        ctx = self._ctx
        if ctx.apply_pending_config():
            logger.info("Applied reloaded configuration [{}]", ctx.conversation_id)

        token = self._interrupts.arm()
        resume, fork = ctx.resume_target()
        request = ExchangeRequest(
            conversation_id=ctx.conversation_id,
            working_directory=ctx.working_directory,
            permission_mode=ctx.permission_mode,
            config=ctx.config,
            pre_tool_use=partial(self._pre_tool_use, token),
            resume=resume,
            fork_session=fork,
        )
        logger.info(
            "Opening exchange [{}]: model={} mode={} resume={} fork={} attempt={}",
            ctx.conversation_id,
            request.model_id,
            request.permission_mode,
            resume,
            fork,
            self._attempts,
        )

        producer = TurnProducer(batch, lambda: ctx.external_session_id)
        exchange: Exchange | None = None
        try:
            token.raise_if_cancelled()
            exchange = await self._service.open_exchange(request, producer)
            self._interrupts.attach(exchange)
            events = exchange.events()
            while (event := await next_event(events, token)) is not None:
                await self._dispatch(event)
        except ExchangeCancelled:
            raise
        except Exception as exc:
            if token.cancelled:
                raise ExchangeCancelled from exc
            raise
        finally:
            self._interrupts.detach()
            if exchange is not None:
                await _close_exchange(exchange, ctx.conversation_id)

        undelivered = len(batch) - self._slot
        if undelivered:
            raise ExternalServiceError(
                ctx.conversation_id,
                f"exchange ended before {undelivered} of {len(batch)} message(s) got a result",
            )

    async def _pre_tool_use(self, token: CancelToken, request: ToolUseRequest) -> HookDecision:
        return await self._gate.evaluate(request, self.current_callbacks(), token)

    # -- Dispatch --------------------------------------------------------------

    async def _dispatch(self, event: AgentEvent) -> None:
        ctx = self._ctx
        if event.session_id and event.session_id != ctx.external_session_id:
            logger.debug("External session id [{}]: {} -> {}", ctx.conversation_id, ctx.external_session_id, event.session_id)
            ctx.external_session_id = event.session_id

        callbacks = self.current_callbacks()
        match event:
            case AssistantEvent():
                await self._on_assistant(event, callbacks)
            case StreamDeltaEvent():
                if event.text:
                    total = self._reconciler.append(self._slot, event.content_index, event.text)
                    await invoke_sink(callbacks.on_token, total, name="on_token")
            case ToolProgressEvent(status=ToolStatus.RUNNING):
                await invoke_sink(callbacks.on_tool_use, event.tool, event.input, name="on_tool_use")
            case ToolProgressEvent(status=ToolStatus.COMPLETED):
                await invoke_sink(callbacks.on_tool_result, event.tool, event.result, name="on_tool_result")
            case ResultEvent():
                await self._on_result(event)
            case SystemEvent():
                logger.debug("System event [{}]: subtype={}", ctx.conversation_id, event.subtype)
            case _:
                logger.warning("Unrecognized event [{}]: {}", ctx.conversation_id, event.type)

    async def _on_assistant(self, event: AssistantEvent, callbacks: MessageCallbacks) -> None:
        for block in event.blocks:
            match block:
                case TextBlock() if callbacks.on_token is not None:
                    owed = self._reconciler.reconcile(self._slot, block.text)
                    if owed is not None:
                        await invoke_sink(callbacks.on_token, owed, name="on_token")
                case ThinkingBlock():
                    await invoke_sink(callbacks.on_thinking, block.thinking, name="on_thinking")
                case ToolUseBlock():
                    await invoke_sink(callbacks.on_tool_use, block.name, block.input, name="on_tool_use")

    async def _on_result(self, event: ResultEvent) -> None:
        if self._slot >= len(self._batch):
            logger.warning("Result with no pending slot [{}] (slot={})", self._ctx.conversation_id, self._slot)
            return
        message = self._batch[self._slot]
        if event.is_error:
            logger.warning("Turn finished with error [{}]: {}", self._ctx.conversation_id, event.subtype)
        logger.debug("Result for slot {} [{}]; advancing", self._slot, self._ctx.conversation_id)
        await invoke_sink(message.callbacks.on_result, name="on_result")
        self._reconciler.clear_slot(self._slot)
        message.settle(DeliveryStatus.DELIVERED)
        self._slot += 1

    # -- Terminal paths --------------------------------------------------------

    async def notify_interrupted(self) -> None:
        """Fire ``on_interrupted`` for undelivered work, once per message per run.

        Repeats until no un-notified message is left, so messages enqueued
        while a sink was awaited are covered too.
        """
        while pending := [
            m for m in (*self._batch[self._slot :], *self._ctx.queue) if m not in self._interrupt_notified
        ]:
            for message in pending:
                if message in self._interrupt_notified:
                    continue
                self._interrupt_notified.add(message)
                await invoke_sink(message.callbacks.on_interrupted, name="on_interrupted")
                message.settle(DeliveryStatus.INTERRUPTED)

    def _fail_batch(self, exc: Exception) -> None:
        ctx = self._ctx
        if isinstance(exc, ExternalServiceError):
            error = exc
        else:
            error = ExternalServiceError(ctx.conversation_id, f"exchange failed: {exc}")
            error.__cause__ = exc
        logger.opt(exception=exc).error(
            "Exchange failed [{}] (mode={}, session={}, queued={})",
            ctx.conversation_id,
            ctx.permission_mode,
            ctx.external_session_id,
            len(ctx.queue),
        )
        for message in self._batch[self._slot :]:
            message.fail(error)

    def _halt(self) -> None:
        guard = SafetyGuardTripped(self._attempts - 1, self._max_attempts)
        logger.error("{} [{}]; {} message(s) kept for resumption", guard, self._ctx.conversation_id, len(self._ctx.queue))
        for message in self._ctx.queue:
            message.settle(DeliveryStatus.HALTED)
