"""Tests for cooperative interruption."""

from __future__ import annotations

import asyncio

from agentdesk.orchestrator.context import MessageCallbacks
from agentdesk.orchestrator.models.approvals import PermissionRequest
from agentdesk.orchestrator.models.enums import DeliveryStatus, LoopState, SessionEventType
from tests.orchestrator.fakes import Block, reply, tool_hook, wait_until


async def test_interrupt_while_idle_is_harmless(make_session, session_events) -> None:
    session = make_session()
    await session.interrupt()

    assert session.state == LoopState.IDLE
    assert session_events == [(SessionEventType.CLEAR_PERMISSIONS, {"rejected": 0})]


async def test_interrupt_rejects_pending_permission(make_session, service, session_events) -> None:
    service.scripts.append([tool_hook("Bash", command="rm -rf build"), *reply("never")])
    session = make_session()
    requests: list[PermissionRequest] = []
    interrupted: list[bool] = []
    callbacks = MessageCallbacks(
        on_permission_request=requests.append,
        on_interrupted=lambda: interrupted.append(True),
    )

    outcome = session.enqueue("clean up", callbacks=callbacks)
    await wait_until(lambda: requests)
    assert "tool-1" in session.gate

    await session.interrupt()

    assert await outcome == DeliveryStatus.INTERRUPTED
    assert interrupted == [True]
    assert len(session.gate) == 0
    assert session.state == LoopState.INTERRUPTED
    assert service.exchanges[0].interrupted is True
    assert service.exchanges[0].closed is True
    assert (SessionEventType.CLEAR_PERMISSIONS, {"rejected": 1}) in session_events
    assert session_events[-1] == (
        SessionEventType.PROCESSING_COMPLETE,
        {"interrupted": True, "remaining_messages": 0},
    )

    # A late response finds nothing to settle.
    assert session.respond_to_permission("tool-1", True) is False


async def test_interrupt_preserves_queue_for_resumption(make_session, service) -> None:
    service.scripts.append([Block()])
    session = make_session()
    interrupted: list[str] = []

    first = session.enqueue("A", callbacks=MessageCallbacks(on_interrupted=lambda: interrupted.append("A")))
    await wait_until(lambda: service.exchanges and service.exchanges[0].started.is_set())
    second = session.enqueue("B", callbacks=MessageCallbacks(on_interrupted=lambda: interrupted.append("B")))
    third = session.enqueue("C", callbacks=MessageCallbacks(on_interrupted=lambda: interrupted.append("C")))

    await session.interrupt()

    assert await first == DeliveryStatus.INTERRUPTED
    assert await second == DeliveryStatus.INTERRUPTED
    assert await third == DeliveryStatus.INTERRUPTED
    assert interrupted == ["A", "B", "C"]
    assert session.queue_length == 2
    assert session.state == LoopState.INTERRUPTED
    assert session.state.at_rest
    assert not session.is_processing

    assert await session.resume_processing() is True
    assert session.queue_length == 0
    assert session.state == LoopState.IDLE
    assert service.exchanges[1].texts == ["B", "C"]


async def test_interrupted_batch_is_not_retried(make_session, service) -> None:
    service.scripts.append([Block()])
    session = make_session()
    outcome = session.enqueue("A")
    await wait_until(lambda: service.exchanges and service.exchanges[0].started.is_set())

    await session.interrupt()
    assert await outcome == DeliveryStatus.INTERRUPTED
    assert session.queue_length == 0
    assert await session.resume_processing() is False


async def test_on_interrupted_fires_once_per_interrupt(make_session, service) -> None:
    service.scripts.append([Block()])
    session = make_session()
    calls: list[int] = []
    session.enqueue("A", callbacks=MessageCallbacks(on_interrupted=lambda: calls.append(1)))
    await wait_until(lambda: service.exchanges and service.exchanges[0].started.is_set())

    await asyncio.gather(session.interrupt(), session.interrupt())
    assert calls == [1]


async def test_slow_service_interrupt_is_bounded(make_session, service) -> None:
    service.scripts.append([Block()])
    service.interrupt_delay = 30.0
    session = make_session(interrupt_timeout=0.05)
    outcome = session.enqueue("A")
    await wait_until(lambda: service.exchanges and service.exchanges[0].started.is_set())

    await asyncio.wait_for(session.interrupt(), timeout=2)
    assert await outcome == DeliveryStatus.INTERRUPTED
    assert session.state == LoopState.INTERRUPTED


async def test_delivered_messages_keep_their_status(make_session, service) -> None:
    service.scripts.append([*reply("a"), Block()])
    session = make_session()
    first = session.enqueue("A")
    second = session.enqueue("B")
    await wait_until(first.done)

    await session.interrupt()
    assert first.result() == DeliveryStatus.DELIVERED
    assert await second == DeliveryStatus.INTERRUPTED


async def test_clear_queue_after_interrupt(make_session, service) -> None:
    service.scripts.append([Block()])
    session = make_session()
    session.enqueue("A")
    await wait_until(lambda: service.exchanges and service.exchanges[0].started.is_set())
    session.enqueue("B")

    await session.interrupt()
    assert session.clear_queue() == 1
    assert session.queue_length == 0
    assert await session.resume_processing() is False


async def test_new_message_after_interrupt_restarts_processing(make_session, service) -> None:
    service.scripts.append([Block()])
    session = make_session()
    session.enqueue("A")
    await wait_until(lambda: service.exchanges and service.exchanges[0].started.is_set())
    await session.interrupt()

    assert await session.send("again") == DeliveryStatus.DELIVERED
    assert session.state == LoopState.IDLE


async def test_message_enqueued_while_interrupted_exchange_closes(make_session, service) -> None:
    service.scripts.append([Block()])
    service.close_delay = 0.3
    session = make_session(interrupt_timeout=0.05)
    first = session.enqueue("A")
    await wait_until(lambda: service.exchanges and service.exchanges[0].started.is_set())

    await session.interrupt()
    assert session.is_processing  # still closing the exchange

    late_calls: list[str] = []
    late = session.enqueue("C", callbacks=MessageCallbacks(on_interrupted=lambda: late_calls.append("C")))

    assert await first == DeliveryStatus.INTERRUPTED
    assert await asyncio.wait_for(late, timeout=2) == DeliveryStatus.INTERRUPTED
    assert await session.wait_idle(2)
    assert late_calls == ["C"]
    assert session.queue_length == 1
    assert session.state == LoopState.INTERRUPTED
    assert session.state.at_rest

    service.close_delay = 0.0
    assert await session.resume_processing() is True
    assert service.exchanges[1].texts == ["C"]
    assert session.state == LoopState.IDLE
