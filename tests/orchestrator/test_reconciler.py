"""Unit tests for streaming-text reconciliation."""

from __future__ import annotations

import pytest

from agentdesk.orchestrator.execution.reconciler import StreamingReconciler


def _stream(reconciler: StreamingReconciler, chunks: list[str], slot: int = 0) -> list[str]:
    return [reconciler.append(slot, 0, c) for c in chunks]


def test_append_returns_running_total() -> None:
    r = StreamingReconciler()
    assert _stream(r, ["He", "ll", "o"]) == ["He", "Hell", "Hello"]
    assert r.accumulated(0) == "Hello"


def test_no_streaming_returns_full_text() -> None:
    r = StreamingReconciler()
    assert r.reconcile(0, "Hello world") == "Hello world"


def test_complete_stream_owes_nothing() -> None:
    r = StreamingReconciler()
    _stream(r, ["Hello", " world"])
    assert r.reconcile(0, "Hello world") is None


def test_undershoot_owes_suffix() -> None:
    r = StreamingReconciler()
    _stream(r, ["Hello"])
    assert r.reconcile(0, "Hello world") == " world"


def test_mismatch_resends_full_text() -> None:
    r = StreamingReconciler()
    _stream(r, ["Hellx"])
    assert r.reconcile(0, "Hello") == "Hello"


@pytest.mark.parametrize(
    "chunks",
    [
        ["The quick brown fox"],
        ["T", "he quick", " brown", " fox"],
        ["The quick brown"],
        [],
    ],
)
def test_net_text_delivered_once_for_any_chunking(chunks: list[str]) -> None:
    final = "The quick brown fox"
    r = StreamingReconciler()
    totals = _stream(r, chunks)
    shown = totals[-1] if totals else ""
    owed = r.reconcile(0, final)
    assert shown + (owed or "") == final


def test_buffers_are_keyed_by_slot_and_block() -> None:
    r = StreamingReconciler()
    r.append(0, 0, "a")
    r.append(0, 1, "b")
    r.append(1, 0, "c")
    assert len(r) == 3

    r.clear_slot(0)
    assert len(r) == 1
    assert r.accumulated(1) == "c"
    assert r.accumulated(0) == ""

    r.reset()
    assert len(r) == 0
