"""Streaming-text reconciliation.

Partial text deltas arrive first; the complete assistant message arrives
afterwards carrying the same text again.  The reconciler keeps one buffer
per ``(slot, content_block)`` so the loop can forward the running total while
streaming, then decide how much of the final text is still missing.
"""

from __future__ import annotations

from loguru import logger


class StreamingReconciler:
    """Accumulates deltas per ``(slot_index, content_index)``.

    Buffers are dropped when their slot finalizes, so memory is bounded by the
    batch currently streaming.
    """

    def __init__(self) -> None:
        self._buffers: dict[tuple[int, int], str] = {}

    def __len__(self) -> int:
        return len(self._buffers)

    def accumulated(self, slot: int, content_index: int = 0) -> str:
        return self._buffers.get((slot, content_index), "")

    def append(self, slot: int, content_index: int, delta: str) -> str:
        """Add ``delta`` and return the accumulated text for that block."""
        key = (slot, content_index)
        total = self._buffers.get(key, "") + delta
        self._buffers[key] = total
        return total

    def reconcile(self, slot: int, final_text: str, content_index: int = 0) -> str | None:
        """Return the text still owed to the consumer for a completed block.

        - nothing streamed: the full text
        - streaming undershot: only the missing suffix
        - streamed text matches: ``None``
        - mismatch at equal (or greater) length: the full text
        """
        streamed = self._buffers.get((slot, content_index), "")
        if not streamed:
            return final_text
        if len(final_text) > len(streamed):
            logger.debug("Streaming undershot by {} chars (slot={})", len(final_text) - len(streamed), slot)
            return final_text[len(streamed) :]
        if final_text != streamed:
            logger.warning("Streamed text differs from final text (slot={}); re-sending full block", slot)
            return final_text
        return None

    def clear_slot(self, slot: int) -> None:
        for key in [k for k in self._buffers if k[0] == slot]:
            del self._buffers[key]

    def reset(self) -> None:
        self._buffers.clear()
