"""Input mapping -- converts queued messages to outbound turns.

Two shapes per message:

- **plain**: no attachments, the turn content is the message text.
- **structured**: a leading text part, one base64 image part per readable
  image attachment, then a trailing text part listing every other attachment
  by path.  Images that cannot be read degrade to the path list instead of
  failing the turn.

``TurnProducer`` yields the turns of one batch lazily, in queue order, so the
transport decides when each file is read.
"""

from __future__ import annotations

import base64
from collections.abc import AsyncIterator, Callable, Sequence
from functools import partial
from pathlib import Path

from anyio import to_thread
from loguru import logger

from agentdesk.orchestrator.context import QueuedMessage
from agentdesk.orchestrator.models.turns import ImageContent, ImageSource, OutboundTurn, TextContent, TurnContent

# ---------------------------------------------------------------------------
# Media classification
# ---------------------------------------------------------------------------

_IMAGE_MEDIA_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


def is_image_file(path: str | Path) -> bool:
    return Path(path).suffix.lower() in _IMAGE_MEDIA_TYPES


def image_media_type(path: str | Path) -> str:
    """Infer the media type from the extension (PNG when unknown)."""
    return _IMAGE_MEDIA_TYPES.get(Path(path).suffix.lower(), "image/png")


def _read_bytes(path: Path) -> bytes:
    return path.read_bytes()


async def _load_image(path: str) -> ImageContent | None:
    """Read and base64-encode an image; ``None`` if it cannot be read."""
    try:
        raw = await to_thread.run_sync(partial(_read_bytes, Path(path)))
    except OSError as exc:
        logger.warning("Cannot read image attachment {} ({}); sending as path", path, exc)
        return None
    media_type = image_media_type(path)
    logger.debug("Attached image {} ({}, {} bytes)", Path(path).name, media_type, len(raw))
    return ImageContent(source=ImageSource(media_type=media_type, data=base64.b64encode(raw).decode("ascii")))


def format_attachment_list(paths: Sequence[str]) -> str:
    lines = "".join(f"- {p}\n" for p in paths)
    return f"\n\nAttached files:\n{lines}"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def build_turn(
    text: str,
    attachments: Sequence[str] = (),
    *,
    session_id: str | None = None,
) -> OutboundTurn:
    """Map one message and its attachments to an outbound turn."""
    if not attachments:
        return OutboundTurn(content=text, session_id=session_id)

    parts: list[TurnContent] = [TextContent(text=text)]
    path_only: list[str] = []

    for path in attachments:
        if not is_image_file(path):
            path_only.append(path)
            continue
        image = await _load_image(path)
        if image is None:
            path_only.append(path)
        else:
            parts.append(image)

    if path_only:
        parts.append(TextContent(text=format_attachment_list(path_only)))

    return OutboundTurn(content=parts, session_id=session_id)


class TurnProducer:
    """Async iterator over the turns of one batch snapshot.

    ``session_id`` is read through a callable at production time so turns
    produced after the service announced its id carry it.
    """

    def __init__(self, batch: Sequence[QueuedMessage], session_id: Callable[[], str | None]) -> None:
        self._batch = list(batch)
        self._session_id = session_id
        self.produced = 0

    def __len__(self) -> int:
        return len(self._batch)

    def __aiter__(self) -> AsyncIterator[OutboundTurn]:
        return self._produce()

    async def _produce(self) -> AsyncIterator[OutboundTurn]:
        for message in self._batch:
            turn = await build_turn(message.text, message.attachments, session_id=self._session_id())
            self.produced += 1
            logger.debug(
                "Producing turn {}/{} ({})",
                self.produced,
                len(self._batch),
                f"{len(turn.content)} parts" if turn.is_structured else f"{len(message.text)} chars",
            )
            yield turn
