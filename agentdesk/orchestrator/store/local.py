"""Local filesystem conversation store.

One JSON document per conversation under the data root::

    {data_root}/conversations/{conversation_id}.json

Uses ``anyio.to_thread.run_sync`` for non-blocking file I/O.  Writes are
atomic (temp file in the same directory, then rename) so a crash mid-write
never leaves a truncated record behind.
"""

from __future__ import annotations

import builtins
import contextlib
import os
import tempfile
import uuid
from datetime import datetime
from functools import partial
from pathlib import Path

from anyio import to_thread
from loguru import logger
from pydantic import ValidationError

from agentdesk.orchestrator.errors import ConversationNotFoundError
from agentdesk.orchestrator.models.conversation import ConversationRecord
from agentdesk.orchestrator.models.enums import PermissionMode

FORK_SUFFIX = " (fork)"


class LocalConversationStore:
    """Local filesystem implementation of the ConversationStore protocol."""

    def __init__(self, data_root: str | Path) -> None:
        self._base = Path(data_root) / "conversations"

    def _path(self, conversation_id: str) -> Path:
        return self._base / f"{conversation_id}.json"

    # -- Write -----------------------------------------------------------------

    async def _save(self, record: ConversationRecord) -> None:
        data = record.model_dump_json(indent=2)
        await to_thread.run_sync(partial(_atomic_write, self._path(record.conversation_id), data))

    async def create(
        self,
        *,
        title: str = "New Conversation",
        working_directory: str | None = None,
        mode: PermissionMode = PermissionMode.ASK,
    ) -> ConversationRecord:
        record = ConversationRecord(
            conversation_id=uuid.uuid4().hex,
            title=title,
            working_directory=working_directory,
            mode=mode,
        )
        await self._save(record)
        logger.info("Created conversation {} ({!r})", record.conversation_id, title)
        return record

    async def fork(self, conversation_id: str) -> ConversationRecord:
        parent = await self.get(conversation_id)
        if parent is None:
            raise ConversationNotFoundError(conversation_id)
        record = ConversationRecord(
            conversation_id=uuid.uuid4().hex,
            title=f"{parent.title}{FORK_SUFFIX}",
            working_directory=parent.working_directory,
            parent_session_id=parent.session_id,
            mode=parent.mode,
        )
        await self._save(record)
        logger.info(
            "Forked conversation {} -> {} (parent session {})",
            conversation_id,
            record.conversation_id,
            parent.session_id,
        )
        return record

    async def _update(self, conversation_id: str, **changes: object) -> None:
        record = await self.get(conversation_id)
        if record is None:
            raise ConversationNotFoundError(conversation_id)
        updated = record.model_copy(update={**changes, "updated_at": datetime.now()})
        await self._save(updated)

    async def update_mode(self, conversation_id: str, mode: PermissionMode) -> None:
        await self._update(conversation_id, mode=mode)

    async def update_session_id(self, conversation_id: str, session_id: str) -> None:
        await self._update(conversation_id, session_id=session_id)

    async def delete(self, conversation_id: str) -> None:
        await to_thread.run_sync(partial(_unlink, self._path(conversation_id)))

    # -- Read ------------------------------------------------------------------

    async def get(self, conversation_id: str) -> ConversationRecord | None:
        try:
            raw = await to_thread.run_sync(partial(_read_file, self._path(conversation_id)))
        except FileNotFoundError:
            return None
        return ConversationRecord.model_validate_json(raw)

    async def list(self) -> builtins.list[ConversationRecord]:
        paths = await to_thread.run_sync(partial(_list_json, self._base))
        records: builtins.list[ConversationRecord] = []
        for path in paths:
            try:
                raw = await to_thread.run_sync(partial(_read_file, path))
                records.append(ConversationRecord.model_validate_json(raw))
            except FileNotFoundError:
                continue
            except ValidationError:
                logger.warning("Skipping unreadable conversation record {}", path)
        records.sort(key=lambda r: r.updated_at, reverse=True)
        return records


# -- Sync helpers (run in thread pool) -----------------------------------------


def _atomic_write(path: Path, data: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def _read_file(path: Path) -> str:
    """Read file contents.  Raises ``FileNotFoundError`` if missing."""
    return path.read_text(encoding="utf-8")


def _list_json(base: Path) -> builtins.list[Path]:
    if not base.is_dir():
        return []
    return sorted(base.glob("*.json"))


def _unlink(path: Path) -> None:
    path.unlink(missing_ok=True)
