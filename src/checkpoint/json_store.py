# src/checkpoint/json_store.py — v2
"""JSON file-based checkpoint store (CHECKPOINT_BACKEND=json).

Layout under CHECKPOINT_ROOT::

    <session_id>/
        0000000001.json     one file per checkpoint, numbered in insertion order
        0000000002.json
        _status.json        session status row

Files are written to a ``.tmp`` sibling and renamed into place. A file
that still cannot be decoded is logged and left out of reads, so the
session falls back to its previous checkpoint.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator
from pathlib import Path

from stageflow.checkpoint.base_checkpoint_store import (
    BaseCheckpointStore,
    new_record,
    paginate,
    retention_cutoff,
)
from stageflow.checkpoint.base_session_store import BaseSessionStatusStore
from stageflow.checkpoint.models import CheckpointMetadata, CheckpointRecord
from stageflow.core.errors import (
    CheckpointError,
    CheckpointReadError,
    CheckpointWriteError,
)
from stageflow.core.models import SessionStatus, SessionStatusRecord

logger = logging.getLogger(__name__)

_STATUS_FILE = "_status.json"


class JsonCheckpointStore(BaseCheckpointStore, BaseSessionStatusStore):
    """File-based checkpoint store using one JSON file per checkpoint."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)

    async def put(
        self,
        session_id: str,
        state_blob: str,
        metadata: CheckpointMetadata | None = None,
        parent_checkpoint_id: str | None = None,
    ) -> str:
        session_dir = self._session_dir(session_id, CheckpointWriteError)
        try:
            session_dir.mkdir(parents=True, exist_ok=True)
            sequence = self._next_sequence(session_dir)
            record = new_record(
                session_id, state_blob, metadata, parent_checkpoint_id, sequence
            )
            path = session_dir / f"{sequence:010d}.json"
            _write_atomic(path, record.model_dump_json(indent=2))
        except OSError as e:
            raise CheckpointWriteError(
                f"Failed to save checkpoint for session {session_id}: {e}"
            ) from e
        logger.debug("Saved checkpoint %s to %s", record.id, path)
        return record.id

    async def get_latest_record(self, session_id: str) -> CheckpointRecord | None:
        page = paginate(self._read_session(session_id), limit=1)
        return page[0] if page else None

    async def list_checkpoints(
        self,
        session_id: str,
        limit: int | None = None,
        before: str | None = None,
    ) -> AsyncIterator[CheckpointRecord]:
        for record in paginate(self._read_session(session_id), limit, before):
            yield record

    async def delete(self, session_id: str) -> int:
        removed = 0
        try:
            for path in self._checkpoint_files(session_id):
                path.unlink()
                removed += 1
        except OSError as e:
            raise CheckpointWriteError(
                f"Failed to delete checkpoints for session {session_id}: {e}"
            ) from e
        return removed

    async def cleanup(self, retention_days: int = 7) -> int:
        cutoff = retention_cutoff(retention_days)
        removed = 0
        try:
            for session_dir in sorted(p for p in self._root.iterdir() if p.is_dir()):
                for path, record in self._readable(session_dir.name):
                    if record.created_at < cutoff:
                        path.unlink()
                        removed += 1
        except OSError as e:
            raise CheckpointWriteError(f"Checkpoint cleanup failed: {e}") from e
        return removed

    async def update_session_status(
        self,
        session_id: str,
        status: SessionStatus,
        error_message: str | None = None,
        retryable: bool | None = None,
    ) -> None:
        session_dir = self._session_dir(session_id, CheckpointWriteError)
        row = SessionStatusRecord(
            session_id=session_id,
            status=status,
            error_message=error_message,
            retryable=retryable,
        )
        try:
            session_dir.mkdir(parents=True, exist_ok=True)
            _write_atomic(session_dir / _STATUS_FILE, row.model_dump_json(indent=2))
        except OSError as e:
            raise CheckpointWriteError(
                f"Failed to update status for session {session_id}: {e}"
            ) from e

    async def get_session_status(self, session_id: str) -> SessionStatusRecord | None:
        path = self._session_dir(session_id) / _STATUS_FILE
        if not path.exists():
            return None
        try:
            return SessionStatusRecord(**json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, TypeError) as e:
            raise CheckpointReadError(
                f"Failed to read status for session {session_id}: {e}"
            ) from e

    # --- Helpers ---

    def _session_dir(
        self, session_id: str, error: type[CheckpointError] = CheckpointError
    ) -> Path:
        if not session_id or session_id in (".", "..") or any(
            sep in session_id for sep in ("/", "\\")
        ):
            raise error(f"Invalid session id: {session_id!r}")
        return self._root / session_id

    def _checkpoint_files(self, session_id: str) -> list[Path]:
        session_dir = self._session_dir(session_id)
        if not session_dir.is_dir():
            return []
        return sorted(p for p in session_dir.glob("*.json") if p.name != _STATUS_FILE)

    def _next_sequence(self, session_dir: Path) -> int:
        numbers = [
            int(p.stem) for p in session_dir.glob("*.json") if p.stem.isdigit()
        ]
        return max(numbers, default=0) + 1

    def _read_session(self, session_id: str) -> list[CheckpointRecord]:
        return [record for _, record in self._readable(session_id)]

    def _readable(self, session_id: str) -> list[tuple[Path, CheckpointRecord]]:
        rows = []
        for path in self._checkpoint_files(session_id):
            try:
                rows.append((path, self._read_file(path)))
            except CheckpointReadError as e:
                logger.warning("Skipping unreadable checkpoint: %s", e)
        return rows

    @staticmethod
    def _read_file(path: Path) -> CheckpointRecord:
        try:
            return CheckpointRecord(**json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, TypeError) as e:
            raise CheckpointReadError(f"Failed to read checkpoint {path}: {e}") from e


def _write_atomic(path: Path, text: str) -> None:
    tmp = path.with_suffix(".tmp")
    tmp.write_text(text, encoding="utf-8")
    os.replace(tmp, path)
