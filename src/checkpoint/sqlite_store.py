# src/checkpoint/sqlite_store.py — v2
"""SQLite-based checkpoint store (CHECKPOINT_BACKEND=sqlite, the default).

Uses stdlib sqlite3 — no external dependency. Timestamps are stored in
the fixed-width UTC format, so string comparison orders them correctly.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from pathlib import Path

from stageflow.checkpoint.base_checkpoint_store import (
    BaseCheckpointStore,
    new_record,
    retention_cutoff,
)
from stageflow.checkpoint.base_session_store import BaseSessionStatusStore
from stageflow.checkpoint.models import CheckpointMetadata, CheckpointRecord
from stageflow.core.errors import CheckpointReadError, CheckpointWriteError
from stageflow.core.models import (
    TIMESTAMP_FORMAT,
    SessionStatus,
    SessionStatusRecord,
    format_timestamp,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS orchestration_checkpoints (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    session_id TEXT NOT NULL,
    checkpoint TEXT NOT NULL,
    metadata TEXT NOT NULL,
    parent_checkpoint_id TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_checkpoints_session
    ON orchestration_checkpoints(session_id, created_at);
CREATE INDEX IF NOT EXISTS idx_checkpoints_created
    ON orchestration_checkpoints(created_at);
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    error_message TEXT,
    retryable INTEGER,
    updated_at TEXT NOT NULL
);
"""

_COLUMNS = "seq, id, session_id, checkpoint, metadata, parent_checkpoint_id, created_at"


def _parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def _row_to_record(row: tuple) -> CheckpointRecord:
    seq, cid, session_id, checkpoint, metadata, parent_id, created_at = row
    return CheckpointRecord(
        id=cid,
        session_id=session_id,
        checkpoint=checkpoint,
        metadata=CheckpointMetadata(**json.loads(metadata)),
        parent_checkpoint_id=parent_id,
        created_at=_parse_timestamp(created_at),
        sequence=seq,
    )


class SqliteCheckpointStore(BaseCheckpointStore, BaseSessionStatusStore):
    """SQLite-backed checkpoint and session status store."""

    def __init__(self, db_path: Path | str) -> None:
        if str(db_path) == ":memory:":
            target = ":memory:"
        else:
            path = Path(db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            target = str(path)
        self._conn = sqlite3.connect(target)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    async def put(
        self,
        session_id: str,
        state_blob: str,
        metadata: CheckpointMetadata | None = None,
        parent_checkpoint_id: str | None = None,
    ) -> str:
        record = new_record(session_id, state_blob, metadata, parent_checkpoint_id)
        try:
            self._conn.execute(
                """INSERT INTO orchestration_checkpoints
                   (id, session_id, checkpoint, metadata, parent_checkpoint_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    record.id,
                    session_id,
                    state_blob,
                    record.metadata.model_dump_json(),
                    parent_checkpoint_id,
                    format_timestamp(record.created_at),
                ),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise CheckpointWriteError(
                f"Failed to save checkpoint for session {session_id}: {e}"
            ) from e
        logger.debug("Saved checkpoint %s for session %s", record.id, session_id)
        return record.id

    async def get_latest_record(self, session_id: str) -> CheckpointRecord | None:
        row = self._fetch(
            f"SELECT {_COLUMNS} FROM orchestration_checkpoints "
            "WHERE session_id = ? ORDER BY created_at DESC, seq DESC LIMIT 1",
            (session_id,),
        )
        return _row_to_record(row[0]) if row else None

    async def list_checkpoints(
        self,
        session_id: str,
        limit: int | None = None,
        before: str | None = None,
    ) -> AsyncIterator[CheckpointRecord]:
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")

        query = f"SELECT {_COLUMNS} FROM orchestration_checkpoints WHERE session_id = ?"
        params: list[object] = [session_id]
        if before is not None:
            anchor = self._fetch(
                "SELECT created_at, seq FROM orchestration_checkpoints "
                "WHERE id = ? AND session_id = ?",
                (before, session_id),
            )
            if not anchor:
                return
            created_at, seq = anchor[0]
            query += " AND (created_at < ? OR (created_at = ? AND seq < ?))"
            params.extend([created_at, created_at, seq])
        query += " ORDER BY created_at DESC, seq DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        for row in self._fetch(query, tuple(params)):
            yield _row_to_record(row)

    async def delete(self, session_id: str) -> int:
        return self._delete(
            "DELETE FROM orchestration_checkpoints WHERE session_id = ?",
            (session_id,),
            f"Failed to delete checkpoints for session {session_id}",
        )

    async def cleanup(self, retention_days: int = 7) -> int:
        cutoff = format_timestamp(retention_cutoff(retention_days))
        return self._delete(
            "DELETE FROM orchestration_checkpoints WHERE created_at < ?",
            (cutoff,),
            "Checkpoint cleanup failed",
        )

    async def update_session_status(
        self,
        session_id: str,
        status: SessionStatus,
        error_message: str | None = None,
        retryable: bool | None = None,
    ) -> None:
        row = SessionStatusRecord(
            session_id=session_id,
            status=status,
            error_message=error_message,
            retryable=retryable,
        )
        try:
            self._conn.execute(
                """INSERT OR REPLACE INTO sessions
                   (id, status, error_message, retryable, updated_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    session_id,
                    row.status.value,
                    error_message,
                    None if retryable is None else int(retryable),
                    format_timestamp(row.updated_at),
                ),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise CheckpointWriteError(
                f"Failed to update status for session {session_id}: {e}"
            ) from e

    async def get_session_status(self, session_id: str) -> SessionStatusRecord | None:
        rows = self._fetch(
            "SELECT status, error_message, retryable, updated_at FROM sessions WHERE id = ?",
            (session_id,),
        )
        if not rows:
            return None
        status, error_message, retryable, updated_at = rows[0]
        return SessionStatusRecord(
            session_id=session_id,
            status=SessionStatus(status),
            error_message=error_message,
            retryable=None if retryable is None else bool(retryable),
            updated_at=_parse_timestamp(updated_at),
        )

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def _delete(self, query: str, params: tuple, failure: str) -> int:
        try:
            cursor = self._conn.execute(query, params)
            self._conn.commit()
        except sqlite3.Error as e:
            raise CheckpointWriteError(f"{failure}: {e}") from e
        return cursor.rowcount

    def _fetch(self, query: str, params: tuple) -> list[tuple]:
        try:
            return self._conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise CheckpointReadError(f"Checkpoint query failed: {e}") from e
