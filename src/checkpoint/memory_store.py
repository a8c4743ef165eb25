# src/checkpoint/memory_store.py — v1
"""In-process checkpoint and session status store (CHECKPOINT_BACKEND=memory).

Nothing survives the process; intended for tests and single-shot runs.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import AsyncIterator

from stageflow.checkpoint.base_checkpoint_store import (
    BaseCheckpointStore,
    new_record,
    paginate,
    retention_cutoff,
)
from stageflow.checkpoint.base_session_store import BaseSessionStatusStore
from stageflow.checkpoint.models import CheckpointMetadata, CheckpointRecord
from stageflow.core.models import SessionStatus, SessionStatusRecord

logger = logging.getLogger(__name__)


class MemoryCheckpointStore(BaseCheckpointStore, BaseSessionStatusStore):
    """Dict-backed checkpoint store."""

    def __init__(self) -> None:
        self._records: dict[str, list[CheckpointRecord]] = {}
        self._statuses: dict[str, SessionStatusRecord] = {}
        self._sequence = itertools.count(1)

    async def put(
        self,
        session_id: str,
        state_blob: str,
        metadata: CheckpointMetadata | None = None,
        parent_checkpoint_id: str | None = None,
    ) -> str:
        record = new_record(
            session_id, state_blob, metadata, parent_checkpoint_id,
            sequence=next(self._sequence),
        )
        self._records.setdefault(session_id, []).append(record)
        logger.debug("Saved checkpoint %s for session %s", record.id, session_id)
        return record.id

    async def get_latest_record(self, session_id: str) -> CheckpointRecord | None:
        page = paginate(self._records.get(session_id, []), limit=1)
        return page[0] if page else None

    async def list_checkpoints(
        self,
        session_id: str,
        limit: int | None = None,
        before: str | None = None,
    ) -> AsyncIterator[CheckpointRecord]:
        for record in paginate(self._records.get(session_id, []), limit, before):
            yield record

    async def delete(self, session_id: str) -> int:
        removed = self._records.pop(session_id, [])
        return len(removed)

    async def cleanup(self, retention_days: int = 7) -> int:
        cutoff = retention_cutoff(retention_days)
        removed = 0
        for session_id in list(self._records):
            kept = [r for r in self._records[session_id] if r.created_at >= cutoff]
            removed += len(self._records[session_id]) - len(kept)
            if kept:
                self._records[session_id] = kept
            else:
                del self._records[session_id]
        return removed

    async def update_session_status(
        self,
        session_id: str,
        status: SessionStatus,
        error_message: str | None = None,
        retryable: bool | None = None,
    ) -> None:
        self._statuses[session_id] = SessionStatusRecord(
            session_id=session_id,
            status=status,
            error_message=error_message,
            retryable=retryable,
        )

    async def get_session_status(self, session_id: str) -> SessionStatusRecord | None:
        return self._statuses.get(session_id)
