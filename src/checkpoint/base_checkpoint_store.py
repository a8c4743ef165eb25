# src/checkpoint/base_checkpoint_store.py — v1
"""Abstract checkpoint store interface.

Checkpoints are append-only: ``put`` always inserts a new row and the
latest row for a session is its current checkpoint.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from datetime import datetime, timedelta

from stageflow.checkpoint.models import CheckpointMetadata, CheckpointRecord
from stageflow.core.errors import CheckpointWriteError
from stageflow.core.models import utc_now


class BaseCheckpointStore(ABC):
    """Unified interface for checkpoint storage backends."""

    @abstractmethod
    async def put(
        self,
        session_id: str,
        state_blob: str,
        metadata: CheckpointMetadata | None = None,
        parent_checkpoint_id: str | None = None,
    ) -> str:
        """Insert a checkpoint and return its id."""

    @abstractmethod
    async def get_latest_record(self, session_id: str) -> CheckpointRecord | None:
        """Most recent checkpoint row for a session, or None."""

    @abstractmethod
    def list_checkpoints(
        self,
        session_id: str,
        limit: int | None = None,
        before: str | None = None,
    ) -> AsyncIterator[CheckpointRecord]:
        """Yield a session's checkpoints newest first.

        ``before`` is a checkpoint id: only rows older than it are yielded.
        """

    @abstractmethod
    async def delete(self, session_id: str) -> int:
        """Remove every checkpoint of a session. Returns rows removed."""

    @abstractmethod
    async def cleanup(self, retention_days: int = 7) -> int:
        """Remove checkpoints older than the retention window. Returns rows removed."""

    async def get_latest(self, session_id: str) -> str | None:
        """Serialized state of the latest checkpoint, or None if there is none."""
        record = await self.get_latest_record(session_id)
        return record.checkpoint if record is not None else None

    def close(self) -> None:
        """Release backend resources."""


def new_record(
    session_id: str,
    state_blob: str,
    metadata: CheckpointMetadata | None,
    parent_checkpoint_id: str | None,
    sequence: int = 0,
) -> CheckpointRecord:
    """Build a fresh CheckpointRecord, rejecting an empty session id."""
    if not session_id:
        raise CheckpointWriteError("Cannot save checkpoint without a session id")
    return CheckpointRecord(
        id=str(uuid.uuid4()),
        session_id=session_id,
        checkpoint=state_blob,
        metadata=metadata or CheckpointMetadata(),
        parent_checkpoint_id=parent_checkpoint_id,
        sequence=sequence,
    )


def retention_cutoff(retention_days: int, now: datetime | None = None) -> datetime:
    """Oldest created_at that survives a cleanup."""
    if retention_days < 0:
        raise ValueError(f"retention_days must be >= 0, got {retention_days}")
    return (now or utc_now()) - timedelta(days=retention_days)


def paginate(
    records: Iterable[CheckpointRecord],
    limit: int | None = None,
    before: str | None = None,
) -> list[CheckpointRecord]:
    """Order records newest first and apply the ``before``/``limit`` window.

    An unknown ``before`` id yields an empty page.
    """
    if limit is not None and limit < 0:
        raise ValueError(f"limit must be >= 0, got {limit}")
    ordered = sorted(records, key=lambda r: (r.created_at, r.sequence), reverse=True)
    if before is not None:
        ids = [r.id for r in ordered]
        if before not in ids:
            return []
        ordered = ordered[ids.index(before) + 1:]
    if limit is not None:
        ordered = ordered[:limit]
    return ordered
