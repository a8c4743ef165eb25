# src/checkpoint/redis_store.py — v2
"""Redis-based checkpoint store (CHECKPOINT_BACKEND=redis).

Requires 'redis' package: pip install redis.
Suitable for distributed/multi-instance deployments.

Keys:
    stageflow:checkpoint:<id>            record JSON
    stageflow:checkpoints:<session_id>   sorted set of ids, scored by insertion sequence
    stageflow:checkpoints:__created__    sorted set of all ids, scored by created_at epoch
    stageflow:checkpoint_seq             global insertion counter
    stageflow:session:<session_id>       session status JSON
"""

from __future__ import annotations

import json
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
from stageflow.core.errors import CheckpointReadError, CheckpointWriteError
from stageflow.core.models import SessionStatus, SessionStatusRecord

logger = logging.getLogger(__name__)

_PREFIX = "stageflow:"
_RECORD_KEY = _PREFIX + "checkpoint:"
_SESSION_INDEX = _PREFIX + "checkpoints:"
_CREATED_INDEX = _PREFIX + "checkpoints:__created__"
_SEQUENCE_KEY = _PREFIX + "checkpoint_seq"
_STATUS_KEY = _PREFIX + "session:"


class RedisCheckpointStore(BaseCheckpointStore, BaseSessionStatusStore):
    """Redis-backed checkpoint store for distributed deployments."""

    def __init__(self, redis_url: str) -> None:
        try:
            import redis
        except ImportError as e:
            raise ImportError(
                "redis package required: pip install redis"
            ) from e

        self._client = redis.Redis.from_url(redis_url, decode_responses=True)
        self._redis_error: type[Exception] = redis.RedisError

    async def put(
        self,
        session_id: str,
        state_blob: str,
        metadata: CheckpointMetadata | None = None,
        parent_checkpoint_id: str | None = None,
    ) -> str:
        try:
            sequence = int(self._client.incr(_SEQUENCE_KEY))
            record = new_record(
                session_id, state_blob, metadata, parent_checkpoint_id, sequence
            )
            self._client.set(f"{_RECORD_KEY}{record.id}", record.model_dump_json())
            self._client.zadd(f"{_SESSION_INDEX}{session_id}", {record.id: sequence})
            self._client.zadd(_CREATED_INDEX, {record.id: record.created_at.timestamp()})
        except self._redis_error as e:
            raise CheckpointWriteError(
                f"Failed to save checkpoint for session {session_id}: {e}"
            ) from e
        logger.debug("Saved checkpoint %s for session %s", record.id, session_id)
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
        index_key = f"{_SESSION_INDEX}{session_id}"
        try:
            ids = self._client.zrange(index_key, 0, -1)
            for cid in ids:
                self._client.delete(f"{_RECORD_KEY}{cid}")
                self._client.zrem(_CREATED_INDEX, cid)
            self._client.delete(index_key)
        except self._redis_error as e:
            raise CheckpointWriteError(
                f"Failed to delete checkpoints for session {session_id}: {e}"
            ) from e
        return len(ids)

    async def cleanup(self, retention_days: int = 7) -> int:
        cutoff = retention_cutoff(retention_days).timestamp()
        removed = 0
        try:
            # Scores are compared exclusively, matching created_at < cutoff.
            for cid in self._client.zrangebyscore(_CREATED_INDEX, "-inf", f"({cutoff}"):
                record = self._read_record(cid)
                if record is not None:
                    self._client.zrem(f"{_SESSION_INDEX}{record.session_id}", cid)
                    self._client.delete(f"{_RECORD_KEY}{cid}")
                    removed += 1
                self._client.zrem(_CREATED_INDEX, cid)
        except self._redis_error as e:
            raise CheckpointWriteError(f"Checkpoint cleanup failed: {e}") from e
        return removed

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
            self._client.set(f"{_STATUS_KEY}{session_id}", row.model_dump_json())
        except self._redis_error as e:
            raise CheckpointWriteError(
                f"Failed to update status for session {session_id}: {e}"
            ) from e

    async def get_session_status(self, session_id: str) -> SessionStatusRecord | None:
        try:
            data = self._client.get(f"{_STATUS_KEY}{session_id}")
        except self._redis_error as e:
            raise CheckpointReadError(
                f"Failed to read status for session {session_id}: {e}"
            ) from e
        if data is None:
            return None
        return SessionStatusRecord(**json.loads(data))

    def close(self) -> None:
        """Close the Redis connection."""
        self._client.close()

    # --- Helpers ---

    def _read_session(self, session_id: str) -> list[CheckpointRecord]:
        try:
            ids = self._client.zrange(f"{_SESSION_INDEX}{session_id}", 0, -1)
        except self._redis_error as e:
            raise CheckpointReadError(
                f"Failed to list checkpoints for session {session_id}: {e}"
            ) from e
        records = []
        for cid in ids:
            record = self._read_record(cid)
            if record is not None:
                records.append(record)
        return records

    def _read_record(self, checkpoint_id: str) -> CheckpointRecord | None:
        try:
            data = self._client.get(f"{_RECORD_KEY}{checkpoint_id}")
            if data is None:
                return None
            return CheckpointRecord(**json.loads(data))
        except (self._redis_error, ValueError, TypeError) as e:
            raise CheckpointReadError(
                f"Failed to read checkpoint {checkpoint_id}: {e}"
            ) from e
