# tests/integration/checkpoint/test_int_redis_store.py — v1
"""Redis checkpoint store against a real Redis (testcontainers).

Skipped automatically when Docker is not available.
"""

from __future__ import annotations

import pytest

from stageflow.core.models import SessionStatus
from stageflow.pipeline.executor import PipelineExecutor

pytestmark = pytest.mark.redis


class TestRedisCheckpointStore:
    @pytest.mark.asyncio
    async def test_put_and_list(self, redis_store):
        first = await redis_store.put("s1", '{"a": 1}')
        second = await redis_store.put("s1", '{"a": 2}', parent_checkpoint_id=first)
        rows = [r async for r in redis_store.list_checkpoints("s1")]
        assert [r.id for r in rows] == [second, first]
        assert rows[0].parent_checkpoint_id == first
        assert await redis_store.get_latest("s1") == '{"a": 2}'

    @pytest.mark.asyncio
    async def test_delete(self, redis_store):
        await redis_store.put("s1", "{}")
        await redis_store.put("s2", "{}")
        assert await redis_store.delete("s1") == 1
        assert await redis_store.get_latest_record("s1") is None
        assert await redis_store.get_latest_record("s2") is not None

    @pytest.mark.asyncio
    async def test_session_status(self, redis_store):
        await redis_store.update_session_status("s1", SessionStatus.ERROR, "boom", True)
        row = await redis_store.get_session_status("s1")
        assert row.status is SessionStatus.ERROR
        assert row.error_message == "boom"
        assert row.retryable is True

    @pytest.mark.asyncio
    async def test_full_run(self, redis_store, workers, settings, sleeps):
        executor = PipelineExecutor(
            workers.mapping(), redis_store, settings=settings, sleep=sleeps,
        )
        result = await executor.execute_full("s1", "u", "urban farming")
        assert result.success is True
        assert len([r async for r in redis_store.list_checkpoints("s1")]) == 5
