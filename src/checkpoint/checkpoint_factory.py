# src/checkpoint/checkpoint_factory.py — v1
"""Factory for checkpoint store instantiation."""

from __future__ import annotations

from stageflow.checkpoint.base_checkpoint_store import BaseCheckpointStore
from stageflow.config.settings import Settings


def create_checkpoint_store(settings: Settings | None = None) -> BaseCheckpointStore:
    """Instantiate the configured checkpoint backend.

    Every backend also implements BaseSessionStatusStore.

    Args:
        settings: Application settings. Defaults to the in-memory backend.

    Returns:
        Configured BaseCheckpointStore implementation.
    """
    backend = "memory" if settings is None else settings.checkpoint_backend

    if backend == "memory":
        from stageflow.checkpoint.memory_store import MemoryCheckpointStore
        return MemoryCheckpointStore()

    if backend == "json":
        from stageflow.checkpoint.json_store import JsonCheckpointStore
        return JsonCheckpointStore(root=settings.checkpoint_root)

    if backend == "sqlite":
        from stageflow.checkpoint.sqlite_store import SqliteCheckpointStore
        db_path = settings.checkpoint_root.expanduser() / "stageflow_checkpoints.db"
        return SqliteCheckpointStore(db_path=db_path)

    if backend == "redis":
        from stageflow.checkpoint.redis_store import RedisCheckpointStore
        if not settings.checkpoint_redis_url:
            raise ValueError(
                "CHECKPOINT_REDIS_URL must be set when CHECKPOINT_BACKEND=redis"
            )
        return RedisCheckpointStore(redis_url=settings.checkpoint_redis_url)

    raise ValueError(f"Unsupported checkpoint backend: {backend!r}")
