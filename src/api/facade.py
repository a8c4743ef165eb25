# src/api/facade.py — v2
"""Public API facade — entry points for running and inspecting sessions.

Usage:
    from stageflow.api.facade import run_pipeline
    result = await run_pipeline(RunRequest(theme="urban farming"), workers)

Workers default to the dotted class paths in STAGEFLOW_STAGE_WORKERS and
the checkpoint store to STAGEFLOW_CHECKPOINT_BACKEND. Stores created here
are closed before returning; stores passed in are left open.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from stageflow.api.models import RunOptions, RunRequest
from stageflow.checkpoint.base_checkpoint_store import BaseCheckpointStore
from stageflow.checkpoint.base_session_store import BaseSessionStatusStore
from stageflow.checkpoint.checkpoint_factory import create_checkpoint_store
from stageflow.config.settings import Settings
from stageflow.pipeline.events import ProgressListener
from stageflow.pipeline.executor import (
    ExecutionResult,
    ExecutionStatus,
    PipelineExecutor,
    read_execution_status,
)
from stageflow.pipeline.registry import StageRegistry

logger = logging.getLogger(__name__)


def build_executor(
    workers: StageRegistry | Mapping[str, Any] | None = None,
    settings: Settings | None = None,
    checkpoint_store: BaseCheckpointStore | None = None,
    listener: ProgressListener | None = None,
    options: RunOptions | None = None,
) -> PipelineExecutor:
    """Wire an executor from settings, with optional injected parts.

    Args:
        workers: Stage workers. Loaded from settings.stage_workers if None.
        settings: Global settings. Loaded from .env if None.
        checkpoint_store: Checkpoint backend. Built from settings if None.
        listener: Progress listener.
        options: Per-run overrides for retries and stage timeout.

    Raises:
        RegistryError: If a stage has no worker.
    """
    settings = _apply_options(settings or Settings(), options)
    if workers is None:
        workers = StageRegistry.from_class_paths(settings.stage_workers_list)
    store = checkpoint_store or create_checkpoint_store(settings)
    return PipelineExecutor(workers, store, settings=settings, listener=listener)


async def run_pipeline(
    request: RunRequest,
    workers: StageRegistry | Mapping[str, Any] | None = None,
    settings: Settings | None = None,
    checkpoint_store: BaseCheckpointStore | None = None,
    listener: ProgressListener | None = None,
) -> ExecutionResult:
    """Run all five stages for a new session."""
    settings = settings or Settings()
    store = checkpoint_store or create_checkpoint_store(settings)
    try:
        executor = build_executor(workers, settings, store, listener, request.options)
        logger.info("Starting run: session_id=%s", request.session_id)
        return await executor.execute_full(
            request.session_id, request.user_id, request.theme
        )
    finally:
        if checkpoint_store is None:
            store.close()


async def resume_pipeline(
    session_id: str,
    workers: StageRegistry | Mapping[str, Any] | None = None,
    settings: Settings | None = None,
    checkpoint_store: BaseCheckpointStore | None = None,
    listener: ProgressListener | None = None,
    options: RunOptions | None = None,
) -> ExecutionResult:
    """Continue a session from its latest checkpoint."""
    settings = settings or Settings()
    store = checkpoint_store or create_checkpoint_store(settings)
    try:
        executor = build_executor(workers, settings, store, listener, options)
        return await executor.resume_from_checkpoint(session_id)
    finally:
        if checkpoint_store is None:
            store.close()


async def get_execution_status(
    session_id: str,
    settings: Settings | None = None,
    checkpoint_store: BaseCheckpointStore | None = None,
) -> ExecutionStatus:
    """Phase, progress and status of a session; needs no workers."""
    store = checkpoint_store or create_checkpoint_store(settings or Settings())
    try:
        status_store = store if isinstance(store, BaseSessionStatusStore) else None
        return await read_execution_status(session_id, store, status_store)
    finally:
        if checkpoint_store is None:
            store.close()


async def cleanup_checkpoints(
    retention_days: int | None = None,
    settings: Settings | None = None,
    checkpoint_store: BaseCheckpointStore | None = None,
) -> int:
    """Delete checkpoints older than the retention window. Returns the count."""
    settings = settings or Settings()
    days = settings.checkpoint_retention_days if retention_days is None else retention_days
    store = checkpoint_store or create_checkpoint_store(settings)
    try:
        removed = await store.cleanup(days)
    finally:
        if checkpoint_store is None:
            store.close()
    logger.info("Removed %d checkpoints older than %d days", removed, days)
    return removed


def _apply_options(settings: Settings, options: RunOptions | None) -> Settings:
    """Apply per-run overrides if provided."""
    if options is None:
        return settings
    overrides: dict[str, Any] = {}
    if options.max_retries is not None:
        overrides["max_retries"] = options.max_retries
    if options.timeout_s is not None:
        overrides["stage_timeout_s"] = options.timeout_s
    if not overrides:
        return settings
    current = settings.model_dump()
    current.update(overrides)
    return Settings(**current)
