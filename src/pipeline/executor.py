# src/pipeline/executor.py — v1
"""Pipeline executor — drive one run through the five stages.

For each stage with an empty output slot, in fixed order:

  1. validate the stage input against upstream outputs
  2. enter the stage phase and call the worker, raced against the
     per-stage timeout (the abandoned call is cancelled)
  3. on success: merge the output, advance the phase, write one
     checkpoint, notify listeners
  4. on failure: classify; retryable failures are retried up to
     ``max_retries`` times with jittered backoff, everything else (and
     exhausted retries) goes to RecoveryStrategy, whose action decides
     whether the run retries, resumes, skips, saves partial results or
     aborts

Checkpoint writes are guarded the same way. Resuming is the same loop
started from a deserialized checkpoint: stages whose slot is filled are
never run again.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, NamedTuple

from stageflow.checkpoint.base_checkpoint_store import BaseCheckpointStore
from stageflow.checkpoint.base_session_store import BaseSessionStatusStore
from stageflow.checkpoint.models import CheckpointMetadata
from stageflow.config.settings import Settings
from stageflow.config.stages import STAGES, StageSpec, next_phase
from stageflow.core.errors import (
    CheckpointError,
    InputValidationError,
    StageExecutionError,
    StageTimeoutError,
)
from stageflow.core.models import Phase, RunState, SessionStatus, StageName
from stageflow.logging.context import set_session_context, set_stage_context
from stageflow.pipeline.events import ProgressListener, SafeNotifier
from stageflow.pipeline.plugin_kit.models import StageResult
from stageflow.pipeline.registry import StageRegistry
from stageflow.pipeline.state import StateStore
from stageflow.recovery.backoff import BackoffPolicy
from stageflow.recovery.classifier import ErrorClassifier
from stageflow.recovery.models import OrchestrationError, RecoveryAction
from stageflow.recovery.strategies import RecoveryStrategy
from stageflow.tracking.models import RunStats
from stageflow.tracking.run_tracker import RunTracker
from stageflow.version import __version__

logger = logging.getLogger(__name__)

_STOPPING_ACTIONS = (RecoveryAction.SAVE_PARTIAL, RecoveryAction.ABORT)


@dataclass
class ExecutionResult:
    """Result of one executor run (fresh or resumed)."""

    session_id: str
    success: bool
    state: RunState
    outputs: dict[str, dict[str, Any] | None]
    execution_time_ms: int = 0
    resumed: bool = False
    error: OrchestrationError | None = None
    recovery_action: RecoveryAction | None = None
    stats: RunStats | None = None

    @property
    def retryable(self) -> bool:
        """Whether the failure that ended the run is worth retrying later."""
        return self.error is not None and self.error.retryable


@dataclass
class ExecutionStatus:
    """Point-in-time view of a session, read from its latest checkpoint."""

    session_id: str
    phase: Phase = Phase.INITIALIZING
    progress: int = 0
    current_agent: str | None = None
    last_update_time: datetime | None = None
    error_message: str | None = None
    session_status: SessionStatus | None = None
    checkpoint_id: str | None = None


class _StageOutcome(NamedTuple):
    action: RecoveryAction | None
    error: OrchestrationError | None


_DONE = _StageOutcome(None, None)


@dataclass
class _Run:
    """Per-run working set, so one executor can serve sequential runs."""

    store: StateStore
    tracker: RunTracker
    resumed: bool
    start_ns: int = field(default_factory=time.monotonic_ns)
    last_checkpoint_id: str | None = None
    skipped: set[StageName] = field(default_factory=set)
    last_error: OrchestrationError | None = None

    @property
    def session_id(self) -> str:
        return self.store.session_id


async def read_execution_status(
    session_id: str,
    checkpoint_store: BaseCheckpointStore,
    status_store: BaseSessionStatusStore | None = None,
) -> ExecutionStatus:
    """Build an ExecutionStatus without needing workers.

    Raises:
        CorruptCheckpointError: If the latest checkpoint cannot be decoded.
    """
    row = None
    if status_store is not None:
        row = await status_store.get_session_status(session_id)
    status = ExecutionStatus(
        session_id=session_id,
        session_status=row.status if row is not None else None,
        error_message=row.error_message if row is not None else None,
    )

    record = await checkpoint_store.get_latest_record(session_id)
    if record is None:
        return status
    state = StateStore.deserialize(record.checkpoint).state
    status.phase = state.current_phase
    status.progress = state.progress
    status.current_agent = state.current_agent
    status.last_update_time = state.last_update_time
    status.checkpoint_id = record.id
    if state.error is not None:
        status.error_message = state.error.message
    return status


class PipelineExecutor:
    """Run the five-stage pipeline for one session at a time.

    Args:
        workers: StageRegistry, or mapping of stage name to worker/callable.
        checkpoint_store: Checkpoint backend.
        status_store: Session status backend. Defaults to checkpoint_store
            when it also implements BaseSessionStatusStore.
        classifier: Error classifier. Built from settings if None.
        backoff: Backoff policy. Built from settings if None.
        recovery: Recovery strategy. Built from settings if None.
        settings: Settings for retry/timeout/recovery defaults.
        listener: Progress listener; failures inside it are logged and ignored.
        sleep: Coroutine used for backoff waits.
    """

    def __init__(
        self,
        workers: StageRegistry | Mapping[str, Any],
        checkpoint_store: BaseCheckpointStore,
        status_store: BaseSessionStatusStore | None = None,
        classifier: ErrorClassifier | None = None,
        backoff: BackoffPolicy | None = None,
        recovery: RecoveryStrategy | None = None,
        settings: Settings | None = None,
        listener: ProgressListener | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        settings = settings or Settings()
        if isinstance(workers, StageRegistry):
            self._registry = workers
        else:
            self._registry = StageRegistry.from_mapping(workers)
        self._registry.validate()

        if status_store is None and isinstance(checkpoint_store, BaseSessionStatusStore):
            status_store = checkpoint_store
        self._checkpoints = checkpoint_store
        self._status = status_store
        self._classifier = classifier or ErrorClassifier(
            max_delay_ms=settings.backoff_max_delay_ms
        )
        self._backoff = backoff or BackoffPolicy.from_settings(settings)
        self._recovery = recovery or RecoveryStrategy.from_settings(
            settings, checkpoint_store, status_store
        )
        self._max_retries = settings.max_retries
        self._stage_timeout_s = settings.stage_timeout_s
        self._retention_days = settings.checkpoint_retention_days
        self._notify = SafeNotifier(listener)
        self._sleep = sleep
        self._current: _Run | None = None

    @property
    def state_store(self) -> StateStore | None:
        """State of the run in progress (or the last run)."""
        return self._current.store if self._current is not None else None

    # --- Public operations ---

    async def execute_full(
        self, session_id: str, user_id: str = "", theme: str = ""
    ) -> ExecutionResult:
        """Run all five stages for a new session."""
        store = StateStore.create(session_id, user_id, theme)
        return await self._run(_Run(store, RunTracker(session_id), resumed=False))

    async def resume_from_checkpoint(
        self, session_id: str, user_id: str = "", theme: str = ""
    ) -> ExecutionResult:
        """Continue a session from its latest checkpoint.

        Without a checkpoint the session starts fresh with the given
        identity. A completed session is returned as-is.
        """
        set_session_context(session_id)
        try:
            record = await self._checkpoints.get_latest_record(session_id)
            if record is None:
                logger.info("No checkpoint for session %s, starting fresh", session_id)
                return await self.execute_full(session_id, user_id, theme)
            store = StateStore.deserialize(record.checkpoint)
        except CheckpointError as exc:
            return await self._fail_unrestorable(session_id, user_id, theme, exc)

        run = _Run(store, RunTracker(session_id, resumed=True), resumed=True)
        run.last_checkpoint_id = record.id
        if store.is_completed():
            logger.info("Session %s already completed, nothing to resume", session_id)
            self._current = run
            return self._result(run, success=True)

        store.clear_error()
        logger.info(
            "Resuming session %s at phase %s (%d/%d stages done)",
            session_id, store.state.current_phase.value,
            len(store.completed_stages()), len(STAGES),
        )
        return await self._run(run)

    async def get_execution_status(self, session_id: str) -> ExecutionStatus:
        """Phase, progress and status of a session from its latest checkpoint."""
        return await read_execution_status(session_id, self._checkpoints, self._status)

    async def clear_checkpoints(self, session_id: str) -> int:
        """Delete all checkpoints of a session and forget its resume budget."""
        removed = await self._checkpoints.delete(session_id)
        self._recovery.reset(session_id)
        logger.info("Cleared %d checkpoints for session %s", removed, session_id)
        return removed

    async def cleanup(self, retention_days: int | None = None) -> int:
        """Prune checkpoints older than the retention window."""
        days = self._retention_days if retention_days is None else retention_days
        removed = await self._checkpoints.cleanup(days)
        logger.info("Checkpoint cleanup removed %d rows older than %d days", removed, days)
        return removed

    @staticmethod
    def get_graph_info() -> dict[str, Any]:
        """Static shape of the pipeline: agents in order and their edges."""
        agents = [s.agent for s in STAGES]
        return {
            "nodes": agents,
            "edges": list(zip(agents, agents[1:])),
            "entry_point": agents[0],
            "finish_point": agents[-1],
        }

    # --- Run loop ---

    async def _run(self, run: _Run) -> ExecutionResult:
        self._current = run
        session_id = run.session_id
        set_session_context(session_id)
        await self._set_status(session_id, SessionStatus.PROCESSING)

        try:
            while True:
                spec = run.store.next_pending_stage(run.skipped)
                if spec is None:
                    break
                outcome = await self._run_stage(spec, run)
                if outcome.error is not None:
                    run.last_error = outcome.error
                if outcome.action is RecoveryAction.SKIP_AGENT:
                    run.skipped.add(spec.name)
                    run.tracker.stage_skipped(spec)
                elif outcome.action in _STOPPING_ACTIONS:
                    run.tracker.stage_gave_up(spec)
                    return self._result(
                        run, success=False, error=outcome.error, action=outcome.action
                    )
        finally:
            set_stage_context(None)

        if not run.store.has_all_outputs():
            return await self._finish_incomplete(run)

        if not run.store.is_completed():
            run.store.update_phase(Phase.COMPLETED)
        await self._set_status(session_id, SessionStatus.COMPLETED)
        result = self._result(run, success=True)
        logger.info(
            "Session %s completed in %dms (%d checkpoints)",
            session_id, result.execution_time_ms,
            result.stats.checkpoints_written if result.stats else 0,
        )
        return result

    async def _run_stage(self, spec: StageSpec, run: _Run) -> _StageOutcome:
        store = run.store
        attempt = 0
        while True:
            attempt += 1
            set_stage_context(spec.name.value, attempt)
            try:
                output = await self._attempt_stage(spec, run, attempt)
            except Exception as exc:
                error = self._classifier.build(
                    exc, agent=spec.agent,
                    operation=f"stage:{spec.name.value}", attempt=attempt,
                )
                run.tracker.stage_failed(spec, error.type.value)
                logger.warning(
                    "Stage %s attempt %d failed (%s): %s",
                    spec.name.value, attempt, error.type.value, error.message,
                )
                await self._notify.error(error)

                if error.retryable and attempt <= self._max_retries:
                    store.note_failure(error)
                    store.increment_retry_count()
                    await self._backoff_wait(attempt)
                    continue

                action = await self._recover(error, run)
                if action is RecoveryAction.RETRY:
                    await self._backoff_wait(attempt)
                    continue
                return _StageOutcome(action, error)

            return await self._complete_stage(spec, run, output)

    async def _attempt_stage(
        self, spec: StageSpec, run: _Run, attempt: int
    ) -> dict[str, Any]:
        store = run.store
        report = store.validate_input(spec.name)
        if not report.valid:
            raise InputValidationError(spec.name.value, report.errors)

        store.update_phase(spec.phase, spec.agent)
        if attempt == 1:
            await self._notify.phase_change(spec.phase, spec.agent)
            await self._notify.agent_start(spec.agent)

        worker = self._registry.get_or_raise(spec.name)
        stage_input = store.prepare_stage_input(spec.name)
        run.tracker.stage_attempt(spec)
        logger.debug("Calling %s (attempt %d)", spec.agent, attempt)
        try:
            result = await asyncio.wait_for(
                worker.execute(stage_input), timeout=self._stage_timeout_s
            )
        except asyncio.TimeoutError as exc:
            raise StageTimeoutError(spec.name.value, self._stage_timeout_s) from exc

        if not isinstance(result, StageResult):
            result = StageResult.model_validate(result)
        if not result.success:
            raise StageExecutionError(spec.name.value, spec.agent, result.error)
        return result.data or {}

    async def _complete_stage(
        self, spec: StageSpec, run: _Run, output: dict[str, Any]
    ) -> _StageOutcome:
        store = run.store
        store.merge_output(spec.name, output)
        store.clear_error()
        store.update_phase(next_phase(spec.phase))
        run.tracker.stage_completed(spec)
        logger.info(
            "Stage %s completed (progress %d%%)", spec.name.value, store.state.progress
        )

        outcome = await self._persist_checkpoint(run)
        if outcome.action in _STOPPING_ACTIONS:
            return outcome
        await self._notify.agent_complete(spec.agent, output)
        await self._notify.progress(store.state.progress, spec.done_message)
        return outcome

    async def _persist_checkpoint(self, run: _Run, reason: str = "stage_complete") -> _StageOutcome:
        store = run.store
        blob = store.serialize()
        metadata = CheckpointMetadata(
            version=__version__,
            phase=store.state.current_phase.value,
            reason=reason,
        )
        attempt = 0
        while True:
            attempt += 1
            try:
                checkpoint_id = await self._checkpoints.put(
                    run.session_id, blob, metadata, run.last_checkpoint_id
                )
            except Exception as exc:
                run.tracker.checkpoint_failed()
                error = self._classifier.build(
                    exc, operation="checkpoint", attempt=attempt
                )
                logger.warning(
                    "Checkpoint write attempt %d failed (%s): %s",
                    attempt, error.type.value, error.message,
                )
                await self._notify.error(error)

                if error.retryable and attempt <= self._max_retries:
                    await self._backoff_wait(attempt)
                    continue

                action = await self._recover(error, run)
                if action is RecoveryAction.RETRY:
                    await self._backoff_wait(attempt)
                    continue
                if action is RecoveryAction.SKIP_AGENT:
                    logger.warning("Continuing session %s without checkpoint", run.session_id)
                    return _StageOutcome(None, error)
                return _StageOutcome(action, error)

            run.last_checkpoint_id = checkpoint_id
            run.tracker.checkpoint_written()
            store.clear_error()
            return _DONE

    # --- Helpers ---

    async def _recover(self, error: OrchestrationError, run: _Run) -> RecoveryAction:
        action = await self._recovery.recover(error, run.store, run.session_id)
        run.tracker.recovery(action.value)
        return action

    async def _backoff_wait(self, attempt: int) -> None:
        delay = self._backoff.delay_seconds(attempt)
        logger.info("Retrying in %.2fs (retry %d)", delay, attempt)
        await self._sleep(delay)

    async def _set_status(
        self,
        session_id: str,
        status: SessionStatus,
        error_message: str | None = None,
        retryable: bool | None = None,
    ) -> None:
        if self._status is None:
            return
        try:
            await self._status.update_session_status(
                session_id, status, error_message, retryable
            )
        except CheckpointError as exc:
            logger.error("Could not set session %s to %s: %s", session_id, status.value, exc)

    async def _finish_incomplete(self, run: _Run) -> ExecutionResult:
        """Stages were skipped, so the run cannot complete."""
        missing = ", ".join(s.name.value for s in run.store.pending_stages())
        error = run.last_error or self._classifier.build(f"Stages not completed: {missing}")
        run.store.record_error(error)
        await self._set_status(
            run.session_id, SessionStatus.ERROR, f"Stages not completed: {missing}", False
        )
        return self._result(
            run, success=False, error=error, action=RecoveryAction.SKIP_AGENT
        )

    async def _fail_unrestorable(
        self, session_id: str, user_id: str, theme: str, exc: Exception
    ) -> ExecutionResult:
        """The latest checkpoint could not be read back."""
        error = self._classifier.build(exc, operation="resume")
        logger.error("Cannot resume session %s: %s", session_id, error.message)
        store = StateStore.create(session_id, user_id, theme)
        store.record_error(error)
        await self._set_status(session_id, SessionStatus.ERROR, error.message, error.retryable)
        run = _Run(store, RunTracker(session_id, resumed=True), resumed=True)
        self._current = run
        return self._result(run, success=False, error=error, action=RecoveryAction.ABORT)

    @staticmethod
    def _result(
        run: _Run,
        success: bool,
        error: OrchestrationError | None = None,
        action: RecoveryAction | None = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            session_id=run.session_id,
            success=success,
            state=run.store.state,
            outputs=run.store.outputs(),
            execution_time_ms=(time.monotonic_ns() - run.start_ns) // 1_000_000,
            resumed=run.resumed,
            error=error,
            recovery_action=action,
            stats=run.tracker.summary(),
        )
