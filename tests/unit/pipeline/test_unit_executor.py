# tests/unit/pipeline/test_unit_executor.py — v1
"""Tests for pipeline/executor.py — stage loop, retries, recovery, status."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from stageflow.checkpoint.memory_store import MemoryCheckpointStore
from stageflow.core.errors import CheckpointWriteError
from stageflow.core.models import Phase, SessionStatus
from stageflow.pipeline.events import CallbackListener
from stageflow.pipeline.executor import PipelineExecutor
from stageflow.pipeline.plugin_kit.base_worker import FunctionStageWorker
from stageflow.pipeline.plugin_kit.models import StageResult
from stageflow.pipeline.registry import RegistryError
from stageflow.pipeline.state import StateStore
from stageflow.recovery.models import ErrorType, RecoveryAction
from stageflow.recovery.strategies import RecoveryStrategy

SESSION = "sess-1"


async def _checkpoints(store, session_id=SESSION):
    return [r async for r in store.list_checkpoints(session_id)]


class FlakyCheckpointStore(MemoryCheckpointStore):
    """Memory store whose first ``failures`` writes raise."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    async def put(self, session_id, state_blob, metadata=None, parent_checkpoint_id=None):
        if self.failures > 0:
            self.failures -= 1
            raise CheckpointWriteError("disk full")
        return await super().put(session_id, state_blob, metadata, parent_checkpoint_id)


class TestConstruction:
    def test_missing_worker(self, stage_outputs, memory_store, settings):
        with pytest.raises(RegistryError, match="writing"):
            PipelineExecutor(
                {"research": AsyncMock()}, memory_store, settings=settings,
            )

    def test_state_store_before_run(self, make_executor):
        assert make_executor().state_store is None

    def test_graph_info(self):
        info = PipelineExecutor.get_graph_info()
        assert info["nodes"] == ["researcher", "ideator", "critic", "analyst", "writer"]
        assert info["edges"][0] == ("researcher", "ideator")
        assert len(info["edges"]) == 4
        assert info["entry_point"] == "researcher"
        assert info["finish_point"] == "writer"


class TestExecuteFull:
    @pytest.mark.asyncio
    async def test_happy_path(self, make_executor, workers, memory_store, sleeps):
        result = await make_executor().execute_full(SESSION, "user-1", "urban farming")

        assert result.success is True
        assert result.error is None
        assert result.state.current_phase is Phase.COMPLETED
        assert result.state.progress == 100
        assert workers.calls == ["research", "ideation", "critique", "analysis", "writing"]
        assert all(v is not None for v in result.outputs.values())
        assert len(await _checkpoints(memory_store)) == 5
        assert sleeps.delays == []
        assert result.stats.checkpoints_written == 5

    @pytest.mark.asyncio
    async def test_stage_inputs(self, make_executor, workers, stage_outputs):
        await make_executor().execute_full(SESSION, "user-1", "urban farming")
        assert workers.inputs["research"]["theme"] == "urban farming"
        assert workers.inputs["ideation"]["research_output"] == stage_outputs["research"]
        assert workers.inputs["analysis"]["selected_idea"]["id"] == "idea-1"

    @pytest.mark.asyncio
    async def test_status_completed(self, make_executor, memory_store):
        await make_executor().execute_full(SESSION, "u", "t")
        row = await memory_store.get_session_status(SESSION)
        assert row.status is SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_checkpoints_chain_parents(self, make_executor, memory_store):
        await make_executor().execute_full(SESSION, "u", "t")
        rows = list(reversed(await _checkpoints(memory_store)))
        assert rows[0].parent_checkpoint_id is None
        for parent, child in zip(rows, rows[1:]):
            assert child.parent_checkpoint_id == parent.id

    @pytest.mark.asyncio
    async def test_listener_events(self, make_executor):
        progress, phases = [], []
        listener = CallbackListener(
            on_progress=lambda p, m: progress.append(p),
            on_phase_change=lambda phase, agent: phases.append(phase),
        )
        await make_executor(listener=listener).execute_full(SESSION, "u", "t")
        assert progress == [40, 60, 80, 95, 100]
        assert phases == [
            Phase.RESEARCHING, Phase.IDEATING, Phase.CRITIQUING,
            Phase.ANALYZING, Phase.WRITING,
        ]

    @pytest.mark.asyncio
    async def test_listener_failure_does_not_change_outcome(self, make_executor):
        listener = CallbackListener(on_progress=MagicMock(side_effect=RuntimeError("boom")))
        result = await make_executor(listener=listener).execute_full(SESSION, "u", "t")
        assert result.success is True

    @pytest.mark.asyncio
    async def test_executor_is_reusable(self, make_executor, memory_store):
        executor = make_executor()
        first = await executor.execute_full("a", "u", "t")
        second = await executor.execute_full("b", "u", "t")
        assert first.success and second.success
        assert executor.state_store.session_id == "b"


class TestRetries:
    @pytest.mark.asyncio
    async def test_retryable_failure_then_success(self, make_executor, workers, sleeps):
        workers.fail("critique", ConnectionError("connection reset"))
        result = await make_executor().execute_full(SESSION, "u", "t")

        assert result.success is True
        assert workers.count("critique") == 2
        assert len(sleeps.delays) == 1
        assert result.state.error is None
        assert result.stats.stages["critique"].failures == ["NETWORK_ERROR"]

    @pytest.mark.asyncio
    async def test_worker_reported_failure_classified_by_reason(self, make_executor, workers):
        workers.fail("ideation", StageResult.failed("connection reset by peer"))
        result = await make_executor().execute_full(SESSION, "u", "t")
        assert result.success is True
        assert result.stats.stages["ideation"].failures == ["NETWORK_ERROR"]

    @pytest.mark.asyncio
    async def test_backoff_delays_within_bounds(self, make_executor, workers, sleeps):
        workers.fail("research", TimeoutError("slow"), TimeoutError("slow"))
        await make_executor().execute_full(SESSION, "u", "t")
        first, second = sleeps.delays
        assert 0.005 <= first < 0.010
        assert 0.010 <= second < 0.020

    @pytest.mark.asyncio
    async def test_retry_count_visible_during_retry(self, make_executor, workers, stage_outputs):
        executor = make_executor()
        seen = []

        async def critic(stage_input):
            error = executor.state_store.state.error
            seen.append(error.retry_count if error else 0)
            if len(seen) < 3:
                raise ConnectionError("connection refused")
            return StageResult.ok(stage_outputs["critique"])

        executor._registry.register(FunctionStageWorker("critique", critic))
        result = await executor.execute_full(SESSION, "u", "t")
        assert result.success is True
        assert seen == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, memory_store, settings, stage_outputs, sleeps):
        calls = []

        async def slow_research(stage_input):
            calls.append(1)
            if len(calls) == 1:
                await asyncio.sleep(10)
            return StageResult.ok(stage_outputs["research"])

        workers = {s: (lambda d, s=s: StageResult.ok(stage_outputs[s])) for s in stage_outputs}
        workers["research"] = slow_research
        executor = PipelineExecutor(workers, memory_store, settings=settings, sleep=sleeps)
        executor._stage_timeout_s = 0.05
        result = await executor.execute_full(SESSION, "u", "t")
        assert result.success is True
        assert len(calls) == 2
        assert result.stats.stages["research"].failures == ["TIMEOUT"]

    @pytest.mark.asyncio
    async def test_non_retryable_failure_aborts(self, make_executor, workers, memory_store, sleeps):
        workers.fail("ideation", ValueError("Validation failed: ideas missing"))
        result = await make_executor().execute_full(SESSION, "u", "t")

        assert result.success is False
        assert result.error.type is ErrorType.VALIDATION_ERROR
        assert result.recovery_action is RecoveryAction.ABORT
        assert result.retryable is False
        assert result.state.current_phase is Phase.ERROR
        assert result.state.error.retry_count == 0
        assert workers.count("ideation") == 1
        assert sleeps.delays == []
        row = await memory_store.get_session_status(SESSION)
        assert row.status is SessionStatus.ERROR


class TestRecovery:
    @pytest.mark.asyncio
    async def test_input_validation_failure_aborts_before_worker(
        self, make_executor, workers, stage_outputs,
    ):
        workers.outputs["ideation"] = {"ideas": []}
        result = await make_executor().execute_full(SESSION, "u", "t")
        assert result.success is False
        assert result.error.type is ErrorType.VALIDATION_ERROR
        assert result.error.agent == "critic"
        assert workers.count("critique") == 0

    @pytest.mark.asyncio
    async def test_save_partial_after_exhausted_retries(
        self, make_executor, workers, memory_store, sleeps,
    ):
        recovery = RecoveryStrategy(memory_store, memory_store, max_retry_count=0, max_resumes=0)
        workers.fail("critique", *[StageResult.failed("model refused")] * 4)
        result = await make_executor(recovery=recovery).execute_full(SESSION, "u", "t")

        assert result.success is False
        assert result.error.type is ErrorType.AGENT_FAILURE
        assert result.recovery_action is RecoveryAction.SAVE_PARTIAL
        assert workers.count("critique") == 4
        assert len(sleeps.delays) == 3
        latest = await memory_store.get_latest_record(SESSION)
        assert latest.metadata.reason == "partial"
        saved = StateStore.deserialize(latest.checkpoint).state
        assert saved.ideator_output is not None
        row = await memory_store.get_session_status(SESSION)
        assert row.error_message == "Partial results saved at critiquing"

    @pytest.mark.asyncio
    async def test_resume_from_checkpoint_then_abort(self, make_executor, workers, memory_store):
        recovery = RecoveryStrategy(memory_store, memory_store, max_retry_count=0, max_resumes=1)
        workers.fail("analysis", *[ConnectionError("connection refused")] * 8)
        result = await make_executor(recovery=recovery).execute_full(SESSION, "u", "t")

        assert result.success is False
        assert result.recovery_action is RecoveryAction.ABORT
        assert workers.count("analysis") == 8
        assert recovery.resumes_used(SESSION) == 1
        assert result.stats.recovery_actions == ["RESUME_FROM_CHECKPOINT", "ABORT"]
        assert result.outputs["critique"] is not None

    @pytest.mark.asyncio
    async def test_recovery_retry_continues(self, make_executor, workers, settings, memory_store):
        executor = make_executor(
            settings=settings.model_copy(update={"max_retries": 0}),
        )
        workers.fail("writing", ConnectionError("connection reset"))
        result = await executor.execute_full(SESSION, "u", "t")
        assert result.success is True
        assert result.stats.recovery_actions == ["RETRY"]


class TestCheckpointFailures:
    @pytest.mark.asyncio
    async def test_checkpoint_failure_aborts(self, workers, settings, sleeps):
        store = FlakyCheckpointStore(failures=1)
        executor = PipelineExecutor(
            workers.mapping(), store, settings=settings, sleep=sleeps,
        )
        result = await executor.execute_full(SESSION, "u", "t")

        assert result.success is False
        assert result.error.type is ErrorType.CHECKPOINT_ERROR
        assert result.recovery_action is RecoveryAction.ABORT
        assert workers.calls == ["research"]
        assert result.stats.checkpoint_failures == 1

    @pytest.mark.asyncio
    async def test_checkpoint_failure_skipped_when_allowed(self, workers, settings, sleeps):
        store = FlakyCheckpointStore(failures=1)
        executor = PipelineExecutor(
            workers.mapping(), store,
            settings=settings.model_copy(update={"skip_failed_checkpoints": True}),
            sleep=sleeps,
        )
        result = await executor.execute_full(SESSION, "u", "t")

        assert result.success is True
        assert len(await _checkpoints(store)) == 4
        assert result.stats.checkpoints_written == 4
        assert result.stats.recovery_actions == ["SKIP_AGENT"]


class TestResume:
    @pytest.mark.asyncio
    async def test_no_checkpoint_starts_fresh(self, make_executor, workers):
        result = await make_executor().resume_from_checkpoint(SESSION, "u", "t")
        assert result.success is True
        assert result.resumed is False
        assert len(workers.calls) == 5

    @pytest.mark.asyncio
    async def test_completed_session_is_noop(self, make_executor, workers):
        await make_executor().execute_full(SESSION, "u", "t")
        workers.calls.clear()
        result = await make_executor().resume_from_checkpoint(SESSION)
        assert result.success is True
        assert result.resumed is True
        assert workers.calls == []

    @pytest.mark.asyncio
    async def test_corrupt_checkpoint(self, make_executor, memory_store, workers):
        await memory_store.put(SESSION, "{broken")
        result = await make_executor().resume_from_checkpoint(SESSION, "u", "t")
        assert result.success is False
        assert result.error.type is ErrorType.CHECKPOINT_ERROR
        assert result.recovery_action is RecoveryAction.ABORT
        assert workers.calls == []
        row = await memory_store.get_session_status(SESSION)
        assert row.status is SessionStatus.ERROR

    @pytest.mark.asyncio
    async def test_resume_after_abort(self, make_executor, workers):
        workers.fail("critique", ValueError("validation failed"))
        first = await make_executor().execute_full(SESSION, "u", "t")
        assert first.success is False

        workers.calls.clear()
        result = await make_executor().resume_from_checkpoint(SESSION)
        assert result.success is True
        assert result.resumed is True
        assert workers.calls == ["critique", "analysis", "writing"]


class TestStatusAndMaintenance:
    @pytest.mark.asyncio
    async def test_status_unknown_session(self, make_executor):
        status = await make_executor().get_execution_status("nope")
        assert status.checkpoint_id is None
        assert status.session_status is None
        assert status.phase is Phase.INITIALIZING

    @pytest.mark.asyncio
    async def test_status_after_run(self, make_executor, memory_store):
        executor = make_executor()
        await executor.execute_full(SESSION, "u", "t")
        status = await executor.get_execution_status(SESSION)
        latest = await memory_store.get_latest_record(SESSION)
        assert status.phase is Phase.COMPLETED
        assert status.progress == 100
        assert status.session_status is SessionStatus.COMPLETED
        assert status.checkpoint_id == latest.id

    @pytest.mark.asyncio
    async def test_status_after_failure(self, make_executor, workers):
        workers.fail("ideation", ValueError("validation failed"))
        executor = make_executor()
        await executor.execute_full(SESSION, "u", "t")
        status = await executor.get_execution_status(SESSION)
        assert status.session_status is SessionStatus.ERROR
        assert "validation failed" in status.error_message

    @pytest.mark.asyncio
    async def test_clear_checkpoints(self, make_executor, memory_store):
        executor = make_executor()
        await executor.execute_full(SESSION, "u", "t")
        assert await executor.clear_checkpoints(SESSION) == 5
        assert await memory_store.get_latest_record(SESSION) is None

    @pytest.mark.asyncio
    async def test_cleanup_uses_retention(self, make_executor, memory_store):
        memory_store.cleanup = AsyncMock(return_value=3)
        executor = make_executor()
        assert await executor.cleanup() == 3
        memory_store.cleanup.assert_awaited_with(7)
        await executor.cleanup(1)
        memory_store.cleanup.assert_awaited_with(1)
