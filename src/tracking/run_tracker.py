# src/tracking/run_tracker.py — v1
"""Per-run execution tracking.

Accumulates stage attempts, failures, durations, checkpoint writes and
recovery actions while the executor runs, then rolls them into RunStats.
"""

from __future__ import annotations

import time

from stageflow.config.stages import STAGES, StageSpec
from stageflow.core.models import utc_now
from stageflow.tracking.models import RunStats, StageStats


class RunTracker:
    """Mutable accumulator for one executor run."""

    def __init__(self, session_id: str, resumed: bool = False) -> None:
        self._start_ns = time.monotonic_ns()
        self._stage_start_ns: dict[str, int] = {}
        self._stats = RunStats(
            session_id=session_id,
            start_time=utc_now(),
            resumed=resumed,
            stages={
                s.name.value: StageStats(stage=s.name.value, agent=s.agent)
                for s in STAGES
            },
        )

    def stage_attempt(self, spec: StageSpec) -> None:
        """A worker call is about to start."""
        stats = self._stats.stages[spec.name.value]
        stats.attempts += 1
        stats.status = "running"
        self._stage_start_ns.setdefault(spec.name.value, time.monotonic_ns())

    def stage_failed(self, spec: StageSpec, error_type: str) -> None:
        self._stats.stages[spec.name.value].failures.append(error_type)

    def stage_completed(self, spec: StageSpec) -> None:
        self._finish_stage(spec, "completed")

    def stage_gave_up(self, spec: StageSpec) -> None:
        self._finish_stage(spec, "failed")

    def stage_skipped(self, spec: StageSpec) -> None:
        self._finish_stage(spec, "skipped")

    def checkpoint_written(self) -> None:
        self._stats.checkpoints_written += 1

    def checkpoint_failed(self) -> None:
        self._stats.checkpoint_failures += 1

    def recovery(self, action: str) -> None:
        self._stats.recovery_actions.append(action)

    def summary(self) -> RunStats:
        """Snapshot of the stats so far, with end time and duration filled in."""
        return self._stats.model_copy(
            update={
                "end_time": utc_now(),
                "duration_ms": (time.monotonic_ns() - self._start_ns) // 1_000_000,
            },
            deep=True,
        )

    def _finish_stage(self, spec: StageSpec, status: str) -> None:
        stats = self._stats.stages[spec.name.value]
        stats.status = status  # type: ignore[assignment]
        started = self._stage_start_ns.pop(spec.name.value, None)
        if started is not None:
            stats.duration_ms = (time.monotonic_ns() - started) // 1_000_000
