# src/tracking/models.py — v2
"""Tracking domain models: StageStats, RunStats."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class StageStats(BaseModel):
    """Per-stage execution stats for one run."""

    stage: str
    agent: str
    status: Literal["pending", "running", "completed", "failed", "skipped"] = "pending"
    attempts: int = 0
    failures: list[str] = Field(default_factory=list)
    duration_ms: int = 0


class RunStats(BaseModel):
    """Consolidated view of one executor run (fresh or resumed)."""

    session_id: str
    start_time: datetime
    end_time: datetime | None = None
    duration_ms: int = 0
    resumed: bool = False
    stages: dict[str, StageStats] = Field(default_factory=dict)
    checkpoints_written: int = 0
    checkpoint_failures: int = 0
    recovery_actions: list[str] = Field(default_factory=list)

    @property
    def total_attempts(self) -> int:
        return sum(s.attempts for s in self.stages.values())

    @property
    def total_failures(self) -> int:
        return sum(len(s.failures) for s in self.stages.values())
