# tests/conftest.py — v2
"""Shared test fixtures for all unit and integration tests.

Provides canned stage outputs, recording stage workers, fast settings and
an in-memory checkpoint store. No external dependencies; no real sleeps.
"""

from __future__ import annotations

import copy
from typing import Any

import pytest

from stageflow.checkpoint.memory_store import MemoryCheckpointStore
from stageflow.config.settings import Settings
from stageflow.pipeline.executor import PipelineExecutor
from stageflow.pipeline.plugin_kit.models import StageResult


# === Sample stage outputs ===

_STAGE_OUTPUTS: dict[str, dict[str, Any]] = {
    "research": {
        "research": {
            "theme": "urban farming",
            "insights": ["Rooftop space is underused", "Demand for local produce"],
            "sources": [{"url": "https://example.org/report", "title": "City farms"}],
        },
        "metrics": {"sources_found": 1},
    },
    "ideation": {
        "sessionId": "sess-1",
        "ideas": [
            {"id": "idea-1", "title": "Rooftop hydroponics"},
            {"id": "idea-2", "title": "Vertical farm kits"},
        ],
        "metadata": {"count": 2},
    },
    "critique": {
        "evaluationResults": [
            {"ideaId": "idea-1", "score": 8.5},
            {"ideaId": "idea-2", "score": 6.0},
        ],
        "selectedIdea": {"id": "idea-1", "title": "Rooftop hydroponics"},
        "summary": {"evaluated": 2},
    },
    "analysis": {
        "sessionId": "sess-1",
        "ideaId": "idea-1",
        "analystData": {"market": "growing", "risks": ["water use"]},
        "metadata": {},
    },
    "writing": {
        "report": "# Rooftop hydroponics\n\nA city-scale opportunity.",
        "format": "markdown",
    },
}


@pytest.fixture
def stage_outputs() -> dict[str, dict[str, Any]]:
    """Valid output for each of the five stages, keyed by stage name."""
    return copy.deepcopy(_STAGE_OUTPUTS)


# === Fakes ===


class RecordingWorkers:
    """Async stage callables returning canned outputs.

    Queued failures (exceptions to raise, or StageResults to return) are
    consumed before the canned output is returned.
    """

    def __init__(self, outputs: dict[str, dict[str, Any]]) -> None:
        self.outputs = outputs
        self.calls: list[str] = []
        self.inputs: dict[str, dict[str, Any]] = {}
        self._failures: dict[str, list[Any]] = {}

    def fail(self, stage: str, *failures: Any) -> None:
        self._failures.setdefault(stage, []).extend(failures)

    def mapping(self) -> dict[str, Any]:
        return {stage: self._make(stage) for stage in self.outputs}

    def count(self, stage: str) -> int:
        return self.calls.count(stage)

    def _make(self, stage: str):
        async def worker(stage_input: dict[str, Any]) -> StageResult:
            self.calls.append(stage)
            self.inputs[stage] = stage_input
            queue = self._failures.get(stage)
            if queue:
                failure = queue.pop(0)
                if isinstance(failure, BaseException):
                    raise failure
                return failure
            return StageResult.ok(self.outputs[stage])

        return worker


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def workers(stage_outputs) -> RecordingWorkers:
    return RecordingWorkers(stage_outputs)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


# === Settings and stores ===


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from .env, with tiny backoff delays."""
    return Settings(
        _env_file=None,
        checkpoint_backend="memory",
        max_retries=3,
        backoff_initial_delay_ms=10,
        backoff_max_delay_ms=100,
        stage_timeout_s=5,
    )


@pytest.fixture
def memory_store() -> MemoryCheckpointStore:
    return MemoryCheckpointStore()


@pytest.fixture
def make_executor(workers, memory_store, settings, sleeps):
    """Factory for executors wired to the shared fakes."""

    def _make(**overrides: Any) -> PipelineExecutor:
        kwargs: dict[str, Any] = {
            "checkpoint_store": memory_store,
            "settings": settings,
            "sleep": sleeps,
        }
        kwargs.update(overrides)
        return PipelineExecutor(workers.mapping(), **kwargs)

    return _make
