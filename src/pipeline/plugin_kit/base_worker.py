# src/pipeline/plugin_kit/base_worker.py — v1
"""Standard stage worker interface for pipeline plugins."""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from stageflow.config.stages import resolve_stage
from stageflow.core.models import StageName
from stageflow.pipeline.plugin_kit.models import StageResult

StageFunction = Callable[[dict[str, Any]], Any]


class BaseStageWorker(ABC):
    """Standard interface for the worker behind one stage.

    Workers are opaque: they receive the stage input built from upstream
    outputs and report success with data, or failure with an error message.
    Raising is also allowed; the executor classifies the exception.
    """

    @property
    @abstractmethod
    def stage(self) -> StageName:
        """Stage this worker implements."""

    @property
    def version(self) -> str:
        return "1.0.0"

    @abstractmethod
    async def execute(self, stage_input: dict[str, Any]) -> StageResult:
        """Run the stage.

        Args:
            stage_input: Dict produced by StateStore.prepare_stage_input().

        Returns:
            StageResult with data on success, or an error message.
        """


class FunctionStageWorker(BaseStageWorker):
    """Adapt a plain (sync or async) callable into a stage worker.

    The callable may return a StageResult, a dict shaped like one, or an
    awaitable of either.
    """

    def __init__(self, stage: str | StageName, fn: StageFunction) -> None:
        self._stage = resolve_stage(stage).name
        self._fn = fn

    @property
    def stage(self) -> StageName:
        return self._stage

    async def execute(self, stage_input: dict[str, Any]) -> StageResult:
        result = self._fn(stage_input)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, StageResult):
            return result
        return StageResult.model_validate(result)
