# src/pipeline/registry.py — v2
"""Stage registry — maps each of the five stages to its worker.

Workers are registered directly or loaded from dotted class paths
(STAGEFLOW_STAGE_WORKERS). The executor refuses to start until every
stage has a worker.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from stageflow.config.stages import STAGES, resolve_stage
from stageflow.core.models import StageName
from stageflow.pipeline.plugin_kit.base_worker import (
    BaseStageWorker,
    FunctionStageWorker,
)

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """Raised when worker loading or lookup fails."""


class StageRegistry:
    """Registry of stage workers, one per stage."""

    def __init__(self, workers: Iterable[BaseStageWorker] = ()) -> None:
        self._workers: dict[StageName, BaseStageWorker] = {}
        for worker in workers:
            self.register(worker)

    @classmethod
    def from_mapping(cls, workers: Mapping[str, Any]) -> StageRegistry:
        """Build a registry from ``{stage_or_agent_name: worker_or_callable}``."""
        registry = cls()
        for name, worker in workers.items():
            if not isinstance(worker, BaseStageWorker):
                if not callable(worker):
                    raise RegistryError(f"Worker for {name!r} is not callable")
                worker = FunctionStageWorker(name, worker)
            elif worker.stage is not resolve_stage(name).name:
                raise RegistryError(
                    f"Worker for {worker.stage.value} registered under {name!r}"
                )
            registry.register(worker)
        return registry

    @classmethod
    def from_class_paths(cls, class_paths: Iterable[str]) -> StageRegistry:
        """Import and instantiate workers from dotted class paths."""
        registry = cls()
        for class_path in class_paths:
            worker = _import_worker(class_path)
            registry.register(worker)
            logger.debug("Loaded worker %s for %s", class_path, worker.stage.value)
        return registry

    @property
    def workers(self) -> dict[StageName, BaseStageWorker]:
        return dict(self._workers)

    def register(self, worker: BaseStageWorker) -> None:
        """Register a worker for its stage."""
        if worker.stage in self._workers:
            logger.warning("Overwriting existing worker for %s", worker.stage.value)
        self._workers[worker.stage] = worker

    def get(self, stage: str | StageName) -> BaseStageWorker | None:
        return self._workers.get(resolve_stage(stage).name)

    def get_or_raise(self, stage: str | StageName) -> BaseStageWorker:
        """Get a stage's worker, raise if not registered."""
        worker = self.get(stage)
        if worker is None:
            raise RegistryError(f"No worker registered for stage '{stage}'")
        return worker

    def missing_stages(self) -> list[StageName]:
        return [s.name for s in STAGES if s.name not in self._workers]

    def validate(self) -> None:
        """Raise unless all five stages have a worker."""
        missing = self.missing_stages()
        if missing:
            raise RegistryError(
                "Missing workers for stages: " + ", ".join(m.value for m in missing)
            )


def _import_worker(class_path: str) -> BaseStageWorker:
    """Import and instantiate a worker from a dotted class path.

    Args:
        class_path: e.g. 'myproject.workers.ResearchWorker'

    Returns:
        Instantiated BaseStageWorker subclass.
    """
    parts = class_path.rsplit(".", 1)
    if len(parts) != 2:
        raise RegistryError(f"Invalid class path: {class_path}")
    module_path, class_name = parts

    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise RegistryError(f"Cannot import module {module_path}: {exc}") from exc

    cls = getattr(module, class_name, None)
    if cls is None:
        raise RegistryError(f"Class {class_name} not found in {module_path}")

    if not isinstance(cls, type) or not issubclass(cls, BaseStageWorker):
        raise RegistryError(f"{class_path} is not a BaseStageWorker subclass")

    return cls()
