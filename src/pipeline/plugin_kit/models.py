# src/pipeline/plugin_kit/models.py — v2
"""Stage worker plugin models: StageResult."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, model_validator


class StageResult(BaseModel):
    """Standard return type for all BaseStageWorker.execute() calls.

    ``data`` is required on success; ``error`` explains a failure.
    """

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None

    @model_validator(mode="after")
    def _check_payload(self) -> StageResult:
        if self.success and self.data is None:
            raise ValueError("a successful StageResult must carry data")
        return self

    @classmethod
    def ok(cls, data: dict[str, Any]) -> StageResult:
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: str) -> StageResult:
        return cls(success=False, error=error)
