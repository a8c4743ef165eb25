# tests/unit/core/test_unit_errors.py — v1
"""Tests for core/errors.py — exception hierarchy and messages."""

from __future__ import annotations

from stageflow.core.errors import (
    CheckpointError,
    CheckpointReadError,
    CheckpointWriteError,
    CorruptCheckpointError,
    InputValidationError,
    InvalidTransitionError,
    StageExecutionError,
    StageflowError,
    StageTimeoutError,
    UnknownStageError,
)


class TestHierarchy:
    def test_all_derive_from_base(self):
        for cls in (
            UnknownStageError, InvalidTransitionError, InputValidationError,
            StageExecutionError, StageTimeoutError, CheckpointError,
        ):
            assert issubclass(cls, StageflowError)

    def test_checkpoint_family(self):
        for cls in (CheckpointWriteError, CheckpointReadError, CorruptCheckpointError):
            assert issubclass(cls, CheckpointError)

    def test_builtin_bases(self):
        assert issubclass(UnknownStageError, ValueError)
        assert issubclass(StageTimeoutError, TimeoutError)


class TestMessages:
    def test_input_validation(self):
        err = InputValidationError("ideation", ["Research output is required"])
        assert str(err) == "Input validation failed for ideation: Research output is required"
        assert err.errors == ["Research output is required"]

    def test_stage_execution(self):
        err = StageExecutionError("critique", "critic", "LLM quota exhausted")
        assert str(err) == "Agent critic failed: LLM quota exhausted"
        assert err.stage == "critique"

    def test_stage_execution_without_reason(self):
        err = StageExecutionError("critique", "critic", None)
        assert err.reason == "no error message returned"

    def test_timeout(self):
        assert str(StageTimeoutError("research", 300.0)) == (
            "Stage research timed out after 300s"
        )

    def test_transition(self):
        err = InvalidTransitionError("completed", "writing")
        assert "completed -> writing" in str(err)
