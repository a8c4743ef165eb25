# src/core/errors.py — v1
"""Exception hierarchy raised by the orchestration core.

The classifier maps these onto error categories, so each class is
named for the failure it describes rather than for who raises it.
"""

from __future__ import annotations


class StageflowError(Exception):
    """Base class for all orchestration errors."""


class UnknownStageError(StageflowError, ValueError):
    """A stage or agent name outside the five known stages."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown stage: {name!r}")


class InvalidTransitionError(StageflowError):
    """A phase change that would violate the phase ordering."""

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Invalid phase transition: {current} -> {requested}")


class InputValidationError(StageflowError):
    """A stage's input failed validation before the worker was called."""

    def __init__(self, stage: str, errors: list[str]) -> None:
        self.stage = stage
        self.errors = list(errors)
        super().__init__(
            f"Input validation failed for {stage}: {'; '.join(self.errors)}"
        )


class StageExecutionError(StageflowError):
    """A worker reported success=False."""

    def __init__(self, stage: str, agent: str, reason: str | None) -> None:
        self.stage = stage
        self.agent = agent
        self.reason = reason or "no error message returned"
        super().__init__(f"Agent {agent} failed: {self.reason}")


class StageTimeoutError(StageflowError, TimeoutError):
    """A worker did not finish within the per-stage timeout."""

    def __init__(self, stage: str, timeout_s: float) -> None:
        self.stage = stage
        self.timeout_s = timeout_s
        super().__init__(f"Stage {stage} timed out after {timeout_s:g}s")


class CheckpointError(StageflowError):
    """Base class for checkpoint persistence failures."""


class CheckpointWriteError(CheckpointError):
    """A checkpoint or session status row could not be written."""


class CheckpointReadError(CheckpointError):
    """A checkpoint could not be read back from the store."""


class CorruptCheckpointError(CheckpointError):
    """A checkpoint blob could not be deserialized into a RunState."""
