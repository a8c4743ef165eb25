# src/recovery/models.py — v1
"""Error taxonomy, recovery actions and the static per-category policy."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field

from stageflow.core.models import utc_now


class ErrorType(str, Enum):
    """Closed set of failure categories."""

    AGENT_FAILURE = "AGENT_FAILURE"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    CHECKPOINT_ERROR = "CHECKPOINT_ERROR"
    UNKNOWN = "UNKNOWN"


class RecoveryAction(str, Enum):
    """What the orchestrator does with an error once retries are exhausted."""

    RETRY = "RETRY"
    RESUME_FROM_CHECKPOINT = "RESUME_FROM_CHECKPOINT"
    SKIP_AGENT = "SKIP_AGENT"
    ABORT = "ABORT"
    SAVE_PARTIAL = "SAVE_PARTIAL"


class ErrorPolicy(NamedTuple):
    """Retryability and candidate recovery actions for one category."""

    retryable: bool
    actions: tuple[RecoveryAction, ...]


_RETRY = RecoveryAction.RETRY
_RESUME = RecoveryAction.RESUME_FROM_CHECKPOINT
_SKIP = RecoveryAction.SKIP_AGENT
_ABORT = RecoveryAction.ABORT
_PARTIAL = RecoveryAction.SAVE_PARTIAL

ERROR_POLICIES: dict[ErrorType, ErrorPolicy] = {
    ErrorType.AGENT_FAILURE: ErrorPolicy(True, (_RETRY, _RESUME, _PARTIAL)),
    ErrorType.TIMEOUT: ErrorPolicy(True, (_RETRY, _RESUME)),
    ErrorType.NETWORK_ERROR: ErrorPolicy(True, (_RETRY, _RESUME)),
    ErrorType.RATE_LIMIT: ErrorPolicy(True, (_RETRY,)),
    ErrorType.DATABASE_ERROR: ErrorPolicy(True, (_RETRY,)),
    ErrorType.VALIDATION_ERROR: ErrorPolicy(False, (_ABORT, _PARTIAL)),
    ErrorType.CHECKPOINT_ERROR: ErrorPolicy(False, (_SKIP, _ABORT)),
    ErrorType.UNKNOWN: ErrorPolicy(False, (_ABORT, _PARTIAL)),
}


class OrchestrationError(BaseModel):
    """One classified failure. Built fresh per failure and never mutated."""

    model_config = ConfigDict(frozen=True)

    type: ErrorType
    message: str
    agent: str | None = None
    retryable: bool
    recovery_actions: tuple[RecoveryAction, ...]
    timestamp: datetime = Field(default_factory=utc_now)
    details: dict[str, Any] = Field(default_factory=dict)

    def allows(self, action: RecoveryAction) -> bool:
        """True if the action is among this error's candidates."""
        return action in self.recovery_actions
