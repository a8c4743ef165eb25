# src/recovery/classifier.py — v2
"""Error classification into the closed ErrorType taxonomy.

Categories are tried one at a time, in this order: NETWORK_ERROR,
TIMEOUT, RATE_LIMIT, VALIDATION_ERROR, DATABASE_ERROR, AGENT_FAILURE,
CHECKPOINT_ERROR. A category matches on structured evidence (exception
type, ``code`` attribute, HTTP ``status_code`` attribute) or on message
keywords, matched case-insensitively. The first matching category wins;
anything unmatched is UNKNOWN.

Failures reported by a worker (StageExecutionError) carry no structured
evidence of their own, so their reason text decides the category; the
"Agent <name> failed" prefix makes AGENT_FAILURE the fallback.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from stageflow.core.errors import CheckpointError, InputValidationError
from stageflow.recovery.models import (
    ERROR_POLICIES,
    ErrorPolicy,
    ErrorType,
    OrchestrationError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_DELAY_MS = 30_000.0


@dataclass(frozen=True)
class ClassificationRule:
    """Evidence that identifies one error category."""

    error_type: ErrorType
    exc_types: tuple[type[BaseException], ...] = ()
    codes: frozenset[str] = field(default_factory=frozenset)
    code_prefixes: tuple[str, ...] = ()
    statuses: frozenset[int] = field(default_factory=frozenset)
    pattern: re.Pattern[str] | None = None

    def matches_structure(self, exc: BaseException | None, code: str | None,
                          status: int | None) -> bool:
        if exc is not None and self.exc_types and isinstance(exc, self.exc_types):
            return True
        if code is not None:
            if code in self.codes:
                return True
            if self.code_prefixes and code.startswith(self.code_prefixes):
                return True
        return status is not None and status in self.statuses

    def matches_message(self, message: str) -> bool:
        return self.pattern is not None and self.pattern.search(message) is not None


CLASSIFICATION_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        ErrorType.NETWORK_ERROR,
        exc_types=(ConnectionError,),
        codes=frozenset({"ECONNREFUSED", "ENOTFOUND", "ETIMEDOUT", "ECONNRESET"}),
        pattern=re.compile(
            r"fetch failed|network|connection\s*(refused|reset|aborted)"
            r"|econnrefused|enotfound|etimedout|econnreset|dns\s*(resolution|lookup)",
            re.IGNORECASE,
        ),
    ),
    ClassificationRule(
        ErrorType.TIMEOUT,
        exc_types=(TimeoutError,),
        codes=frozenset({"TIMEOUT"}),
        pattern=re.compile(r"timeout|timed\s*out|deadline exceeded", re.IGNORECASE),
    ),
    ClassificationRule(
        ErrorType.RATE_LIMIT,
        codes=frozenset({"RATE_LIMIT"}),
        statuses=frozenset({429}),
        pattern=re.compile(r"rate\s*limit|too many requests", re.IGNORECASE),
    ),
    ClassificationRule(
        ErrorType.VALIDATION_ERROR,
        exc_types=(ValidationError, InputValidationError),
        codes=frozenset({"VALIDATION_ERROR"}),
        statuses=frozenset({400, 422}),
        pattern=re.compile(r"validation", re.IGNORECASE),
    ),
    ClassificationRule(
        ErrorType.DATABASE_ERROR,
        exc_types=(sqlite3.Error,),
        code_prefixes=("PGRST", "42"),
        pattern=re.compile(r"database", re.IGNORECASE),
    ),
    ClassificationRule(
        ErrorType.AGENT_FAILURE,
        pattern=re.compile(r"agent", re.IGNORECASE),
    ),
    ClassificationRule(
        ErrorType.CHECKPOINT_ERROR,
        exc_types=(CheckpointError,),
        pattern=re.compile(r"checkpoint", re.IGNORECASE),
    ),
)


def _extract_code(raw: Any) -> str | None:
    code = getattr(raw, "code", None)
    if code is None:
        return None
    return str(code)


def _extract_status(raw: Any) -> int | None:
    status = getattr(raw, "status_code", None)
    if status is None:
        status = getattr(raw, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _extract_retry_after_s(raw: Any) -> float | None:
    value = getattr(raw, "retry_after", None)
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class ErrorClassifier:
    """Turn raw failures into OrchestrationError values.

    Args:
        max_delay_ms: Backoff ceiling. A rate-limit error asking to wait
            longer than this is reported as non-retryable.
        rules: Ordered classification rules (defaults to CLASSIFICATION_RULES).
    """

    def __init__(
        self,
        max_delay_ms: float = DEFAULT_MAX_DELAY_MS,
        rules: tuple[ClassificationRule, ...] = CLASSIFICATION_RULES,
    ) -> None:
        self._max_delay_ms = max_delay_ms
        self._rules = rules

    def classify(self, raw: BaseException | str) -> ErrorType:
        """Map a raw failure (exception or message) to an ErrorType."""
        exc = raw if isinstance(raw, BaseException) else None
        message = str(raw)
        code = _extract_code(raw)
        status = _extract_status(raw)

        for rule in self._rules:
            if rule.matches_structure(exc, code, status) or rule.matches_message(message):
                return rule.error_type
        return ErrorType.UNKNOWN

    @staticmethod
    def policy(error_type: ErrorType) -> ErrorPolicy:
        """Static retryability and recovery actions for a category."""
        return ERROR_POLICIES[error_type]

    def build(
        self,
        raw: BaseException | str,
        agent: str | None = None,
        operation: str | None = None,
        attempt: int | None = None,
    ) -> OrchestrationError:
        """Classify a failure and construct its OrchestrationError."""
        error_type = self.classify(raw)
        policy = self.policy(error_type)
        retryable = policy.retryable

        details: dict[str, Any] = {}
        if isinstance(raw, BaseException):
            details["exception"] = type(raw).__name__
        code = _extract_code(raw)
        if code is not None:
            details["code"] = code
        status = _extract_status(raw)
        if status is not None:
            details["status_code"] = status
        if operation:
            details["operation"] = operation
        if attempt is not None:
            details["attempt"] = attempt

        retry_after_s = _extract_retry_after_s(raw)
        if retry_after_s is not None:
            details["retry_after_ms"] = retry_after_s * 1000.0
            if (
                error_type is ErrorType.RATE_LIMIT
                and retry_after_s * 1000.0 > self._max_delay_ms
            ):
                retryable = False

        message = str(raw) or type(raw).__name__
        error = OrchestrationError(
            type=error_type,
            message=message,
            agent=agent,
            retryable=retryable,
            recovery_actions=policy.actions,
            details=details,
        )
        logger.debug(
            "Classified %s as %s (retryable=%s)",
            details.get("exception", "message"), error_type.value, retryable,
        )
        return error
