# src/core/models.py — v2
"""Shared Pydantic domain models used across modules.

No module redefines these types — all imports come from core.models.
RunState is frozen: every mutation goes through StateStore, which swaps
in a fresh snapshot built with model_copy(update=...).
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a datetime in the fixed, lexically sortable UTC format."""
    return ensure_utc(value).strftime(TIMESTAMP_FORMAT)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# === ENUMS ===


class Phase(str, Enum):
    """Pipeline phase. Ordered except for ERROR, which sits outside the order."""

    INITIALIZING = "initializing"
    RESEARCHING = "researching"
    IDEATING = "ideating"
    CRITIQUING = "critiquing"
    ANALYZING = "analyzing"
    WRITING = "writing"
    COMPLETED = "completed"
    ERROR = "error"


class StageName(str, Enum):
    """The five stages, in execution order."""

    RESEARCH = "research"
    IDEATION = "ideation"
    CRITIQUE = "critique"
    ANALYSIS = "analysis"
    WRITING = "writing"


class SessionStatus(str, Enum):
    """Coarse session status persisted beside the checkpoints."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


# === RUN STATE ===


class RunError(BaseModel):
    """Last failure recorded on a run."""

    model_config = ConfigDict(frozen=True)

    message: str
    agent: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)
    retry_count: int = 0
    error_type: str | None = None
    retryable: bool | None = None

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_serializer("timestamp")
    def _serialize_timestamp(self, v: datetime) -> str:
        return format_timestamp(v)


class RunState(BaseModel):
    """Immutable snapshot of one pipeline run.

    Identity fields (session_id, user_id, theme) never change after
    creation. Each output slot is written once per run, by its stage.
    """

    model_config = ConfigDict(frozen=True)

    # === IDENTITY ===
    session_id: str
    user_id: str = ""
    theme: str = ""

    # === PROGRESS ===
    current_phase: Phase = Phase.INITIALIZING
    current_agent: str | None = None
    progress: int = Field(default=0, ge=0, le=100)

    # === STAGE OUTPUTS ===
    researcher_output: dict[str, Any] | None = None
    ideator_output: dict[str, Any] | None = None
    critic_output: dict[str, Any] | None = None
    analyst_output: dict[str, Any] | None = None
    writer_output: dict[str, Any] | None = None

    # === ERROR ===
    error: RunError | None = None

    # === TIMING ===
    start_time: datetime = Field(default_factory=utc_now)
    last_update_time: datetime = Field(default_factory=utc_now)

    @field_validator("start_time", "last_update_time")
    @classmethod
    def _normalize_times(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_serializer("start_time", "last_update_time")
    def _serialize_times(self, v: datetime) -> str:
        return format_timestamp(v)


class SessionStatusRecord(BaseModel):
    """Session status row."""

    session_id: str
    status: SessionStatus
    error_message: str | None = None
    retryable: bool | None = None
    updated_at: datetime = Field(default_factory=utc_now)
