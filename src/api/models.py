# src/api/models.py — v2
"""API-level models: RunRequest, RunOptions."""

from __future__ import annotations

import uuid

from pydantic import BaseModel, Field, field_validator


class RunOptions(BaseModel):
    """Per-run overrides of the retry and timeout settings."""

    max_retries: int | None = Field(default=None, ge=0, le=5)
    timeout_s: int | None = Field(default=None, ge=60, le=3600)


class RunRequest(BaseModel):
    """Input of a pipeline run."""

    theme: str = Field(min_length=1, max_length=500)
    user_id: str = ""
    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    options: RunOptions = Field(default_factory=RunOptions)

    @field_validator("theme")
    @classmethod
    def theme_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("theme must not be blank")
        return v
