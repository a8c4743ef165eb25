# src/checkpoint/models.py — v1
"""Checkpoint domain models: CheckpointMetadata, CheckpointRecord."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from stageflow.core.models import utc_now


class CheckpointMetadata(BaseModel):
    """Descriptive fields stored beside a checkpoint blob."""

    generated_at: datetime = Field(default_factory=utc_now)
    version: str = ""
    phase: str | None = None
    reason: str = "stage_complete"


class CheckpointRecord(BaseModel):
    """One append-only checkpoint row.

    ``checkpoint`` holds the serialized RunState. Ordering is by
    ``created_at`` with ``sequence`` (insertion order) breaking ties.
    """

    id: str
    session_id: str
    checkpoint: str
    metadata: CheckpointMetadata = Field(default_factory=CheckpointMetadata)
    parent_checkpoint_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    sequence: int = 0
