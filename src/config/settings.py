# src/config/settings.py — v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for retry, backoff, timeout, recovery, checkpoint
and logging settings. Every variable is read with the STAGEFLOW_ prefix
(e.g. STAGEFLOW_MAX_RETRIES=5).
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="STAGEFLOW_",
        extra="ignore",
    )

    # === Retry / backoff ===
    max_retries: int = 3
    backoff_initial_delay_ms: float = 1000.0
    backoff_multiplier: float = 2.0
    backoff_max_delay_ms: float = 30000.0

    # === Stage execution ===
    stage_timeout_s: float = 300.0
    # Comma-separated dotted class paths of BaseStageWorker subclasses
    stage_workers: str = ""

    # === Recovery ===
    recovery_max_retry_count: int = 3
    recovery_max_resumes: int = 1
    skip_failed_checkpoints: bool = False

    # === Checkpoints ===
    checkpoint_backend: Literal["memory", "json", "sqlite", "redis"] = "sqlite"
    checkpoint_root: Path = Path("~/.stageflow/checkpoints")
    checkpoint_redis_url: str = ""
    checkpoint_retention_days: int = 7

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: str = ""
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("max_retries", "recovery_max_retry_count", "recovery_max_resumes")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:  # noqa: N805
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("stage_timeout_s", "backoff_initial_delay_ms")
    @classmethod
    def validate_positive(cls, v: float) -> float:  # noqa: N805
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.backoff_max_delay_ms < self.backoff_initial_delay_ms:
            errors.append(
                "BACKOFF_MAX_DELAY_MS must be >= BACKOFF_INITIAL_DELAY_MS"
            )

        if self.backoff_multiplier < 1.0:
            errors.append("BACKOFF_MULTIPLIER must be >= 1")

        if self.checkpoint_backend == "redis" and not self.checkpoint_redis_url:
            errors.append(
                "CHECKPOINT_REDIS_URL must be set when CHECKPOINT_BACKEND=redis"
            )

        if self.checkpoint_retention_days < 0:
            errors.append("CHECKPOINT_RETENTION_DAYS must be >= 0")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def stage_workers_list(self) -> list[str]:
        """Parse comma-separated worker class paths."""
        return [w.strip() for w in self.stage_workers.split(",") if w.strip()]


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-run config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
