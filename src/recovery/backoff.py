# src/recovery/backoff.py — v1
"""Jittered exponential backoff.

delay(n) = min(max_delay, initial * multiplier ** (n - 1) * jitter),
jitter drawn uniformly from [0.5, 1.0) on every call.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stageflow.config.settings import Settings


@dataclass(frozen=True)
class BackoffPolicy:
    """Delay before retry number ``attempt`` (1-based)."""

    initial_delay_ms: float = 1000.0
    multiplier: float = 2.0
    max_delay_ms: float = 30000.0
    rng: random.Random = field(
        default_factory=random.Random, compare=False, repr=False
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> BackoffPolicy:
        return cls(
            initial_delay_ms=settings.backoff_initial_delay_ms,
            multiplier=settings.backoff_multiplier,
            max_delay_ms=settings.backoff_max_delay_ms,
        )

    def delay_ms(self, attempt: int) -> float:
        """Jittered delay in milliseconds, capped at max_delay_ms."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        base = self.initial_delay_ms * (self.multiplier ** (attempt - 1))
        jitter = 0.5 + self.rng.random() * 0.5  # noqa: S311
        return min(self.max_delay_ms, base * jitter)

    def delay_seconds(self, attempt: int) -> float:
        return self.delay_ms(attempt) / 1000.0
