# src/checkpoint/base_session_store.py — v1
"""Abstract session status store interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from stageflow.core.models import SessionStatus, SessionStatusRecord


class BaseSessionStatusStore(ABC):
    """Persists the coarse status of each session."""

    @abstractmethod
    async def update_session_status(
        self,
        session_id: str,
        status: SessionStatus,
        error_message: str | None = None,
        retryable: bool | None = None,
    ) -> None:
        """Upsert a session's status row."""

    @abstractmethod
    async def get_session_status(self, session_id: str) -> SessionStatusRecord | None:
        """Current status row for a session, or None."""
