# src/recovery/strategies.py — v1
"""Recovery action selection and execution.

Precedence, first applicable wins:

1. VALIDATION_ERROR -> ABORT
2. retryable and retry count below the cap -> RETRY
3. RESUME_FROM_CHECKPOINT candidate, run past initializing, resume
   budget left -> reload the latest checkpoint
4. SAVE_PARTIAL candidate with at least one stage output -> persist
   what exists and stop
5. SKIP_AGENT candidate, only when skipping is enabled
6. ABORT

A resume or save that fails part-way falls through to the next candidate,
so every path ends with session status and in-memory state agreeing.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from stageflow.checkpoint.models import CheckpointMetadata
from stageflow.config.stages import STAGES
from stageflow.core.errors import CheckpointError
from stageflow.core.models import Phase, RunState, SessionStatus
from stageflow.pipeline.state import StateStore
from stageflow.recovery.models import ErrorType, OrchestrationError, RecoveryAction
from stageflow.version import __version__

if TYPE_CHECKING:
    from stageflow.checkpoint.base_checkpoint_store import BaseCheckpointStore
    from stageflow.checkpoint.base_session_store import BaseSessionStatusStore
    from stageflow.config.settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRY_COUNT = 3
DEFAULT_MAX_RESUMES = 1


class RecoveryStrategy:
    """Choose and carry out one recovery action per failure.

    Args:
        checkpoint_store: Source of checkpoints for resume, sink for partial saves.
        status_store: Session status sink. None = status is not persisted.
        max_retry_count: Retry-count ceiling for the RETRY action.
        max_resumes: Resume-from-checkpoint budget per session.
        allow_skip: Enable SKIP_AGENT for errors that offer it.
    """

    def __init__(
        self,
        checkpoint_store: BaseCheckpointStore,
        status_store: BaseSessionStatusStore | None = None,
        max_retry_count: int = DEFAULT_MAX_RETRY_COUNT,
        max_resumes: int = DEFAULT_MAX_RESUMES,
        allow_skip: bool = False,
    ) -> None:
        self._checkpoints = checkpoint_store
        self._status = status_store
        self._max_retry_count = max_retry_count
        self._max_resumes = max_resumes
        self._allow_skip = allow_skip
        self._resumes: dict[str, int] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        checkpoint_store: BaseCheckpointStore,
        status_store: BaseSessionStatusStore | None = None,
    ) -> RecoveryStrategy:
        return cls(
            checkpoint_store,
            status_store,
            max_retry_count=settings.recovery_max_retry_count,
            max_resumes=settings.recovery_max_resumes,
            allow_skip=settings.skip_failed_checkpoints,
        )

    def resumes_used(self, session_id: str) -> int:
        return self._resumes.get(session_id, 0)

    def reset(self, session_id: str) -> None:
        """Forget the resume count of a session."""
        self._resumes.pop(session_id, None)

    def candidates(
        self, error: OrchestrationError, state: RunState, session_id: str
    ) -> list[RecoveryAction]:
        """Applicable actions in precedence order, always ending with ABORT."""
        if error.type is ErrorType.VALIDATION_ERROR:
            return [RecoveryAction.ABORT]

        actions: list[RecoveryAction] = []
        retry_count = state.error.retry_count if state.error is not None else 0
        if error.retryable and retry_count < self._max_retry_count:
            actions.append(RecoveryAction.RETRY)

        if (
            error.allows(RecoveryAction.RESUME_FROM_CHECKPOINT)
            and state.current_phase is not Phase.INITIALIZING
            and self.resumes_used(session_id) < self._max_resumes
        ):
            actions.append(RecoveryAction.RESUME_FROM_CHECKPOINT)

        has_outputs = any(getattr(state, s.output_field) is not None for s in STAGES)
        if error.allows(RecoveryAction.SAVE_PARTIAL) and has_outputs:
            actions.append(RecoveryAction.SAVE_PARTIAL)

        if self._allow_skip and error.allows(RecoveryAction.SKIP_AGENT):
            actions.append(RecoveryAction.SKIP_AGENT)

        actions.append(RecoveryAction.ABORT)
        return actions

    def select_action(
        self, error: OrchestrationError, state: RunState, session_id: str
    ) -> RecoveryAction:
        """Highest-precedence applicable action, without side effects."""
        return self.candidates(error, state, session_id)[0]

    async def recover(
        self, error: OrchestrationError, state_store: StateStore, session_id: str
    ) -> RecoveryAction:
        """Select and execute a recovery action. Returns the action taken."""
        for action in self.candidates(error, state_store.state, session_id):
            logger.info(
                "Recovery for %s on session %s: trying %s",
                error.type.value, session_id, action.value,
            )
            if action is RecoveryAction.RETRY:
                self._prepare_retry(error, state_store)
                return action
            if action is RecoveryAction.RESUME_FROM_CHECKPOINT:
                if await self._resume_from_checkpoint(state_store, session_id):
                    return action
                continue
            if action is RecoveryAction.SAVE_PARTIAL:
                if await self._save_partial(error, state_store, session_id):
                    return action
                continue
            if action is RecoveryAction.SKIP_AGENT:
                state_store.clear_error()
                logger.warning("Skipping %s after %s", error.agent, error.type.value)
                return action
        await self._abort(error, state_store, session_id)
        return RecoveryAction.ABORT

    # --- Actions ---

    def _prepare_retry(self, error: OrchestrationError, state_store: StateStore) -> None:
        if not state_store.has_error():
            state_store.note_failure(error)
        state_store.increment_retry_count()

    async def _resume_from_checkpoint(
        self, state_store: StateStore, session_id: str
    ) -> bool:
        try:
            blob = await self._checkpoints.get_latest(session_id)
            if blob is None:
                logger.warning("No checkpoint to resume session %s from", session_id)
                return False
            snapshot = StateStore.deserialize(blob).state
        except CheckpointError as exc:
            logger.error("Resume failed for session %s: %s", session_id, exc)
            return False

        state_store.merge_state(snapshot)
        self._resumes[session_id] = self.resumes_used(session_id) + 1
        logger.info(
            "Session %s resumed from checkpoint at phase %s",
            session_id, snapshot.current_phase.value,
        )
        return True

    async def _save_partial(
        self, error: OrchestrationError, state_store: StateStore, session_id: str
    ) -> bool:
        failed_at = state_store.state.current_phase.value
        state_store.record_error(error)
        message = f"Partial results saved at {failed_at}"
        try:
            latest = await self._checkpoints.get_latest_record(session_id)
            await self._checkpoints.put(
                session_id,
                state_store.serialize(),
                CheckpointMetadata(
                    version=__version__, phase=Phase.ERROR.value, reason="partial"
                ),
                parent_checkpoint_id=latest.id if latest is not None else None,
            )
            if self._status is not None:
                await self._status.update_session_status(
                    session_id, SessionStatus.ERROR, message, error.retryable
                )
        except CheckpointError as exc:
            logger.error("Saving partial results failed for %s: %s", session_id, exc)
            return False
        logger.warning("Session %s: %s", session_id, message)
        return True

    async def _abort(
        self, error: OrchestrationError, state_store: StateStore, session_id: str
    ) -> None:
        state_store.record_error(error)
        logger.error(
            "Session %s aborted: %s (%s)", session_id, error.message, error.type.value
        )
        if self._status is None:
            return
        try:
            await self._status.update_session_status(
                session_id, SessionStatus.ERROR, error.message, error.retryable
            )
        except CheckpointError as exc:
            logger.error("Could not record abort of session %s: %s", session_id, exc)
