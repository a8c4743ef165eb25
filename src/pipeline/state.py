# src/pipeline/state.py — v3
"""Run state holder: owns the current immutable RunState snapshot.

Every mutator builds a new RunState with ``model_copy(update=...)`` and
swaps it in, bumping ``last_update_time``. Readers that kept an old
snapshot keep seeing it unchanged.

Phase rules:
  - Forward only along PHASE_ORDER; re-entering the current phase is allowed.
  - ERROR is reachable from any non-terminal phase, and any phase may
    follow ERROR (retry, resume).
  - COMPLETED is terminal.

Progress is a pure function of the phase (PHASE_PROGRESS) and stays at
its last value while the run is in ERROR.
"""

from __future__ import annotations

import json
import logging
from typing import Any, NamedTuple

from pydantic import ValidationError

from stageflow.config.stages import (
    PHASE_PROGRESS,
    STAGES,
    StageSpec,
    phase_rank,
    resolve_stage,
)
from stageflow.core.errors import (
    CorruptCheckpointError,
    InvalidTransitionError,
    UnknownStageError,
)
from stageflow.core.models import (
    Phase,
    RunError,
    RunState,
    StageName,
    format_timestamp,
    utc_now,
)
from stageflow.core.schemas import (
    AnalysisOutput,
    CritiqueOutput,
    IdeationOutput,
    OUTPUT_SCHEMAS,
)
from stageflow.recovery.models import OrchestrationError
from stageflow.version import __version__

logger = logging.getLogger(__name__)


class InputValidation(NamedTuple):
    """Outcome of a pre-stage input check."""

    valid: bool
    errors: list[str]


class StateStore:
    """Single writer for one run's RunState.

    Args:
        state: Initial snapshot.
    """

    def __init__(self, state: RunState) -> None:
        self._state = state

    @classmethod
    def create(cls, session_id: str, user_id: str = "", theme: str = "") -> StateStore:
        """Fresh run in the initializing phase."""
        now = utc_now()
        return cls(
            RunState(
                session_id=session_id,
                user_id=user_id,
                theme=theme,
                start_time=now,
                last_update_time=now,
            )
        )

    @property
    def state(self) -> RunState:
        """Current snapshot."""
        return self._state

    @property
    def session_id(self) -> str:
        return self._state.session_id

    # --- Validation ---

    def validate_input(
        self, stage: str | StageName, state: RunState | None = None
    ) -> InputValidation:
        """Check that everything a stage reads is present and well formed.

        Never raises: unknown stages are reported as invalid.
        """
        snapshot = state if state is not None else self._state
        try:
            spec = resolve_stage(stage)
        except UnknownStageError as exc:
            return InputValidation(False, [str(exc)])

        if spec.name is StageName.RESEARCH:
            if not snapshot.theme or not snapshot.theme.strip():
                return InputValidation(False, ["Theme is required for research"])
            return InputValidation(True, [])

        upstream = STAGES[STAGES.index(spec) - 1]
        output = getattr(snapshot, upstream.output_field)
        if output is None:
            return InputValidation(
                False, [f"{upstream.name.value.capitalize()} output is required"]
            )
        try:
            OUTPUT_SCHEMAS[upstream.name.value].model_validate(output)
        except ValidationError as exc:
            errors = [
                f"{upstream.output_field}.{'.'.join(str(p) for p in e['loc'])}: {e['msg']}"
                for e in exc.errors()
            ]
            return InputValidation(False, errors)
        return InputValidation(True, [])

    # --- Mutators ---

    def merge_output(self, stage: str | StageName, output: dict[str, Any]) -> RunState:
        """Store a stage's output in its slot.

        Raises:
            UnknownStageError: If the stage name is not one of the five.
        """
        spec = resolve_stage(stage)
        return self._replace(**{spec.output_field: dict(output)})

    def update_phase(self, phase: Phase, agent: str | None = None) -> RunState:
        """Move to a phase, recomputing progress.

        Raises:
            InvalidTransitionError: On a backward move or leaving COMPLETED.
        """
        current = self._state.current_phase
        if current is Phase.COMPLETED and phase is not Phase.COMPLETED:
            raise InvalidTransitionError(current.value, phase.value)
        if (
            phase is not Phase.ERROR
            and current is not Phase.ERROR
            and phase_rank(phase) < phase_rank(current)
        ):
            raise InvalidTransitionError(current.value, phase.value)

        logger.debug("Session %s: %s -> %s", self.session_id, current.value, phase.value)
        if phase is Phase.ERROR:
            return self._replace(current_phase=phase, current_agent=None)
        return self._replace(
            current_phase=phase,
            current_agent=agent,
            progress=PHASE_PROGRESS[phase],
        )

    def record_error(self, error: OrchestrationError) -> RunState:
        """Move the run into ERROR with this failure recorded."""
        return self._replace(
            current_phase=Phase.ERROR,
            current_agent=None,
            error=self._to_run_error(error),
        )

    def note_failure(self, error: OrchestrationError) -> RunState:
        """Record a failure that is about to be retried; the phase is kept."""
        return self._replace(error=self._to_run_error(error))

    def increment_retry_count(self) -> RunState:
        """Bump the retry count of the recorded error. No-op without one."""
        current = self._state.error
        if current is None:
            return self._state
        return self._replace(
            error=current.model_copy(update={"retry_count": current.retry_count + 1})
        )

    def clear_error(self) -> RunState:
        if self._state.error is None:
            return self._state
        return self._replace(error=None)

    def merge_state(self, other: RunState) -> RunState:
        """Adopt a checkpointed snapshot's progress and outputs.

        Identity fields stay as they are. The current error record is kept
        when the snapshot carries none.
        """
        update: dict[str, Any] = {
            "current_phase": other.current_phase,
            "current_agent": other.current_agent,
            "progress": other.progress,
            "error": other.error or self._state.error,
        }
        for spec in STAGES:
            update[spec.output_field] = getattr(other, spec.output_field)
        return self._replace(**update)

    # --- Serialization ---

    def serialize(self) -> str:
        """JSON blob of the current snapshot."""
        return self._state.model_dump_json()

    @classmethod
    def deserialize(cls, blob: str) -> StateStore:
        """Rebuild a StateStore from a serialized snapshot.

        Raises:
            CorruptCheckpointError: If the blob is not a valid RunState.
        """
        try:
            return cls(RunState.model_validate(json.loads(blob)))
        except (ValueError, TypeError) as exc:
            raise CorruptCheckpointError(f"Cannot restore checkpoint: {exc}") from exc

    # --- Stage inputs ---

    def prepare_stage_input(self, stage: str | StageName) -> dict[str, Any]:
        """Build the input a stage worker receives from upstream outputs.

        Call only after validate_input() passed for the same stage.
        """
        spec = resolve_stage(stage)
        s = self._state

        if spec.name is StageName.RESEARCH:
            return {"theme": s.theme, "session_id": s.session_id, "user_id": s.user_id}

        if spec.name is StageName.IDEATION:
            return {
                "session_id": s.session_id,
                "theme": s.theme,
                "research_output": s.researcher_output,
            }

        if spec.name is StageName.CRITIQUE:
            ideation = IdeationOutput.model_validate(s.ideator_output)
            return {
                "session_id": s.session_id,
                "ideas": ideation.ideas,
                "research_data": s.researcher_output,
            }

        if spec.name is StageName.ANALYSIS:
            critique = CritiqueOutput.model_validate(s.critic_output)
            return {
                "session_id": s.session_id,
                "selected_idea": critique.selected_idea,
                "research_data": s.researcher_output,
            }

        analysis = AnalysisOutput.model_validate(s.analyst_output)
        return {
            "session_id": s.session_id,
            "idea_id": analysis.idea_id,
            "analyst_data": analysis.analyst_data,
            "metadata": {
                "generated_at": format_timestamp(utc_now()),
                "version": __version__,
            },
        }

    # --- Queries ---

    def outputs(self) -> dict[str, dict[str, Any] | None]:
        """Stage name -> output (None if the stage has not completed)."""
        return {
            spec.name.value: getattr(self._state, spec.output_field) for spec in STAGES
        }

    def completed_stages(self) -> list[StageSpec]:
        return [s for s in STAGES if getattr(self._state, s.output_field) is not None]

    def pending_stages(self) -> list[StageSpec]:
        """Stages whose output slot is still empty, in execution order."""
        return [s for s in STAGES if getattr(self._state, s.output_field) is None]

    def next_pending_stage(self, skip: set[StageName] | None = None) -> StageSpec | None:
        for spec in self.pending_stages():
            if skip and spec.name in skip:
                continue
            return spec
        return None

    def has_all_outputs(self) -> bool:
        return not self.pending_stages()

    def is_completed(self) -> bool:
        return self._state.current_phase is Phase.COMPLETED

    def has_error(self) -> bool:
        return self._state.error is not None

    # --- Internals ---

    def _replace(self, **update: Any) -> RunState:
        update["last_update_time"] = utc_now()
        self._state = self._state.model_copy(update=update)
        return self._state

    def _to_run_error(self, error: OrchestrationError) -> RunError:
        existing = self._state.error
        return RunError(
            message=error.message,
            agent=error.agent,
            timestamp=error.timestamp,
            retry_count=existing.retry_count if existing is not None else 0,
            error_type=error.type.value,
            retryable=error.retryable,
        )
