# src/config/stages.py — v2
"""Declarative stage table: order, agents, phases, output slots, progress.

The pipeline shape is fixed: five stages, strictly sequential. Every
component that needs to know "what comes next" reads it from here.
"""

from __future__ import annotations

from dataclasses import dataclass

from stageflow.core.errors import UnknownStageError
from stageflow.core.models import Phase, StageName


@dataclass(frozen=True)
class StageSpec:
    """One row of the stage table."""

    name: StageName
    agent: str
    phase: Phase
    output_field: str
    done_message: str


STAGES: tuple[StageSpec, ...] = (
    StageSpec(
        StageName.RESEARCH, "researcher", Phase.RESEARCHING,
        "researcher_output", "Research completed",
    ),
    StageSpec(
        StageName.IDEATION, "ideator", Phase.IDEATING,
        "ideator_output", "Ideas generated",
    ),
    StageSpec(
        StageName.CRITIQUE, "critic", Phase.CRITIQUING,
        "critic_output", "Ideas evaluated",
    ),
    StageSpec(
        StageName.ANALYSIS, "analyst", Phase.ANALYZING,
        "analyst_output", "Analysis completed",
    ),
    StageSpec(
        StageName.WRITING, "writer", Phase.WRITING,
        "writer_output", "Report generated",
    ),
)

# ERROR sits outside the order; it is reachable from any non-terminal phase.
PHASE_ORDER: tuple[Phase, ...] = (
    Phase.INITIALIZING,
    Phase.RESEARCHING,
    Phase.IDEATING,
    Phase.CRITIQUING,
    Phase.ANALYZING,
    Phase.WRITING,
    Phase.COMPLETED,
)

PHASE_PROGRESS: dict[Phase, int] = {
    Phase.INITIALIZING: 0,
    Phase.RESEARCHING: 20,
    Phase.IDEATING: 40,
    Phase.CRITIQUING: 60,
    Phase.ANALYZING: 80,
    Phase.WRITING: 95,
    Phase.COMPLETED: 100,
}

_BY_NAME: dict[str, StageSpec] = {}
for _spec in STAGES:
    _BY_NAME[_spec.name.value] = _spec
    _BY_NAME[_spec.agent] = _spec


def resolve_stage(name: str | StageName) -> StageSpec:
    """Look up a stage by stage name or agent name.

    Raises:
        UnknownStageError: If the name matches neither.
    """
    key = name.value if isinstance(name, StageName) else str(name)
    spec = _BY_NAME.get(key)
    if spec is None:
        raise UnknownStageError(key)
    return spec


def phase_rank(phase: Phase) -> int:
    """Position of a phase in PHASE_ORDER (ERROR has no rank)."""
    if phase is Phase.ERROR:
        raise ValueError("error phase has no rank")
    return PHASE_ORDER.index(phase)


def next_phase(phase: Phase) -> Phase:
    """Phase that follows a stage phase (COMPLETED after WRITING)."""
    idx = phase_rank(phase)
    if idx + 1 >= len(PHASE_ORDER):
        return Phase.COMPLETED
    return PHASE_ORDER[idx + 1]
