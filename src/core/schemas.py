# src/core/schemas.py — v1
"""Schemas for stage outputs consumed by downstream stages.

Workers are opaque, so these check only the fields the next stage reads.
Both snake_case and camelCase keys are accepted; unknown keys pass through.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

_LENIENT = ConfigDict(extra="allow", populate_by_name=True)


class ResearchBody(BaseModel):
    model_config = _LENIENT

    theme: str = Field(min_length=1)
    insights: list[Any] = Field(default_factory=list)
    sources: list[Any] = Field(default_factory=list)


class ResearchOutput(BaseModel):
    """Output of the research stage."""

    model_config = _LENIENT

    research: ResearchBody
    metrics: dict[str, Any] = Field(default_factory=dict)


class IdeationOutput(BaseModel):
    """Output of the ideation stage: at least one idea."""

    model_config = _LENIENT

    session_id: str | None = Field(default=None, alias="sessionId")
    ideas: list[dict[str, Any]] = Field(min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


class CritiqueOutput(BaseModel):
    """Output of the critique stage: evaluations plus the selected idea."""

    model_config = _LENIENT

    evaluation_results: list[dict[str, Any]] = Field(
        default_factory=list, alias="evaluationResults"
    )
    selected_idea: dict[str, Any] = Field(alias="selectedIdea")
    summary: dict[str, Any] = Field(default_factory=dict)


class AnalysisOutput(BaseModel):
    """Output of the analysis stage."""

    model_config = _LENIENT

    session_id: str | None = Field(default=None, alias="sessionId")
    idea_id: str | None = Field(default=None, alias="ideaId")
    analyst_data: dict[str, Any] = Field(alias="analystData")
    metadata: dict[str, Any] = Field(default_factory=dict)


# Keyed by the stage whose output the schema describes.
OUTPUT_SCHEMAS: dict[str, type[BaseModel]] = {
    "research": ResearchOutput,
    "ideation": IdeationOutput,
    "critique": CritiqueOutput,
    "analysis": AnalysisOutput,
}
