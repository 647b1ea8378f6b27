"""Deep analysis response schema and configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Level = Literal["high", "medium", "low"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InsightDeepAnalysis(_CamelModel):
    insight_id: str = Field(description="Id of the insight card this analysis belongs to.")
    root_cause: str = Field(description="Evidence-based root cause citing log lines or frames.")
    fix_suggestion: str = Field(description="Specific fix recommendation.")
    confidence: Level = Field(description="Confidence in the root cause.")
    evidence: list[str] = Field(default_factory=list, description="Supporting log lines or frames.")
    impact_assessment: str = Field(default="", description="Impact on the end user.")
    debugging_steps: list[str] = Field(default_factory=list, description="Next steps, adb commands.")
    related_insights: list[str] = Field(default_factory=list, description="Ids of related insights.")
    category: Literal["root_cause", "symptom", "contributing_factor"] = Field(
        default="root_cause", description="Role of this insight in the failure."
    )
    affected_components: list[str] = Field(
        default_factory=list, description="Affected services, HALs or libraries."
    )


class CorrelationFinding(_CamelModel):
    description: str = Field(description="Cross-subsystem correlation that was found.")
    insight_ids: list[str] = Field(default_factory=list, description="Correlated insight ids.")
    confidence: Level = "medium"


class PrioritizedAction(_CamelModel):
    action: str = Field(description="Specific action to take.")
    reason: str = Field(default="", description="Why the action matters.")
    effort: Level = "medium"
    impact: Level = "medium"


class DeepAnalysisResponse(_CamelModel):
    executive_summary: str = Field(default="", description="2-3 sentence summary of what happened.")
    system_diagnosis: str = Field(default="", description="Which subsystems are affected and how.")
    correlation_findings: list[CorrelationFinding] = Field(default_factory=list)
    prioritized_actions: list[PrioritizedAction] = Field(default_factory=list)
    insights: list[InsightDeepAnalysis] = Field(default_factory=list)


@dataclass(frozen=True, slots=True)
class DeepAnalysisConfig:
    model: str = "gemini-2.5-flash"
    temperature: float = 0.2
    redact: bool = True
    max_retries: int = 3
    timeline_limit: int = 50


def _positive_int(name: str, env: str) -> int:
    try:
        value = int(env)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < 1:
        raise ValueError(f"{name} must be >= 1")
    return value


def resolve_deep_analysis_config(cfg: DeepAnalysisConfig | None) -> DeepAnalysisConfig:
    """Return config with BUGREPORT_AI_MODEL / BUGREPORT_AI_MAX_RETRIES overrides applied."""
    if cfg is None:
        cfg = DeepAnalysisConfig()

    model = os.getenv("BUGREPORT_AI_MODEL")
    if model:
        cfg = replace(cfg, model=model)

    retries = os.getenv("BUGREPORT_AI_MAX_RETRIES")
    if retries:
        cfg = replace(cfg, max_retries=_positive_int("BUGREPORT_AI_MAX_RETRIES", retries))
    return cfg
