"""Deep analysis package (Gemini root-cause enrichment)."""

from __future__ import annotations

from .context import InsightContext, build_hal_cross_reference, build_insight_contexts
from .models import (
    CorrelationFinding,
    DeepAnalysisConfig,
    DeepAnalysisResponse,
    InsightDeepAnalysis,
    PrioritizedAction,
    resolve_deep_analysis_config,
)
from .prompt import build_deep_analysis_prompt
from .redaction import redact_text
from .service import merge_deep_analysis, parse_deep_analysis_text, run_deep_analysis

__all__ = [
    "CorrelationFinding",
    "DeepAnalysisConfig",
    "DeepAnalysisResponse",
    "InsightContext",
    "InsightDeepAnalysis",
    "PrioritizedAction",
    "build_deep_analysis_prompt",
    "build_hal_cross_reference",
    "build_insight_contexts",
    "merge_deep_analysis",
    "parse_deep_analysis_text",
    "redact_text",
    "resolve_deep_analysis_config",
    "run_deep_analysis",
]
