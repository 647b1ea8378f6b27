"""Aggregator: insights, timeline and health score over all parser outputs."""

from __future__ import annotations

from .boot import resolve_boot_status
from .health import calculate_health_score, damped_deduction
from .service import AnalyzerInput, analyze_basic
from .templates import BLOCK_REASON_LABELS, DEBUG_COMMANDS
from .timeline import aggregate_timeline_events, build_timeline

__all__ = [
    "AnalyzerInput",
    "BLOCK_REASON_LABELS",
    "DEBUG_COMMANDS",
    "aggregate_timeline_events",
    "analyze_basic",
    "build_timeline",
    "calculate_health_score",
    "damped_deduction",
    "resolve_boot_status",
]
