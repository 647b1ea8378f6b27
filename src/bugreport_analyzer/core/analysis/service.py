"""Rule-based aggregation of parser outputs into one AnalysisResult."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..models import (
    AnalysisResult,
    ANRTraceAnalysis,
    BugreportMetadata,
    CpuInfoSummary,
    HALStatusSummary,
    InsightCard,
    KernelParseResult,
    LogcatAnomalyType,
    LogcatParseResult,
    MemInfoSummary,
    TombstoneAnalysis,
)
from .boot import resolve_boot_status
from .health import calculate_health_score
from .insights import (
    anr_insights,
    boot_insights,
    finalize_insights,
    hal_insights,
    kernel_insight,
    logcat_insight,
    merge_duplicate_insights,
    merge_selinux_insights,
    resource_insights,
    tombstone_insight,
)
from .timeline import build_timeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AnalyzerInput:
    """Everything the aggregator consumes. Optional parts may be missing from a bugreport."""

    metadata: BugreportMetadata
    logcat_result: LogcatParseResult
    kernel_result: KernelParseResult
    anr_analyses: tuple[ANRTraceAnalysis, ...] = ()
    mem_info: MemInfoSummary | None = None
    cpu_info: CpuInfoSummary | None = None
    hal_status: HALStatusSummary | None = None
    tombstone_analyses: tuple[TombstoneAnalysis, ...] = ()
    system_properties: str | None = None


def analyze_basic(data: AnalyzerInput) -> AnalysisResult:
    """Fuse parser outputs into insights, a timeline and a health score. Never raises."""
    trace_cards: list[InsightCard] = []
    for analysis in data.anr_analyses:
        trace_cards.extend(anr_insights(analysis))

    anomalies = data.logcat_result.anomalies
    if trace_cards:
        # The trace explains the same ANR with more detail.
        anomalies = [a for a in anomalies if a.type != LogcatAnomalyType.ANR]
    logcat_cards = [logcat_insight(a) for a in anomalies]

    boot_status = resolve_boot_status(data.system_properties, data.logcat_result, data.kernel_result)

    cards: list[InsightCard] = [
        *logcat_cards,
        *trace_cards,
        *merge_selinux_insights(kernel_insight(e) for e in data.kernel_result.events),
        *(tombstone_insight(t) for t in data.tombstone_analyses),
    ]
    if data.hal_status is not None:
        cards.extend(hal_insights(data.hal_status))
    cards.extend(resource_insights(data.mem_info, data.cpu_info))
    cards.extend(boot_insights(boot_status, have_boot_evidence=bool(data.system_properties)))

    insights = finalize_insights(merge_duplicate_insights(cards))

    timeline = build_timeline(
        data.logcat_result,
        data.kernel_result,
        data.anr_analyses,
        data.tombstone_analyses,
    )
    health = calculate_health_score(
        data.logcat_result,
        data.kernel_result,
        data.anr_analyses,
        data.mem_info,
        data.cpu_info,
        data.tombstone_analyses,
    )

    logger.debug(
        "Aggregated %d insights, %d timeline events, health=%d",
        len(insights),
        len(timeline),
        health.overall,
    )
    return AnalysisResult(
        metadata=data.metadata,
        insights=tuple(insights),
        timeline=tuple(timeline),
        health_score=health,
        anr_analyses=tuple(data.anr_analyses),
        logcat_result=data.logcat_result,
        kernel_result=data.kernel_result,
        mem_info=data.mem_info,
        cpu_info=data.cpu_info,
        boot_status=boot_status,
        hal_status=data.hal_status,
        tombstone_analyses=tuple(data.tombstone_analyses),
        log_tag_stats=data.logcat_result.tag_stats,
    )
