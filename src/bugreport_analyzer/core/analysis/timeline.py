"""Cross-source timeline with adjacent-run aggregation."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace

from ..models import (
    ANRTraceAnalysis,
    BlockReason,
    InsightSource,
    KernelParseResult,
    LogcatParseResult,
    Severity,
    TimelineEvent,
    TombstoneAnalysis,
)
from .templates import BLOCK_REASON_LABELS

UNKNOWN_TIMESTAMP = "unknown"


def kernel_timestamp(seconds: float) -> str:
    return f"boot+{seconds:.3f}s"


def timeline_sort_key(timestamp: str) -> tuple[int, float, str]:
    """Logcat timestamps sort as-is, kernel `boot+` ones after them by seconds, `unknown` last."""
    if timestamp == UNKNOWN_TIMESTAMP:
        return (2, 0.0, "")
    if timestamp.startswith("boot+"):
        try:
            return (1, float(timestamp[len("boot+") :].rstrip("s")), "")
        except ValueError:
            return (1, 0.0, timestamp)
    return (0, 0.0, timestamp)


def aggregate_timeline_events(events: Sequence[TimelineEvent]) -> list[TimelineEvent]:
    """Collapse runs of adjacent events with the same (label, source, severity).

    A run of N > 1 becomes its first event with ``count=N`` and
    ``time_range="first ~ last"``. Single-pass: non-adjacent repeats stay separate,
    and already-aggregated entries keep their counts.
    """
    out: list[TimelineEvent] = []
    run_start = ""
    run_end = ""

    for event in events:
        if out:
            last = out[-1]
            if (last.label, last.source, last.severity) == (event.label, event.source, event.severity):
                run_end = event.timestamp
                out[-1] = replace(
                    last,
                    count=(last.count or 1) + (event.count or 1),
                    time_range=f"{run_start} ~ {run_end}",
                )
                continue
        run_start = run_end = event.timestamp
        out.append(event)
    return out


def build_timeline(
    logcat_result: LogcatParseResult,
    kernel_result: KernelParseResult,
    anr_analyses: Sequence[ANRTraceAnalysis] = (),
    tombstones: Sequence[TombstoneAnalysis] = (),
) -> list[TimelineEvent]:
    events: list[TimelineEvent] = []

    for anomaly in logcat_result.anomalies:
        events.append(
            TimelineEvent(
                timestamp=anomaly.timestamp,
                source=InsightSource.LOGCAT,
                severity=anomaly.severity,
                label=anomaly.summary,
                details=anomaly.process_name,
            )
        )

    for event in kernel_result.events:
        events.append(
            TimelineEvent(
                timestamp=kernel_timestamp(event.timestamp),
                source=InsightSource.KERNEL,
                severity=event.severity,
                label=event.summary,
            )
        )

    for analysis in anr_analyses:
        primary = analysis.primary
        if primary is None:
            continue
        label = BLOCK_REASON_LABELS.get(primary.block_reason, "ANR")
        events.append(
            TimelineEvent(
                timestamp=analysis.timestamp or UNKNOWN_TIMESTAMP,
                source=InsightSource.ANR,
                severity=(
                    Severity.INFO if primary.block_reason == BlockReason.IDLE_MAIN_THREAD else Severity.CRITICAL
                ),
                label=f"ANR: {label} in {analysis.process_name}",
                details=f"Confidence: {primary.confidence.value}",
            )
        )

    for tombstone in tombstones:
        events.append(
            TimelineEvent(
                timestamp=tombstone.timestamp or UNKNOWN_TIMESTAMP,
                source=InsightSource.TOMBSTONE,
                severity=Severity.CRITICAL,
                label=tombstone.summary,
                details=tombstone.crashed_in_binary,
            )
        )

    # list.sort is stable, so equal keys keep source order.
    events.sort(key=lambda e: timeline_sort_key(e.timestamp))
    return aggregate_timeline_events(events)
