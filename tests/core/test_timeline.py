from __future__ import annotations

from bugreport_analyzer.core.analysis import aggregate_timeline_events, build_timeline
from bugreport_analyzer.core.analysis.timeline import kernel_timestamp, timeline_sort_key
from bugreport_analyzer.core.models import InsightSource, Severity, TimelineEvent
from bugreport_analyzer.core.parsers import parse_anr_trace, parse_kernel_log, parse_logcat, parse_tombstone

from samples import DEADLOCK_TRACE, KERNEL_LOG, LOGCAT, VENDOR_TOMBSTONE


def _event(ts: str, label: str = "SELinux denial", source: InsightSource = InsightSource.KERNEL) -> TimelineEvent:
    return TimelineEvent(timestamp=ts, source=source, severity=Severity.INFO, label=label)


def test_kernel_timestamp_format() -> None:
    assert kernel_timestamp(12.345678) == "boot+12.346s"
    assert kernel_timestamp(0.0) == "boot+0.000s"


def test_sort_key_puts_kernel_then_unknown_last() -> None:
    stamps = ["unknown", "boot+1.000s", "01-15 10:30:45.123"]

    assert sorted(stamps, key=timeline_sort_key) == ["01-15 10:30:45.123", "boot+1.000s", "unknown"]


def test_sort_key_orders_kernel_seconds_numerically() -> None:
    stamps = ["boot+100.000s", "unknown", "boot+9.000s", "boot+12.346s"]

    assert sorted(stamps, key=timeline_sort_key) == ["boot+9.000s", "boot+12.346s", "boot+100.000s", "unknown"]


def test_aggregates_adjacent_runs() -> None:
    events = [_event("boot+1.000s"), _event("boot+2.000s"), _event("boot+3.000s"), _event("boot+4.000s", "other")]

    out = aggregate_timeline_events(events)

    assert len(out) == 2
    assert out[0].count == 3
    assert out[0].time_range == "boot+1.000s ~ boot+3.000s"
    assert out[0].timestamp == "boot+1.000s"
    assert out[1].count is None
    assert out[1].time_range is None


def test_non_adjacent_repeats_stay_separate() -> None:
    events = [_event("a"), _event("b", "other"), _event("c")]

    assert len(aggregate_timeline_events(events)) == 3


def test_same_label_different_source_is_not_merged() -> None:
    events = [_event("a"), _event("b", source=InsightSource.LOGCAT)]

    assert len(aggregate_timeline_events(events)) == 2


def test_aggregation_is_idempotent() -> None:
    events = [_event(f"boot+{i}.000s") for i in range(5)] + [_event("boot+9.000s", "other")]

    once = aggregate_timeline_events(events)
    twice = aggregate_timeline_events(once)

    assert twice == once
    assert once[0].count == 5


def test_build_timeline_merges_all_sources() -> None:
    timeline = build_timeline(
        parse_logcat(LOGCAT),
        parse_kernel_log(KERNEL_LOG),
        [parse_anr_trace(DEADLOCK_TRACE)],
        [parse_tombstone(VENDOR_TOMBSTONE)],
    )

    sources = [e.source for e in timeline]
    assert sources[:4] == [InsightSource.LOGCAT, InsightSource.LOGCAT, InsightSource.ANR, InsightSource.TOMBSTONE]
    assert sources[4:] == [InsightSource.KERNEL] * 3
    assert all(e.timestamp.startswith("boot+") for e in timeline[4:])
    assert [e.timestamp for e in timeline[4:]] == ["boot+12.346s", "boot+20.000s", "boot+100.000s"]

    anr = timeline[2]
    assert anr.label == "ANR: Deadlock in com.example.app"
    assert anr.severity == Severity.CRITICAL
    assert anr.details == "Confidence: high"

    tombstone = timeline[3]
    assert tombstone.details == "/vendor/lib64/hw/gralloc.raven.so"


def test_build_timeline_empty() -> None:
    assert build_timeline(parse_logcat(""), parse_kernel_log("")) == []
