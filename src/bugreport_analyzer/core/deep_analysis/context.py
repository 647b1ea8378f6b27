"""Targeted raw context per insight for the deep analysis prompt.

For every critical/warning insight the builder gathers the log lines that produced it,
the blocked thread's full stack, the stacks along its blocking chain, other Blocked or
Native threads, nearby kernel lines and W/E/F logcat lines around the insight time. The
total is then trimmed to a character budget.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from ..models import (
    AnalysisResult,
    ANRTraceAnalysis,
    HALFamily,
    InsightCard,
    InsightCategory,
    InsightSource,
    LogcatAnomaly,
    LogcatAnomalyType,
    Severity,
    ThreadInfo,
    ThreadState,
)
from ..parsers.binder import UNKNOWN_TARGET
from ..parsers.logcat import timestamps_within

MAX_TOTAL_TOKENS = 60_000
CHARS_PER_TOKEN = 3.5
MAX_TOTAL_CHARS = int(MAX_TOTAL_TOKENS * CHARS_PER_TOKEN)

KERNEL_WINDOW_SECONDS = 5.0
TEMPORAL_WINDOW_SECONDS = 2.0

_CATEGORY_ANOMALIES: dict[InsightCategory, tuple[LogcatAnomalyType, ...]] = {
    InsightCategory.ANR: (LogcatAnomalyType.ANR,),
    InsightCategory.CRASH: (
        LogcatAnomalyType.FATAL_EXCEPTION,
        LogcatAnomalyType.NATIVE_CRASH,
        LogcatAnomalyType.SYSTEM_SERVER_CRASH,
    ),
    InsightCategory.MEMORY: (LogcatAnomalyType.OOM,),
    InsightCategory.PERFORMANCE: (
        LogcatAnomalyType.SLOW_OPERATION,
        LogcatAnomalyType.BINDER_TIMEOUT,
        LogcatAnomalyType.STRICT_MODE,
    ),
    InsightCategory.STABILITY: (LogcatAnomalyType.WATCHDOG, LogcatAnomalyType.SYSTEM_SERVER_CRASH),
}

_RELEVANT_STATES = (ThreadState.BLOCKED, ThreadState.NATIVE)
_HAL_VERSION_RE = re.compile(r"@[\d.]+.*$")


@dataclass(slots=True)
class InsightContext:
    insight_id: str
    anomaly_logs: list[str] = field(default_factory=list)
    full_stack_trace: str | None = None
    blocking_chain_stacks: list[str] = field(default_factory=list)
    relevant_threads: list[str] = field(default_factory=list)
    temporal_context: list[str] = field(default_factory=list)

    def char_count(self) -> int:
        return (
            sum(len(s) for s in self.anomaly_logs)
            + len(self.full_stack_trace or "")
            + sum(len(s) for s in self.blocking_chain_stacks)
            + sum(len(s) for s in self.relevant_threads)
            + sum(len(s) for s in self.temporal_context)
        )


def _label(value: str) -> str:
    return value.replace("_", " ")


def _matching_anomalies(insight: InsightCard, anomalies: Sequence[LogcatAnomaly]) -> list[LogcatAnomaly]:
    title = insight.title.lower()
    found = [
        a
        for a in anomalies
        if _label(a.type.value) in title
        or (a.process_name and a.process_name.lower() in title)
        or title[:30] in a.summary.lower()
    ]
    if found:
        return found
    wanted = _CATEGORY_ANOMALIES.get(insight.category, ())
    return [a for a in anomalies if a.type in wanted]


def _collect_logcat(ctx: InsightContext, insight: InsightCard, result: AnalysisResult) -> None:
    for anomaly in _matching_anomalies(insight, result.logcat_result.anomalies)[:3]:
        ctx.anomaly_logs.extend(e.raw for e in anomaly.entries[:15])


def _describe_thread(thread: ThreadInfo) -> str:
    lock = ""
    if thread.waiting_on_lock is not None:
        w = thread.waiting_on_lock
        lock = f"  waiting on lock {w.address} ({w.class_name})"
        if w.held_by_tid is not None:
            lock += f" held by tid={w.held_by_tid}"
    held = ""
    if thread.held_locks:
        held = "  holds locks: " + ", ".join(f"{h.address}({h.class_name})" for h in thread.held_locks)
    stack = "\n".join(f"    {f.raw}" for f in thread.stack_frames)
    return f'Thread "{thread.name}" tid={thread.tid} ({thread.state.value}):{lock}{held}\n{stack}'


def _match_anr(insight: InsightCard, analyses: Sequence[ANRTraceAnalysis]) -> ANRTraceAnalysis | None:
    title = insight.title.lower()
    for a in analyses:
        if a.process_name.lower() in title or f"pid {a.pid}" in title:
            return a
    return analyses[0] if analyses else None


def _collect_anr(ctx: InsightContext, insight: InsightCard, result: AnalysisResult) -> None:
    anr = _match_anr(insight, result.anr_analyses)
    if anr is None:
        return

    primary = anr.primary
    primary_tid = primary.thread.tid if primary is not None else None
    if primary is not None:
        ctx.full_stack_trace = "\n".join(f.raw for f in primary.thread.stack_frames)
        for link in primary.blocking_chain:
            thread = next((t for t in anr.threads if t.tid == link.tid), None)
            if thread is not None:
                ctx.blocking_chain_stacks.append(_describe_thread(thread))

    relevant = [t for t in anr.threads if t.state in _RELEVANT_STATES and t.tid != primary_tid]
    for t in relevant[:10]:
        top = "\n".join(f"    {f.raw}" for f in t.stack_frames[:5])
        ctx.relevant_threads.append(f'Thread "{t.name}" tid={t.tid} ({t.state.value}):\n{top}')

    _collect_logcat(ctx, insight, result)


def _collect_kernel(ctx: InsightContext, insight: InsightCard, result: AnalysisResult) -> None:
    title = insight.title.lower()
    kernel = result.kernel_result
    events = [
        e
        for e in kernel.events
        if _label(e.type.value) in title or title[:30] in e.summary.lower()
    ]
    if not events:
        events = [e for e in kernel.events if e.severity == insight.severity][:3]

    for event in events[:3]:
        ctx.anomaly_logs.extend(e.raw for e in event.entries)
        lo = event.timestamp - KERNEL_WINDOW_SECONDS
        hi = event.timestamp + KERNEL_WINDOW_SECONDS
        surrounding = [e.raw for e in kernel.entries if lo <= e.timestamp <= hi]
        ctx.anomaly_logs.extend(surrounding[:20])

    ctx.anomaly_logs = list(dict.fromkeys(ctx.anomaly_logs))


def _collect_temporal(ctx: InsightContext, insight: InsightCard, result: AnalysisResult) -> None:
    ts = insight.timestamp
    if not ts:
        return
    near = [
        e.raw
        for e in result.logcat_result.entries
        if e.level in ("W", "E", "F") and timestamps_within(e.timestamp, ts, TEMPORAL_WINDOW_SECONDS)
    ]
    ctx.temporal_context = near[:20]


def _trim(contexts: list[InsightContext], attr: str, keep: int, total: int, budget: int) -> int:
    for ctx in contexts:
        if total <= budget:
            break
        items: list[str] = getattr(ctx, attr)
        removed = items[keep:]
        del items[keep:]
        total -= sum(len(s) for s in removed)
    return total


def enforce_budget(contexts: list[InsightContext], budget: int = MAX_TOTAL_CHARS) -> list[InsightContext]:
    """Trim temporal lines, then threads, then logs, then chain stacks until under budget."""
    total = sum(c.char_count() for c in contexts)
    for attr, keep in (
        ("temporal_context", 10),
        ("relevant_threads", 5),
        ("anomaly_logs", 10),
        ("blocking_chain_stacks", 3),
    ):
        if total <= budget:
            break
        total = _trim(contexts, attr, keep, total, budget)
    return contexts


def build_insight_contexts(result: AnalysisResult, *, budget: int = MAX_TOTAL_CHARS) -> list[InsightContext]:
    contexts: list[InsightContext] = []
    for insight in result.insights:
        if insight.severity not in (Severity.CRITICAL, Severity.WARNING):
            continue
        ctx = InsightContext(insight_id=insight.id)
        if insight.source == InsightSource.LOGCAT:
            _collect_logcat(ctx, insight, result)
        elif insight.source == InsightSource.ANR:
            _collect_anr(ctx, insight, result)
        elif insight.source == InsightSource.KERNEL:
            _collect_kernel(ctx, insight, result)
        elif insight.source == InsightSource.CROSS:
            _collect_logcat(ctx, insight, result)
            _collect_kernel(ctx, insight, result)

        if insight.severity == Severity.CRITICAL:
            _collect_temporal(ctx, insight, result)
        contexts.append(ctx)

    return enforce_budget(contexts, budget)


def _family_for(package_name: str, families: Sequence[HALFamily]) -> HALFamily | None:
    # vendor.foo.gnss@2.0 matches family vendor.foo.gnss::IGnss
    prefix = _HAL_VERSION_RE.sub("", package_name).lower()
    for family in families:
        family_prefix = re.sub(r"@[\d.]+", "", family.family_name.split("::", 1)[0]).lower()
        if prefix == family_prefix:
            return family
    return None


def build_hal_cross_reference(result: AnalysisResult) -> list[str]:
    """Status lines for ANR binder targets looked up in the lshal families."""
    hal = result.hal_status
    if hal is None or not hal.families:
        return []

    targets: list[tuple[str, str]] = []
    for anr in result.anr_analyses:
        primary = anr.primary
        if primary is None:
            continue
        bt = primary.binder_target
        if bt is not None and bt.interface_name != UNKNOWN_TARGET.interface_name:
            targets.append((bt.interface_name, bt.package_name))
        for s in primary.suspected_binder_targets or ():
            targets.append((s.interface_name, s.package_name))

    lines: list[str] = []
    seen: set[str] = set()
    for interface_name, package_name in targets:
        if package_name in seen:
            continue
        seen.add(package_name)
        family = _family_for(package_name, hal.families)
        if family is None:
            lines.append(f"- {interface_name} ({package_name}) -> status unknown (not found in lshal)")
            continue
        oem = " [OEM]" if family.is_oem else ""
        lines.append(
            f"- {interface_name} ({package_name}) -> {family.highest_status.value}, "
            f"highest={family.highest_version}, {family.version_count} version(s){oem}"
        )
    return lines
