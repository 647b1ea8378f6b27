"""Prompt construction for deep analysis."""

from __future__ import annotations

from ..models import AnalysisResult, ANRTraceAnalysis
from ..parsers.binder import UNKNOWN_TARGET
from .context import build_hal_cross_reference, build_insight_contexts
from .redaction import redact_text

SYSTEM_INSTRUCTIONS = (
    "You are an expert Android system engineer specializing in bugreport analysis.\n"
    "You will receive the rule-based findings of a bugreport analysis together with raw "
    "context for each finding. Identify root causes, find cross-subsystem correlations "
    "and suggest fixes.\n"
    "Rules:\n"
    "- Be precise and technical. Reference thread names, PIDs, lock addresses and timestamps.\n"
    "- Cite the log lines, stack frames or kernel entries that support each conclusion.\n"
    "- Correlate logcat, kernel and ANR trace events by timing.\n"
    "- Classify each insight as root_cause, symptom or contributing_factor.\n"
    "- For ANRs consider the full blocking chain, the lock graph and binder thread state.\n"
    "- Name affected components (e.g. vendor.gnss@2.0, LocationManagerService, SurfaceFlinger).\n"
    "- Give actionable debugging steps with adb commands where they apply.\n"
)

RESPONSE_INSTRUCTIONS = (
    "## Your Task\n"
    "Return ONLY a JSON object (not an array) that matches the provided schema:\n"
    "executiveSummary, systemDiagnosis, correlationFindings[{description, insightIds, "
    "confidence}], prioritizedActions[{action, reason, effort, impact}] and "
    "insights[{insightId, rootCause, fixSuggestion, confidence, evidence, impactAssessment, "
    "debuggingSteps, relatedInsights, category, affectedComponents}].\n"
    "Analyze ALL critical and warning insights. Include info insights only when they are "
    "relevant to a root cause. Use only insight ids listed above.\n"
)


def _anr_summary(a: ANRTraceAnalysis) -> str | None:
    primary = a.primary
    if primary is None:
        return None
    thread_name = a.blocked_thread_name or "main"
    chain = " -> ".join(link.name for link in primary.blocking_chain) or "none"
    lines = [f"Process: {a.process_name} (PID {a.pid})"]
    if a.subject:
        lines.append(f"  Subject: {a.subject}")
    lines.append(
        f'  Blocked Thread: "{thread_name}" - {primary.block_reason.value} ({primary.confidence.value})'
    )
    lines.append(f"  Blocking Chain: {thread_name} -> {chain}")
    bt = primary.binder_target
    if bt is not None and bt.interface_name != UNKNOWN_TARGET.interface_name:
        method = f".{bt.method}()" if bt.method else ""
        lines.append(f"  Binder Target: {bt.interface_name}{method} ({bt.package_name})")
    lines.append(f"  Binder Threads: {a.binder_threads.busy}/{a.binder_threads.total} busy")
    lines.append(f"  Deadlock: {'YES' if a.deadlocks.detected else 'no'}")
    return "\n".join(lines)


def _report_text(result: AnalysisResult, *, timeline_limit: int, description: str | None) -> str:
    md = result.metadata
    health = result.health_score
    parts = [
        "## Device Info\n"
        f"Model: {md.device_model} ({md.manufacturer})\n"
        f"Android: {md.android_version} (SDK {md.sdk_level})\n"
        f"Build: {md.build_fingerprint}",
        f"## Health Score: {health.overall}/100\n"
        f"- Stability: {health.breakdown.stability}\n"
        f"- Memory: {health.breakdown.memory}\n"
        f"- Responsiveness: {health.breakdown.responsiveness}\n"
        f"- Kernel: {health.breakdown.kernel}",
        f"## Insights ({len(result.insights)} total)\n"
        + "\n".join(
            f"- [{i.severity.value.upper()}] [{i.source.value}] {i.id}: {i.title}" for i in result.insights
        ),
    ]

    events = result.timeline[:timeline_limit]
    parts.append(
        f"## Timeline ({len(events)} events)\n"
        + "\n".join(f"[{e.timestamp}] [{e.source.value}] {e.label}" for e in events)
    )

    summaries = [s for s in (_anr_summary(a) for a in result.anr_analyses) if s]
    if summaries:
        parts.append("## ANR Trace Analysis\n" + "\n---\n".join(summaries))

    hal_lines = build_hal_cross_reference(result)
    if hal_lines:
        parts.append("## HAL Status of Binder Targets\n" + "\n".join(hal_lines))

    by_id = {i.id: i for i in result.insights}
    blocks: list[str] = []
    for ctx in build_insight_contexts(result):
        insight = by_id.get(ctx.insight_id)
        if insight is None:
            continue
        block = [f"### {ctx.insight_id}: {insight.title}"]
        if ctx.anomaly_logs:
            block.append("Source anomaly logs:\n" + "\n".join(f"  {line}" for line in ctx.anomaly_logs))
        if ctx.full_stack_trace:
            block.append("Full stack trace (blocked thread):\n" + ctx.full_stack_trace)
        if ctx.blocking_chain_stacks:
            block.append("Blocking chain stacks:\n" + "\n".join(ctx.blocking_chain_stacks))
        if ctx.relevant_threads:
            block.append("Relevant threads (Blocked/Native state):\n" + "\n".join(ctx.relevant_threads))
        if ctx.temporal_context:
            block.append(
                "Temporal context (W/E/F within 2s):\n" + "\n".join(f"  {line}" for line in ctx.temporal_context)
            )
        blocks.append("\n".join(block))
    if blocks:
        parts.append("## Detailed Context Per Insight\n\n" + "\n\n".join(blocks))

    if description:
        parts.append(f"## User's Problem Description\n{description}")

    return "\n\n".join(parts)


def build_deep_analysis_prompt(
    result: AnalysisResult,
    *,
    description: str | None = None,
    timeline_limit: int = 50,
    redact: bool = True,
) -> str:
    """Build the Gemini prompt for deep analysis of a quick analysis result."""
    report = _report_text(result, timeline_limit=timeline_limit, description=description)
    if redact:
        report = redact_text(report)
    return f"{SYSTEM_INSTRUCTIONS}\n{report}\n\n{RESPONSE_INSTRUCTIONS}"
