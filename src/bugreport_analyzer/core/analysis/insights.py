"""Insight card builders and the merge/sort/id passes."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace

from ..models import (
    ANRTraceAnalysis,
    BlockReason,
    BootStatusSummary,
    Confidence,
    CpuInfoSummary,
    HALStatusSummary,
    HalStatus,
    InsightCard,
    InsightCategory,
    InsightSource,
    KernelEvent,
    KernelEventType,
    LogcatAnomaly,
    MemInfoSummary,
    Severity,
    TombstoneAnalysis,
)
from ..parsers.kernel import generate_selinux_allow_rule
from .boot import is_abnormal_boot_reason
from .templates import (
    BLOCK_REASON_LABELS,
    KERNEL_CATEGORY,
    LOGCAT_CATEGORY,
    debug_commands,
    describe_kernel_event,
    describe_logcat_anomaly,
)
from .timeline import kernel_timestamp

SEVERITY_ORDER = {Severity.CRITICAL: 0, Severity.WARNING: 1, Severity.INFO: 2}

SNIPPET_ENTRIES = 10
STACK_FRAMES_SHOWN = 15
TOP_PROCESSES_SHOWN = 5

LOW_MEMORY_RATIO = 0.10
HIGH_CPU_PERCENT = 80.0
HIGH_IOWAIT_PERCENT = 20.0

SELINUX_TITLE_PREFIX = "SELinux denial:"


# ---------------------------------------------------------------------------
# Logcat and kernel


def logcat_insight(anomaly: LogcatAnomaly) -> InsightCard:
    return InsightCard(
        id="",
        severity=anomaly.severity,
        category=LOGCAT_CATEGORY.get(anomaly.type, InsightCategory.STABILITY),
        title=anomaly.summary,
        description=describe_logcat_anomaly(anomaly),
        source=InsightSource.LOGCAT,
        related_log_snippet="\n".join(e.raw for e in anomaly.entries[:SNIPPET_ENTRIES]),
        timestamp=anomaly.timestamp,
        debug_commands=debug_commands(anomaly.type.value),
    )


def kernel_insight(event: KernelEvent) -> InsightCard:
    allow_rule = None
    if event.type == KernelEventType.SELINUX_DENIAL:
        allow_rule = generate_selinux_allow_rule(event.details)

    return InsightCard(
        id="",
        severity=event.severity,
        category=KERNEL_CATEGORY.get(event.type, InsightCategory.KERNEL),
        title=event.summary,
        description=describe_kernel_event(event),
        source=InsightSource.KERNEL,
        related_log_snippet="\n".join(e.raw for e in event.entries),
        timestamp=kernel_timestamp(event.timestamp),
        debug_commands=debug_commands(event.type.value),
        suggested_allow_rule=allow_rule,
    )


# ---------------------------------------------------------------------------
# ANR traces


def anr_severity(reason: BlockReason, confidence: Confidence, has_suspected_targets: bool) -> Severity:
    if reason == BlockReason.IDLE_MAIN_THREAD:
        return Severity.WARNING if has_suspected_targets else Severity.INFO
    if reason in (BlockReason.NO_STACK_FRAMES, BlockReason.UNKNOWN):
        return Severity.WARNING
    if confidence == Confidence.LOW:
        return Severity.WARNING
    return Severity.CRITICAL


def anr_insights(analysis: ANRTraceAnalysis) -> list[InsightCard]:
    """Primary ANR card plus deadlock and binder-pool companion cards."""
    primary = analysis.primary
    if primary is None:
        return []

    reason = primary.block_reason
    label = BLOCK_REASON_LABELS.get(reason, reason.value)
    target = primary.binder_target
    suspected = primary.suspected_binder_targets or ()
    process = analysis.process_name

    thread_ctx = ""
    if analysis.blocked_thread_name and analysis.blocked_thread_name != "main":
        thread_ctx = f' on thread "{analysis.blocked_thread_name}"'

    if target is not None and target.interface_name != "Unknown":
        title = f"ANR: {label} to {target.interface_name}{thread_ctx} in {process}"
    elif suspected:
        title = f"ANR: {label} in {process} (suspected: {suspected[0].interface_name} HAL)"
    else:
        title = f"ANR: {label}{thread_ctx} in {process}"

    parts: list[str] = []
    if analysis.subject:
        parts.append(f"Subject: {analysis.subject}")
    parts.append(f"ANR in {process}: {label} (confidence: {primary.confidence.value})")

    if target is not None and target.interface_name != "Unknown":
        hal = f"Target HAL: {target.interface_name} ({target.package_name})"
        if target.method:
            hal += f" → {target.interface_name}.{target.method}()"
        if target.caller_class:
            hal += f" called from {target.caller_class}.{target.caller_method}()"
        parts.append(hal)

    for s in suspected:
        parts.append(
            f'Suspected HAL: {s.interface_name}.{s.method}() on thread "{s.thread_name}" ({s.package_name})'
        )

    if primary.blocking_chain:
        start = analysis.blocked_thread_name or "main"
        chain = " → ".join(f'"{link.name}"' for link in primary.blocking_chain)
        parts.append(f"Blocking chain: {start} → {chain}")

    if reason == BlockReason.DEADLOCK:
        size = len(analysis.deadlocks.cycles[0].threads) if analysis.deadlocks.cycles else 0
        parts.append(f"Deadlock detected involving {size} threads")

    if analysis.binder_threads.exhausted:
        parts.append(f"Binder pool exhausted: all {analysis.binder_threads.total} threads busy")

    stack = "\n".join(f.raw for f in primary.thread.stack_frames[:STACK_FRAMES_SHOWN])
    cards = [
        InsightCard(
            id="",
            severity=anr_severity(reason, primary.confidence, bool(suspected)),
            category=InsightCategory.ANR,
            title=title,
            description="\n".join(parts),
            source=InsightSource.ANR,
            stack_trace=stack or None,
            timestamp=analysis.timestamp,
            debug_commands=debug_commands("anr_trace"),
        )
    ]

    for cycle in analysis.deadlocks.cycles:
        names = ", ".join(f'"{t.name}" (tid={t.tid})' for t in cycle.threads)
        cards.append(
            InsightCard(
                id="",
                severity=Severity.CRITICAL,
                category=InsightCategory.ANR,
                title=f"Deadlock: {len(cycle.threads)} threads in circular wait",
                description=(
                    f"Deadlock cycle involving: {names}. "
                    "Each thread holds a lock needed by another thread in the cycle."
                ),
                source=InsightSource.ANR,
                timestamp=analysis.timestamp,
                debug_commands=debug_commands("deadlock"),
            )
        )

    if analysis.binder_threads.exhausted and reason != BlockReason.BINDER_POOL_EXHAUSTION:
        cards.append(
            InsightCard(
                id="",
                severity=Severity.WARNING,
                category=InsightCategory.PERFORMANCE,
                title=f"Binder Pool Exhausted in {process}",
                description=(
                    f"All {analysis.binder_threads.total} binder threads are busy (0 idle). "
                    "IPC calls may be queuing or timing out."
                ),
                source=InsightSource.ANR,
                timestamp=analysis.timestamp,
                debug_commands=debug_commands("binder_pool_exhaustion"),
            )
        )

    return cards


# ---------------------------------------------------------------------------
# Tombstones


def tombstone_insight(t: TombstoneAnalysis) -> InsightCard:
    code = f", code {t.signal_code}" if t.signal_code else ""
    thread = f', thread "{t.thread_name}"' if t.thread_name else ""
    parts = [f"Signal {t.signal} ({t.signal_name}{code}) in {t.process_name} (PID {t.pid}, TID {t.tid}{thread})"]
    if t.fault_addr:
        parts.append(f"Fault address: {t.fault_addr}")
    if t.abort_message:
        parts.append(f"Abort message: {t.abort_message}")
    if t.crashed_in_binary:
        parts.append(f"Crashed in: {t.crashed_in_binary}")
    if t.is_vendor_crash:
        parts.append("The top frame is in a vendor/ODM binary; the fix likely belongs to the vendor.")
    if t.abi:
        parts.append(f"ABI: {t.abi}")
    if t.file_name:
        parts.append(f"Tombstone: {t.file_name}")

    stack = "\n".join(f.raw for f in t.backtrace[:STACK_FRAMES_SHOWN])
    return InsightCard(
        id="",
        severity=Severity.CRITICAL,
        category=InsightCategory.CRASH,
        title=t.summary,
        description="\n".join(parts),
        source=InsightSource.TOMBSTONE,
        stack_trace=stack or None,
        timestamp=t.timestamp,
        debug_commands=debug_commands("tombstone"),
    )


# ---------------------------------------------------------------------------
# HALs


def hal_insights(hal: HALStatusSummary) -> list[InsightCard]:
    """OEM issues are warnings; BSP issues are info and dropped when lshal was truncated."""
    cards: list[InsightCard] = []
    if hal.truncated:
        cards.append(
            InsightCard(
                id="",
                severity=Severity.INFO,
                category=InsightCategory.STABILITY,
                title="lshal output truncated",
                description=(
                    "lshal was killed before it finished scanning, so non-responsive/declared "
                    "statuses of BSP HALs are unreliable and were not reported. OEM HAL statuses are kept."
                ),
                source=InsightSource.HAL,
                debug_commands=debug_commands("hal_truncated"),
            )
        )

    for family in hal.families:
        if family.highest_status not in (HalStatus.NON_RESPONSIVE, HalStatus.DECLARED):
            continue
        if not family.is_oem and hal.truncated:
            continue

        owner = "OEM" if family.is_oem else "BSP"
        status = family.highest_status.value
        if family.highest_status == HalStatus.NON_RESPONSIVE:
            detail = "is registered but did not respond to lshal"
        else:
            detail = "is declared in the VINTF manifest but no running service was found"
        versions = f" ({family.version_count} versions registered)" if family.version_count > 1 else ""
        cards.append(
            InsightCard(
                id="",
                severity=Severity.WARNING if family.is_oem else Severity.INFO,
                category=InsightCategory.STABILITY,
                title=f"{owner} HAL {status}: {family.short_name}@{family.highest_version}",
                description=(
                    f"{family.family_name}@{family.highest_version} {detail}{versions}. "
                    f"Clients calling this HAL may block or fail."
                ),
                source=InsightSource.HAL,
                debug_commands=debug_commands("hal"),
            )
        )
    return cards


# ---------------------------------------------------------------------------
# Resources and boot


def resource_insights(mem_info: MemInfoSummary | None, cpu_info: CpuInfoSummary | None) -> list[InsightCard]:
    cards: list[InsightCard] = []

    if mem_info is not None and mem_info.total_ram_kb > 0:
        ratio = mem_info.free_ram_kb / mem_info.total_ram_kb
        if ratio < LOW_MEMORY_RATIO:
            top = "\n".join(
                f"{p.total_pss_kb:,}K: {p.process_name} (pid {p.pid})"
                for p in mem_info.top_processes[:TOP_PROCESSES_SHOWN]
            )
            cards.append(
                InsightCard(
                    id="",
                    severity=Severity.WARNING,
                    category=InsightCategory.MEMORY,
                    title="Low available memory",
                    description=(
                        f"Free RAM is {ratio:.1%} of total "
                        f"({mem_info.free_ram_kb:,}K free of {mem_info.total_ram_kb:,}K)."
                    ),
                    source=InsightSource.CROSS,
                    related_log_snippet=top or None,
                    debug_commands=debug_commands("low_memory"),
                )
            )

    if cpu_info is not None:
        top = "\n".join(
            f"{p.cpu_percent}% {p.pid}/{p.process_name}" for p in cpu_info.top_processes[:TOP_PROCESSES_SHOWN]
        )
        if cpu_info.total_cpu_percent > HIGH_CPU_PERCENT:
            cards.append(
                InsightCard(
                    id="",
                    severity=Severity.WARNING,
                    category=InsightCategory.PERFORMANCE,
                    title="High CPU usage",
                    description=(
                        f"Total CPU usage is {cpu_info.total_cpu_percent}% "
                        f"({cpu_info.user_percent}% user + {cpu_info.kernel_percent}% kernel)."
                    ),
                    source=InsightSource.CROSS,
                    related_log_snippet=top or None,
                    debug_commands=debug_commands("high_cpu"),
                )
            )
        if cpu_info.io_wait_percent > HIGH_IOWAIT_PERCENT:
            cards.append(
                InsightCard(
                    id="",
                    severity=Severity.WARNING,
                    category=InsightCategory.PERFORMANCE,
                    title="High I/O wait",
                    description=(
                        f"CPU I/O wait is {cpu_info.io_wait_percent}%. "
                        "Threads are stalling on storage; main-thread disk access may cause ANRs."
                    ),
                    source=InsightSource.CROSS,
                    related_log_snippet=top or None,
                    debug_commands=debug_commands("high_iowait"),
                )
            )

    return cards


def boot_insights(boot: BootStatusSummary, *, have_boot_evidence: bool) -> list[InsightCard]:
    cards: list[InsightCard] = []

    if is_abnormal_boot_reason(boot.boot_reason):
        cards.append(
            InsightCard(
                id="",
                severity=Severity.WARNING,
                category=InsightCategory.STABILITY,
                title=f"Abnormal boot reason: {boot.boot_reason}",
                description=(
                    f"The last boot reason was '{boot.boot_reason}', which indicates an "
                    "unplanned reset rather than a user or OTA reboot."
                ),
                source=InsightSource.CROSS,
                debug_commands=debug_commands("abnormal_boot"),
            )
        )

    if have_boot_evidence and not boot.boot_completed:
        cards.append(
            InsightCard(
                id="",
                severity=Severity.WARNING,
                category=InsightCategory.STABILITY,
                title="Boot not completed",
                description="sys.boot_completed was never set; the device may be stuck in boot.",
                source=InsightSource.CROSS,
                debug_commands=debug_commands("boot_incomplete"),
            )
        )

    if boot.system_server_restarts > 0:
        n = boot.system_server_restarts
        cards.append(
            InsightCard(
                id="",
                severity=Severity.CRITICAL,
                category=InsightCategory.STABILITY,
                title=f"system_server restarted {n} time{'s' if n != 1 else ''}",
                description=(
                    f"Zygote created system_server {n + 1} times during this log, "
                    "meaning the framework soft-rebooted."
                ),
                source=InsightSource.CROSS,
                debug_commands=debug_commands("system_server_restart"),
            )
        )

    return cards


# ---------------------------------------------------------------------------
# Merge / sort / ids


def _merge_group(group: Sequence[InsightCard]) -> InsightCard:
    first = group[0]
    if len(group) == 1:
        return first
    return replace(
        first,
        title=f"{first.title} (×{len(group)})",
        description=f"{first.description}\nOccurred {len(group)} times.",
    )


def merge_selinux_insights(cards: Iterable[InsightCard]) -> list[InsightCard]:
    """Fold SELinux denial cards that share a title (same context pair)."""
    others: list[InsightCard] = []
    groups: dict[str, list[InsightCard]] = {}
    for card in cards:
        if card.title.startswith(SELINUX_TITLE_PREFIX):
            groups.setdefault(card.title, []).append(card)
        else:
            others.append(card)
    return others + [_merge_group(g) for g in groups.values()]


def merge_duplicate_insights(cards: Iterable[InsightCard]) -> list[InsightCard]:
    groups: dict[tuple[str, str, str, str], list[InsightCard]] = {}
    for card in cards:
        key = (card.severity.value, card.category.value, card.source.value, card.title)
        groups.setdefault(key, []).append(card)
    return [_merge_group(g) for g in groups.values()]


def finalize_insights(cards: Iterable[InsightCard]) -> list[InsightCard]:
    """Stable severity sort, then sequential ids `insight-1..N`."""
    ordered = sorted(cards, key=lambda c: SEVERITY_ORDER[c.severity])
    return [replace(card, id=f"insight-{i}") for i, card in enumerate(ordered, start=1)]
