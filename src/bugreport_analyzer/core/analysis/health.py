"""Frequency-damped system health score."""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass

from ..models import (
    ANRTraceAnalysis,
    BlockReason,
    CpuInfoSummary,
    HealthBreakdown,
    KernelEventType,
    KernelParseResult,
    LogcatAnomalyType,
    LogcatParseResult,
    MemInfoSummary,
    SystemHealthScore,
    TombstoneAnalysis,
)

STABILITY = "stability"
MEMORY = "memory"
RESPONSIVENESS = "responsiveness"
KERNEL = "kernel"

WEIGHTS = {STABILITY: 0.30, MEMORY: 0.25, RESPONSIVENESS: 0.25, KERNEL: 0.20}

# factor(n) for the 1st, 2nd and 3rd occurrence; every later one uses TAIL_FACTOR.
DAMPING_FACTORS = (1.0, 0.5, 0.25)
TAIL_FACTOR = 0.1


@dataclass(frozen=True, slots=True)
class Penalty:
    axes: tuple[str, ...]
    base: float
    cap: float


LOGCAT_PENALTIES: dict[LogcatAnomalyType, Penalty] = {
    LogcatAnomalyType.ANR: Penalty((RESPONSIVENESS,), 20, 50),
    LogcatAnomalyType.FATAL_EXCEPTION: Penalty((STABILITY,), 10, 30),
    LogcatAnomalyType.NATIVE_CRASH: Penalty((STABILITY,), 15, 40),
    LogcatAnomalyType.SYSTEM_SERVER_CRASH: Penalty((STABILITY,), 30, 60),
    LogcatAnomalyType.OOM: Penalty((MEMORY,), 20, 40),
    LogcatAnomalyType.WATCHDOG: Penalty((STABILITY,), 25, 50),
    LogcatAnomalyType.BINDER_TIMEOUT: Penalty((RESPONSIVENESS,), 10, 25),
    LogcatAnomalyType.SLOW_OPERATION: Penalty((RESPONSIVENESS,), 5, 15),
    LogcatAnomalyType.INPUT_DISPATCHING_TIMEOUT: Penalty((RESPONSIVENESS,), 15, 40),
    LogcatAnomalyType.HAL_SERVICE_DEATH: Penalty((STABILITY,), 10, 25),
}

KERNEL_PENALTIES: dict[KernelEventType, Penalty] = {
    KernelEventType.KERNEL_PANIC: Penalty((STABILITY, KERNEL), 40, 60),
    KernelEventType.OOM_KILL: Penalty((MEMORY,), 25, 50),
    KernelEventType.LOWMEMORY_KILLER: Penalty((MEMORY,), 10, 30),
    KernelEventType.KSWAPD_ACTIVE: Penalty((MEMORY,), 5, 15),
    KernelEventType.DRIVER_ERROR: Penalty((KERNEL,), 10, 30),
    KernelEventType.GPU_ERROR: Penalty((KERNEL,), 15, 35),
    KernelEventType.THERMAL_SHUTDOWN: Penalty((KERNEL,), 30, 50),
    KernelEventType.THERMAL_THROTTLING: Penalty((KERNEL,), 5, 15),
    KernelEventType.WATCHDOG_RESET: Penalty((KERNEL,), 30, 50),
    KernelEventType.STORAGE_IO_ERROR: Penalty((KERNEL,), 10, 30),
    KernelEventType.SUSPEND_RESUME_ERROR: Penalty((KERNEL,), 5, 15),
    KernelEventType.SELINUX_DENIAL: Penalty((KERNEL,), 2, 15),
}

ANR_TRACE_PENALTIES: dict[str, Penalty] = {
    "deadlock": Penalty((RESPONSIVENESS,), 25, 50),
    "idle": Penalty((RESPONSIVENESS,), 2, 10),
    "other": Penalty((RESPONSIVENESS,), 15, 45),
}

TOMBSTONE_PENALTY = Penalty((STABILITY,), 15, 40)


def damped_deduction(n: int, base: float, cap: float) -> float:
    """Cumulative deduction for `n` occurrences of one event type, capped at `cap`."""
    if n <= 0:
        return 0.0
    head = sum(base * f for f in DAMPING_FACTORS[:n])
    tail = base * TAIL_FACTOR * max(0, n - len(DAMPING_FACTORS))
    return min(cap, head + tail)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


def _anr_trace_key(analysis: ANRTraceAnalysis) -> str | None:
    primary = analysis.primary
    if primary is None:
        return None
    if primary.block_reason == BlockReason.DEADLOCK:
        return "deadlock"
    if primary.block_reason == BlockReason.IDLE_MAIN_THREAD:
        return "idle"
    return "other"


def _memory_flat_penalty(mem_info: MemInfoSummary | None) -> float:
    if mem_info is None or mem_info.total_ram_kb <= 0:
        return 0.0
    free_ratio = mem_info.free_ram_kb / mem_info.total_ram_kb
    if free_ratio < 0.05:
        return 20.0
    if free_ratio < 0.10:
        return 10.0
    return 0.0


def _cpu_flat_penalty(cpu_info: CpuInfoSummary | None) -> float:
    if cpu_info is None:
        return 0.0
    penalty = 0.0
    if cpu_info.total_cpu_percent > 90:
        penalty += 15
    elif cpu_info.total_cpu_percent > 80:
        penalty += 8
    if cpu_info.io_wait_percent > 30:
        penalty += 10
    elif cpu_info.io_wait_percent > 20:
        penalty += 5
    return penalty


def calculate_health_score(
    logcat_result: LogcatParseResult,
    kernel_result: KernelParseResult,
    anr_analyses: Sequence[ANRTraceAnalysis] = (),
    mem_info: MemInfoSummary | None = None,
    cpu_info: CpuInfoSummary | None = None,
    tombstones: Sequence[TombstoneAnalysis] = (),
) -> SystemHealthScore:
    """Score stability/memory/responsiveness/kernel in [0, 100] and their weighted overall.

    Each penalized type deducts ``damped_deduction(count, base, cap)`` from every axis
    it applies to. Logcat ANRs are not counted when ANR trace analyses exist.
    """
    deductions = dict.fromkeys(WEIGHTS, 0.0)

    def apply(penalty: Penalty, count: int) -> None:
        amount = damped_deduction(count, penalty.base, penalty.cap)
        for axis in penalty.axes:
            deductions[axis] += amount

    trace_keys = Counter(k for k in map(_anr_trace_key, anr_analyses) if k is not None)

    for anomaly_type, count in Counter(a.type for a in logcat_result.anomalies).items():
        if anomaly_type == LogcatAnomalyType.ANR and trace_keys:
            continue
        penalty = LOGCAT_PENALTIES.get(anomaly_type)
        if penalty is not None:
            apply(penalty, count)

    for event_type, count in Counter(e.type for e in kernel_result.events).items():
        penalty = KERNEL_PENALTIES.get(event_type)
        if penalty is not None:
            apply(penalty, count)

    for key, count in trace_keys.items():
        apply(ANR_TRACE_PENALTIES[key], count)

    if tombstones:
        apply(TOMBSTONE_PENALTY, len(tombstones))

    deductions[MEMORY] += _memory_flat_penalty(mem_info)
    deductions[RESPONSIVENESS] += _cpu_flat_penalty(cpu_info)

    scores = {axis: _round_half_up(_clamp(100 - d)) for axis, d in deductions.items()}
    overall = _round_half_up(sum(scores[axis] * w for axis, w in WEIGHTS.items()))

    return SystemHealthScore(
        overall=overall,
        breakdown=HealthBreakdown(
            stability=scores[STABILITY],
            memory=scores[MEMORY],
            responsiveness=scores[RESPONSIVENESS],
            kernel=scores[KERNEL],
        ),
    )
