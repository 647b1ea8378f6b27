"""Core data models for bugreport analysis."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Severity(str, Enum):
    """Insight/anomaly severity, ordered critical > warning > info."""

    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class InsightCategory(str, Enum):
    ANR = "anr"
    CRASH = "crash"
    MEMORY = "memory"
    KERNEL = "kernel"
    PERFORMANCE = "performance"
    STABILITY = "stability"


class InsightSource(str, Enum):
    LOGCAT = "logcat"
    ANR = "anr"
    KERNEL = "kernel"
    CROSS = "cross"
    TOMBSTONE = "tombstone"
    HAL = "hal"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class LogcatAnomalyType(str, Enum):
    ANR = "anr"
    FATAL_EXCEPTION = "fatal_exception"
    NATIVE_CRASH = "native_crash"
    SYSTEM_SERVER_CRASH = "system_server_crash"
    OOM = "oom"
    WATCHDOG = "watchdog"
    BINDER_TIMEOUT = "binder_timeout"
    SLOW_OPERATION = "slow_operation"
    STRICT_MODE = "strict_mode"
    INPUT_DISPATCHING_TIMEOUT = "input_dispatching_timeout"
    HAL_SERVICE_DEATH = "hal_service_death"


class KernelEventType(str, Enum):
    KERNEL_PANIC = "kernel_panic"
    OOM_KILL = "oom_kill"
    LOWMEMORY_KILLER = "lowmemory_killer"
    KSWAPD_ACTIVE = "kswapd_active"
    DRIVER_ERROR = "driver_error"
    GPU_ERROR = "gpu_error"
    THERMAL_SHUTDOWN = "thermal_shutdown"
    THERMAL_THROTTLING = "thermal_throttling"
    WATCHDOG_RESET = "watchdog_reset"
    STORAGE_IO_ERROR = "storage_io_error"
    SUSPEND_RESUME_ERROR = "suspend_resume_error"
    SELINUX_DENIAL = "selinux_denial"


class ThreadState(str, Enum):
    """Thread states as printed in ART thread dumps."""

    RUNNABLE = "Runnable"
    SLEEPING = "Sleeping"
    WAITING = "Waiting"
    TIMED_WAITING = "TimedWaiting"
    BLOCKED = "Blocked"
    NATIVE = "Native"
    SUSPENDED = "Suspended"
    UNKNOWN = "Unknown"


class BlockReason(str, Enum):
    """Why an ANR's main (or blocked) thread was not making progress."""

    LOCK_CONTENTION = "lock_contention"
    DEADLOCK = "deadlock"
    IO_ON_MAIN_THREAD = "io_on_main_thread"
    NETWORK_ON_MAIN_THREAD = "network_on_main_thread"
    SLOW_BINDER_CALL = "slow_binder_call"
    HEAVY_COMPUTATION = "heavy_computation"
    EXPENSIVE_RENDERING = "expensive_rendering"
    BROADCAST_BLOCKING = "broadcast_blocking"
    SLOW_APP_STARTUP = "slow_app_startup"
    IDLE_MAIN_THREAD = "idle_main_thread"
    NO_STACK_FRAMES = "no_stack_frames"
    SYSTEM_OVERLOAD_CANDIDATE = "system_overload_candidate"
    BINDER_POOL_EXHAUSTION = "binder_pool_exhaustion"
    CONTENT_PROVIDER_SLOW = "content_provider_slow"
    # Reserved: declared for result compatibility, never produced by the classifier.
    CONSECUTIVE_BINDER_CALLS = "consecutive_binder_calls"
    GO_ASYNC_NOT_FINISHED = "go_async_not_finished"
    OOM_MEMORY_PRESSURE = "oom_memory_pressure"
    GPU_HANG = "gpu_hang"
    UNKNOWN = "unknown"


class TagClassification(str, Enum):
    FRAMEWORK = "framework"
    VENDOR = "vendor"
    APP = "app"


class HalStatus(str, Enum):
    ALIVE = "alive"
    NON_RESPONSIVE = "non-responsive"
    DECLARED = "declared"


# ---------------------------------------------------------------------------
# Unpacked bugreport


@dataclass(frozen=True, slots=True)
class BugreportMetadata:
    android_version: str = "unknown"
    sdk_level: int = 0
    build_fingerprint: str = "unknown"
    device_model: str = "unknown"
    manufacturer: str = "unknown"
    build_date: str = "unknown"
    bugreport_timestamp: str = "unknown"
    kernel_version: str = "unknown"


@dataclass(frozen=True, slots=True)
class BugreportSection:
    """One `------ NAME (command) ------` block of the main bugreport text."""

    name: str
    command: str
    content: str
    start_line: int
    end_line: int


# ---------------------------------------------------------------------------
# Logcat


@dataclass(frozen=True, slots=True)
class LogEntry:
    """One logical logcat line (continuation lines folded into message/raw)."""

    timestamp: str
    pid: int
    tid: int
    level: str  # V, D, I, W, E, F
    tag: str
    message: str
    raw: str
    line_number: int


@dataclass(frozen=True, slots=True)
class LogcatAnomaly:
    type: LogcatAnomalyType
    severity: Severity
    timestamp: str
    entries: tuple[LogEntry, ...]
    summary: str
    process_name: str | None = None
    pid: int | None = None


@dataclass(frozen=True, slots=True)
class TagStat:
    tag: str
    count: int
    classification: TagClassification


@dataclass(frozen=True, slots=True)
class LogcatParseResult:
    entries: tuple[LogEntry, ...] = ()
    anomalies: tuple[LogcatAnomaly, ...] = ()
    total_lines: int = 0
    parsed_lines: int = 0
    parse_errors: int = 0
    tag_stats: tuple[TagStat, ...] = ()


# ---------------------------------------------------------------------------
# ANR traces


@dataclass(frozen=True, slots=True)
class StackFrame:
    class_name: str
    method_name: str
    file_name: str | None
    line_number: int | None
    is_native: bool
    raw: str


@dataclass(frozen=True, slots=True)
class LockInfo:
    address: str
    class_name: str
    held_by_tid: int | None = None


@dataclass(frozen=True, slots=True)
class ThreadInfo:
    name: str
    tid: int
    priority: int
    state: ThreadState
    daemon: bool
    stack_frames: tuple[StackFrame, ...]
    held_locks: tuple[LockInfo, ...]
    raw: str
    sys_tid: int | None = None
    waiting_on_lock: LockInfo | None = None


@dataclass(frozen=True, slots=True)
class LockGraphNode:
    tid: int
    thread_name: str


@dataclass(frozen=True, slots=True)
class LockGraphEdge:
    from_tid: int
    to_tid: int
    lock_address: str
    lock_class_name: str


@dataclass(frozen=True, slots=True)
class LockGraph:
    nodes: tuple[LockGraphNode, ...] = ()
    edges: tuple[LockGraphEdge, ...] = ()


@dataclass(frozen=True, slots=True)
class CycleThread:
    name: str
    tid: int


@dataclass(frozen=True, slots=True)
class CycleLock:
    address: str
    class_name: str


@dataclass(frozen=True, slots=True)
class DeadlockCycle:
    threads: tuple[CycleThread, ...]
    locks: tuple[CycleLock, ...]


@dataclass(frozen=True, slots=True)
class DeadlockInfo:
    detected: bool = False
    cycles: tuple[DeadlockCycle, ...] = ()


@dataclass(frozen=True, slots=True)
class BinderTarget:
    """Interface/method an ANR'd thread was calling into over Binder."""

    interface_name: str
    package_name: str
    method: str
    caller_class: str
    caller_method: str


@dataclass(frozen=True, slots=True)
class SuspectedBinderTarget:
    interface_name: str
    package_name: str
    method: str
    caller_class: str
    caller_method: str
    thread_name: str
    thread_state: ThreadState


@dataclass(frozen=True, slots=True)
class BlockingChainLink:
    name: str
    tid: int
    state: ThreadState


@dataclass(frozen=True, slots=True)
class ThreadBlockAnalysis:
    thread: ThreadInfo
    block_reason: BlockReason
    blocking_chain: tuple[BlockingChainLink, ...]
    confidence: Confidence
    binder_target: BinderTarget | None = None
    suspected_binder_targets: tuple[SuspectedBinderTarget, ...] | None = None


@dataclass(frozen=True, slots=True)
class BinderThreadSummary:
    total: int = 0
    busy: int = 0
    idle: int = 0
    exhausted: bool = False


@dataclass(frozen=True, slots=True)
class ANRTraceAnalysis:
    pid: int
    process_name: str
    threads: tuple[ThreadInfo, ...]
    main_thread: ThreadBlockAnalysis | None
    lock_graph: LockGraph
    deadlocks: DeadlockInfo
    binder_threads: BinderThreadSummary
    timestamp: str | None = None
    subject: str | None = None
    blocked_thread: ThreadBlockAnalysis | None = None
    blocked_thread_name: str | None = None

    @property
    def primary(self) -> ThreadBlockAnalysis | None:
        """Blocked thread named by the subject, else the main thread."""
        return self.blocked_thread or self.main_thread


# ---------------------------------------------------------------------------
# Kernel log


@dataclass(frozen=True, slots=True)
class KernelLogEntry:
    timestamp: float  # seconds since boot
    level: str  # "<N>" or ""
    message: str
    raw: str
    facility: str = ""


@dataclass(frozen=True, slots=True)
class KernelEvent:
    type: KernelEventType
    severity: Severity
    timestamp: float
    entries: tuple[KernelLogEntry, ...]
    summary: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class KernelParseResult:
    entries: tuple[KernelLogEntry, ...] = ()
    events: tuple[KernelEvent, ...] = ()
    total_lines: int = 0


# ---------------------------------------------------------------------------
# Dumpsys


@dataclass(frozen=True, slots=True)
class MemInfoProcess:
    pid: int
    process_name: str
    total_pss_kb: int


@dataclass(frozen=True, slots=True)
class MemInfoSummary:
    total_ram_kb: int = 0
    free_ram_kb: int = 0
    used_ram_kb: int = 0
    top_processes: tuple[MemInfoProcess, ...] = ()


@dataclass(frozen=True, slots=True)
class CpuInfoProcess:
    pid: int
    process_name: str
    cpu_percent: float


@dataclass(frozen=True, slots=True)
class CpuInfoSummary:
    total_cpu_percent: float = 0.0
    user_percent: float = 0.0
    kernel_percent: float = 0.0
    io_wait_percent: float = 0.0
    top_processes: tuple[CpuInfoProcess, ...] = ()


@dataclass(frozen=True, slots=True)
class HALService:
    interface_name: str
    transport: str
    status: HalStatus
    is_vendor: bool
    arch: str | None = None


@dataclass(frozen=True, slots=True)
class HALFamily:
    """All versions of one HAL interface, reported by the highest version."""

    family_name: str
    short_name: str
    highest_version: str
    highest_status: HalStatus
    is_vendor: bool
    is_oem: bool
    version_count: int


@dataclass(frozen=True, slots=True)
class HALStatusSummary:
    total_services: int = 0
    alive_count: int = 0
    non_responsive_count: int = 0
    declared_count: int = 0
    non_responsive_services: tuple[HALService, ...] = ()
    declared_services: tuple[HALService, ...] = ()
    families: tuple[HALFamily, ...] = ()
    vendor_issue_count: int = 0
    truncated: bool = False


# ---------------------------------------------------------------------------
# Tombstones


@dataclass(frozen=True, slots=True)
class BacktraceFrame:
    frame_number: int
    pc: str
    binary: str
    raw: str
    function: str | None = None
    offset: int | None = None
    build_id: str | None = None


@dataclass(frozen=True, slots=True)
class TombstoneAnalysis:
    file_name: str
    pid: int
    tid: int
    process_name: str
    signal: int
    signal_name: str
    backtrace: tuple[BacktraceFrame, ...]
    is_vendor_crash: bool
    summary: str
    thread_name: str | None = None
    signal_code: str | None = None
    fault_addr: str | None = None
    abi: str | None = None
    build_fingerprint: str | None = None
    timestamp: str | None = None
    crashed_in_binary: str | None = None
    abort_message: str | None = None
    registers: dict[str, str] | None = None


@dataclass(frozen=True, slots=True)
class TombstoneParseResult:
    analyses: tuple[TombstoneAnalysis, ...] = ()
    total_files: int = 0


# ---------------------------------------------------------------------------
# Aggregated output


@dataclass(frozen=True, slots=True)
class BootStatusSummary:
    boot_completed: bool
    system_server_restarts: int
    boot_reason: str | None = None
    uptime_seconds: float | None = None


@dataclass(frozen=True, slots=True)
class DeepAnalysis:
    """LLM-authored root cause analysis attached to one insight."""

    root_cause: str
    fix_suggestion: str
    confidence: Confidence
    evidence: tuple[str, ...] = ()
    impact_assessment: str = ""
    debugging_steps: tuple[str, ...] = ()
    related_insights: tuple[str, ...] = ()
    category: str = "root_cause"  # root_cause | symptom | contributing_factor
    affected_components: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CorrelationFinding:
    description: str
    insight_ids: tuple[str, ...]
    confidence: Confidence


@dataclass(frozen=True, slots=True)
class PrioritizedAction:
    action: str
    reason: str
    effort: str
    impact: str


@dataclass(frozen=True, slots=True)
class DeepAnalysisOverview:
    executive_summary: str
    system_diagnosis: str = ""
    correlation_findings: tuple[CorrelationFinding, ...] = ()
    prioritized_actions: tuple[PrioritizedAction, ...] = ()


@dataclass(frozen=True, slots=True)
class InsightCard:
    id: str
    severity: Severity
    category: InsightCategory
    title: str
    description: str
    source: InsightSource
    related_log_snippet: str | None = None
    stack_trace: str | None = None
    timestamp: str | None = None
    debug_commands: tuple[str, ...] | None = None
    suggested_allow_rule: str | None = None
    deep_analysis: DeepAnalysis | None = None


@dataclass(frozen=True, slots=True)
class TimelineEvent:
    timestamp: str
    source: InsightSource
    severity: Severity
    label: str
    details: str | None = None
    count: int | None = None
    time_range: str | None = None


@dataclass(frozen=True, slots=True)
class HealthBreakdown:
    stability: int = 100
    memory: int = 100
    responsiveness: int = 100
    kernel: int = 100


@dataclass(frozen=True, slots=True)
class SystemHealthScore:
    overall: int
    breakdown: HealthBreakdown


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    metadata: BugreportMetadata
    insights: tuple[InsightCard, ...]
    timeline: tuple[TimelineEvent, ...]
    health_score: SystemHealthScore
    anr_analyses: tuple[ANRTraceAnalysis, ...]
    logcat_result: LogcatParseResult
    kernel_result: KernelParseResult
    mem_info: MemInfoSummary | None = None
    cpu_info: CpuInfoSummary | None = None
    boot_status: BootStatusSummary | None = None
    hal_status: HALStatusSummary | None = None
    tombstone_analyses: tuple[TombstoneAnalysis, ...] | None = None
    log_tag_stats: tuple[TagStat, ...] | None = None
    deep_analysis_overview: DeepAnalysisOverview | None = None
