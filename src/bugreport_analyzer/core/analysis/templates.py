"""Static lookup tables: categories, labels, descriptions and debug commands."""

from __future__ import annotations

from ..models import (
    BlockReason,
    InsightCategory,
    KernelEvent,
    KernelEventType,
    LogcatAnomaly,
    LogcatAnomalyType,
)

LOGCAT_CATEGORY: dict[LogcatAnomalyType, InsightCategory] = {
    LogcatAnomalyType.ANR: InsightCategory.ANR,
    LogcatAnomalyType.FATAL_EXCEPTION: InsightCategory.CRASH,
    LogcatAnomalyType.NATIVE_CRASH: InsightCategory.CRASH,
    LogcatAnomalyType.SYSTEM_SERVER_CRASH: InsightCategory.STABILITY,
    LogcatAnomalyType.OOM: InsightCategory.MEMORY,
    LogcatAnomalyType.WATCHDOG: InsightCategory.STABILITY,
    LogcatAnomalyType.BINDER_TIMEOUT: InsightCategory.PERFORMANCE,
    LogcatAnomalyType.SLOW_OPERATION: InsightCategory.PERFORMANCE,
    LogcatAnomalyType.STRICT_MODE: InsightCategory.PERFORMANCE,
    LogcatAnomalyType.HAL_SERVICE_DEATH: InsightCategory.STABILITY,
}

KERNEL_CATEGORY: dict[KernelEventType, InsightCategory] = {
    KernelEventType.KERNEL_PANIC: InsightCategory.KERNEL,
    KernelEventType.OOM_KILL: InsightCategory.MEMORY,
    KernelEventType.LOWMEMORY_KILLER: InsightCategory.MEMORY,
    KernelEventType.KSWAPD_ACTIVE: InsightCategory.MEMORY,
    KernelEventType.DRIVER_ERROR: InsightCategory.KERNEL,
    KernelEventType.GPU_ERROR: InsightCategory.KERNEL,
    KernelEventType.THERMAL_SHUTDOWN: InsightCategory.KERNEL,
    KernelEventType.THERMAL_THROTTLING: InsightCategory.KERNEL,
    KernelEventType.WATCHDOG_RESET: InsightCategory.STABILITY,
    KernelEventType.STORAGE_IO_ERROR: InsightCategory.KERNEL,
    KernelEventType.SUSPEND_RESUME_ERROR: InsightCategory.KERNEL,
    KernelEventType.SELINUX_DENIAL: InsightCategory.KERNEL,
}

BLOCK_REASON_LABELS: dict[BlockReason, str] = {
    BlockReason.LOCK_CONTENTION: "Lock Contention",
    BlockReason.DEADLOCK: "Deadlock",
    BlockReason.IO_ON_MAIN_THREAD: "I/O on Main Thread",
    BlockReason.NETWORK_ON_MAIN_THREAD: "Network on Main Thread",
    BlockReason.SLOW_BINDER_CALL: "Slow Binder Call",
    BlockReason.HEAVY_COMPUTATION: "Heavy Computation on Main Thread",
    BlockReason.EXPENSIVE_RENDERING: "Expensive Rendering",
    BlockReason.BROADCAST_BLOCKING: "Broadcast Receiver Blocking",
    BlockReason.SLOW_APP_STARTUP: "Slow App Startup",
    BlockReason.IDLE_MAIN_THREAD: "Idle Main Thread (Possible False ANR)",
    BlockReason.NO_STACK_FRAMES: "No Stack Frames Available",
    BlockReason.SYSTEM_OVERLOAD_CANDIDATE: "System Overload (CPU Saturation)",
    BlockReason.BINDER_POOL_EXHAUSTION: "Binder Thread Pool Exhaustion",
    BlockReason.CONTENT_PROVIDER_SLOW: "Slow Content Provider",
    BlockReason.CONSECUTIVE_BINDER_CALLS: "Consecutive Binder Calls",
    BlockReason.GO_ASYNC_NOT_FINISHED: "goAsync() Not Finished",
    BlockReason.OOM_MEMORY_PRESSURE: "OOM / Memory Pressure",
    BlockReason.GPU_HANG: "GPU Hang",
    BlockReason.UNKNOWN: "Unknown Cause",
}

# Keys are anomaly/event type values plus the card kinds built outside the parsers.
DEBUG_COMMANDS: dict[str, tuple[str, ...]] = {
    # logcat anomalies
    "anr": (
        "adb shell ls -l /data/anr/",
        "adb pull /data/anr/",
        "adb shell dumpsys activity processes",
    ),
    "fatal_exception": (
        "adb logcat -b crash -d",
        "adb shell dumpsys dropbox --print data_app_crash",
    ),
    "native_crash": (
        "adb shell ls -l /data/tombstones/",
        "adb logcat -b crash -d",
        "adb shell dumpsys dropbox --print data_app_native_crash",
    ),
    "system_server_crash": (
        "adb shell dumpsys dropbox --print system_server_crash",
        "adb logcat -b crash -d",
        "adb shell getprop sys.boot.reason",
    ),
    "oom": (
        "adb shell dumpsys meminfo",
        "adb shell cat /proc/meminfo",
        "adb shell dumpsys activity oom",
    ),
    "watchdog": (
        "adb shell dumpsys dropbox --print system_server_watchdog",
        "adb shell ls -l /data/anr/",
        "adb shell dumpsys activity processes",
    ),
    "binder_timeout": (
        "adb shell cat /dev/binderfs/binder_logs/failed_transaction_log",
        "adb shell cat /dev/binderfs/binder_logs/stats",
        "adb shell dumpsys binder_calls_stats",
    ),
    "slow_operation": (
        "adb shell dumpsys looper_stats",
        "adb shell dumpsys gfxinfo",
    ),
    "strict_mode": (
        "adb shell dumpsys dropbox --print data_app_strictmode",
        "adb logcat -s StrictMode -d",
    ),
    "input_dispatching_timeout": (
        "adb shell dumpsys input",
        "adb shell dumpsys window windows",
        "adb pull /data/anr/",
    ),
    "hal_service_death": (
        "adb shell lshal --types=b,c,l",
        "adb shell dumpsys -l",
        "adb logcat -b all -d | grep -i hwservicemanager",
    ),
    # kernel events
    "kernel_panic": (
        "adb shell cat /sys/fs/pstore/console-ramoops-0",
        "adb shell getprop ro.boot.bootreason",
        "adb shell dmesg",
    ),
    "oom_kill": (
        "adb shell dmesg | grep -i 'out of memory'",
        "adb shell cat /proc/meminfo",
        "adb shell dumpsys meminfo",
    ),
    "lowmemory_killer": (
        "adb logcat -s lowmemorykiller lmkd -d",
        "adb shell cat /proc/pressure/memory",
        "adb shell dumpsys activity lmk",
    ),
    "kswapd_active": (
        "adb shell cat /proc/vmstat",
        "adb shell cat /proc/pressure/memory",
        "adb shell top -n 1 -b",
    ),
    "driver_error": (
        "adb shell dmesg",
        "adb shell cat /proc/interrupts",
    ),
    "gpu_error": (
        "adb shell dmesg | grep -i gpu",
        "adb shell dumpsys SurfaceFlinger",
        "adb shell dumpsys gfxinfo",
    ),
    "thermal_shutdown": (
        "adb shell dumpsys thermalservice",
        "adb shell cat /sys/class/thermal/thermal_zone*/temp",
        "adb shell getprop sys.boot.reason",
    ),
    "thermal_throttling": (
        "adb shell dumpsys thermalservice",
        "adb shell cat /sys/class/thermal/thermal_zone*/temp",
        "adb shell cat /sys/devices/system/cpu/cpu*/cpufreq/scaling_cur_freq",
    ),
    "watchdog_reset": (
        "adb shell cat /sys/fs/pstore/console-ramoops-0",
        "adb shell getprop ro.boot.bootreason",
        "adb shell getprop sys.boot.reason.last",
    ),
    "storage_io_error": (
        "adb shell dmesg | grep -iE 'mmc|ufs|ext4|f2fs|I/O error'",
        "adb shell df -h",
        "adb shell dumpsys diskstats",
    ),
    "suspend_resume_error": (
        "adb shell cat /sys/kernel/debug/wakeup_sources",
        "adb shell dumpsys suspend_control_internal",
        "adb shell dumpsys batterystats --history",
    ),
    "selinux_denial": (
        "adb shell dmesg | grep 'avc: denied'",
        "adb shell getenforce",
        "adb logcat -b events -d | grep avc",
    ),
    # ANR traces and companion cards
    "anr_trace": (
        "adb pull /data/anr/",
        "adb shell dumpsys activity processes",
        "adb shell debuggerd -j <pid>",
    ),
    "deadlock": (
        "adb shell kill -3 <pid>",
        "adb pull /data/anr/",
    ),
    "binder_pool_exhaustion": (
        "adb shell cat /dev/binderfs/binder_logs/state",
        "adb shell cat /dev/binderfs/binder_logs/stats",
        "adb shell debuggerd -b <pid>",
    ),
    # tombstones, HALs, resources, boot
    "tombstone": (
        "adb shell ls -l /data/tombstones/",
        "adb pull /data/tombstones/",
        "ndk-stack -sym <symbols-dir> -i <tombstone>",
    ),
    "hal": (
        "adb shell lshal --types=b,c,l",
        "adb shell lshal debug <interface>",
        "adb shell dumpsys -l",
    ),
    "hal_truncated": (
        "adb shell lshal --types=b,c,l",
        "adb shell lshal --neat",
    ),
    "low_memory": (
        "adb shell dumpsys meminfo",
        "adb shell cat /proc/meminfo",
        "adb shell dumpsys activity oom",
    ),
    "high_cpu": (
        "adb shell dumpsys cpuinfo",
        "adb shell top -n 1 -b",
        "adb shell ps -A -o PID,PCPU,NAME --sort=-pcpu",
    ),
    "high_iowait": (
        "adb shell cat /proc/pressure/io",
        "adb shell dumpsys diskstats",
        "adb shell cat /proc/diskstats",
    ),
    "abnormal_boot": (
        "adb shell getprop sys.boot.reason.last",
        "adb shell getprop ro.boot.bootreason",
        "adb shell cat /sys/fs/pstore/console-ramoops-0",
    ),
    "boot_incomplete": (
        "adb shell getprop sys.boot_completed",
        "adb logcat -b all -d | grep -iE 'boot|zygote'",
    ),
    "system_server_restart": (
        "adb logcat -b all -d | grep -i 'system server process'",
        "adb shell dumpsys dropbox --print system_server_crash",
        "adb shell dumpsys dropbox --print system_server_watchdog",
    ),
}


def debug_commands(kind: str) -> tuple[str, ...]:
    return DEBUG_COMMANDS.get(kind, ("adb bugreport",))


LOGCAT_DESCRIPTIONS: dict[LogcatAnomalyType, str] = {
    LogcatAnomalyType.ANR: (
        "Application Not Responding detected{process}{pid}. The main thread was blocked for too long."
    ),
    LogcatAnomalyType.FATAL_EXCEPTION: (
        "A fatal exception occurred{process}{pid}, causing the application to crash."
    ),
    LogcatAnomalyType.NATIVE_CRASH: (
        "A native crash (signal) was detected{process}{pid}. This typically indicates a C/C++ level issue."
    ),
    LogcatAnomalyType.SYSTEM_SERVER_CRASH: (
        "The system_server process crashed, which affects overall system stability and may cause a soft reboot."
    ),
    LogcatAnomalyType.OOM: (
        "Out of memory event detected{process}{pid}. The system killed a process to reclaim memory."
    ),
    LogcatAnomalyType.WATCHDOG: (
        "System watchdog detected a blocked component{process}. This may cause a system restart."
    ),
    LogcatAnomalyType.BINDER_TIMEOUT: (
        "A Binder IPC transaction timed out{process}{pid}. Cross-process communication is taking too long."
    ),
    LogcatAnomalyType.SLOW_OPERATION: "A slow operation was detected on the main thread{process}{pid}.",
    LogcatAnomalyType.STRICT_MODE: (
        "StrictMode violation detected{process}{pid}. "
        "This indicates a policy violation (e.g., disk I/O on main thread)."
    ),
    LogcatAnomalyType.INPUT_DISPATCHING_TIMEOUT: (
        "Input dispatching timed out{process}{pid}. The focused window did not consume an input event in time."
    ),
    LogcatAnomalyType.HAL_SERVICE_DEATH: (
        "A HAL service died{process}{pid}. Clients of this HAL may fail or block until it is restarted."
    ),
}

# Placeholders are filled from the event's details (missing keys render as "unknown").
KERNEL_DESCRIPTIONS: dict[KernelEventType, str] = {
    KernelEventType.KERNEL_PANIC: (
        "A kernel panic occurred, causing the system to halt. This is the most severe kernel-level error."
    ),
    KernelEventType.OOM_KILL: (
        'The kernel OOM killer terminated process "{process_name}" (PID {pid}) due to extreme memory pressure.'
    ),
    KernelEventType.LOWMEMORY_KILLER: (
        "The low memory killer daemon reclaimed memory by killing a background process. "
        "Frequent occurrences indicate memory pressure."
    ),
    KernelEventType.KSWAPD_ACTIVE: (
        "The kernel swap daemon (kswapd) is actively reclaiming memory pages, "
        "indicating significant memory pressure."
    ),
    KernelEventType.DRIVER_ERROR: "A hardware driver error was detected: {message}.",
    KernelEventType.GPU_ERROR: (
        "A GPU fault or error was detected. This may cause rendering issues or application crashes."
    ),
    KernelEventType.THERMAL_SHUTDOWN: (
        "A thermal emergency triggered a system shutdown.{temperature_note} The device may be overheating."
    ),
    KernelEventType.THERMAL_THROTTLING: (
        "The kernel throttled CPU/GPU frequency to limit heat.{zone_note} Performance may be reduced."
    ),
    KernelEventType.WATCHDOG_RESET: (
        "The hardware watchdog timer expired and triggered a system reset. "
        "A critical system component may have become unresponsive."
    ),
    KernelEventType.STORAGE_IO_ERROR: (
        "A storage I/O error was reported by the block layer or filesystem: {message}."
    ),
    KernelEventType.SUSPEND_RESUME_ERROR: (
        "A suspend or resume transition failed. This can drain the battery or leave devices in a bad power state."
    ),
    KernelEventType.SELINUX_DENIAL: (
        "SELinux denied an access request from {scontext} to {tcontext}. "
        "This may indicate a missing policy rule or a security violation."
    ),
}


class _Fields(dict):
    def __missing__(self, key: str) -> str:
        return "unknown"


def describe_logcat_anomaly(anomaly: LogcatAnomaly) -> str:
    process = f" in process {anomaly.process_name}" if anomaly.process_name else ""
    pid = f" (PID {anomaly.pid})" if anomaly.pid else ""
    template = LOGCAT_DESCRIPTIONS.get(anomaly.type, "Anomaly detected{process}{pid}.")
    return template.format(process=process, pid=pid)


def describe_kernel_event(event: KernelEvent) -> str:
    template = KERNEL_DESCRIPTIONS.get(event.type)
    if template is None:
        return f"Kernel event detected: {event.summary}"

    fields = _Fields(event.details)
    fields.setdefault("pid", 0)
    fields["message"] = event.entries[0].message[:200] if event.entries else ""
    temp = event.details.get("temperature")
    fields["temperature_note"] = f" Temperature: {temp}°C." if temp else ""
    zone = event.details.get("zone")
    fields["zone_note"] = f" Zone: {zone}." if zone else ""
    return template.format_map(fields)
