"""Logcat parser.

Tokenizes `logcat -v threadtime` output (with or without the UID column),
folds continuation lines into the preceding entry and runs an ordered set of
anomaly rules over the result.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime

from ..models import (
    LogcatAnomaly,
    LogcatAnomalyType,
    LogcatParseResult,
    LogEntry,
    Severity,
    TagClassification,
    TagStat,
)

logger = logging.getLogger(__name__)

# 01-15 10:30:45.123  1000  1234  1234 E Tag: message
_UID_LINE_RE = re.compile(
    r"^(\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2}\.\d{3})\s+(\d+)\s+(\d+)\s+(\d+)\s+([VDIWEF])\s+(.+?):\s+(.*)"
)
# 01-15 10:30:45.123  1234  1234 E Tag: message
_LINE_RE = re.compile(
    r"^(\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2}\.\d{3})\s+(\d+)\s+(\d+)\s+([VDIWEF])\s+(.+?):\s+(.*)"
)
_TS_RE = re.compile(r"(\d{2})-(\d{2})\s+(\d{2}):(\d{2}):(\d{2})\.(\d{3})")
_EPOCH = datetime(2000, 1, 1)

CONTEXT_WINDOW = 5
DEDUP_WINDOW_SECONDS = 1.0
TOP_TAG_COUNT = 20

FRAMEWORK_TAGS = frozenset(
    {
        "ActivityManager",
        "WindowManager",
        "PackageManager",
        "SystemServer",
        "InputDispatcher",
        "SurfaceFlinger",
        "AudioFlinger",
        "PowerManagerService",
        "ConnectivityService",
        "NetworkController",
        "WifiService",
        "BluetoothAdapter",
        "LocationManagerService",
        "TelephonyManager",
        "StatusBarManagerService",
        "NotificationManagerService",
        "AlarmManagerService",
        "JobScheduler",
        "ContentResolver",
        "AccountManagerService",
        "DevicePolicyManager",
        "DisplayManagerService",
        "InputMethodManagerService",
        "AccessibilityManagerService",
        "AppOps",
        "BatteryService",
        "StorageManagerService",
        "UsageStatsService",
        "Watchdog",
        "Zygote",
        "art",
        "dalvikvm",
        "AndroidRuntime",
        "ServiceManager",
        "SystemUI",
        "Binder",
        "JavaBinder",
        "BinderProxy",
        "InputReader",
        "InputTransport",
        "Looper",
        "ActivityThread",
        "ActivityTaskManager",
        "WindowManagerService",
        "View",
        "ViewRootImpl",
        "Choreographer",
        "RenderThread",
        "hwui",
        "GC",
        "StrictMode",
    }
)

_VENDOR_TAG_RE = re.compile(
    r"^(vendor|hal_|hw_|sensor|gnss|nfc|bluetooth|thermal|power|display|camera|audio_hw"
    r"|gps|modem|ril|radio|wifi_hal)",
    re.IGNORECASE,
)
_VENDOR_KEYWORD_RE = re.compile(
    r"qti|qcom|mtk|mediatek|sprd|samsung|nxp|exynos|hisilicon|kirin|unisoc",
    re.IGNORECASE,
)


def classify_tag(tag: str) -> TagClassification:
    """Classify a log tag as framework, vendor or app."""
    if tag in FRAMEWORK_TAGS:
        return TagClassification.FRAMEWORK
    if _VENDOR_TAG_RE.search(tag) or _VENDOR_KEYWORD_RE.search(tag):
        return TagClassification.VENDOR
    return TagClassification.APP


# ---------------------------------------------------------------------------
# Anomaly rules (evaluated in order, first match wins)


def _summary(pattern: str, template: str, fallback: str) -> Callable[[LogEntry], str]:
    regex = re.compile(pattern)

    def _summarize(e: LogEntry) -> str:
        m = regex.search(e.message)
        return template.format(*m.groups()) if m else fallback

    return _summarize


def _match_anr(e: LogEntry) -> bool:
    return e.tag == "ActivityManager" and ("ANR in" in e.message or "not responding" in e.message)


def _match_fatal_exception(e: LogEntry) -> bool:
    return e.tag == "AndroidRuntime" and "FATAL EXCEPTION" in e.message


def _match_native_crash(e: LogEntry) -> bool:
    return e.tag == "DEBUG" and ("*** ***" in e.message or "signal" in e.message)


def _match_system_server_crash(e: LogEntry) -> bool:
    # Shadowed by fatal_exception for AndroidRuntime lines; kept for rule order parity.
    return (
        e.tag == "AndroidRuntime"
        and "FATAL EXCEPTION" in e.message
        and "system_server" in e.message
    )


def _match_oom(e: LogEntry) -> bool:
    if e.tag == "ActivityManager":
        return "Out of memory" in e.message or "Low on memory" in e.message
    return e.tag == "lowmemorykiller" and "kill" in e.message


def _match_watchdog(e: LogEntry) -> bool:
    return e.tag == "Watchdog" and (
        "WATCHDOG KILLING SYSTEM PROCESS" in e.message or "Blocked in" in e.message
    )


_TIMEOUT_WORD_RE = re.compile(r"\btimeout\b", re.IGNORECASE)


def _match_binder_timeout(e: LogEntry) -> bool:
    return (
        (e.tag == "JavaBinder" and "Binder transaction timeout" in e.message)
        or (e.tag == "binder" and "timeout" in e.message)
        or ("Binder" in e.tag and _TIMEOUT_WORD_RE.search(e.message) is not None)
    )


def _match_slow_operation(e: LogEntry) -> bool:
    return e.tag in ("Looper", "ActivityThread", "ContentResolver") and "Slow" in e.message


def _match_strict_mode(e: LogEntry) -> bool:
    return e.tag == "StrictMode" and ("violation" in e.message or "penalty" in e.message)


_INPUT_TIMEOUT_RE = re.compile(r"Input dispatching timed out", re.IGNORECASE)
_TIMEOUT_RE = re.compile(r"timeout", re.IGNORECASE)


def _match_input_dispatching_timeout(e: LogEntry) -> bool:
    if _INPUT_TIMEOUT_RE.search(e.message):
        return True
    return e.tag == "InputDispatcher" and _TIMEOUT_RE.search(e.message) is not None


_HWSM_TAG_RE = re.compile(r"hwservicemanager", re.IGNORECASE)
_DIED_RE = re.compile(r"died|restart", re.IGNORECASE)
_SERVICE_DIED_RE = re.compile(r"service.*died", re.IGNORECASE)


def _match_hal_service_death(e: LogEntry) -> bool:
    if _HWSM_TAG_RE.search(e.tag) and _DIED_RE.search(e.message):
        return True
    return e.tag in ("ServiceManager", "servicemanager") and (
        _SERVICE_DIED_RE.search(e.message) is not None
    )


def _summarize_hal_death(e: LogEntry) -> str:
    m = re.search(r"""(?:service\s+)?['"]?(\S+?)['"]?\s+(?:has\s+)?died""", e.message, re.I)
    return f"HAL service died: {m.group(1)}" if m else "HAL service died"


@dataclass(frozen=True, slots=True)
class AnomalyRule:
    """One logcat anomaly detector: predicate plus summary builder."""

    type: LogcatAnomalyType
    severity: Severity
    match: Callable[[LogEntry], bool]
    summarize: Callable[[LogEntry], str]


ANOMALY_RULES: tuple[AnomalyRule, ...] = (
    AnomalyRule(
        LogcatAnomalyType.ANR,
        Severity.CRITICAL,
        _match_anr,
        _summary(r"ANR in (.+?)(?:\s+\(|$)", "ANR in {}", "ANR detected"),
    ),
    AnomalyRule(
        LogcatAnomalyType.FATAL_EXCEPTION,
        Severity.CRITICAL,
        _match_fatal_exception,
        _summary(r"FATAL EXCEPTION:\s*(.+)", "Fatal Exception: {}", "Fatal Exception"),
    ),
    AnomalyRule(
        LogcatAnomalyType.NATIVE_CRASH,
        Severity.CRITICAL,
        _match_native_crash,
        lambda _e: "Native crash detected",
    ),
    AnomalyRule(
        LogcatAnomalyType.SYSTEM_SERVER_CRASH,
        Severity.CRITICAL,
        _match_system_server_crash,
        lambda _e: "System server crash",
    ),
    AnomalyRule(
        LogcatAnomalyType.OOM,
        Severity.CRITICAL,
        _match_oom,
        _summary(r"kill.*?(\S+).*?adj\s*(\d+)", "OOM kill: {} (adj={})", "Out of memory event"),
    ),
    AnomalyRule(
        LogcatAnomalyType.WATCHDOG,
        Severity.CRITICAL,
        _match_watchdog,
        _summary(r"Blocked in (.+)", "Watchdog: blocked in {}", "Watchdog triggered"),
    ),
    AnomalyRule(
        LogcatAnomalyType.BINDER_TIMEOUT,
        Severity.WARNING,
        _match_binder_timeout,
        lambda _e: "Binder transaction timeout",
    ),
    AnomalyRule(
        LogcatAnomalyType.SLOW_OPERATION,
        Severity.WARNING,
        _match_slow_operation,
        _summary(r"Slow (\w+)", "Slow operation: {}", "Slow operation detected"),
    ),
    AnomalyRule(
        LogcatAnomalyType.STRICT_MODE,
        Severity.INFO,
        _match_strict_mode,
        _summary(
            r"policy=(\d+)\s+violation=(\d+)",
            "StrictMode violation (policy={}, violation={})",
            "StrictMode violation",
        ),
    ),
    AnomalyRule(
        LogcatAnomalyType.INPUT_DISPATCHING_TIMEOUT,
        Severity.CRITICAL,
        _match_input_dispatching_timeout,
        _summary(
            r"timed out.*?(\S+/\S+)",
            "Input dispatching timeout: {}",
            "Input dispatching timeout",
        ),
    ),
    AnomalyRule(
        LogcatAnomalyType.HAL_SERVICE_DEATH,
        Severity.WARNING,
        _match_hal_service_death,
        _summarize_hal_death,
    ),
)


# ---------------------------------------------------------------------------
# Parsing


def _parse_line(line_no: int, line: str) -> LogEntry | None:
    m = _UID_LINE_RE.match(line)
    if m:
        ts, _uid, pid, tid, level, tag, msg = m.groups()
    else:
        m = _LINE_RE.match(line)
        if not m:
            return None
        ts, pid, tid, level, tag, msg = m.groups()
    return LogEntry(
        timestamp=ts,
        pid=int(pid),
        tid=int(tid),
        level=level,
        tag=tag.strip(),
        message=msg,
        raw=line,
        line_number=line_no,
    )


def parse_logcat(content: str) -> LogcatParseResult:
    """Parse logcat text into entries, anomalies and tag statistics.

    Never raises: unrecognized lines only increment ``parse_errors``.
    """
    lines = content.split("\n")
    entries: list[LogEntry] = []
    parse_errors = 0

    for i, line in enumerate(lines, start=1):
        if not line.strip():
            continue

        entry = _parse_line(i, line)
        if entry is not None:
            entries.append(entry)
            continue

        if entries and (line.startswith("\t") or line.startswith("  ")):
            prev = entries[-1]
            entries[-1] = replace(
                prev, message=f"{prev.message}\n{line}", raw=f"{prev.raw}\n{line}"
            )
        else:
            parse_errors += 1

    anomalies = detect_anomalies(entries)
    tag_stats = compute_tag_stats(entries)
    logger.debug(
        "Parsed logcat: %d lines, %d entries, %d anomalies, %d errors",
        len(lines),
        len(entries),
        len(anomalies),
        parse_errors,
    )

    return LogcatParseResult(
        entries=tuple(entries),
        anomalies=tuple(anomalies),
        total_lines=len(lines),
        parsed_lines=len(entries),
        parse_errors=parse_errors,
        tag_stats=tuple(tag_stats),
    )


def _related_entries(entries: Sequence[LogEntry], idx: int, window: int) -> list[LogEntry]:
    """Entries within +/-window of idx that share the target's pid."""
    target = entries[idx]
    start = max(0, idx - window)
    end = min(len(entries), idx + window + 1)
    return [e for e in entries[start:end] if e.pid == target.pid or e is target]


_PROC_ANR_RE = re.compile(r"ANR in (\S+)")
_PROC_RE = re.compile(r"Process:\s*(\S+)")


def _process_name(entry: LogEntry) -> str | None:
    m = _PROC_ANR_RE.search(entry.message) or _PROC_RE.search(entry.message)
    return m.group(1) if m else None


def detect_anomalies(entries: Sequence[LogEntry]) -> list[LogcatAnomaly]:
    """Run the ordered rule table over entries and deduplicate bursts."""
    found: list[LogcatAnomaly] = []
    for idx, entry in enumerate(entries):
        for rule in ANOMALY_RULES:
            if not rule.match(entry):
                continue
            found.append(
                LogcatAnomaly(
                    type=rule.type,
                    severity=rule.severity,
                    timestamp=entry.timestamp,
                    entries=tuple(_related_entries(entries, idx, CONTEXT_WINDOW)),
                    summary=rule.summarize(entry),
                    process_name=_process_name(entry),
                    pid=entry.pid,
                )
            )
            break
    return _deduplicate(found)


def _timestamp_seconds(ts: str) -> float | None:
    """Seconds for an `MM-DD HH:MM:SS.mmm` stamp (fixed year 2000), None if invalid."""
    m = _TS_RE.search(ts)
    if not m:
        return None
    mo, d, h, mi, s, ms = (int(g) for g in m.groups())
    try:
        return (datetime(2000, mo, d, h, mi, s, ms * 1000) - _EPOCH).total_seconds()
    except ValueError:
        return None


def timestamps_within(ts1: str, ts2: str, seconds: float) -> bool:
    t1 = _timestamp_seconds(ts1)
    t2 = _timestamp_seconds(ts2)
    if t1 is None or t2 is None:
        return False
    return abs(t1 - t2) <= seconds


def _deduplicate(anomalies: list[LogcatAnomaly]) -> list[LogcatAnomaly]:
    """Merge consecutive anomalies of one type+pid that start within a second."""
    if len(anomalies) <= 1:
        return anomalies

    out: list[LogcatAnomaly] = [anomalies[0]]
    for curr in anomalies[1:]:
        prev = out[-1]
        if (
            curr.type == prev.type
            and curr.pid == prev.pid
            and timestamps_within(prev.timestamp, curr.timestamp, DEDUP_WINDOW_SECONDS)
        ):
            out[-1] = replace(prev, entries=prev.entries + curr.entries)
            continue
        out.append(curr)
    return out


def compute_tag_stats(entries: Sequence[LogEntry], *, top: int = TOP_TAG_COUNT) -> list[TagStat]:
    """Count E/F entries per tag, most frequent first."""
    counts = Counter(e.tag for e in entries if e.level in ("E", "F"))
    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)[:top]
    return [TagStat(tag=tag, count=n, classification=classify_tag(tag)) for tag, n in ranked]
