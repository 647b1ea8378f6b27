"""Kernel log (dmesg) parser."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from ..models import KernelEvent, KernelEventType, KernelLogEntry, KernelParseResult, Severity

logger = logging.getLogger(__name__)

# <6>[  123.456789][  T123] message   (level and per-cpu/thread tag optional)
_DMESG_LINE_RE = re.compile(r"^(?:<(\d+)>)?\s*\[\s*(\d+\.\d+)\](?:\[[\s\w]+\])?\s+(.*)")


def parse_kernel_log(content: str) -> KernelParseResult:
    """Parse dmesg text into entries and detected events. Never raises."""
    lines = content.split("\n")
    entries: list[KernelLogEntry] = []

    for line in lines:
        if not line.strip():
            continue
        m = _DMESG_LINE_RE.match(line)
        if not m:
            continue
        level, ts, message = m.groups()
        entries.append(
            KernelLogEntry(
                timestamp=float(ts),
                level=f"<{level}>" if level else "",
                message=message,
                raw=line,
            )
        )

    events = detect_kernel_events(entries)
    logger.debug("Parsed kernel log: %d entries, %d events", len(entries), len(events))
    return KernelParseResult(entries=tuple(entries), events=tuple(events), total_lines=len(lines))


# ---------------------------------------------------------------------------
# Detail extractors


def _message_details(e: KernelLogEntry) -> dict[str, Any]:
    return {"message": e.message}


def _no_details(_e: KernelLogEntry) -> dict[str, Any]:
    return {}


_OOM_PID_RE = re.compile(r"process (\d+)")
_PAREN_RE = re.compile(r"\((.+?)\)")


def _oom_details(e: KernelLogEntry) -> dict[str, Any]:
    pid = _OOM_PID_RE.search(e.message)
    name = _PAREN_RE.search(e.message)
    return {
        "pid": int(pid.group(1)) if pid else 0,
        "process_name": name.group(1) if name else "unknown",
    }


_LMK_NAME_RE = re.compile(r"kill.*?'(.+?)'")


def _lmk_details(e: KernelLogEntry) -> dict[str, Any]:
    details: dict[str, Any] = {"message": e.message}
    m = _LMK_NAME_RE.search(e.message)
    if m:
        details["process_name"] = m.group(1)
    return details


_TEMP_RE = re.compile(r"(\d+)\s*(?:°?C|celsius|mC)", re.IGNORECASE)
_ZONE_RE = re.compile(r"(thermal_zone\d+|zone\d+)")


def _thermal_details(e: KernelLogEntry) -> dict[str, Any]:
    details: dict[str, Any] = {}
    m = _TEMP_RE.search(e.message)
    if m:
        details["temperature"] = int(m.group(1))
    zone = _ZONE_RE.search(e.message)
    if zone:
        details["zone"] = zone.group(1)
    return details


_SCONTEXT_RE = re.compile(r"scontext=(\S+)")
_TCONTEXT_RE = re.compile(r"tcontext=(\S+)")
_TCLASS_RE = re.compile(r"tclass=(\S+)")
_PERMISSION_RE = re.compile(r"denied\s+\{\s*([^}]+?)\s*\}")


def _selinux_details(e: KernelLogEntry) -> dict[str, Any]:
    details: dict[str, Any] = {}
    for key, regex in (
        ("scontext", _SCONTEXT_RE),
        ("tcontext", _TCONTEXT_RE),
        ("tclass", _TCLASS_RE),
        ("permission", _PERMISSION_RE),
    ):
        m = regex.search(e.message)
        if m:
            details[key] = m.group(1)
    return details


def _selinux_summary(e: KernelLogEntry) -> str:
    s = _SCONTEXT_RE.search(e.message)
    t = _TCONTEXT_RE.search(e.message)
    if s and t:
        return f"SELinux denial: {s.group(1)} → {t.group(1)}"
    return "SELinux denial"


def _prefixed(prefix: str) -> Callable[[KernelLogEntry], str]:
    return lambda e: f"{prefix}: {e.message[:100]}"


def _searched(pattern: str, template: str, fallback: str) -> Callable[[KernelLogEntry], str]:
    regex = re.compile(pattern)

    def _summarize(e: KernelLogEntry) -> str:
        m = regex.search(e.message)
        return template.format(*m.groups()) if m else fallback

    return _summarize


def _all(*patterns: str) -> Callable[[KernelLogEntry], bool]:
    """Predicate: every pattern matches the message (case-insensitive)."""
    compiled = [re.compile(p, re.IGNORECASE) for p in patterns]
    return lambda e: all(r.search(e.message) for r in compiled)


def _any(*patterns: str) -> Callable[[KernelLogEntry], bool]:
    compiled = [re.compile(p, re.IGNORECASE) for p in patterns]
    return lambda e: any(r.search(e.message) for r in compiled)


_KSWAPD_RE = re.compile(r"kswapd\d*")
_KSWAPD_STATE_RE = re.compile(r"running|active|wake", re.IGNORECASE)


def _match_kswapd(e: KernelLogEntry) -> bool:
    return bool(_KSWAPD_RE.search(e.message) and _KSWAPD_STATE_RE.search(e.message))


@dataclass(frozen=True, slots=True)
class KernelRule:
    type: KernelEventType
    severity: Severity
    match: Callable[[KernelLogEntry], bool]
    summarize: Callable[[KernelLogEntry], str]
    details: Callable[[KernelLogEntry], dict[str, Any]]


KERNEL_RULES: tuple[KernelRule, ...] = (
    KernelRule(
        KernelEventType.KERNEL_PANIC,
        Severity.CRITICAL,
        _any(r"Kernel panic"),
        _searched(r"Kernel panic - (.+)", "Kernel panic: {}", "Kernel panic"),
        _message_details,
    ),
    KernelRule(
        KernelEventType.OOM_KILL,
        Severity.CRITICAL,
        _any(r"Out of memory: Kill(ed)? process", r"oom-kill"),
        _searched(r"Kill(?:ed)? process (\d+) \((.+?)\)", "OOM killed: {1} (pid={0})", "OOM kill event"),
        _oom_details,
    ),
    KernelRule(
        KernelEventType.LOWMEMORY_KILLER,
        Severity.WARNING,
        _any(r"lowmemorykiller", r"lmkd"),
        _searched(r"kill.*?'(.+?)'", "LMK killed: {}", "Low memory killer event"),
        _lmk_details,
    ),
    KernelRule(
        KernelEventType.KSWAPD_ACTIVE,
        Severity.WARNING,
        _match_kswapd,
        lambda _e: "kswapd active (memory pressure)",
        _no_details,
    ),
    KernelRule(
        KernelEventType.DRIVER_ERROR,
        Severity.WARNING,
        _all(r"\berror\b", r"driver|firmware|hardware"),
        _prefixed("Driver error"),
        _message_details,
    ),
    KernelRule(
        KernelEventType.GPU_ERROR,
        Severity.WARNING,
        _all(r"gpu", r"fault|error|hang|timeout"),
        _prefixed("GPU error"),
        _message_details,
    ),
    KernelRule(
        KernelEventType.THERMAL_SHUTDOWN,
        Severity.CRITICAL,
        _all(r"thermal", r"shutdown|critical|emergency"),
        lambda _e: "Thermal shutdown triggered",
        _thermal_details,
    ),
    KernelRule(
        KernelEventType.THERMAL_THROTTLING,
        Severity.WARNING,
        _all(r"thermal|tsens|cpu_cooling", r"throttl"),
        lambda _e: "Thermal throttling activated",
        _thermal_details,
    ),
    KernelRule(
        KernelEventType.WATCHDOG_RESET,
        Severity.CRITICAL,
        _all(r"watchdog", r"reset|bark|bite|triggered|expired"),
        lambda _e: "Watchdog reset triggered",
        _message_details,
    ),
    KernelRule(
        KernelEventType.STORAGE_IO_ERROR,
        Severity.WARNING,
        _any(
            r"\bmmc\d*:.*\berror\b",
            r"EXT4-fs error",
            r"F2FS-fs.*\berror\b",
            r"blk_update_request: I/O error",
            r"Buffer I/O error",
            r"ufshcd.*\b(?:error|abort)\b",
        ),
        _prefixed("Storage I/O error"),
        _message_details,
    ),
    KernelRule(
        KernelEventType.SUSPEND_RESUME_ERROR,
        Severity.WARNING,
        _any(r"PM:.*\b(?:suspend|resume)\b.*\b(?:abort|fail|failed|error)\b", r"Freezing of tasks failed"),
        _prefixed("Suspend/resume error"),
        _message_details,
    ),
    KernelRule(
        KernelEventType.SELINUX_DENIAL,
        Severity.INFO,
        _any(r"avc:\s+denied", r"selinux"),
        _selinux_summary,
        _selinux_details,
    ),
)


def detect_kernel_events(entries: list[KernelLogEntry]) -> list[KernelEvent]:
    """Classify each entry by the first matching rule (one event per entry)."""
    events: list[KernelEvent] = []
    for entry in entries:
        for rule in KERNEL_RULES:
            if rule.match(entry):
                events.append(
                    KernelEvent(
                        type=rule.type,
                        severity=rule.severity,
                        timestamp=entry.timestamp,
                        entries=(entry,),
                        summary=rule.summarize(entry),
                        details=rule.details(entry),
                    )
                )
                break
    return events


def _selinux_type(context: str) -> str | None:
    """Third field of `user:role:type:level`, or None when malformed."""
    parts = context.split(":")
    if len(parts) < 3:
        return None
    return parts[2]


def generate_selinux_allow_rule(details: Mapping[str, Any]) -> str | None:
    """Build an `allow` rule suggestion from SELinux denial details."""
    scontext = details.get("scontext")
    tcontext = details.get("tcontext")
    permission = details.get("permission")
    if not scontext or not tcontext or not permission:
        return None

    stype = _selinux_type(str(scontext))
    ttype = _selinux_type(str(tcontext))
    if stype is None or ttype is None:
        return None

    tclass = details.get("tclass") or "file"
    return f"allow {stype} {ttype}:{tclass} {{ {permission} }};"
