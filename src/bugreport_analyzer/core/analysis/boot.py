"""Boot completion, boot reason and system_server restart detection."""

from __future__ import annotations

import re

from ..models import BootStatusSummary, KernelParseResult, LogcatParseResult

_PROP_BOOT_COMPLETED_RE = re.compile(r"^\[sys\.boot_completed\]:\s*\[(\d+)\]", re.MULTILINE)
_PROP_BOOT_REASON_RES = (
    re.compile(r"^\[sys\.boot\.reason\.last\]:\s*\[([^\]]*)\]", re.MULTILINE),
    re.compile(r"^\[sys\.boot\.reason\]:\s*\[([^\]]*)\]", re.MULTILINE),
    re.compile(r"^\[ro\.boot\.bootreason\]:\s*\[([^\]]*)\]", re.MULTILINE),
)
_BOOT_COMPLETED_MARKER_RE = re.compile(r"sys\.boot_completed\s*=\s*1")
_LOGCAT_BOOT_REASON_RE = re.compile(r"sys\.boot\.reason(?:\.last)?\s*=\s*([\w,.-]+)")
_KERNEL_BOOT_REASON_RE = re.compile(r"androidboot\.bootreason=([\w,.-]+)")
_ZYGOTE_SPAWN_RE = re.compile(r"System server process \d+ has been created")

# Substrings of boot reasons that point at an unplanned reset.
ABNORMAL_BOOT_MARKERS = (
    "panic",
    "watchdog",
    "wdog",
    "wdt",
    "hw_reset",
    "thermal",
    "crash",
    "oom",
    "abnormal",
    "security_violation",
)


def is_abnormal_boot_reason(reason: str | None) -> bool:
    if not reason:
        return False
    lower = reason.lower()
    return any(marker in lower for marker in ABNORMAL_BOOT_MARKERS)


def _prop_boot_reason(system_properties: str) -> str | None:
    for regex in _PROP_BOOT_REASON_RES:
        m = regex.search(system_properties)
        if m and m.group(1).strip():
            return m.group(1).strip()
    return None


def resolve_boot_status(
    system_properties: str | None,
    logcat_result: LogcatParseResult,
    kernel_result: KernelParseResult,
) -> BootStatusSummary:
    """Resolve boot state from system properties, then logcat, then kernel markers."""
    boot_completed: bool | None = None
    boot_reason: str | None = None

    if system_properties:
        m = _PROP_BOOT_COMPLETED_RE.search(system_properties)
        if m:
            boot_completed = m.group(1) == "1"
        boot_reason = _prop_boot_reason(system_properties)

    restarts = 0
    for entry in logcat_result.entries:
        if boot_completed is None and _BOOT_COMPLETED_MARKER_RE.search(entry.message):
            boot_completed = True
        if boot_reason is None:
            m = _LOGCAT_BOOT_REASON_RE.search(entry.message)
            if m:
                boot_reason = m.group(1)
        if _ZYGOTE_SPAWN_RE.search(entry.message):
            restarts += 1

    for entry in kernel_result.entries:
        if boot_completed is None and _BOOT_COMPLETED_MARKER_RE.search(entry.message):
            boot_completed = True
        if boot_reason is None:
            m = _KERNEL_BOOT_REASON_RE.search(entry.message)
            if m:
                boot_reason = m.group(1)
        if boot_completed is not None and boot_reason is not None:
            break

    uptime = kernel_result.entries[-1].timestamp if kernel_result.entries else None

    return BootStatusSummary(
        boot_completed=bool(boot_completed),
        system_server_restarts=max(0, restarts - 1),
        boot_reason=boot_reason,
        uptime_seconds=uptime,
    )
