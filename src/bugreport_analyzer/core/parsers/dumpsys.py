"""Parsers for `dumpsys meminfo`, `dumpsys cpuinfo` and `lshal` output."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from functools import cmp_to_key

from ..models import (
    CpuInfoProcess,
    CpuInfoSummary,
    HALFamily,
    HALService,
    HalStatus,
    HALStatusSummary,
    MemInfoProcess,
    MemInfoSummary,
)

logger = logging.getLogger(__name__)

TOP_PROCESS_COUNT = 10


def _kb(value: str) -> int:
    """Parse a comma-grouped KB value such as ``5,832,568``."""
    try:
        return int(value.replace(",", ""))
    except ValueError:
        return 0


# ---------------------------------------------------------------------------
# meminfo

_TOTAL_RAM_RE = re.compile(r"Total\s+RAM:\s*([\d,]+)K", re.IGNORECASE)
_FREE_RAM_RE = re.compile(r"Free\s+RAM:\s*([\d,]+)K", re.IGNORECASE)
_USED_RAM_RE = re.compile(r"Used\s+RAM:\s*([\d,]+)K", re.IGNORECASE)
_PSS_BLOCK_RE = re.compile(
    r"Total PSS by process:\s*\n([\s\S]*?)(?:\n\s*\n|\nTotal PSS by (?:OOM|category))",
    re.IGNORECASE,
)
# "    312,456K: com.android.systemui (pid 1234 / activities)"
_PSS_LINE_RE = re.compile(r"^\s*([\d,]+)K:\s*(.+?)\s*\(pid\s+(\d+)")


def parse_meminfo(content: str) -> MemInfoSummary:
    """Extract RAM totals and the top PSS consumers from `dumpsys meminfo`."""
    if not content:
        return MemInfoSummary()

    def _ram(regex: re.Pattern[str]) -> int:
        m = regex.search(content)
        return _kb(m.group(1)) if m else 0

    processes: list[MemInfoProcess] = []
    block = _PSS_BLOCK_RE.search(content)
    if block:
        for line in block.group(1).split("\n"):
            m = _PSS_LINE_RE.match(line)
            if m:
                processes.append(
                    MemInfoProcess(
                        pid=int(m.group(3)),
                        process_name=m.group(2).strip(),
                        total_pss_kb=_kb(m.group(1)),
                    )
                )

    # dumpsys already orders this block by PSS descending.
    return MemInfoSummary(
        total_ram_kb=_ram(_TOTAL_RAM_RE),
        free_ram_kb=_ram(_FREE_RAM_RE),
        used_ram_kb=_ram(_USED_RAM_RE),
        top_processes=tuple(processes[:TOP_PROCESS_COUNT]),
    )


# ---------------------------------------------------------------------------
# cpuinfo

# "34% TOTAL: 18% user + 12% kernel + 2.1% iowait + 0.3% irq"
_CPU_TOTAL_RE = re.compile(
    r"([\d.]+)%\s+TOTAL:\s*([\d.]+)%\s+user\s*\+\s*([\d.]+)%\s+kernel"
    r"(?:\s*\+\s*([\d.]+)%\s+iowait)?",
    re.IGNORECASE,
)
# "18% 1234/system_server: 12% user + 6% kernel"
_CPU_PROC_RE = re.compile(
    r"^\s*([\d.]+)%\s+(\d+)/([^:]+):\s*([\d.]+)%\s+user\s*\+\s*([\d.]+)%\s+kernel",
    re.MULTILINE,
)


def _pct(value: str | None) -> float:
    if not value:
        return 0.0
    try:
        return float(value)
    except ValueError:
        return 0.0


def parse_cpuinfo(content: str) -> CpuInfoSummary:
    """Extract the TOTAL line and the busiest processes from `dumpsys cpuinfo`."""
    if not content:
        return CpuInfoSummary()

    total = user = kernel = iowait = 0.0
    m = _CPU_TOTAL_RE.search(content)
    if m:
        total, user, kernel, iowait = (_pct(g) for g in m.groups())

    processes = [
        CpuInfoProcess(
            pid=int(pm.group(2)),
            process_name=pm.group(3).strip(),
            cpu_percent=_pct(pm.group(1)),
        )
        for pm in _CPU_PROC_RE.finditer(content)
    ]
    processes.sort(key=lambda p: p.cpu_percent, reverse=True)

    return CpuInfoSummary(
        total_cpu_percent=total,
        user_percent=user,
        kernel_percent=kernel,
        io_wait_percent=iowait,
        top_processes=tuple(processes[:TOP_PROCESS_COUNT]),
    )


# ---------------------------------------------------------------------------
# lshal

_TRUNCATED_RES = (
    re.compile(r"failed:\s*exit code", re.IGNORECASE),
    re.compile(r"was the duration of", re.IGNORECASE),
)
_SPACE_ROW_RE = re.compile(r"^(\S+@\S+::\S+)\s+(\w+)\s*(.*)")
_VERSION_RE = re.compile(r"@([\d.]+)")

# Chipset-vendor namespaces shipped in the BSP rather than by the device maker.
KNOWN_BSP_PREFIXES = (
    "qti",
    "qualcomm",
    "qcom",
    "display",
    "mediatek",
    "mtk",
    "sprd",
    "samsung",
    "google",
    "nxp",
)

_STATUS_PRIORITY = {
    HalStatus.ALIVE: 2,
    HalStatus.NON_RESPONSIVE: 1,
    HalStatus.DECLARED: 0,
}


def infer_hal_status(text: str) -> HalStatus:
    """Infer a service's status from an lshal row (keywords, then PID column)."""
    lower = text.lower()
    if re.search(r"\bnon-responsive\b", lower):
        return HalStatus.NON_RESPONSIVE
    if re.search(r"\bdeclared\b", lower):
        return HalStatus.DECLARED
    if re.search(r"\balive\b", lower):
        return HalStatus.ALIVE
    if re.search(r"\|\s*N/A\s*\|", text) or re.search(r"\bN/A\b", text):
        return HalStatus.DECLARED
    return HalStatus.ALIVE


def _iter_services(content: str) -> Iterator[HALService]:
    for line in content.split("\n"):
        row = line.strip()
        if not row or row.startswith("VINTF") or row.startswith("Interface"):
            continue

        if "|" in row:
            parts = [p.strip() for p in row.split("|")]
            if len(parts) < 3:
                continue
            interface_name = transport = ""
            for i, part in enumerate(parts):
                if "::" in part or "@" in part:
                    interface_name = part
                    if i + 1 < len(parts):
                        transport = parts[i + 1].lower()
                    break
            if not interface_name:
                continue
            yield HALService(
                interface_name=interface_name,
                transport=transport or "unknown",
                status=infer_hal_status(row),
                is_vendor=interface_name.startswith("vendor."),
            )
            continue

        m = _SPACE_ROW_RE.match(row)
        if m:
            interface_name, transport, rest = m.groups()
            yield HALService(
                interface_name=interface_name,
                transport=transport.lower(),
                status=infer_hal_status(rest or row),
                is_vendor=interface_name.startswith("vendor."),
            )


def compare_versions(a: str, b: str) -> int:
    """Numeric dotted-version comparison: negative, zero or positive."""

    def _parts(v: str) -> list[int]:
        out = []
        for p in v.split("."):
            try:
                out.append(int(p))
            except ValueError:
                out.append(0)
        return out

    pa, pb = _parts(a), _parts(b)
    for i in range(max(len(pa), len(pb))):
        na = pa[i] if i < len(pa) else 0
        nb = pb[i] if i < len(pb) else 0
        if na != nb:
            return na - nb
    return 0


def classify_oem(family_name: str, is_vendor: bool, manufacturer: str | None = None) -> bool:
    """True when a vendor HAL family belongs to the device maker rather than the BSP."""
    if not is_vendor:
        return False

    namespace = family_name.removeprefix("vendor.").split("::")[0]
    segments = [s for s in namespace.lower().split(".") if s]

    if manufacturer:
        mfg = manufacturer.lower()
        if any(mfg in seg or seg in mfg for seg in segments):
            return True

    return not any(bsp in seg for seg in segments for bsp in KNOWN_BSP_PREFIXES)


@dataclass(slots=True)
class _FamilyBuilder:
    versions: dict[str, HALService] = field(default_factory=dict)

    def add(self, version: str, svc: HALService) -> None:
        existing = self.versions.get(version)
        if existing is None or _STATUS_PRIORITY[svc.status] > _STATUS_PRIORITY[existing.status]:
            self.versions[version] = svc


def group_hal_families(
    services: list[HALService], manufacturer: str | None = None
) -> list[HALFamily]:
    """Group services by interface family, reporting each by its highest version."""
    builders: dict[str, _FamilyBuilder] = {}
    for svc in services:
        before_instance = svc.interface_name.split("/")[0]
        family_key = _VERSION_RE.sub("", before_instance, count=1)
        vm = _VERSION_RE.search(before_instance)
        version = vm.group(1) if vm else "0"
        builders.setdefault(family_key, _FamilyBuilder()).add(version, svc)

    families: list[HALFamily] = []
    for family_key, builder in builders.items():
        highest_version = max(builder.versions, key=cmp_to_key(compare_versions))
        highest = builder.versions[highest_version]

        before_colons = family_key.split("::")[0]
        short_name = before_colons.split(".")[-1] or before_colons

        families.append(
            HALFamily(
                family_name=family_key,
                short_name=short_name,
                highest_version=highest_version,
                highest_status=highest.status,
                is_vendor=highest.is_vendor,
                is_oem=classify_oem(family_key, highest.is_vendor, manufacturer),
                version_count=len(builder.versions),
            )
        )
    return families


def parse_lshal(content: str, manufacturer: str | None = None) -> HALStatusSummary:
    """Parse `lshal` output into per-service counts and version-aware families."""
    if not content:
        return HALStatusSummary()

    truncated = any(r.search(content) for r in _TRUNCATED_RES)
    services = list(_iter_services(content))

    non_responsive = [s for s in services if s.status == HalStatus.NON_RESPONSIVE]
    declared = [s for s in services if s.status == HalStatus.DECLARED]
    families = group_hal_families(services, manufacturer)
    vendor_issues = sum(
        1
        for f in families
        if f.is_vendor and f.highest_status in (HalStatus.NON_RESPONSIVE, HalStatus.DECLARED)
    )

    logger.debug(
        "Parsed lshal: %d services, %d families, truncated=%s",
        len(services),
        len(families),
        truncated,
    )
    return HALStatusSummary(
        total_services=len(services),
        alive_count=sum(1 for s in services if s.status == HalStatus.ALIVE),
        non_responsive_count=len(non_responsive),
        declared_count=len(declared),
        non_responsive_services=tuple(non_responsive),
        declared_services=tuple(declared),
        families=tuple(families),
        vendor_issue_count=vendor_issues,
        truncated=truncated,
    )
