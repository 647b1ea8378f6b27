"""End-to-end analysis: unpack, parse in parallel, aggregate, optionally enrich.

Entry points:
- analyze_unpacked: synchronous quick analysis of an UnpackResult
- analyze_bugreport: async, cache-aware analysis of a bugreport path
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiofiles

from .analysis import AnalyzerInput, analyze_basic
from .cache import AnalysisCache, analysis_id_for, default_cache
from .deep_analysis import DeepAnalysisConfig, resolve_deep_analysis_config, run_deep_analysis
from .models import AnalysisResult, BugreportSection, KernelParseResult
from .parsers import (
    parse_anr_traces,
    parse_cpuinfo,
    parse_kernel_log,
    parse_logcat,
    parse_lshal,
    parse_meminfo,
    parse_tombstones,
)
from .unpacker import UnpackResult, unpack_bugreport_async

logger = logging.getLogger(__name__)

MODES = ("quick", "deep")

_DUMPSYS_NAME_RE = re.compile(r"^DUMPSYS", re.IGNORECASE)
_MEMINFO_RE = re.compile(r"Total RAM:", re.IGNORECASE)
_CPUINFO_RE = re.compile(r"TOTAL:.*user.*kernel", re.IGNORECASE)
_ID_HEAD_BYTES = 1 << 20


@dataclass(frozen=True, slots=True)
class BugreportAnalysis:
    """One analysis run: the result, its cache id and how it was produced."""

    analysis_id: str
    result: AnalysisResult
    mode: str = "quick"
    cached: bool = False
    deep_analysis_error: str | None = None


def _resolve_max_workers(max_workers: int | None) -> int:
    if max_workers is not None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        return max_workers

    env = os.getenv("BUGREPORT_MAX_WORKERS")
    if env:
        try:
            value = int(env)
        except ValueError as exc:
            raise ValueError("BUGREPORT_MAX_WORKERS must be an integer") from exc
        if value < 1:
            raise ValueError("BUGREPORT_MAX_WORKERS must be >= 1")
        return value

    cpu_count = os.cpu_count() or 1
    return min(8, cpu_count)


def _dumpsys_section(unpacked: UnpackResult, command: str, marker: re.Pattern[str]) -> BugreportSection | None:
    # Dedicated section first, then any DUMPSYS section that carries the report.
    found = unpacked.find_section(command=command)
    if found is not None:
        return found
    return next(
        (s for s in unpacked.sections if _DUMPSYS_NAME_RE.match(s.name) and marker.search(s.content)),
        None,
    )


def _section_text(section: BugreportSection | None) -> str | None:
    return section.content if section is not None else None


def analyze_unpacked(unpacked: UnpackResult, *, max_workers: int | None = None) -> AnalysisResult:
    """Run every parser over an unpacked bugreport, then aggregate."""
    workers = _resolve_max_workers(max_workers)

    kernel_text = _section_text(unpacked.find_section(name="KERNEL LOG", command="dmesg"))
    meminfo_text = _section_text(_dumpsys_section(unpacked, "dumpsys meminfo", _MEMINFO_RE))
    cpuinfo_text = _section_text(_dumpsys_section(unpacked, "dumpsys cpuinfo", _CPUINFO_RE))
    lshal_text = _section_text(unpacked.find_section(name="HARDWARE HALS", command="lshal"))
    sysprops_text = _section_text(unpacked.find_section(name="SYSTEM PROPERTIES", command="getprop"))

    manufacturer = unpacked.metadata.manufacturer
    if manufacturer == "unknown":
        manufacturer = None

    jobs: dict[str, tuple[Callable[..., Any], tuple[Any, ...]]] = {
        "logcat": (parse_logcat, ("\n".join(unpacked.logcat_sections),)),
        "anr": (parse_anr_traces, (unpacked.anr_trace_contents,)),
        "tombstones": (parse_tombstones, (unpacked.tombstone_contents,)),
    }
    if kernel_text is not None:
        jobs["kernel"] = (parse_kernel_log, (kernel_text,))
    if meminfo_text is not None:
        jobs["meminfo"] = (parse_meminfo, (meminfo_text,))
    if cpuinfo_text is not None:
        jobs["cpuinfo"] = (parse_cpuinfo, (cpuinfo_text,))
    if lshal_text is not None:
        jobs["lshal"] = (parse_lshal, (lshal_text, manufacturer))

    logger.info("Parsing %s with %d worker(s): %s", unpacked.main_file_name, workers, ", ".join(jobs))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {name: executor.submit(fn, *args) for name, (fn, args) in jobs.items()}
        # Joined by name, so completion order never leaks into the result.
        parsed = {name: fut.result() for name, fut in futures.items()}

    data = AnalyzerInput(
        metadata=unpacked.metadata,
        logcat_result=parsed["logcat"],
        kernel_result=parsed.get("kernel", KernelParseResult()),
        anr_analyses=tuple(parsed["anr"]),
        mem_info=parsed.get("meminfo"),
        cpu_info=parsed.get("cpuinfo"),
        hal_status=parsed.get("lshal"),
        tombstone_analyses=parsed["tombstones"].analyses,
        system_properties=sysprops_text,
    )
    result = analyze_basic(data)
    logger.info(
        "Quick analysis of %s: %d insights, health %d",
        unpacked.main_file_name,
        len(result.insights),
        result.health_score.overall,
    )
    return result


async def compute_analysis_id(path: str | Path) -> str:
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Bugreport not found: {path}")
    async with aiofiles.open(path, "rb") as f:
        head = await f.read(_ID_HEAD_BYTES)
    return analysis_id_for(path, head, path.stat().st_size)


def _has_deep_analysis(result: AnalysisResult) -> bool:
    return result.deep_analysis_overview is not None or any(
        card.deep_analysis is not None for card in result.insights
    )


async def analyze_bugreport(
    path: str | Path,
    *,
    mode: str = "quick",
    description: str | None = None,
    cache: AnalysisCache | None = None,
    max_workers: int | None = None,
    deep_cfg: DeepAnalysisConfig | None = None,
) -> BugreportAnalysis:
    """Analyze a bugreport archive, reusing a cached result for the same file."""
    if mode not in MODES:
        raise ValueError(f"mode must be one of {', '.join(MODES)}")
    if cache is None:
        cache = default_cache()

    analysis_id = await compute_analysis_id(path)
    result = cache.get(analysis_id)
    cached = result is not None
    if result is None:
        unpacked = await unpack_bugreport_async(path)
        result = await asyncio.to_thread(analyze_unpacked, unpacked, max_workers=max_workers)
        cache.set(analysis_id, result)
    else:
        logger.info("Using cached analysis %s", analysis_id)

    deep_error: str | None = None
    if mode == "deep" and not _has_deep_analysis(result):
        cfg = resolve_deep_analysis_config(deep_cfg)
        try:
            result = await asyncio.to_thread(run_deep_analysis, result, description=description, cfg=cfg)
        except (RuntimeError, ValueError) as exc:
            deep_error = str(exc)
            logger.error("Deep analysis failed for %s: %s", analysis_id, exc)
        else:
            cache.set(analysis_id, result)

    return BugreportAnalysis(
        analysis_id=analysis_id,
        result=result,
        mode=mode,
        cached=cached,
        deep_analysis_error=deep_error,
    )
