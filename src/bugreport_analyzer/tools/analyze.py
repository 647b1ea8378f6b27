"""MCP tool implementations.

This module contains the *implementation* behind the exposed MCP tools.
Keep this layer thin: validate inputs, translate them into core calls, and
return JSON-serializable data structures.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any

import aiofiles

from bugreport_analyzer.core.analysis.insights import anr_insights, finalize_insights
from bugreport_analyzer.core.cache import AnalysisCache, default_cache
from bugreport_analyzer.core.models import AnalysisResult, Severity
from bugreport_analyzer.core.parsers import parse_anr_trace, parse_tombstone
from bugreport_analyzer.core.pipeline import MODES, analyze_bugreport
from bugreport_analyzer.core.serialization import to_jsonable

HARD_LIMIT = 500
TEXT_ENCODING = "utf-8"
TEXT_ERRORS = "replace"


def _parse_severity(severity: str | None) -> Severity | None:
    """Parse a user-supplied severity name."""
    if severity is None or not severity.strip():
        return None
    try:
        return Severity(severity.strip().lower())
    except ValueError as e:
        valid = ", ".join(s.value for s in Severity)
        raise ValueError(f"Unknown severity '{severity}'. Valid values: {valid}.") from e


def _resolve_limit(limit: int | None) -> int:
    if limit is None:
        return HARD_LIMIT
    if limit <= 0:
        raise ValueError("limit must be > 0")
    return min(limit, HARD_LIMIT)


def _without_entries(result: AnalysisResult) -> AnalysisResult:
    """Drop the full parsed logcat/kernel line lists; anomalies keep their own lines."""
    return replace(
        result,
        logcat_result=replace(result.logcat_result, entries=()),
        kernel_result=replace(result.kernel_result, entries=()),
    )


def _input_path(path: str) -> Path:
    p = Path(path).expanduser()
    if not p.is_file():
        raise FileNotFoundError(f"File not found: {p}")
    return p


async def _read_text(path: Path) -> str:
    async with aiofiles.open(path, encoding=TEXT_ENCODING, errors=TEXT_ERRORS) as f:
        return await f.read()


async def analyze_bugreport_impl(
    *,
    path: str,
    mode: str = "quick",
    description: str | None = None,
    include_entries: bool = False,
    cache: AnalysisCache | None = None,
    max_workers: int | None = None,
) -> dict[str, Any]:
    """Implementation for the `analyze_bugreport` MCP tool."""
    mode = (mode or "quick").strip().lower()
    if mode not in MODES:
        raise ValueError(f"Unknown mode '{mode}'. Valid values: {', '.join(MODES)}.")

    run = await analyze_bugreport(
        _input_path(path),
        mode=mode,
        description=description,
        cache=cache,
        max_workers=max_workers,
    )
    result = run.result if include_entries else _without_entries(run.result)

    out: dict[str, Any] = {
        "analysis_id": run.analysis_id,
        "mode": run.mode,
        "cached": run.cached,
        "result": to_jsonable(result),
    }
    if run.deep_analysis_error is not None:
        out["deep_analysis_error"] = (
            f"Deep analysis failed: {run.deep_analysis_error}. Quick analysis results are still available."
        )
    return out


def get_analysis_impl(
    *,
    analysis_id: str,
    severity: str | None = None,
    limit: int | None = None,
    cache: AnalysisCache | None = None,
) -> dict[str, Any]:
    """Implementation for the `get_analysis` MCP tool.

    Returns the health score and insight cards of a cached analysis, optionally
    filtered to one severity.
    """
    if cache is None:
        cache = default_cache()
    result = cache.get(analysis_id)
    if result is None:
        raise ValueError(
            f"Unknown analysis id '{analysis_id}'. Run analyze_bugreport first "
            "(results expire after BUGREPORT_CACHE_TTL_SECONDS)."
        )

    wanted = _parse_severity(severity)
    cards = [c for c in result.insights if wanted is None or c.severity == wanted]
    cards = cards[: _resolve_limit(limit)]

    out: dict[str, Any] = {
        "analysis_id": analysis_id,
        "metadata": to_jsonable(result.metadata),
        "health_score": to_jsonable(result.health_score),
        "count": len(cards),
        "insights": to_jsonable(cards),
    }
    if result.deep_analysis_overview is not None:
        out["deep_analysis_overview"] = to_jsonable(result.deep_analysis_overview)
    return out


async def analyze_anr_trace_impl(*, path: str) -> dict[str, Any]:
    """Implementation for the `analyze_anr_trace` MCP tool (a single traces file)."""
    p = _input_path(path)
    analysis = parse_anr_trace(await _read_text(p))
    cards = finalize_insights(anr_insights(analysis))
    return {
        "path": str(p),
        "analysis": to_jsonable(analysis),
        "insights": to_jsonable(cards),
    }


async def analyze_tombstone_impl(*, path: str) -> dict[str, Any]:
    """Implementation for the `analyze_tombstone` MCP tool (a single text tombstone)."""
    p = _input_path(path)
    analysis = parse_tombstone(await _read_text(p), file_name=p.name)
    return {
        "path": str(p),
        "analysis": to_jsonable(analysis),
    }
