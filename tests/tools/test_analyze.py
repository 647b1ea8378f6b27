from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import pytest

from bugreport_analyzer.core.cache import AnalysisCache
from bugreport_analyzer.tools.analyze import (
    analyze_anr_trace_impl,
    analyze_bugreport_impl,
    analyze_tombstone_impl,
    get_analysis_impl,
)

from samples import DEADLOCK_TRACE, VENDOR_TOMBSTONE


@pytest.mark.asyncio
async def test_analyze_bugreport_impl_returns_camel_case_result(
    tmp_path: Path, write_bugreport_zip: Callable[[Path], Path]
) -> None:
    path = write_bugreport_zip(tmp_path / "br.zip")
    cache = AnalysisCache()

    out = await analyze_bugreport_impl(path=str(path), cache=cache, max_workers=1)

    assert out["mode"] == "quick"
    assert out["cached"] is False
    assert "deep_analysis_error" not in out
    result = out["result"]
    assert result["healthScore"]["overall"] == 65
    assert result["metadata"]["deviceModel"] == "Pixel 6 Pro"
    assert result["insights"][0]["id"] == "insight-1"
    assert result["logcatResult"]["entries"] == []
    assert result["kernelResult"]["entries"] == []
    assert result["anrAnalyses"][0]["lockGraph"]["edges"][0].keys() >= {"from", "to"}
    json.dumps(out)


@pytest.mark.asyncio
async def test_analyze_bugreport_impl_include_entries(
    tmp_path: Path, write_bugreport_zip: Callable[[Path], Path]
) -> None:
    path = write_bugreport_zip(tmp_path / "br.zip")

    out = await analyze_bugreport_impl(path=str(path), include_entries=True, cache=AnalysisCache(), max_workers=1)

    assert len(out["result"]["kernelResult"]["entries"]) == 5
    assert out["result"]["logcatResult"]["entries"]


@pytest.mark.asyncio
async def test_analyze_bugreport_impl_deep_error_is_reported(
    tmp_path: Path, write_bugreport_zip: Callable[[Path], Path], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    path = write_bugreport_zip(tmp_path / "br.zip")

    out = await analyze_bugreport_impl(path=str(path), mode="DEEP", cache=AnalysisCache(), max_workers=1)

    assert out["mode"] == "deep"
    assert out["deep_analysis_error"].startswith("Deep analysis failed:")
    assert out["deep_analysis_error"].endswith("Quick analysis results are still available.")
    assert out["result"]["insights"]


@pytest.mark.asyncio
async def test_analyze_bugreport_impl_validates_input(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Unknown mode"):
        await analyze_bugreport_impl(path=str(tmp_path / "br.zip"), mode="slow", cache=AnalysisCache())

    with pytest.raises(FileNotFoundError, match="File not found"):
        await analyze_bugreport_impl(path=str(tmp_path / "missing.zip"), cache=AnalysisCache())


@pytest.mark.asyncio
async def test_get_analysis_impl_filters_cached_insights(
    tmp_path: Path, write_bugreport_zip: Callable[[Path], Path]
) -> None:
    path = write_bugreport_zip(tmp_path / "br.zip")
    cache = AnalysisCache()
    run = await analyze_bugreport_impl(path=str(path), cache=cache, max_workers=1)

    out = get_analysis_impl(analysis_id=run["analysis_id"], severity="Warning", cache=cache)

    assert out["analysis_id"] == run["analysis_id"]
    assert out["health_score"]["overall"] == 65
    assert out["metadata"]["androidVersion"] == "14"
    assert out["count"] == 2
    assert {c["severity"] for c in out["insights"]} == {"warning"}

    limited = get_analysis_impl(analysis_id=run["analysis_id"], limit=3, cache=cache)
    assert [c["id"] for c in limited["insights"]] == ["insight-1", "insight-2", "insight-3"]


def test_get_analysis_impl_errors() -> None:
    cache = AnalysisCache()

    with pytest.raises(ValueError, match="Unknown analysis id"):
        get_analysis_impl(analysis_id="deadbeefdeadbeef", cache=cache)


@pytest.mark.asyncio
async def test_get_analysis_impl_rejects_bad_filters(
    tmp_path: Path, write_bugreport_zip: Callable[[Path], Path]
) -> None:
    cache = AnalysisCache()
    run = await analyze_bugreport_impl(path=str(write_bugreport_zip(tmp_path / "br.zip")), cache=cache)

    with pytest.raises(ValueError, match="Unknown severity"):
        get_analysis_impl(analysis_id=run["analysis_id"], severity="fatal", cache=cache)
    with pytest.raises(ValueError, match="limit must be > 0"):
        get_analysis_impl(analysis_id=run["analysis_id"], limit=0, cache=cache)


@pytest.mark.asyncio
async def test_analyze_anr_trace_impl(tmp_path: Path, write_text: Callable[[Path, str], Path]) -> None:
    path = write_text(tmp_path / "anr_1", DEADLOCK_TRACE)

    out = await analyze_anr_trace_impl(path=str(path))

    assert out["path"] == str(path)
    assert out["analysis"]["processName"] == "com.example.app"
    assert out["analysis"]["mainThread"]["blockReason"] == "deadlock"
    assert [c["id"] for c in out["insights"]] == ["insight-1", "insight-2"]
    assert out["insights"][1]["title"] == "Deadlock: 2 threads in circular wait"


@pytest.mark.asyncio
async def test_analyze_tombstone_impl(tmp_path: Path, write_text: Callable[[Path, str], Path]) -> None:
    path = write_text(tmp_path / "tombstone_07", VENDOR_TOMBSTONE)

    out = await analyze_tombstone_impl(path=str(path))

    analysis = out["analysis"]
    assert analysis["fileName"] == "tombstone_07"
    assert analysis["signalName"] == "SIGSEGV"
    assert analysis["isVendorCrash"] is True
    assert analysis["backtrace"][0]["buildId"] == "0a1b2c3d4e5f"


@pytest.mark.asyncio
async def test_single_file_tools_require_existing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="File not found"):
        await analyze_anr_trace_impl(path=str(tmp_path / "nope"))
    with pytest.raises(FileNotFoundError, match="File not found"):
        await analyze_tombstone_impl(path=str(tmp_path / "nope"))
