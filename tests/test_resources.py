from __future__ import annotations

from pathlib import Path

import pytest

from bugreport_analyzer.core.cache import default_cache, reset_default_cache
from bugreport_analyzer.core.pipeline import analyze_unpacked
from bugreport_analyzer.core.unpacker import unpack_text
from bugreport_analyzer.resources.registry import _resolve_resource_path, cached_analysis

from samples import LOGCAT_ANR_LINE


def test_resolve_resource_path_inside_base_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BUGREPORT_BASE_DIR", str(tmp_path))
    (tmp_path / "bugreport.txt").write_text("x", encoding="utf-8")

    assert _resolve_resource_path("bugreport.txt") == (tmp_path / "bugreport.txt").resolve()


def test_resolve_resource_path_rejects_escape_and_suffix(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    base = tmp_path / "base"
    base.mkdir()
    (tmp_path / "outside.txt").write_text("x", encoding="utf-8")
    (base / "dump.bin").write_bytes(b"\x00")
    monkeypatch.setenv("BUGREPORT_BASE_DIR", str(base))

    with pytest.raises(ValueError, match="escapes base dir"):
        _resolve_resource_path("../outside.txt")
    with pytest.raises(ValueError, match="File type not allowed"):
        _resolve_resource_path("dump.bin")
    with pytest.raises(FileNotFoundError, match="File not found"):
        _resolve_resource_path("missing.txt")


def test_cached_analysis() -> None:
    reset_default_cache()
    try:
        result = analyze_unpacked(
            unpack_text(f"------ SYSTEM LOG (logcat -v threadtime -d *:v) ------\n{LOGCAT_ANR_LINE}\n"),
            max_workers=1,
        )
        default_cache().set("0123456789abcdef", result)

        out = cached_analysis("0123456789abcdef")

        assert out["healthScore"]["overall"] == 95
        with pytest.raises(ValueError, match="Unknown analysis id"):
            cached_analysis("ffffffffffffffff")
    finally:
        reset_default_cache()
