from __future__ import annotations

import zipfile
from collections.abc import Callable
from pathlib import Path

import pytest

from bugreport_analyzer.core.unpacker import (
    BugreportFormatError,
    extract_metadata,
    is_anr_trace_file,
    is_main_bugreport_file,
    is_tombstone_file,
    split_sections,
    unpack_bugreport,
    unpack_bugreport_async,
    unpack_bytes,
    unpack_text,
)

from samples import DEADLOCK_TRACE, LOGCAT, SYSTEM_PROPERTIES, bugreport_text


def test_split_sections() -> None:
    sections = split_sections(bugreport_text())

    assert [s.name for s in sections] == [
        "SYSTEM PROPERTIES",
        "KERNEL LOG",
        "DUMPSYS MEMINFO",
        "CPU INFO",
        "HARDWARE HALS",
        "SYSTEM LOG",
    ]
    props = sections[0]
    assert props.command == "getprop"
    assert props.content == SYSTEM_PROPERTIES
    assert props.start_line == 3
    assert sections[-1].content.startswith(LOGCAT)


def test_split_sections_without_headers() -> None:
    assert split_sections("just some text\nno sections") == []


def test_extract_metadata() -> None:
    meta = extract_metadata(bugreport_text())

    assert meta.android_version == "14"
    assert meta.sdk_level == 34
    assert meta.device_model == "Pixel 6 Pro"
    assert meta.manufacturer == "Google"
    assert meta.kernel_version == "5.10.157-android13"
    assert meta.bugreport_timestamp == "2024-01-15 10:35:00"


def test_extract_metadata_defaults_to_unknown() -> None:
    meta = extract_metadata("")

    assert meta.android_version == "unknown"
    assert meta.sdk_level == 0
    assert meta.kernel_version == "unknown"


@pytest.mark.parametrize(
    ("name", "main", "anr", "tombstone"),
    [
        ("bugreport-raven-AP1A-2024-01-15.txt", True, False, False),
        ("bugreport-mini-2024.txt", False, False, False),
        ("dumpstate_log.txt", False, False, False),
        ("FS/data/anr/anr_2024-01-15-10-30-45-123", False, True, False),
        ("FS/data/tombstones/tombstone_00", False, False, True),
    ],
)
def test_file_classification(name: str, main: bool, anr: bool, tombstone: bool) -> None:
    assert is_main_bugreport_file(name) is main
    assert is_anr_trace_file(name) is anr
    assert is_tombstone_file(name) is tombstone


def test_unpack_zip(tmp_path: Path, write_bugreport_zip: Callable[[Path], Path]) -> None:
    path = write_bugreport_zip(tmp_path / "br.zip")

    result = unpack_bugreport(path)

    assert result.main_file_name.startswith("bugreport-raven")
    assert list(result.anr_trace_contents.values()) == [DEADLOCK_TRACE]
    assert set(result.tombstone_contents) == {
        "FS/data/tombstones/tombstone_00",
        "FS/data/tombstones/tombstone_00.pb",
    }
    assert "version.txt" in result.file_names
    assert result.metadata.device_model == "Pixel 6 Pro"
    assert len(result.logcat_sections) == 1
    assert result.find_section(name="CPU INFO") is not None
    assert result.find_section(command="lshal") is not None
    assert result.find_section(name="NOPE") is None


@pytest.mark.asyncio
async def test_unpack_async_matches_sync(tmp_path: Path, write_bugreport_zip: Callable[[Path], Path]) -> None:
    path = write_bugreport_zip(tmp_path / "br.zip")

    result = await unpack_bugreport_async(path)

    assert result == unpack_bugreport(path)


def test_bare_text_bugreport(tmp_path: Path, write_text: Callable[[Path, str], Path]) -> None:
    path = write_text(tmp_path / "bugreport-raven.txt", bugreport_text())

    result = unpack_bugreport(path)

    assert result.main_file_name == "bugreport-raven.txt"
    assert result.anr_trace_contents == {}
    assert result.metadata.android_version == "14"


def test_unpack_text_directly() -> None:
    result = unpack_text(bugreport_text())

    assert result.main_file_name == "bugreport.txt"
    assert len(result.sections) == 6


def test_not_a_zip() -> None:
    with pytest.raises(BugreportFormatError, match="not a ZIP archive"):
        unpack_bytes(b"definitely not a zip", source="x.zip")


def test_zip_without_main_text(tmp_path: Path) -> None:
    path = tmp_path / "empty.zip"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("version.txt", "2.0")

    with pytest.raises(BugreportFormatError, match="No main bugreport text file"):
        unpack_bugreport(path)


def test_format_error_is_value_error() -> None:
    assert issubclass(BugreportFormatError, ValueError)


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="Bugreport not found"):
        unpack_bugreport(tmp_path / "missing.zip")


@pytest.mark.asyncio
async def test_missing_file_async(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="Bugreport not found"):
        await unpack_bugreport_async(tmp_path / "missing.zip")
