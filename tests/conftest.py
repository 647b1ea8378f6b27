from __future__ import annotations

import zipfile
from collections.abc import Callable
from pathlib import Path

import pytest
from samples import DEADLOCK_TRACE, VENDOR_TOMBSTONE, bugreport_text


@pytest.fixture
def write_bugreport_zip() -> Callable[[Path], Path]:
    def _write(path: Path) -> Path:
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr("bugreport-raven-AP1A.240305.019-2024-01-15-10-35-00.txt", bugreport_text())
            zf.writestr("FS/data/anr/anr_2024-01-15-10-30-45-123", DEADLOCK_TRACE)
            zf.writestr("FS/data/tombstones/tombstone_00", VENDOR_TOMBSTONE)
            zf.writestr("FS/data/tombstones/tombstone_00.pb", b"\x08\x01\x12\x00")
            zf.writestr("version.txt", "2.0")
        return path

    return _write


@pytest.fixture
def write_text() -> Callable[[Path, str], Path]:
    def _write(path: Path, content: str) -> Path:
        path.write_text(content, encoding="utf-8")
        return path

    return _write
