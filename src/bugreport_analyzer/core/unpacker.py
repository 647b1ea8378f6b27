"""Bugreport archive unpacking: main text sections, metadata and attachments."""

from __future__ import annotations

import asyncio
import io
import logging
import re
import zipfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import aiofiles

from .models import BugreportMetadata, BugreportSection

logger = logging.getLogger(__name__)

_SECTION_HEADER_RE = re.compile(r"^------\s+(.+?)\s+\((.+?)\)\s+------$")
_MAIN_FILE_RE = re.compile(r"^bugreport.*\.txt$")
_ANR_FILE_RES = (re.compile(r"(?:FS/)?data/anr/", re.IGNORECASE), re.compile(r"anr_\d+"))
_TOMBSTONE_FILE_RE = re.compile(r"(?:FS/)?data/tombstones/", re.IGNORECASE)

_PROP_RES = {
    "android_version": re.compile(r"\[ro\.build\.version\.release\]:\s*\[(.+?)\]"),
    "sdk_level": re.compile(r"\[ro\.build\.version\.sdk\]:\s*\[(\d+)\]"),
    "build_fingerprint": re.compile(r"\[ro\.build\.fingerprint\]:\s*\[(.+?)\]"),
    "device_model": re.compile(r"\[ro\.product\.model\]:\s*\[(.+?)\]"),
    "manufacturer": re.compile(r"\[ro\.product\.manufacturer\]:\s*\[(.+?)\]"),
    "build_date": re.compile(r"\[ro\.build\.date\]:\s*\[(.+?)\]"),
}
_KERNEL_VERSION_RE = re.compile(r"Linux version\s+(\S+)")
_DUMPSTATE_TS_RE = re.compile(r"^==\s+dumpstate:\s+(\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2})", re.MULTILINE)

LOGCAT_SECTION_KEYWORDS = ("SYSTEM LOG", "EVENT LOG", "MAIN LOG", "CRASH LOG", "RADIO LOG", "LOGCAT")


class BugreportFormatError(ValueError):
    """The input is not a usable bugreport (not a ZIP, or no main text entry)."""


@dataclass(frozen=True, slots=True)
class UnpackResult:
    metadata: BugreportMetadata
    sections: tuple[BugreportSection, ...]
    logcat_sections: tuple[str, ...]
    main_file_name: str
    anr_trace_contents: dict[str, str] = field(default_factory=dict)
    tombstone_contents: dict[str, str] = field(default_factory=dict)
    file_names: tuple[str, ...] = ()

    def find_section(self, name: str | None = None, command: str | None = None) -> BugreportSection | None:
        """First section whose name equals `name` or whose command contains `command`."""
        for s in self.sections:
            if name is not None and s.name == name:
                return s
            if command is not None and command in s.command:
                return s
        return None


def is_main_bugreport_file(file_name: str) -> bool:
    base = file_name.rsplit("/", 1)[-1]
    return bool(_MAIN_FILE_RE.match(base)) and "mini" not in base


def is_anr_trace_file(file_name: str) -> bool:
    return any(r.search(file_name) for r in _ANR_FILE_RES)


def is_tombstone_file(file_name: str) -> bool:
    return bool(_TOMBSTONE_FILE_RE.search(file_name))


def split_sections(content: str) -> list[BugreportSection]:
    """Split the main text on `------ NAME (command) ------` header lines."""
    lines = content.split("\n")
    sections: list[BugreportSection] = []
    name = command = None
    start = 0
    body: list[str] = []

    for i, line in enumerate(lines):
        m = _SECTION_HEADER_RE.match(line)
        if not m:
            if name is not None:
                body.append(line)
            continue
        if name is not None:
            sections.append(BugreportSection(name, command, "\n".join(body), start, i - 1))
        name, command = m.group(1), m.group(2)
        start = i
        body = []

    if name is not None:
        sections.append(BugreportSection(name, command, "\n".join(body), start, len(lines) - 1))
    return sections


def _first(text: str, regex: re.Pattern[str]) -> str | None:
    m = regex.search(text)
    return m.group(1) if m else None


def extract_metadata(content: str, sections: Sequence[BugreportSection] | None = None) -> BugreportMetadata:
    """Device/build facts from getprop lines, the kernel banner and the dumpstate header."""
    if sections is None:
        sections = split_sections(content)

    props = next((s for s in sections if s.name == "SYSTEM PROPERTIES" or "getprop" in s.command), None)
    props_text = props.content if props is not None else content
    kernel = next((s for s in sections if s.name == "KERNEL LOG" or "dmesg" in s.command), None)
    kernel_text = kernel.content if kernel is not None else content

    values = {key: _first(props_text, regex) for key, regex in _PROP_RES.items()}
    sdk = values.pop("sdk_level")

    return BugreportMetadata(
        android_version=values["android_version"] or "unknown",
        sdk_level=int(sdk) if sdk else 0,
        build_fingerprint=values["build_fingerprint"] or "unknown",
        device_model=values["device_model"] or "unknown",
        manufacturer=values["manufacturer"] or "unknown",
        build_date=values["build_date"] or "unknown",
        bugreport_timestamp=_first(content, _DUMPSTATE_TS_RE) or "unknown",
        kernel_version=_first(kernel_text, _KERNEL_VERSION_RE) or "unknown",
    )


def logcat_sections(sections: Sequence[BugreportSection]) -> list[str]:
    return [
        s.content
        for s in sections
        if any(kw in s.name.upper() for kw in LOGCAT_SECTION_KEYWORDS) or "logcat" in s.command
    ]


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def unpack_text(content: str, *, file_name: str = "bugreport.txt") -> UnpackResult:
    """Build an UnpackResult from an already-extracted main bugreport text."""
    sections = split_sections(content)
    return UnpackResult(
        metadata=extract_metadata(content, sections),
        sections=tuple(sections),
        logcat_sections=tuple(logcat_sections(sections)),
        main_file_name=file_name,
        file_names=(file_name,),
    )


def unpack_bytes(data: bytes, *, source: str = "<bytes>") -> UnpackResult:
    """Unpack a bugreport ZIP held in memory."""
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise BugreportFormatError(f"{source} is not a ZIP archive") from exc

    main_name = ""
    main_text = ""
    anr: dict[str, str] = {}
    tombstones: dict[str, str] = {}
    names: list[str] = []

    with archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            name = info.filename
            names.append(name)

            wanted_main = is_main_bugreport_file(name)
            wanted_anr = is_anr_trace_file(name)
            wanted_tombstone = is_tombstone_file(name)
            if not (wanted_main or wanted_anr or wanted_tombstone):
                continue

            text = _decode(archive.read(info))
            if wanted_main:
                main_name, main_text = name, text
            if wanted_anr:
                anr[name] = text
            if wanted_tombstone:
                tombstones[name] = text

    if not main_text:
        raise BugreportFormatError(
            f"No main bugreport text file found in {source}. Files: {', '.join(names)}"
        )

    sections = split_sections(main_text)
    logger.debug(
        "Unpacked %s: main=%s sections=%d anr=%d tombstones=%d",
        source,
        main_name,
        len(sections),
        len(anr),
        len(tombstones),
    )
    return UnpackResult(
        metadata=extract_metadata(main_text, sections),
        sections=tuple(sections),
        logcat_sections=tuple(logcat_sections(sections)),
        main_file_name=main_name,
        anr_trace_contents=anr,
        tombstone_contents=tombstones,
        file_names=tuple(names),
    )


def _unpack_loaded(path: Path, data: bytes) -> UnpackResult:
    # A bare bugreport-*.txt is accepted as the main text without attachments.
    if not zipfile.is_zipfile(io.BytesIO(data)) and path.suffix.lower() == ".txt":
        return unpack_text(_decode(data), file_name=path.name)
    return unpack_bytes(data, source=str(path))


def unpack_bugreport(path: str | Path) -> UnpackResult:
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Bugreport not found: {path}")
    return _unpack_loaded(path, path.read_bytes())


async def unpack_bugreport_async(path: str | Path) -> UnpackResult:
    """Read the archive with aiofiles and unpack it off the event loop."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Bugreport not found: {path}")
    async with aiofiles.open(path, "rb") as f:
        data = await f.read()
    return await asyncio.to_thread(_unpack_loaded, path, data)
