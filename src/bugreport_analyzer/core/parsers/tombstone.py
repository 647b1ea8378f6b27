"""Native crash (tombstone) parser."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from ..models import BacktraceFrame, TombstoneAnalysis, TombstoneParseResult

logger = logging.getLogger(__name__)

SIGNAL_NAMES: dict[int, str] = {
    4: "SIGILL",
    5: "SIGTRAP",
    6: "SIGABRT",
    7: "SIGBUS",
    8: "SIGFPE",
    11: "SIGSEGV",
}

_FINGERPRINT_RE = re.compile(r"^Build fingerprint:\s*'(.+)'", re.MULTILINE)
_ABI_RE = re.compile(r"^ABI:\s*'(\w+)'", re.MULTILINE)
_TIMESTAMP_RE = re.compile(r"^Timestamp:\s*(.+)", re.MULTILINE)
_PID_TID_RE = re.compile(
    r"^pid:\s*(\d+),\s*tid:\s*(\d+),\s*name:\s*(\S+)\s*>>>\s*(.+?)\s*<<<", re.MULTILINE
)
_SIGNAL_RE = re.compile(
    r"^signal\s+(\d+)\s*\((\w+)\),\s*code\s+[-\d]+\s*\(([^)]*)\)"
    r"(?:,\s*fault addr\s+(0x[0-9a-fA-F]+|0x0+))?",
    re.MULTILINE,
)
_ABORT_RE = re.compile(r"^Abort message:\s*'(.+)'", re.MULTILINE)

# "#00 pc 000000000004793e  /system/lib64/libc.so (abort+164) (BuildId: 0a1b...)"
_FRAME_RE = re.compile(
    r"^\s*#(\d+)\s+pc\s+([0-9a-fA-F]+)\s+(\S+)(?:\s+\(([^)]+)\))?"
    r"(?:\s+\(BuildId:\s*([0-9a-fA-F]+)\))?"
)
_FUNC_OFFSET_RE = re.compile(r"^(.+)\+(\d+)$")

# "    x0  0000007b574c7000  x1  0000000000000080"
_REGISTER_LINE_RE = re.compile(
    r"^\s+((?:[xr]\d+|[a-z]{2,3})\s+[0-9a-fA-F]+(?:\s+(?:[xr]\d+|[a-z]{2,3})\s+[0-9a-fA-F]+)*)\s*$"
)
_REGISTER_PAIR_RE = re.compile(r"([xr]\d+|[a-z]{2,3})\s+([0-9a-fA-F]+)")
_REGISTER_QUICK_RE = re.compile(r"^\s+(?:[xr]\d+|lr|sp|pc|pst)\s+[0-9a-fA-F]{8,}")
_REGISTERS_HEADER_RE = re.compile(r"^registers?:", re.IGNORECASE)
_VENDOR_BINARY_RE = re.compile(r"^/(?:vendor|odm)/")


def _parse_frame(line: str) -> BacktraceFrame | None:
    m = _FRAME_RE.match(line)
    if not m:
        return None

    number, pc, binary, func_part, build_id = m.groups()
    function: str | None = None
    offset: int | None = None
    if func_part:
        fo = _FUNC_OFFSET_RE.match(func_part)
        if fo:
            function, offset = fo.group(1), int(fo.group(2))
        else:
            function = func_part

    return BacktraceFrame(
        frame_number=int(number),
        pc=pc,
        binary=binary,
        function=function,
        offset=offset,
        build_id=build_id,
        raw=line.strip(),
    )


@dataclass(slots=True)
class _BodyState:
    """Accumulates backtrace frames and registers while scanning the body."""

    backtrace: list[BacktraceFrame] = field(default_factory=list)
    registers: dict[str, str] = field(default_factory=dict)
    in_backtrace: bool = False
    in_registers: bool = False

    def feed(self, line: str) -> None:
        stripped = line.strip()

        if stripped == "backtrace:":
            self.in_backtrace, self.in_registers = True, False
            return
        if _REGISTERS_HEADER_RE.match(stripped):
            self.in_backtrace, self.in_registers = False, True
            return

        if stripped == "" or (stripped.endswith(":") and not stripped.startswith("#")):
            if self.in_backtrace and self.backtrace:
                self.in_backtrace = False
            if self.in_registers and self.registers:
                self.in_registers = False

        frame = _parse_frame(line)
        if frame is not None:
            self.backtrace.append(frame)
            self.in_backtrace = True

        if self.in_registers or (not self.in_backtrace and _REGISTER_QUICK_RE.match(line)):
            reg_line = _REGISTER_LINE_RE.match(line)
            if reg_line:
                for name, value in _REGISTER_PAIR_RE.findall(reg_line.group(1)):
                    self.registers[name] = value


def _summary(
    process_name: str,
    signal_name: str,
    signal_code: str | None,
    crashed_in: str | None,
    abort_message: str | None,
) -> str:
    binary_short = crashed_in.rsplit("/", 1)[-1] if crashed_in else "unknown"
    if signal_name == "SIGABRT" and abort_message:
        msg = abort_message if len(abort_message) <= 80 else abort_message[:80] + "..."
        return f"Native crash (SIGABRT) in {process_name}: {msg}"
    code = f" ({signal_code})" if signal_code else ""
    return f"Native crash ({signal_name}{code}) in {process_name} at {binary_short}"


def parse_tombstone(content: str, file_name: str = "") -> TombstoneAnalysis:
    """Parse one text tombstone. Missing fields fall back to zero/unknown values."""
    pid = tid = signal = 0
    process_name = "unknown"
    thread_name = signal_code = fault_addr = None
    signal_name = "UNKNOWN"

    fingerprint = _FINGERPRINT_RE.search(content)
    abi = _ABI_RE.search(content)
    timestamp = _TIMESTAMP_RE.search(content)
    abort = _ABORT_RE.search(content)

    m = _PID_TID_RE.search(content)
    if m:
        pid, tid = int(m.group(1)), int(m.group(2))
        thread_name, process_name = m.group(3), m.group(4)

    m = _SIGNAL_RE.search(content)
    if m:
        signal = int(m.group(1))
        signal_name = m.group(2)
        if signal_name not in SIGNAL_NAMES.values():
            signal_name = SIGNAL_NAMES.get(signal, "UNKNOWN")
        signal_code = m.group(3) or None
        fault_addr = m.group(4) or None

    state = _BodyState()
    for line in content.split("\n"):
        state.feed(line)

    crashed_in = state.backtrace[0].binary if state.backtrace else None
    abort_message = abort.group(1) if abort else None

    return TombstoneAnalysis(
        file_name=file_name,
        pid=pid,
        tid=tid,
        process_name=process_name,
        thread_name=thread_name,
        signal=signal,
        signal_name=signal_name,
        signal_code=signal_code,
        fault_addr=fault_addr,
        abi=abi.group(1) if abi else None,
        build_fingerprint=fingerprint.group(1) if fingerprint else None,
        timestamp=timestamp.group(1).strip() if timestamp else None,
        backtrace=tuple(state.backtrace),
        crashed_in_binary=crashed_in,
        is_vendor_crash=bool(crashed_in and _VENDOR_BINARY_RE.match(crashed_in)),
        abort_message=abort_message,
        registers=dict(state.registers) or None,
        summary=_summary(process_name, signal_name, signal_code, crashed_in, abort_message),
    )


def parse_tombstones(contents: Mapping[str, str]) -> TombstoneParseResult:
    """Parse a set of tombstone files, skipping protobuf, blank and unparseable ones."""
    analyses: list[TombstoneAnalysis] = []
    total = 0

    for file_name, content in contents.items():
        total += 1
        if file_name.endswith(".pb"):
            continue
        if not content or not content.strip():
            continue

        try:
            analysis = parse_tombstone(content, file_name)
        except Exception as exc:
            logger.warning("Skipping unparseable tombstone %s: %s", file_name, exc)
            continue

        if analysis.signal > 0 or analysis.backtrace:
            analyses.append(analysis)

    logger.debug("Parsed %d/%d tombstones", len(analyses), total)
    return TombstoneParseResult(analyses=tuple(analyses), total_files=total)
