"""Format-specific parsers for the sections of an Android bugreport.

Each entry point is total: malformed input degrades to empty results.
"""

from __future__ import annotations

from .anr import classify_main_thread_block, parse_anr_trace, parse_anr_traces
from .binder import extract_binder_target
from .dumpsys import parse_cpuinfo, parse_lshal, parse_meminfo
from .kernel import generate_selinux_allow_rule, parse_kernel_log
from .logcat import classify_tag, compute_tag_stats, parse_logcat
from .tombstone import parse_tombstone, parse_tombstones

__all__ = [
    "classify_main_thread_block",
    "classify_tag",
    "compute_tag_stats",
    "extract_binder_target",
    "generate_selinux_allow_rule",
    "parse_anr_trace",
    "parse_anr_traces",
    "parse_cpuinfo",
    "parse_kernel_log",
    "parse_logcat",
    "parse_lshal",
    "parse_meminfo",
    "parse_tombstone",
    "parse_tombstones",
]
