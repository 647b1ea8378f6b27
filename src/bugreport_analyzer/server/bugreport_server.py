"""MCP server entrypoint (stdio transport).

This module wires together:
- Tools: analyze a bugreport, fetch a cached analysis, analyze a single ANR trace or tombstone
- Resources: catalogues, the deep analysis schema and cached results by URI
- Prompts: triage workflows that clients can invoke

Run locally (stdio):
    python -m bugreport_analyzer.server.bugreport_server
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Sequence
from typing import Any

from mcp.server.fastmcp import FastMCP

from bugreport_analyzer.prompts.registry import register_prompts
from bugreport_analyzer.resources.registry import register_resources
from bugreport_analyzer.tools.analyze import (
    analyze_anr_trace_impl,
    analyze_bugreport_impl,
    analyze_tombstone_impl,
    get_analysis_impl,
)

LOGGER = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure logging to stderr; stdout carries the MCP transport."""
    level_name = os.getenv("BUGREPORT_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


mcp = FastMCP("bugreport-analyzer", json_response=True)

register_resources(mcp)
register_prompts(mcp)


@mcp.tool()
async def analyze_bugreport(
    path: str,
    mode: str = "quick",
    description: str | None = None,
    include_entries: bool = False,
) -> dict[str, Any]:
    """Analyze an Android bugreport archive.

    Parameters
    ----------
    path:
        Path to a local bugreport .zip (or an extracted bugreport-*.txt).
    mode:
        "quick" for the rule-based analysis only, "deep" to also ask Gemini for
        root causes (needs GEMINI_API_KEY and the `ai` extra).
    description:
        Optional description of the user's problem, passed to deep analysis.
    include_entries:
        Include every parsed logcat and kernel line in the result (large).

    Returns
    -------
    dict:
        {"analysis_id": str, "mode": str, "cached": bool, "result": dict}
        plus "deep_analysis_error" when deep analysis failed.
    """
    return await analyze_bugreport_impl(
        path=path,
        mode=mode,
        description=description,
        include_entries=include_entries,
    )


@mcp.tool()
def get_analysis(
    analysis_id: str,
    severity: str | None = None,
    limit: int | None = None,
) -> dict[str, Any]:
    """Return the health score and insights of a cached analysis.

    severity filters to one of critical, warning, info; limit caps the insight count.
    """
    return get_analysis_impl(analysis_id=analysis_id, severity=severity, limit=limit)


@mcp.tool()
async def analyze_anr_trace(path: str) -> dict[str, Any]:
    """Analyze a single ANR traces file (e.g. data/anr/anr_2024-01-01-00-00-00-000)."""
    return await analyze_anr_trace_impl(path=path)


@mcp.tool()
async def analyze_tombstone(path: str) -> dict[str, Any]:
    """Analyze a single text tombstone (e.g. data/tombstones/tombstone_00)."""
    return await analyze_tombstone_impl(path=path)


def main(argv: Sequence[str] | None = None) -> None:
    """Start the MCP server over stdio."""
    _configure_logging()
    LOGGER.debug("Starting MCP server (transport=stdio)")
    _ = argv or sys.argv[1:]
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
