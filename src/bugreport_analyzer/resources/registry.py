"""MCP resource registry.

Resources are addressable by URI and can be fetched by the MCP client on demand.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import aiofiles
from mcp.server.fastmcp import FastMCP

from bugreport_analyzer.core.analysis import BLOCK_REASON_LABELS, DEBUG_COMMANDS
from bugreport_analyzer.core.cache import default_cache
from bugreport_analyzer.core.deep_analysis import DeepAnalysisResponse
from bugreport_analyzer.core.serialization import to_jsonable

ALLOWED_FILE_SUFFIXES = {".log", ".txt"}
BASE_DIR_ENV = "BUGREPORT_BASE_DIR"
TEXT_ENCODING = "utf-8"
TEXT_ERRORS = "replace"


def _base_dir() -> Path:
    """Return the resolved base directory for file resources."""
    raw = os.getenv(BASE_DIR_ENV, os.getcwd())
    return Path(raw).resolve()


def _safe_resolve(path: str) -> Path:
    """Resolve a path under the configured base directory."""
    base = _base_dir()
    p = Path(path).expanduser()
    if not p.is_absolute():
        p = base / p
    p = p.resolve()
    if base not in p.parents and p != base:
        raise ValueError("Path escapes base dir")
    return p


def _resolve_resource_path(path: str) -> Path:
    """Resolve and validate a resource file path."""
    resolved = _safe_resolve(path)
    if not resolved.is_file():
        raise FileNotFoundError(f"File not found: {resolved}")
    if resolved.suffix.lower() not in ALLOWED_FILE_SUFFIXES:
        allowed = ", ".join(sorted(ALLOWED_FILE_SUFFIXES))
        raise ValueError(f"File type not allowed. Allowed: {allowed}.")
    return resolved


def cached_analysis(analysis_id: str) -> dict[str, Any]:
    result = default_cache().get(analysis_id)
    if result is None:
        raise ValueError(f"Unknown analysis id '{analysis_id}'")
    return to_jsonable(result)


def register_resources(mcp: FastMCP) -> None:
    """Register resource handlers on the MCP server."""

    @mcp.resource("app://bugreport-analyzer/help")
    def help_resource() -> str:
        """Return a short list of available resource URIs."""
        allowed = ", ".join(sorted(ALLOWED_FILE_SUFFIXES))
        base = _base_dir()
        return (
            "Resources:\n"
            "- app://bugreport-analyzer/help\n"
            "- app://bugreport-analyzer/catalog/block-reasons\n"
            "- app://bugreport-analyzer/catalog/debug-commands\n"
            "- app://bugreport-analyzer/schemas/deep-analysis-response\n"
            "- analysis://{analysis_id} (cached result of analyze_bugreport)\n"
            f"- file://{{path}} (restricted to {BASE_DIR_ENV}; allowed: {allowed})\n"
            f"\nBase directory: {base}\n"
        )

    @mcp.resource("app://bugreport-analyzer/catalog/block-reasons")
    def block_reasons() -> dict[str, str]:
        """Return the ANR block reasons and their display labels."""
        return {reason.value: label for reason, label in BLOCK_REASON_LABELS.items()}

    @mcp.resource("app://bugreport-analyzer/catalog/debug-commands")
    def debug_commands() -> dict[str, list[str]]:
        """Return the adb follow-up commands suggested per finding type."""
        return {kind: list(cmds) for kind, cmds in DEBUG_COMMANDS.items()}

    @mcp.resource("app://bugreport-analyzer/schemas/deep-analysis-response")
    def deep_analysis_schema() -> dict[str, Any]:
        """Return the JSON schema for deep analysis responses."""
        return DeepAnalysisResponse.model_json_schema()

    @mcp.resource("analysis://{analysis_id}")
    def analysis_result(analysis_id: str) -> dict[str, Any]:
        """Return a cached analysis result."""
        return cached_analysis(analysis_id)

    @mcp.resource("file://{path}")
    async def read_file(path: str) -> str:
        """Read a text file from within BUGREPORT_BASE_DIR."""
        p = _resolve_resource_path(path)
        async with aiofiles.open(p, encoding=TEXT_ENCODING, errors=TEXT_ERRORS) as f:
            return await f.read()
