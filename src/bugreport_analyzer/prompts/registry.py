"""MCP prompt registry.

Prompts are predefined conversation/workflow templates that the client can invoke explicitly.
"""

from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP

_SYSTEM = (
    "You are a senior Android platform engineer triaging bugreports. "
    "Provide concise, evidence-based conclusions from the analysis tools. "
    "Do not invent details; if the evidence is insufficient, say so."
)


def register_prompts(mcp: FastMCP) -> None:
    """Register prompt templates on the MCP server."""

    @mcp.prompt()
    def triage_bugreport(
        path: str,
        deep: bool = False,
        description: str = "",
    ) -> list[dict[str, Any]]:
        """Build a prompt for structured bugreport triage."""
        call_lines = [f"- path: {path}", f"- mode: {'deep' if deep else 'quick'}"]
        if description:
            call_lines.append(f"- description: {description}")
        call_block = "\n".join(call_lines)
        return [
            {"role": "system", "content": _SYSTEM},
            {
                "role": "user",
                "content": (
                    "Triage the bugreport using analyze_bugreport. Follow this workflow:\n"
                    "- Call analyze_bugreport first with the parameters below.\n"
                    "- Start from the health score breakdown and the critical insights.\n"
                    "- For ANR insights, use the blocked thread, block reason, blocking chain "
                    "and binder target from result.anrAnalyses.\n"
                    "- Use get_analysis with the returned analysis_id to narrow to one "
                    "severity instead of re-running the analysis.\n"
                    "- Use only tool output for evidence; do not fabricate log lines.\n\n"
                    "Call analyze_bugreport with:\n"
                    f"{call_block}\n\n"
                    "Return this structure:\n"
                    "1) Device and health summary (1-2 lines)\n"
                    "2) Top issues (up to 5, most severe first, with insight ids)\n"
                    "3) Evidence (quoted log lines, stack frames or kernel lines)\n"
                    "4) Suspected root cause (say 'Unknown' if unclear)\n"
                    "5) Next actions (adb commands from the insights' debugCommands)\n"
                ),
            },
        ]

    @mcp.prompt()
    def explain_anr(path: str) -> list[dict[str, Any]]:
        """Build a prompt that explains one ANR traces file."""
        return [
            {"role": "system", "content": _SYSTEM},
            {
                "role": "user",
                "content": (
                    f"Call analyze_anr_trace with path={path}.\n"
                    "Explain the ANR:\n"
                    "- Which thread is blocked (main thread or the one named in the subject) and why "
                    "(block reason and confidence)\n"
                    "- The blocking chain and any deadlock cycle, with lock addresses\n"
                    "- The binder target or suspected binder targets, and whether the binder pool "
                    "is exhausted\n"
                    "- The most likely fix and how to confirm it\n"
                ),
            },
        ]
