from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from bugreport_analyzer.core.cache import AnalysisCache
from bugreport_analyzer.core.models import AnalysisResult, Severity
from bugreport_analyzer.core.pipeline import BugreportAnalysis, analyze_bugreport
from bugreport_analyzer.core.serialization import to_jsonable

TIMELINE_PREVIEW = 20


def _parse_severity(s: str) -> Severity:
    try:
        return Severity(s.strip().lower())
    except ValueError as e:
        raise argparse.ArgumentTypeError("Invalid severity. Allowed: critical, warning, info") from e


def _positive_int(s: str) -> int:
    try:
        value = int(s)
    except ValueError as e:
        raise argparse.ArgumentTypeError("must be an integer") from e
    if value < 1:
        raise argparse.ArgumentTypeError("must be >= 1")
    return value


def _configure_logging() -> None:
    level_name = os.getenv("BUGREPORT_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def format_report(result: AnalysisResult, *, severity: Severity | None = None) -> str:
    """Plain-text report: device, health score, insights and the start of the timeline."""
    md = result.metadata
    health = result.health_score
    b = health.breakdown
    lines = [
        f"Device: {md.device_model} ({md.manufacturer}), Android {md.android_version} (SDK {md.sdk_level})",
        f"Build: {md.build_fingerprint}",
        "",
        f"Health score: {health.overall}/100 "
        f"(stability {b.stability}, memory {b.memory}, responsiveness {b.responsiveness}, kernel {b.kernel})",
    ]
    if result.boot_status is not None:
        boot = result.boot_status
        state = "completed" if boot.boot_completed else "not completed"
        lines.append(
            f"Boot: {state}, reason {boot.boot_reason or 'unknown'}, "
            f"system_server restarts {boot.system_server_restarts}"
        )

    overview = result.deep_analysis_overview
    if overview is not None:
        lines += ["", "Summary:", f"  {overview.executive_summary}"]

    cards = [c for c in result.insights if severity is None or c.severity == severity]
    lines += ["", f"Insights ({len(cards)}):"]
    for c in cards:
        lines.append(f"  {c.id} [{c.severity.value.upper()}] [{c.source.value}] {c.title}")
        if c.deep_analysis is not None:
            lines.append(f"      root cause: {c.deep_analysis.root_cause}")

    if result.timeline:
        lines += ["", f"Timeline (first {min(TIMELINE_PREVIEW, len(result.timeline))} of {len(result.timeline)}):"]
        for e in result.timeline[:TIMELINE_PREVIEW]:
            count = f" x{e.count}" if e.count else ""
            lines.append(f"  {e.timestamp} [{e.severity.value}] {e.label}{count}")
    return "\n".join(lines)


def main() -> None:
    p = argparse.ArgumentParser(description="Analyze an Android bugreport (.zip or bugreport-*.txt).")
    p.add_argument("path")
    p.add_argument("--deep", action="store_true", help="Also run Gemini deep analysis (needs GEMINI_API_KEY)")
    p.add_argument("--description", default=None, help="Problem description passed to deep analysis")
    p.add_argument("--json", dest="as_json", action="store_true", help="Print the full result as JSON")
    p.add_argument("--severity", type=_parse_severity, default=None, help="Only list insights of this severity")
    p.add_argument("--max-workers", type=_positive_int, default=None, help="Parser thread pool size")

    args = p.parse_args()
    _configure_logging()

    try:
        run: BugreportAnalysis = asyncio.run(
            analyze_bugreport(
                Path(args.path),
                mode="deep" if args.deep else "quick",
                description=args.description,
                cache=AnalysisCache(max_size=1),
                max_workers=args.max_workers,
            )
        )
    except FileNotFoundError as e:
        print(str(e), file=sys.stderr)
        raise SystemExit(2)
    except (ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(2)

    if args.as_json:
        print(json.dumps(to_jsonable(run.result), indent=2))
    else:
        print(format_report(run.result, severity=args.severity))

    if run.deep_analysis_error is not None:
        print(f"\nDeep analysis failed: {run.deep_analysis_error}", file=sys.stderr)
        raise SystemExit(2)


if __name__ == "__main__":
    main()
