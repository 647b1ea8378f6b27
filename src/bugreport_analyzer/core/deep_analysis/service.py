"""LLM-backed deep analysis.

Sends the quick analysis (plus targeted raw context) to Gemini and merges the
structured answer back into a new AnalysisResult.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from dataclasses import replace

from pydantic import ValidationError

from .. import models
from ..models import AnalysisResult, Confidence
from .models import DeepAnalysisConfig, DeepAnalysisResponse, InsightDeepAnalysis
from .prompt import build_deep_analysis_prompt

logger = logging.getLogger(__name__)
_DEEP_ANALYSIS_SCHEMA = DeepAnalysisResponse.model_json_schema()

_FENCED_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


def _call_gemini_json(prompt: str, *, cfg: DeepAnalysisConfig) -> DeepAnalysisResponse:
    """Call Gemini and validate the response against the schema."""
    api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
    if not api_key:
        raise RuntimeError("Missing GEMINI_API_KEY (or GOOGLE_API_KEY).")

    try:
        from google import genai
    except ImportError as e:  # pragma: no cover
        raise RuntimeError(
            "google-genai is required for deep analysis. Install with: pip install '.[ai]'"
        ) from e

    client = genai.Client(api_key=api_key)

    last_err: Exception | None = None
    for attempt in range(1, cfg.max_retries + 1):
        try:
            resp = client.models.generate_content(
                model=cfg.model,
                contents=prompt,
                config={
                    "response_mime_type": "application/json",
                    "response_json_schema": _DEEP_ANALYSIS_SCHEMA,
                    "temperature": cfg.temperature,
                },
            )
            parsed = parse_deep_analysis_text(resp.text or "")
            if parsed is None:
                raise ValueError("Gemini response did not contain a deep analysis object")
            return parsed
        except Exception as e:
            last_err = e
            if attempt >= cfg.max_retries:
                break
            sleep_s = min(8, 2 ** (attempt - 1))
            logger.warning("Gemini call failed (attempt %s/%s): %s", attempt, cfg.max_retries, e)
            time.sleep(sleep_s)

    raise RuntimeError(
        f"Gemini call failed after {cfg.max_retries} attempts: {last_err}"
    ) from last_err


def parse_deep_analysis_text(content: str) -> DeepAnalysisResponse | None:
    """Parse model output: a fenced block, a bare object, or a legacy array of insight items."""
    for regex in (_FENCED_RE, _OBJECT_RE, _ARRAY_RE):
        m = regex.search(content)
        if not m:
            continue
        raw = m.group(1) if m.groups() else m.group(0)
        try:
            data = json.loads(raw)
            if isinstance(data, dict) and isinstance(data.get("insights"), list):
                return DeepAnalysisResponse.model_validate(data)
            if isinstance(data, list):
                return DeepAnalysisResponse(
                    insights=[InsightDeepAnalysis.model_validate(item) for item in data]
                )
        except (json.JSONDecodeError, ValidationError):
            continue
    return None


def _to_deep_analysis(item: InsightDeepAnalysis) -> models.DeepAnalysis:
    return models.DeepAnalysis(
        root_cause=item.root_cause,
        fix_suggestion=item.fix_suggestion,
        confidence=Confidence(item.confidence),
        evidence=tuple(item.evidence),
        impact_assessment=item.impact_assessment,
        debugging_steps=tuple(item.debugging_steps),
        related_insights=tuple(item.related_insights),
        category=item.category,
        affected_components=tuple(item.affected_components),
    )


def _to_overview(response: DeepAnalysisResponse) -> models.DeepAnalysisOverview:
    return models.DeepAnalysisOverview(
        executive_summary=response.executive_summary,
        system_diagnosis=response.system_diagnosis,
        correlation_findings=tuple(
            models.CorrelationFinding(
                description=f.description,
                insight_ids=tuple(f.insight_ids),
                confidence=Confidence(f.confidence),
            )
            for f in response.correlation_findings
        ),
        prioritized_actions=tuple(
            models.PrioritizedAction(action=a.action, reason=a.reason, effort=a.effort, impact=a.impact)
            for a in response.prioritized_actions
        ),
    )


def merge_deep_analysis(result: AnalysisResult, response: DeepAnalysisResponse) -> AnalysisResult:
    """Attach per-insight analyses by id and the overview. Unknown ids are ignored."""
    by_id = {item.insight_id: item for item in response.insights}
    insights = tuple(
        replace(card, deep_analysis=_to_deep_analysis(by_id[card.id])) if card.id in by_id else card
        for card in result.insights
    )
    unknown = set(by_id) - {card.id for card in result.insights}
    if unknown:
        logger.debug("Ignoring deep analysis for unknown insight ids: %s", sorted(unknown))

    overview = _to_overview(response) if response.executive_summary else result.deep_analysis_overview
    return replace(result, insights=insights, deep_analysis_overview=overview)


def run_deep_analysis(
    result: AnalysisResult,
    *,
    description: str | None = None,
    cfg: DeepAnalysisConfig | None = None,
) -> AnalysisResult:
    """Run Gemini over a quick analysis result and return the enriched copy."""
    if cfg is None:
        cfg = DeepAnalysisConfig()

    prompt = build_deep_analysis_prompt(
        result,
        description=description,
        timeline_limit=cfg.timeline_limit,
        redact=cfg.redact,
    )
    logger.info("Requesting deep analysis from %s (%d prompt chars)", cfg.model, len(prompt))
    response = _call_gemini_json(prompt, cfg=cfg)
    return merge_deep_analysis(result, response)
