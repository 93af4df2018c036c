"""Grounded summary generation: the model sees only ground-truth paths and anchors."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from pydantic import ValidationError

from ..errors import LLMError, PhaseTimeoutError
from ..llm.base import GenerateOptions, GenerativeBackend
from ..llm_utils import load_json_lenient
from ..runs import PhaseDeadlines, RunHandle, race_with_cancel, race_with_timeout
from .ground_truth import ProposalGroundTruth
from .models import ChangeSummary
from .validator import fallback_summary, file_list, validate_and_fix_summary

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = (
    'You output only valid JSON for a change summary. No markdown. No "files" key. '
    "Only mention file paths and identifiers that appear in the provided list. "
    "If uncertain, put it in risks."
)

_SUMMARY_SCHEMA = """{
  "title": "string, max 80 chars",
  "whatChanged": ["string", "3-8 bullets"],
  "behaviorAfter": ["string", "3-8 bullets"],
  "risks": ["string", "optional 0-4 bullets"]
}"""

SUMMARY_OPTIONS = GenerateOptions(temperature=0.2, max_tokens=1024)


def build_summary_prompt(gt: ProposalGroundTruth, plan: Sequence[str]) -> str:
    parts = [
        "You are a coding assistant. Generate a SHORT change summary based ONLY on "
        "the following grounded data.",
        "",
        "STRICT RULES:",
        "- Output ONLY valid JSON. No prose, no markdown.",
        "- Do NOT mention any file path, endpoint, or identifier that is not listed below.",
        "- title: max 80 characters.",
        "- whatChanged: 3-8 bullets describing what changed; only reference the file "
        "paths and anchors listed.",
        "- behaviorAfter: 3-8 bullets; only describe behavior implied by the listed "
        "anchors/paths.",
        "- risks: optional 0-4 bullets; put anything uncertain here.",
        '- You must NOT output a "files" field. The file list is built from the '
        "proposal in code.",
        "",
        'Output this exact structure (no "files" key):',
        _SUMMARY_SCHEMA,
        "",
        "Plan:",
    ]
    parts += [f"- {p}" for p in plan]
    parts += ["", "Files (only these exist in the proposal):"]
    for f in gt.files:
        parts.append(f"- {f.path} [{f.kind}] +{f.lines_added} -{f.lines_removed}")
        if f.anchors:
            parts.append("  anchors: " + ", ".join(f.anchors[:8]))
    parts += [
        "",
        "Global anchors (you may reference these):",
        ", ".join(gt.global_anchors[:30]),
        "",
        'Output the JSON object only (no "files"):',
    ]
    return "\n".join(parts)


def parse_summary_response(raw: str) -> Optional[ChangeSummary]:
    """Tolerant parse; any model-sent ``files`` are discarded."""
    data, error = load_json_lenient(raw)
    if not isinstance(data, dict):
        logger.info("[Summary] unparseable summary JSON: %s", error or "not an object")
        return None
    data.pop("files", None)
    try:
        return ChangeSummary.model_validate(data)
    except ValidationError as exc:
        logger.info("[Summary] summary failed validation: %s", exc.errors()[:1])
        return None


async def generate_proposal_summary(backend: GenerativeBackend, ground_truth: ProposalGroundTruth,
                                    plan: Sequence[str], run: RunHandle,
                                    get_proposed_content: Callable[[str], str],
                                    deadlines: PhaseDeadlines | None = None) -> ChangeSummary:
    """Ask the backend for a summary, then validate it against *ground_truth*.

    Backend failures and timeouts give the conservative fallback summary;
    cancellation propagates.
    """
    deadlines = deadlines or PhaseDeadlines()
    try:
        raw = await race_with_cancel(
            run.run_id, run.token,
            race_with_timeout(
                "validation", deadlines.validation,
                backend.generate_chat(SUMMARY_SYSTEM_PROMPT,
                                      build_summary_prompt(ground_truth, plan),
                                      SUMMARY_OPTIONS, run.run_id),
                token=run.token, enabled=deadlines.enabled,
            ),
        )
    except (LLMError, PhaseTimeoutError) as exc:
        logger.warning("[Summary] summary generation failed: %s", exc)
        return fallback_summary(ground_truth)

    summary = parse_summary_response(raw or "")
    if summary is None:
        return fallback_summary(ground_truth)
    summary = summary.model_copy(update={"files": file_list(ground_truth)})
    return validate_and_fix_summary(summary, ground_truth, get_proposed_content)
