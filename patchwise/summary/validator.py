"""
Grounded-summary validator.

A bullet survives only if every non-generic token in it is a known path,
a known anchor, or a fuzzy substring match of one. ``what_changed``
bullets that fail are dropped; ``behavior_after`` bullets that fail, or
that name a route absent from the proposed content, are demoted to
``risks`` as unverified claims.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Iterable, List

from .ground_truth import ProposalGroundTruth, build_file_list_from_ground_truth
from .models import MAX_RISKS, MAX_TITLE, ChangeSummary, Confidence, FileChange

logger = logging.getLogger(__name__)

GENERIC_WORDS = frozenset({
    "bug", "fix", "refactor", "code", "file", "files", "support", "change", "changes",
    "update", "add", "remove", "improve", "project", "behavior", "logic", "test", "tests",
    "api", "auth", "endpoint", "route", "handler", "config", "data", "type", "types",
})

_TOKEN_CLEAN = re.compile(r"[^\w/-]")
_ROUTE_LIKE = re.compile(r"/[\w/-]+|https?://[^\s\"'`]+")


def _token_allowed(token: str, paths: set[str], anchors: set[str]) -> bool:
    if token.lower() in GENERIC_WORDS:
        return True
    if token in paths or token.lstrip("/\\") in paths:
        return True
    if token in anchors:
        return True
    if any(token in p or p in token for p in paths):
        return True
    low = token.lower()
    return any(low in a.lower() or a.lower() in low for a in anchors)


def bullet_is_grounded(bullet: str, paths: set[str], anchors: set[str]) -> bool:
    """True when *bullet* names a known path or only uses allowed tokens."""
    if any(p in bullet for p in paths):
        return True
    for raw in bullet.split():
        if len(raw) <= 1:
            continue
        token = _TOKEN_CLEAN.sub("", raw)
        if not token:
            continue
        if not _token_allowed(token, paths, anchors):
            logger.debug("[Summary] ungrounded token %r in %r", token, bullet)
            return False
    return True


def _routes_present(bullet: str, proposed: str) -> bool:
    return all(r in proposed for r in _ROUTE_LIKE.findall(bullet))


def file_list(gt: ProposalGroundTruth) -> List[FileChange]:
    return [FileChange(path=p, change=c) for p, c in build_file_list_from_ground_truth(gt)]


def fallback_summary(gt: ProposalGroundTruth, title: str = "",
                     risks: Iterable[str] = ()) -> ChangeSummary:
    """Minimal conservative summary with low confidence."""
    n = gt.totals.file_count
    return ChangeSummary(
        title=title if title and len(title) <= MAX_TITLE else f"Updated {n} file(s).",
        what_changed=[f"Updated {n} file(s)."],
        behavior_after=["Review file list for details."],
        files=file_list(gt),
        risks=list(risks)[:MAX_RISKS],
        confidence="low",
    )


def validate_and_fix_summary(summary: ChangeSummary, ground_truth: ProposalGroundTruth,
                             get_proposed_content: Callable[[str], str]) -> ChangeSummary:
    """Filter *summary* against *ground_truth* and set its confidence.

    Falls back to :func:`fallback_summary` when fewer than two bullets, or
    no ``what_changed`` bullet, survive.
    """
    paths = set(ground_truth.paths)
    anchors = ground_truth.all_anchors()

    what_changed = [b for b in summary.what_changed if bullet_is_grounded(b, paths, anchors)]

    try:
        proposed = "\n".join(get_proposed_content(p) or "" for p in ground_truth.paths)
    except Exception as exc:
        logger.warning("[Summary] could not read proposed content: %s", exc)
        proposed = ""

    behavior_after: List[str] = []
    weak: List[str] = []
    for b in summary.behavior_after:
        if bullet_is_grounded(b, paths, anchors) and _routes_present(b, proposed):
            behavior_after.append(b)
        else:
            weak.append(b)

    risks = (list(summary.risks) + [f"Unverified: {c}" for c in weak])[:MAX_RISKS]
    removed = (len(summary.what_changed) - len(what_changed)) + len(weak)
    original_total = max(1, len(summary.what_changed) + len(summary.behavior_after))

    if len(what_changed) + len(behavior_after) < 2 or not what_changed:
        logger.info("[Summary] %d of %d bullets removed, using fallback summary",
                    removed, original_total)
        return fallback_summary(ground_truth, summary.title, risks)

    confidence: Confidence
    if removed == 0:
        confidence = "high"
    elif removed * 2 <= original_total:
        confidence = "medium"
    else:
        confidence = "low"

    return summary.model_copy(update={
        "what_changed": what_changed,
        "behavior_after": behavior_after,
        "risks": risks,
        "files": file_list(ground_truth),
        "confidence": confidence,
    })
