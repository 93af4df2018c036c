"""
Auto-search for likely target files when a message asks for an edit
without naming a file.

Keywords from the message drive name-based searches; results are scored
by filename heuristics and normalized to a 0..1 confidence.
"""

from __future__ import annotations

import inspect
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Union

from ..runs import CancellationToken, race_with_cancel

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset(
    "a an the to of in on at by for with from as is was are were be been being "
    "have has had do does did will would could should may might must can need "
    "dare ought used".split()
)

# Stems of conventionally important files
PREFERRED_FILENAME_STEMS = frozenset({
    "runner", "index", "main", "send", "email", "ses", "provider", "mailbox",
    "throttle", "config", "app", "server", "client", "handler", "service",
    "api", "util", "lib",
})

# Above this, the top candidate is edited without asking the user
HIGH_CONFIDENCE_THRESHOLD = 0.7

MAX_KEYWORDS = 10
MAX_CANDIDATES = 5

SearchByName = Callable[[str, str], Union[List[str], Awaitable[List[str]]]]


@dataclass(frozen=True)
class SearchCandidate:
    path: str
    confidence: float


def extract_search_keywords(message: str) -> List[str]:
    """Lower-cased, stop-word filtered keywords; ``DRY_RUN`` gives ``dry``, ``run``."""
    seen: set[str] = set()
    out: List[str] = []
    for word in message.strip().lower().split():
        clean = re.sub(r"[^\w.-]", "", word)
        parts = [p for p in clean.split("_") if len(p) >= 2 and p not in STOP_WORDS]
        if not parts and len(clean) >= 2 and clean not in STOP_WORDS:
            parts.append(clean)
        for p in parts:
            if p not in seen:
                seen.add(p)
                out.append(p)
    return out[:MAX_KEYWORDS]


def filename_stem(path: str) -> str:
    name = re.split(r"[/\\]", path)[-1]
    dot = name.rfind(".")
    return (name[:dot] if dot > 0 else name).lower()


async def _search(search_by_name: SearchByName, root: str, keyword: str) -> List[str]:
    result = search_by_name(root, keyword)
    if inspect.isawaitable(result):
        result = await result
    return list(result or [])


async def search_files_for_edit(
    message: str,
    root: str,
    search_by_name: SearchByName,
    file_list: Optional[List[str]] = None,
    run_id: Optional[str] = None,
    token: Optional[CancellationToken] = None,
) -> List[SearchCandidate]:
    """Return up to five candidates sorted by descending confidence.

    When *run_id* and *token* are given every search is raced against
    cancellation, so a stop request interrupts even a slow search.
    """
    keywords = extract_search_keywords(message)
    scores: dict[str, float] = {}

    def add_score(path: str, delta: float) -> None:
        scores[path] = scores.get(path, 0.0) + delta

    for kw in keywords:
        if run_id and token:
            hits = await race_with_cancel(run_id, token, _search(search_by_name, root, kw))
        else:
            hits = await _search(search_by_name, root, kw)
        for p in hits:
            name = re.split(r"[/\\]", p.lower())[-1]
            if kw in name or filename_stem(p) == kw:
                add_score(p, 1.0)
            else:
                add_score(p, 0.5)

    if file_list and keywords:
        for p in file_list:
            lower = p.lower()
            matches = sum(1 for kw in keywords if kw in lower)
            if matches:
                add_score(p, matches * 0.6)

    for p in list(scores):
        if filename_stem(p) in PREFERRED_FILENAME_STEMS:
            add_score(p, 0.8)

    ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)[:MAX_CANDIDATES]
    if not ranked:
        logger.info("[Search] no candidates for keywords %s", keywords)
        return []

    max_score = ranked[0][1]
    candidates = [
        SearchCandidate(path=p, confidence=min(1.0, s / max(2.0, max_score)))
        for p, s in ranked
    ]
    if max_score >= 2:
        top = candidates[0]
        candidates[0] = SearchCandidate(
            path=top.path, confidence=min(1.0, 0.5 + (max_score - 1) * 0.25))

    logger.info("[Search] keywords=%s top=%s (%.2f)",
                keywords, candidates[0].path, candidates[0].confidence)
    return candidates
