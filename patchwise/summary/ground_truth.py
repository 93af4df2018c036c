"""
Ground truth for a proposed change, derived from before/after content only.

Diff stats use line-set differencing; anchors (identifiers, exported
names, route-like strings, env-style keys) are drawn from changed lines
and never include a token that occurs in both the original and the
proposed content.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

MAX_ANCHORS_PER_FILE = 12
MAX_GLOBAL_ANCHORS = 50

_IDENTIFIER = re.compile(
    r"\b[a-z][a-zA-Z0-9]*[A-Z][a-zA-Z0-9]*\b"   # camelCase
    r"|\b[a-z][a-z0-9_]+\b"                     # snake_case / lower words
    r"|\b[A-Z][A-Z0-9_]+\b"                     # UPPER_SNAKE
)
_EXPORTED = re.compile(
    r"(?:export\s+(?:default\s+)?(?:async\s+)?(?:function|class|const)"
    r"|^\s*(?:async\s+)?def|^\s*class)\s+(\w+)",
    re.M,
)
_ROUTE = re.compile(r"[\"'`](/api/[^\"'`]*|https?://[^\"'`]*)[\"'`]")
_ENV_KEY = re.compile(r"\b(?:STRIPE_|FIREBASE_|AWS_|VITE_|NEXT_|NODE_|PATCHWISE_)[A-Z0-9_]*\b")

_MAX_IDENTIFIERS = 5
_MAX_ROUTES = 3
_MAX_ENV_KEYS = 3


@dataclass(frozen=True)
class FileGroundTruth:
    path: str
    kind: str  # "new" | "modified"
    lines_added: int
    lines_removed: int
    anchors: Tuple[str, ...] = ()


@dataclass(frozen=True)
class GroundTruthTotals:
    lines_added: int
    lines_removed: int
    file_count: int


@dataclass(frozen=True)
class ProposalGroundTruth:
    files: Tuple[FileGroundTruth, ...]
    global_anchors: Tuple[str, ...]
    totals: GroundTruthTotals

    @property
    def paths(self) -> List[str]:
        return [f.path for f in self.files]

    def all_anchors(self) -> set[str]:
        out = set(self.global_anchors)
        for f in self.files:
            out.update(f.anchors)
        return out


@dataclass(frozen=True)
class ProposalFile:
    """One file of a proposal: ``original`` is None or "" for a new file."""
    path: str
    proposed: str
    original: Optional[str] = None

    @property
    def is_new(self) -> bool:
        return not self.original


def _lines(text: Optional[str]) -> List[str]:
    return (text or "").replace("\r\n", "\n").split("\n")


def diff_stats(original: str, proposed: str) -> Tuple[int, int]:
    """``(added, removed)`` by line-set differencing."""
    a, b = _lines(original), _lines(proposed)
    set_a, set_b = set(a), set(b)
    added = sum(1 for line in b if line not in set_a)
    removed = sum(1 for line in a if line not in set_b)
    return added, removed


def changed_lines(original: str, proposed: str) -> List[str]:
    """Removed lines followed by added lines."""
    a, b = _lines(original), _lines(proposed)
    set_a, set_b = set(a), set(b)
    return [line for line in a if line not in set_b] + [line for line in b if line not in set_a]


def _occurs_in(token: str, text: str) -> bool:
    return re.search(r"(?<!\w)" + re.escape(token) + r"(?!\w)", text) is not None


def extract_anchors(changed: Sequence[str], original: str = "", proposed: str = "") -> List[str]:
    """Anchors from *changed* lines.

    A token that occurs in both *original* and *proposed* is skipped, so
    nothing present identically before and after can become an anchor.
    """
    text = "\n".join(changed)
    seen: set[str] = set()
    out: List[str] = []

    def add(candidates: Iterable[str], limit: int) -> None:
        taken = 0
        for token in candidates:
            if taken >= limit or len(out) >= MAX_ANCHORS_PER_FILE:
                return
            t = token.strip()
            if len(t) < 2 or len(t) > 80 or t in seen:
                continue
            if original and proposed and _occurs_in(t, original) and _occurs_in(t, proposed):
                continue
            seen.add(t)
            out.append(t)
            taken += 1

    add((m.group(0) for m in _IDENTIFIER.finditer(text)), _MAX_IDENTIFIERS)
    add((m.group(1) for m in _EXPORTED.finditer(text)), MAX_ANCHORS_PER_FILE)
    add((m.group(1) for m in _ROUTE.finditer(text)), _MAX_ROUTES)
    add((m.group(0) for m in _ENV_KEY.finditer(text)), _MAX_ENV_KEYS)
    return out[:MAX_ANCHORS_PER_FILE]


def build_proposal_ground_truth(files: Iterable[ProposalFile]) -> ProposalGroundTruth:
    """Deterministic ground truth for *files*; no model call."""
    entries: List[FileGroundTruth] = []
    global_anchors: List[str] = []
    total_added = total_removed = 0

    for f in files:
        original = f.original or ""
        added, removed = diff_stats(original, f.proposed)
        total_added += added
        total_removed += removed
        anchors = extract_anchors(changed_lines(original, f.proposed), original, f.proposed)
        for a in anchors:
            if a not in global_anchors:
                global_anchors.append(a)
        entries.append(FileGroundTruth(
            path=f.path,
            kind="new" if f.is_new else "modified",
            lines_added=added,
            lines_removed=removed,
            anchors=tuple(anchors),
        ))

    return ProposalGroundTruth(
        files=tuple(entries),
        global_anchors=tuple(global_anchors[:MAX_GLOBAL_ANCHORS]),
        totals=GroundTruthTotals(lines_added=total_added, lines_removed=total_removed,
                                 file_count=len(entries)),
    )


def build_file_list_from_ground_truth(gt: ProposalGroundTruth) -> List[Tuple[str, str]]:
    """``(path, change)`` pairs for display; never model-sourced."""
    return [
        (f.path, "New file" if f.kind == "new"
         else f"Modified (+{f.lines_added} -{f.lines_removed})")
        for f in gt.files
    ]
