"""
Unified diff emission and strict application.

:func:`create_file_patch` is the only way patches are produced locally;
:func:`apply_unified_diff` applies one file's diff with no fuzz, so
``apply_unified_diff(a, create_file_patch(p, a, b)) == b``.
"""

from __future__ import annotations

import difflib
import logging
import re
from typing import List, Optional, Tuple

from ..errors import EditApplyError
from .diff_parser import NO_NEWLINE_MARKER

logger = logging.getLogger(__name__)

_HUNK_HEADER = re.compile(r"^@@\s+-(\d+)(?:,(\d+))?\s+\+(\d+)(?:,(\d+))?\s+@@")


def _split_keepends(text: str) -> List[str]:
    """Split on ``\\n`` only, keeping line endings (``\\r`` stays in the line)."""
    return [line for line in re.split(r"(?<=\n)", text) if line]


def create_file_patch(path: str, old: str, new: str, context: int = 3) -> str:
    """Unified diff from *old* to *new* with ``a/`` and ``b/`` headers.

    Returns ``""`` when the contents are identical. Lines without a trailing
    newline are followed by the ``\\ No newline at end of file`` marker.
    """
    if old == new:
        return ""
    out: List[str] = []
    for line in difflib.unified_diff(
        _split_keepends(old), _split_keepends(new),
        fromfile=f"a/{path}", tofile=f"b/{path}", n=context, lineterm="\n",
    ):
        if line.endswith("\n"):
            out.append(line)
        else:
            out.append(line + "\n")
            out.append(NO_NEWLINE_MARKER + "\n")
    return "".join(out).rstrip("\n")


def create_patch(changes: List[Tuple[str, str, str]]) -> str:
    """Join per-file diffs for ``(path, old, new)`` triples that differ."""
    parts = [create_file_patch(p, old, new) for p, old, new in changes]
    return "\n".join(p for p in parts if p)


def count_changes(patch: str) -> Tuple[int, int]:
    """Return ``(added, removed)`` line counts from diff body lines."""
    added = removed = 0
    for line in (patch or "").split("\n"):
        if line.startswith("+++") or line.startswith("---"):
            continue
        if line.startswith("+"):
            added += 1
        elif line.startswith("-"):
            removed += 1
    return added, removed


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

class _Hunk:
    __slots__ = ("old_start", "old_count", "old_lines", "new_lines")

    def __init__(self, old_start: int, old_count: int):
        self.old_start = old_start
        self.old_count = old_count
        self.old_lines: List[str] = []
        self.new_lines: List[str] = []


def _parse_hunks(patch: str) -> List[_Hunk]:
    lines = patch.split("\n")
    hunks: List[_Hunk] = []
    i = 0
    while i < len(lines):
        m = _HUNK_HEADER.match(lines[i])
        if not m:
            i += 1
            continue
        hunk = _Hunk(int(m.group(1)), int(m.group(2)) if m.group(2) is not None else 1)
        new_count = int(m.group(4)) if m.group(4) is not None else 1
        old_left, new_left = hunk.old_count, new_count
        i += 1
        last_kind: Optional[str] = None
        while i < len(lines) and (old_left > 0 or new_left > 0
                                  or lines[i] == NO_NEWLINE_MARKER):
            line = lines[i]
            if line == NO_NEWLINE_MARKER:
                # Applies to the line just before it
                if last_kind in (" ", "-") and hunk.old_lines:
                    hunk.old_lines[-1] = hunk.old_lines[-1][:-1]
                if last_kind in (" ", "+") and hunk.new_lines:
                    hunk.new_lines[-1] = hunk.new_lines[-1][:-1]
                i += 1
                continue
            kind = line[:1] or " "
            text = line[1:] + "\n"
            if kind == " ":
                hunk.old_lines.append(text)
                hunk.new_lines.append(text)
                old_left -= 1
                new_left -= 1
            elif kind == "-":
                hunk.old_lines.append(text)
                old_left -= 1
            elif kind == "+":
                hunk.new_lines.append(text)
                new_left -= 1
            else:
                raise EditApplyError(f"malformed hunk line: {line[:40]!r}")
            last_kind = kind
            i += 1
        if old_left > 0 or new_left > 0:
            raise EditApplyError("truncated hunk")
        hunks.append(hunk)
    return hunks


def apply_unified_diff(original: str, patch: str) -> str:
    """Apply a single-file unified diff to *original* with no fuzz.

    Raises :class:`EditApplyError` when a hunk does not match.
    """
    hunks = _parse_hunks(patch)
    if not hunks:
        raise EditApplyError("patch has no hunks")

    src = _split_keepends(original)
    out: List[str] = []
    pos = 0
    for hunk in hunks:
        # A zero-length old range means "insert after line old_start"
        start = hunk.old_start if hunk.old_count == 0 else hunk.old_start - 1
        if start < pos or start > len(src):
            raise EditApplyError(f"hunk at line {hunk.old_start} out of order or range")
        out.extend(src[pos:start])
        end = start + len(hunk.old_lines)
        if src[start:end] != hunk.old_lines:
            logger.debug("[Diff] hunk mismatch at line %d", hunk.old_start)
            raise EditApplyError(f"hunk at line {hunk.old_start} does not match")
        out.extend(hunk.new_lines)
        pos = end
    out.extend(src[pos:])
    return "".join(out)
