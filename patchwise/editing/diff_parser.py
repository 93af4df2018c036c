"""
Diff parser — pulls a unified diff out of free-form model output.

Parsing never raises on malformed input: :func:`extract_unified_diff`
returns ``None`` and the caller decides whether to retry or escalate.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

_CODE_BLOCK = re.compile(r"```(?:diff|patch)?[^\n]*\n?(.*?)^```", re.S | re.M)
_FILE_HEADER = re.compile(r"^---\s+(.+)\r?\n\+\+\+\s+(.+)(\r?\n[\s\S]*)", re.M)
_HEADER_START = re.compile(r"^---\s+.+\r?\n\+\+\+\s+")
_HUNK_RANGE = re.compile(r"@@\s+-?\d+(?:,\d+)?\s+\+\d+(?:,\d+)?")
_PATH_LINE = re.compile(r"^[-+]{3}\s+[ab]/(.+?)\s*$")
_CHUNK_SPLIT = re.compile(r"\n(?=--- [ab]/)")
_CHUNK_HEADER = re.compile(r"^--- [ab]/(.+?)\r?\n\+\+\+ [ab]/(.+?)\r?\n")

NO_NEWLINE_MARKER = "\\ No newline at end of file"


def _is_diff_line(line: str) -> bool:
    return (line.startswith(("---", "+++", "@@", " ", "+", "-"))
            or line == NO_NEWLINE_MARKER)


def extract_unified_diff(raw: str) -> Optional[str]:
    """Return the first well-formed unified diff in *raw*, or None.

    Strips a fenced block that wraps the diff, starts at the first
    ``---``/``+++`` header pair and keeps contiguous diff-shaped lines. A
    blank line ends the diff once a hunk has been seen; any other non-diff
    line ends it too. The result must carry ``--- a/``, ``+++ b/`` and a
    valid ``@@`` range.
    """
    if not raw:
        return None
    # A trailing \r belongs to the last CRLF line
    trimmed = raw.lstrip("\r\n").rstrip("\n")
    to_search = trimmed
    header = _FILE_HEADER.search(trimmed)
    block = _CODE_BLOCK.search(trimmed)
    # Fences inside diff content (e.g. "+```python") never wrap the diff
    if block and (header is None or block.start() < header.start()) \
            and _FILE_HEADER.search(block.group(1)):
        to_search = block.group(1)

    header = _FILE_HEADER.search(to_search)
    if not header:
        return None

    out: List[str] = []
    seen_hunk = False
    for line in to_search[header.start():].split("\n"):
        if _is_diff_line(line):
            if line.startswith("@@"):
                seen_hunk = True
            out.append(line)
        elif line.strip() == "" or line.startswith("```"):
            if seen_hunk:
                break
            continue
        else:
            break

    result = "\n".join(out)
    if not _HEADER_START.match(result):
        return None
    if "--- a/" not in result or "+++ b/" not in result:
        return None
    if not _HUNK_RANGE.search(result):
        logger.debug("[Diff] header found but no valid hunk range")
        return None
    return result


def extract_explanation(raw: str, patch: Optional[str]) -> str:
    """Short explanation: the first paragraph before the diff."""
    raw = raw or ""
    if patch and patch in raw:
        before = raw[:raw.index(patch)].strip()
    elif patch:
        # The diff may have been normalized; cut at its first header line
        head = patch.split("\n", 1)[0]
        idx = raw.find(head)
        before = raw[:idx].strip() if idx >= 0 else raw.strip()
    else:
        before = raw.strip()
    before = re.sub(r"```[a-z]*\s*$", "", before).strip()
    first_block = re.split(r"\n\s*\n", before)[0] if before else ""
    return first_block[:500].strip() or "No explanation provided."


def paths_from_patch(patch: str) -> List[str]:
    """Workspace-relative paths named in ``--- a/`` / ``+++ b/`` headers."""
    out: List[str] = []
    for line in re.split(r"\r?\n", patch or ""):
        m = _PATH_LINE.match(line)
        if m:
            p = m.group(1).replace("\\", "/")
            if p not in out:
                out.append(p)
    return out


def split_patch_by_file(patch: str) -> Dict[str, str]:
    """Map each file path to its own diff chunk (headers included)."""
    out: Dict[str, str] = {}
    for chunk in _CHUNK_SPLIT.split(patch or ""):
        chunk = chunk.strip("\n")
        m = _CHUNK_HEADER.match(chunk)
        if not m:
            continue
        path = m.group(2).replace("\\", "/")
        out[path] = chunk
    return out


def cap_patch_lines(patch: str, max_lines: int) -> Tuple[str, bool]:
    """Truncate *patch* to *max_lines* lines. Returns ``(patch, capped)``."""
    lines = patch.split("\n")
    if len(lines) <= max_lines:
        return patch, False
    logger.info("[Diff] patch capped at %d of %d lines", max_lines, len(lines))
    return "\n".join(lines[:max_lines]), True
