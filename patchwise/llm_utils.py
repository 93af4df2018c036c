"""Helpers for pulling JSON out of free-form model output."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.S)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def strip_code_fence(text: str) -> str:
    """Return the body of the first fenced block, or *text* unchanged."""
    fenced = _FENCE.search(text or "")
    return fenced.group(1).strip() if fenced else (text or "").strip()


def extract_json_block(text: str) -> str:
    """Best-effort extraction of the JSON-looking region from a response.

    Prefers a fenced block; otherwise starts at the first ``{`` or ``[``.
    """
    if not text:
        return ""
    fenced = _FENCE.search(text)
    if fenced:
        return fenced.group(1).strip()
    for i, ch in enumerate(text):
        if ch in "[{":
            return text[i:].strip()
    return text.strip()


def _trim_to_balanced_json(block: str) -> str:
    """Trim *block* to its first balanced top-level object or array.

    Models often append commentary after valid JSON. Returns the block
    unchanged when no balanced end is found.
    """
    start = None
    for i, ch in enumerate(block):
        if ch in "[{":
            start = i
            break
    if start is None:
        return block

    depth = 0
    in_str = False
    escape = False
    for j in range(start, len(block)):
        ch = block[j]
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
            if depth == 0:
                return block[start:j + 1]
            if depth < 0:
                break
    return block


def load_json_lenient(text: str) -> Tuple[Optional[Any], str]:
    """Parse model output as JSON.

    Strips code fences and trailing commas and ignores text around the
    first balanced value. Returns ``(value, "")`` or ``(None, error)``.
    """
    block = _trim_to_balanced_json(extract_json_block(text))
    if not block:
        return None, "empty response"
    block = _TRAILING_COMMA.sub(r"\1", block)
    try:
        return json.loads(block), ""
    except json.JSONDecodeError as exc:
        logger.debug("[JSON] parse failed at offset %d: %s", exc.pos, exc.msg)
        return None, f"{exc.msg} (offset {exc.pos})"
