"""Deterministic edits for trivial instructions, applied without a model call."""

from __future__ import annotations

import re
from typing import List, Optional

# Each pattern captures the text to put at the top of the file
PREPEND_PATTERNS: List[re.Pattern[str]] = [
    re.compile(r"^add\s+to\s+top:\s*(.+)$", re.I | re.S),
    re.compile(r"(?:add|prepend|insert)\s+(.+?)\s+(?:to|at)\s+(?:the\s+)?top", re.I),
    re.compile(r"^add\s+(.+)\s+to\s+top$", re.I),
    re.compile(r"^prepend\s+(.+)$", re.I | re.S),
]


def apply_simple_edit(content: str, instructions: str) -> Optional[str]:
    """Return the edited content, or None when no pattern matches."""
    ins = (instructions or "").strip()
    if not ins:
        return None
    for pat in PREPEND_PATTERNS:
        m = pat.search(ins)
        if m:
            to_add = m.group(1).strip()
            line = to_add if to_add.endswith("\n") else to_add + "\n"
            return line + content
    return None
