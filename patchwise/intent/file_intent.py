"""
File-action intent classifier — pure text logic, no filesystem access.

Decides whether a message opens a file, edits a named file, asks for an
edit without naming the file, or is none of these. The router builds
its decision on top of this.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Literal, Optional, Tuple

logger = logging.getLogger(__name__)

FileActionIntentType = Literal["file_open", "file_edit", "file_edit_search", "none"]


@dataclass(frozen=True)
class FileTarget:
    path: str
    confidence: float


@dataclass(frozen=True)
class FileActionIntent:
    intent_type: FileActionIntentType
    targets: List[FileTarget] = field(default_factory=list)
    instructions: str = ""

    @property
    def paths(self) -> List[str]:
        return [t.path for t in self.targets]


@dataclass(frozen=True)
class RouteContext:
    current_open_file: Optional[str] = None
    workspace_root: Optional[str] = None


NONE_INTENT = FileActionIntent(intent_type="none")

# ── File mentions ──

_KNOWN_EXTENSIONS = (
    "md", "mdx", "txt", "rst", "py", "pyi", "ts", "tsx", "js", "jsx", "mjs", "cjs",
    "json", "yaml", "yml", "toml", "ini", "cfg", "conf", "env", "lock",
    "rs", "go", "java", "kt", "swift", "rb", "php", "cs", "c", "h", "cc",
    "cpp", "hpp", "m", "scala", "sh", "bash", "ps1", "sql",
    "html", "htm", "css", "scss", "sass", "less", "vue", "svelte", "xml",
    "gradle", "csv",
)

_PATH_TOKEN = re.compile(
    r"(?<![\w/.-])((?:[\w.-]+/)*[\w-][\w.-]*\.(?:%s))(?![\w-]|\.\w)"
    % "|".join(sorted(_KNOWN_EXTENSIONS, key=len, reverse=True)),
    re.I,
)

# Conventional extension-less file names referred to by bare word
_BARE_NAME = re.compile(
    r"(?<![\w./-])(readme|changelog|license|dockerfile|makefile|\.gitignore|\.env)(?![\w-]|\.\w)",
    re.I,
)


def extract_file_mentions(message: str) -> List[str]:
    """Path-like tokens and conventional file names, in message order."""
    found: List[Tuple[int, str]] = []
    for pat in (_PATH_TOKEN, _BARE_NAME):
        for m in pat.finditer(message):
            found.append((m.start(1), m.group(1).rstrip(".")))
    found.sort(key=lambda x: x[0])

    seen: set[str] = set()
    mentions: List[str] = []
    for _, path in found:
        key = path.lower()
        if key in seen:
            continue
        seen.add(key)
        mentions.append(path)
    return mentions


# ---------------- Rule tables ----------------

# Each rule is (tag, pattern); a message carries every tag whose pattern matches.
OPEN_VERBS = re.compile(r"\b(open|show|view|navigate)\b", re.I)
EDIT_VERBS = re.compile(
    r"\b(edit|modify|update|change|fix|refactor|add|remove|create|rename|move)\b", re.I)
CURRENT_FILE_REF = re.compile(r"\b(this\s+file|current\s+file|the\s+file|here)\b", re.I)
QUESTION_OPENER = re.compile(r"^\s*(what|why|how|explain|describe|tell\s+me)\b", re.I)
EDIT_SEARCH_HINT = re.compile(r"\bfind\s+where\b", re.I)

_RULES: List[Tuple[str, re.Pattern[str]]] = [
    ("question", QUESTION_OPENER),
    ("current_file", CURRENT_FILE_REF),
    ("edit", EDIT_VERBS),
    ("edit_search", EDIT_SEARCH_HINT),
    ("open", OPEN_VERBS),
]


# Phrases that imply changes across multiple files
MULTI_FILE_INDICATORS: List[re.Pattern[str]] = [
    re.compile(r"\b(across|both|multiple|several)\s+(files?|modules?|parts?)\b", re.I),
    re.compile(r"\b(backend|frontend|ui|api)\s*(and|\+)\s*(backend|frontend|ui|api)\b", re.I),
    re.compile(r"\b(add|create|wire)\s+(endpoint|route|api)\s+(and|then)\s+"
               r"(wire|connect|update)\s+(ui|frontend)\b", re.I),
    re.compile(r"\b(add\s+.*\s+and\s+wire\s+it\s+into)", re.I),
    re.compile(r"\b(update|refactor)\s+.*\s+across\b", re.I),
]


def implies_multi_file(message: str) -> bool:
    t = (message or "").strip()
    return any(pat.search(t) for pat in MULTI_FILE_INDICATORS)


def match_rules(message: str) -> set[str]:
    """Return the set of rule tags matching *message*."""
    return {tag for tag, pat in _RULES if pat.search(message)}


# ---------------- Instructions ----------------

_AND_CLAUSE = re.compile(r"\band\s+(.+)$", re.I)
_IN_FILE_CLAUSE = re.compile(r"\bin\s+[^\s]+\s+(.+)$", re.I)
_ADD_TO_TOP = re.compile(r"(?:add|prepend|insert)\s+(.+?)\s+(?:to|at)\s+(?:the\s+)?top", re.I)


def extract_instructions(message: str, primary_path: str) -> str:
    """Edit instruction portion of *message*: text after "and", text after
    "in <file>", an "add X to top" request, or the message minus the path."""
    t = message.strip()

    m = _AND_CLAUSE.search(t)
    if m:
        return m.group(1).strip()

    m = _IN_FILE_CLAUSE.search(t)
    if m:
        return m.group(1).strip()

    m = _ADD_TO_TOP.search(t)
    if m:
        return f"add to top: {m.group(1).strip()}"

    return re.sub(re.escape(primary_path), "", t, flags=re.I).strip()


# ---------------- Classifier ----------------

def classify_file_action_intent(message: str,
                                context: Optional[RouteContext] = None) -> FileActionIntent:
    """Classify *message* into a :class:`FileActionIntent`.

    Does not check that any mentioned file exists.
    """
    t = (message or "").strip()
    if not t:
        return NONE_INTENT

    tags = match_rules(t)
    mentions = extract_file_mentions(t)

    if "current_file" in tags and context and context.current_open_file:
        targets = [FileTarget(path=context.current_open_file, confidence=1.0)]
    elif mentions:
        targets = [FileTarget(path=p, confidence=round(max(0.1, 1 - i * 0.1), 2))
                   for i, p in enumerate(mentions)]
    else:
        wants_edit = "edit" in tags or "edit_search" in tags
        if wants_edit and "question" not in tags and not implies_multi_file(t):
            return FileActionIntent(intent_type="file_edit_search", instructions=t)
        return NONE_INTENT

    if "edit" in tags:
        return FileActionIntent(
            intent_type="file_edit",
            targets=targets,
            instructions=extract_instructions(t, targets[0].path),
        )
    return FileActionIntent(intent_type="file_open", targets=targets)
