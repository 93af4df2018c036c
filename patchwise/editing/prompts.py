"""Prompt builders for planning, edit plans, diffs, whole-file edits and chat."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

STRICT_JSON_INSTRUCTION = "Output ONLY valid JSON. No markdown, no explanation."

STRICT_DIFF_INSTRUCTION = (
    "Return ONLY a unified diff. Must start with --- a/<path> and +++ b/<path> "
    "and contain @@ hunks. No other text."
)

CHAT_SYSTEM_PROMPT = (
    "You are a helpful dev assistant. Answer the user's question concisely. "
    "Do NOT output a diff, unified patch, or code changes. Just answer normally "
    "in plain text."
)

FILE_EDIT_SYSTEM_PROMPT = (
    "You are a coding assistant that outputs complete file contents. Never output "
    "diffs or patches. Only output the raw file content with no extra explanation "
    "or markdown."
)

DEFAULT_PLAN = "Implement the user request."


@dataclass(frozen=True)
class SourceFile:
    path: str
    content: str
    is_new: bool = False

    @property
    def line_count(self) -> int:
        return len((self.content or "(empty)").splitlines()) or 1


@dataclass
class EditRequest:
    """Everything the model sees for one edit request."""
    prompt: str
    files: List[SourceFile] = field(default_factory=list)
    target_files: Optional[List[str]] = None
    project_summary: str = ""
    allow_new_files: bool = False

    @property
    def target_paths(self) -> List[str]:
        if self.target_files:
            return list(self.target_files)
        return [f.path for f in self.files]

    @property
    def target_sources(self) -> List[SourceFile]:
        if not self.target_files:
            return list(self.files)
        wanted = set(self.target_files)
        return [f for f in self.files if f.path in wanted]


def build_plan_prompt(req: EditRequest) -> str:
    parts = [
        "You are a coding assistant. Produce a structured plan for the following "
        "change. Do NOT output a diff or code yet.",
        "",
        f"User request: {req.prompt}",
    ]
    if req.target_paths:
        parts += ["", "Target files: " + ", ".join(req.target_paths)]
    if req.project_summary:
        parts += ["", "Project context: " + req.project_summary[:600]]
    parts += [
        "",
        "Output your plan: list the files to change, the intent, and the exact "
        "changes (in plain language). Keep it concise.",
    ]
    return "\n".join(parts)


_STEP_PLAN_FORMAT = (
    '{"version":1,"steps":[{"id":"step-1","filePath":"relative/path.ts",'
    '"operation":"modify","summary":"...","rationale":"...","operations":['
    '{"kind":"replace_range","startLine":1,"endLine":2,"newText":"..."},'
    '{"kind":"search_and_replace","search":"EXACT","replace":"...","all":false},'
    '{"kind":"append","newText":"..."},{"kind":"prepend","newText":"..."}]}]}'
)


def build_edit_plan_prompt(req: EditRequest, plan: str) -> str:
    parts = [
        "Using this plan, output ONLY a valid JSON object. No other text, no markdown.",
        "",
        "Plan: " + plan[:1500],
        "",
        f"User request: {req.prompt}",
        "",
        "JSON format (exact keys): " + _STEP_PLAN_FORMAT,
        "- steps must be ordered; each step touches exactly ONE filePath.",
        "- operation is one of: modify | create | delete.",
        "- For delete: operations MUST be empty array.",
        "- For modify/create: operations must be non-empty.",
        "- Use workspace-relative paths with forward slashes. filePath must match "
        "one of: " + ", ".join(req.target_paths),
        "- Operations kinds: replace_range (1-based, endLine inclusive), "
        "search_and_replace (exact match), append, prepend.",
    ]
    sources = req.target_sources
    if sources:
        parts += ["", "Current file contents (for anchors and line numbers):"]
        for f in sources:
            content = f.content or "(empty)"
            parts += ["", f"--- {f.path} ({f.line_count} lines) ---", content[:12000]]
    parts += ["", "Output ONLY the JSON object."]
    return "\n".join(parts)


def build_diff_only_prompt(req: EditRequest, plan: str) -> str:
    parts = [
        "Using this plan, output ONLY a unified diff. No explanation, no other text.",
        "",
        "Plan: " + plan[:1500],
        "",
        f"User request: {req.prompt}",
    ]
    sources = req.target_sources
    if sources:
        parts += ["", "Current file contents (use a/ and b/ paths in the diff):"]
        for f in sources:
            parts += ["", f"--- {f.path} ---", f.content or "(empty)"]
    parts += [
        "",
        "Output format: Return ONLY a valid unified diff. Must start with "
        "--- a/<path> and +++ b/<path> and contain @@ hunks. Use paths relative "
        "to repo root (e.g. a/src/main.ts).",
    ]
    return "\n".join(parts)


def build_file_edit_prompt(path: str, original: str, instructions: str,
                           is_new: bool = False) -> str:
    parts = [
        "You are a coding assistant. Generate the FULL content of the file after "
        "applying the requested changes.",
        "",
        "IMPORTANT:",
        "- Output ONLY the complete file content after changes",
        "- Do NOT output a diff or patch format",
        "- Do NOT include any explanation or markdown",
        "- Start directly with the file content",
        "",
        f"File: {path}",
        f"Instructions: {instructions}",
        "",
    ]
    if is_new:
        parts.append("This is a NEW FILE. Create the content from scratch based on the instructions.")
    else:
        parts += [
            "CURRENT FILE CONTENT:",
            "```",
            original or "(empty file)",
            "```",
            "",
            "Apply the changes and output the FULL updated file content:",
        ]
    return "\n".join(parts)


def build_chat_user_prompt(message: str, files: Optional[List[SourceFile]] = None,
                           project_summary: str = "") -> str:
    parts = [f"User: {message}"]
    if files:
        parts += ["", "Context files: " + ", ".join(f.path for f in files)]
        for f in files[:3]:
            parts += ["", f"--- {f.path} ---", (f.content or "(empty)")[:800]]
    if project_summary:
        parts += ["", "Project: " + project_summary[:500]]
    parts += ["", "Answer (plain text only, no diff):"]
    return "\n".join(parts)
