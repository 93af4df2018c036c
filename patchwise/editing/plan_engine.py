"""
Edit plan engine — deterministic application of edit operations.

:func:`apply_operations` is a pure string transform: the same content and
operations always give byte-identical output. :class:`EditPlanEngine`
previews and applies plans against a workspace, keeping before-snapshots
so an applied plan can be reverted.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence

from ..errors import EditApplyError, WorkspaceError
from ..workspace import Workspace, is_safe_rel_path, normalize_rel_path
from .edit_plan import (
    AppendOp, EditOp, EditPlan, InsertAfterOp, PlanStep, PrependOp,
    ReplaceRangeOp, SearchAndReplaceOp, StepPlan,
)
from .unified_diff import apply_unified_diff, create_file_patch
from .diff_parser import split_patch_by_file

logger = logging.getLogger(__name__)

_LINE_SPLIT = re.compile(r"\r?\n")


def _split_lines(text: str) -> List[str]:
    return _LINE_SPLIT.split(text)


# ---------------------------------------------------------------------------
# Pure operations
# ---------------------------------------------------------------------------

def _replace_range(content: str, start_line: int, end_line: int, new_text: str) -> str:
    lines = _split_lines(content)
    start_idx = max(0, start_line - 1)
    end_exclusive = min(len(lines), end_line)
    out = lines[:start_idx] + _split_lines(new_text) + lines[end_exclusive:]
    return "\n".join(out)


def _search_and_replace(content: str, search: str, replace: str, replace_all: bool) -> str:
    if search not in content:
        raise EditApplyError("search_and_replace: search string not found")
    if replace_all:
        return content.replace(search, replace)
    return content.replace(search, replace, 1)


def _insert_after(content: str, op: InsertAfterOp) -> str:
    if op.anchor is not None:
        idx = content.find(op.anchor)
        if idx == -1:
            raise EditApplyError("insert_after: anchor not found")
        cut = idx + len(op.anchor)
        return content[:cut] + op.new_text + content[cut:]

    lines = _split_lines(content)
    pos = min(max(0, op.line or 0), len(lines))
    lines[pos:pos] = _split_lines(op.new_text)
    return "\n".join(lines)


def apply_operation(content: str, op: EditOp) -> str:
    if isinstance(op, PrependOp):
        return op.new_text + ("\n" + content if content else "")
    if isinstance(op, AppendOp):
        return (content + "\n" if content else "") + op.new_text
    if isinstance(op, ReplaceRangeOp):
        return _replace_range(content, op.start_line, op.end_line, op.new_text)
    if isinstance(op, SearchAndReplaceOp):
        return _search_and_replace(content, op.search, op.replace, op.all)
    if isinstance(op, InsertAfterOp):
        return _insert_after(content, op)
    raise EditApplyError(f"unknown operation: {op!r}")


def apply_operations(content: str, operations: Iterable[EditOp]) -> str:
    """Apply *operations* in order, each against the previous output.

    Raises :class:`EditApplyError` when a ``search_and_replace`` search
    string or an ``insert_after`` anchor is absent.
    """
    out = content or ""
    for op in operations:
        out = apply_operation(out, op)
    return out


# ---------------------------------------------------------------------------
# Plan results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FileSnapshot:
    path: str
    content: Optional[str]  # None: file did not exist


@dataclass(frozen=True)
class StepPreview:
    file_path: str
    old_text: str
    new_text: str


@dataclass
class StepApplyResult:
    applied: bool
    file_path: str
    error: str = ""
    before_snapshot: Optional[FileSnapshot] = None


@dataclass
class PlanApplyResult:
    applied: List[str] = field(default_factory=list)
    failed: List[tuple[str, str]] = field(default_factory=list)
    before_snapshots: List[FileSnapshot] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


@dataclass(frozen=True)
class FileChangeResult:
    """Original and transformed content for one file of an edit plan."""
    path: str
    original: str
    proposed: str

    @property
    def changed(self) -> bool:
        return self.original != self.proposed


def apply_edit_plan(plan: EditPlan, originals: dict[str, str]) -> List[FileChangeResult]:
    """Apply *plan* to in-memory *originals* (path -> content).

    Several ``FileEditPlan`` entries for the same path chain in order.
    """
    current: dict[str, str] = {}
    order: List[str] = []
    for fe in plan.file_edits:
        if fe.path not in current:
            current[fe.path] = originals.get(fe.path, "")
            order.append(fe.path)
        current[fe.path] = apply_operations(current[fe.path], fe.operations)
    return [FileChangeResult(path=p, original=originals.get(p, ""), proposed=current[p])
            for p in order]


def build_patch(changes: Sequence[FileChangeResult]) -> str:
    """Join per-file unified diffs for every file that actually changed."""
    parts = [create_file_patch(c.path, c.original, c.proposed) for c in changes if c.changed]
    return "\n".join(p for p in parts if p)


# ---------------------------------------------------------------------------
# Workspace-backed engine
# ---------------------------------------------------------------------------

class EditPlanEngine:
    """Preview and apply plans against a :class:`Workspace`."""

    def __init__(self, workspace: Workspace,
                 read_file: Optional[Callable[[str], str]] = None):
        self.workspace = workspace
        self._read = read_file or workspace.read_file

    def _read_or_none(self, path: str) -> Optional[str]:
        try:
            return self._read(path)
        except WorkspaceError:
            return None

    def preview_step(self, step: PlanStep) -> StepPreview:
        """Preview *step* without writing. Raises :class:`EditApplyError`."""
        path = normalize_rel_path(step.file_path)
        old_text = self._read_or_none(path) or ""
        if step.operation == "delete":
            return StepPreview(file_path=path, old_text=old_text, new_text="")
        return StepPreview(file_path=path, old_text=old_text,
                           new_text=apply_operations(old_text, step.operations))

    def apply_step(self, step: PlanStep) -> StepApplyResult:
        """Apply one step; failures are reported, not raised."""
        path = normalize_rel_path(step.file_path)
        before = FileSnapshot(path=path, content=self._read_or_none(path))
        try:
            if step.operation == "delete":
                self.workspace.delete_file(path)
            else:
                new_text = apply_operations(before.content or "", step.operations)
                self.workspace.write_file(path, new_text)
        except (EditApplyError, WorkspaceError) as exc:
            logger.warning("[EditPlan] step %s failed on %s: %s", step.id, path, exc)
            return StepApplyResult(applied=False, file_path=path, error=str(exc),
                                   before_snapshot=before)
        logger.info("[EditPlan] applied step %s (%s %s)", step.id, step.operation, path)
        return StepApplyResult(applied=True, file_path=path, before_snapshot=before)

    def apply_plan(self, plan: StepPlan) -> PlanApplyResult:
        """Apply steps sequentially; stops on the first failure."""
        result = PlanApplyResult()
        for step in plan.steps:
            r = self.apply_step(step)
            if r.before_snapshot is not None:
                result.before_snapshots.append(r.before_snapshot)
            if not r.applied:
                result.failed.append((r.file_path, r.error or "unknown"))
                return result
            result.applied.append(r.file_path)
        return result

    def apply_patch(self, patch: str) -> PlanApplyResult:
        """Apply a multi-file unified diff with no fuzz.

        Every file is patched in memory first; nothing is written unless
        all files apply cleanly.
        """
        result = PlanApplyResult()
        chunks = split_patch_by_file(patch)
        for path in chunks:
            if not is_safe_rel_path(path):
                result.failed.append((path, "path escapes workspace"))
                return result

        staged: List[tuple[str, Optional[str], str]] = []
        for path, chunk in chunks.items():
            old = self._read_or_none(path)
            try:
                staged.append((path, old, apply_unified_diff(old or "", chunk)))
            except EditApplyError as exc:
                result.failed.append((path, str(exc)))
                return result

        for path, old, new in staged:
            result.before_snapshots.append(FileSnapshot(path=path, content=old))
            try:
                self.workspace.write_file(path, new)
                result.applied.append(path)
            except WorkspaceError as exc:
                result.failed.append((path, str(exc)))
        return result

    def revert(self, snapshots: Sequence[FileSnapshot]) -> PlanApplyResult:
        """Restore *snapshots*; files that did not exist before are deleted."""
        result = PlanApplyResult()
        for snap in reversed(list(snapshots)):
            try:
                if snap.content is None:
                    if self.workspace.exists(snap.path):
                        self.workspace.delete_file(snap.path)
                else:
                    self.workspace.write_file(snap.path, snap.content)
                result.applied.append(snap.path)
            except WorkspaceError as exc:
                logger.error("[EditPlan] revert failed for %s: %s", snap.path, exc)
                result.failed.append((snap.path, str(exc)))
        return result
