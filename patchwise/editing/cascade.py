"""
Patch generation cascade.

Tiers, each tried only when the previous one produced nothing usable:

1. **edit_plan**: the model writes a short plan, then a JSON edit plan
   (retried once with a stricter instruction). The plan is applied
   locally and the diff is computed locally.
2. **model_diff**: the model writes a unified diff directly (retried
   once with a stricter instruction); long diffs are flagged partial.
3. **whole_file**: per file, deterministic prepend patterns first, then
   the model regenerates the full file, which is diffed locally.
4. **none**: an empty patch plus the plan text.

Every backend call goes through :func:`race_with_cancel` and a phase
deadline. A timeout, validation failure or backend error escalates to
the next tier; cancellation propagates.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Literal, Optional, TypeVar, Union

from ..errors import EditApplyError, LLMError, PhaseTimeoutError
from ..intent.simple_edit import apply_simple_edit
from ..llm.base import GenerateOptions, GenerativeBackend
from ..runs import PhaseDeadlines, RunHandle, race_with_cancel, race_with_timeout
from ..workspace import is_safe_rel_path
from .diff_parser import cap_patch_lines, extract_explanation, extract_unified_diff, split_patch_by_file
from .edit_plan import EditPlan, PlanInvalid, StepPlan, parse_edit_plan, parse_step_plan
from .plan_engine import FileChangeResult, apply_operations, build_patch
from .prompts import (
    DEFAULT_PLAN, FILE_EDIT_SYSTEM_PROMPT, STRICT_DIFF_INSTRUCTION, STRICT_JSON_INSTRUCTION,
    EditRequest, build_diff_only_prompt, build_edit_plan_prompt, build_file_edit_prompt,
    build_plan_prompt,
)
from .unified_diff import apply_unified_diff

logger = logging.getLogger(__name__)

T = TypeVar("T")

PatchTier = Literal["edit_plan", "model_diff", "whole_file", "none"]

FALLBACK_DIFF_MAX_LINES = 300
PLAN_MAX_TOKENS = 256
PLAN_MAX_CHARS = 2000
EDIT_PLAN_MAX_TOKENS = 4096
MODEL_DIFF_MAX_TOKENS = 8000
FILE_EDIT_MAX_TOKENS = 8192
FILE_EDIT_TEMPERATURE = 0.2
STRICT_TEMPERATURE = 0.1

_WHOLE_FILE_FENCE = re.compile(r"^```[\w-]*\n?([\s\S]*?)```$")

# Recoverable failures that move the cascade to its next tier
_ESCALATE = (PhaseTimeoutError, LLMError, EditApplyError)


@dataclass
class PlanAndPatch:
    """Outcome of the cascade.

    ``patch`` always holds the complete diff. When a model diff runs past
    the line cap, ``partial`` is set and ``capped_patch`` holds the
    truncated copy for display.
    """

    explanation: str
    patch: str
    tier: PatchTier
    partial: bool = False
    capped_patch: Optional[str] = None
    edit_plan: Optional[Union[StepPlan, EditPlan]] = None
    file_changes: List[FileChangeResult] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        """An empty patch means no change was produced."""
        return not self.patch.strip()


class PatchGenerator:
    """Runs the tier cascade for one edit request."""

    def __init__(self, backend: GenerativeBackend,
                 deadlines: PhaseDeadlines | None = None,
                 options: GenerateOptions | None = None,
                 fallback_diff_max_lines: int = FALLBACK_DIFF_MAX_LINES,
                 progress: Any = None):
        self.backend = backend
        self.deadlines = deadlines or PhaseDeadlines()
        self.options = options or GenerateOptions(temperature=0.7, top_p=0.9, max_tokens=2048)
        self.fallback_diff_max_lines = fallback_diff_max_lines
        self.progress = progress

    # ── Helpers ──

    def _step(self, phase: str, message: str, data: Optional[dict] = None) -> None:
        if self.progress is not None:
            self.progress.step(phase, message, data)

    async def _guarded(self, run: RunHandle, phase: str, seconds: float,
                       task: Awaitable[T]) -> T:
        """Race *task* against cancellation and the phase deadline."""
        return await race_with_cancel(
            run.run_id, run.token,
            race_with_timeout(phase, seconds, task, token=run.token,
                              enabled=self.deadlines.enabled),
        )

    def _opts(self, **overrides) -> GenerateOptions:
        return self.options.but(**overrides)

    @property
    def _temperature(self) -> float:
        return self.options.temperature if self.options.temperature is not None else 0.7

    def _max_tokens(self, cap: int) -> int:
        return min(cap, self.options.max_tokens or cap)

    # ── Entry point ──

    async def generate(self, req: EditRequest, run: RunHandle) -> PlanAndPatch:
        run.throw_if_cancelled()
        started = time.monotonic()

        plan = await self._plan(req, run)

        remaining = self.deadlines.plan_and_edit_plan - (time.monotonic() - started)
        result = await self._tier(run, "edit plan", self._edit_plan_tier(req, plan, run),
                                  phase="plan_and_edit_plan", seconds=max(1.0, remaining))
        if result:
            return result

        result = await self._tier(run, "model diff", self._model_diff_tier(req, plan, run),
                                  phase="diff_generation",
                                  seconds=self.deadlines.diff_generation)
        if result:
            return result

        result = await self._whole_file_tier(req, plan, run)
        if result:
            return result

        logger.warning("[Cascade] all tiers exhausted for %s", run.run_id)
        self._step("diff", "No change produced", {"tier": "none"})
        return PlanAndPatch(explanation=plan, patch="", tier="none")

    async def _tier(self, run: RunHandle, name: str, task: Awaitable[Optional[PlanAndPatch]],
                    phase: str, seconds: float) -> Optional[PlanAndPatch]:
        try:
            return await self._guarded(run, phase, seconds, task)
        except _ESCALATE as exc:
            logger.warning("[Cascade] %s tier failed, escalating: %s", name, exc)
            return None

    # ── Step 1: natural-language plan ──

    async def _plan(self, req: EditRequest, run: RunHandle) -> str:
        self._step("plan", "Planning changes")
        try:
            raw = await self._guarded(
                run, "planning", self.deadlines.planning,
                self.backend.generate_completion(
                    build_plan_prompt(req), True,
                    self._opts(max_tokens=self._max_tokens(PLAN_MAX_TOKENS)),
                    run.run_id,
                ),
            )
        except _ESCALATE as exc:
            logger.warning("[Cascade] planning failed, using default plan: %s", exc)
            return DEFAULT_PLAN
        return (raw or "").strip()[:PLAN_MAX_CHARS] or DEFAULT_PLAN

    # ── Tier 1: JSON edit plan applied locally ──

    def _parse_plan(self, raw: str, req: EditRequest) -> Optional[Union[StepPlan, EditPlan]]:
        result = parse_step_plan(raw, targets=req.target_paths or None,
                                 allow_new_files=req.allow_new_files)
        if not isinstance(result, PlanInvalid):
            return result.value
        compact = parse_edit_plan(raw)
        if isinstance(compact, PlanInvalid):
            logger.info("[Cascade] edit plan rejected: %s", result.error)
            return None
        allowed = set(req.target_paths)
        if allowed and not set(compact.value.target_files) <= allowed:
            logger.info("[Cascade] compact plan targets undeclared files")
            return None
        return compact.value

    def _apply_locally(self, plan: Union[StepPlan, EditPlan],
                       req: EditRequest) -> List[FileChangeResult]:
        originals = {f.path: f.content or "" for f in req.files}
        if isinstance(plan, StepPlan):
            entries = [(s.file_path, s.operation, s.operations) for s in plan.steps]
        else:
            entries = [(fe.path, "modify", fe.operations) for fe in plan.file_edits]

        current: Dict[str, str] = {}
        failed: set[str] = set()
        for path, operation, ops in entries:
            if path in failed:
                continue
            text = current.get(path, originals.get(path, ""))
            try:
                current[path] = "" if operation == "delete" else apply_operations(text, ops)
            except EditApplyError as exc:
                logger.warning("[Cascade] skipping %s: %s", path, exc)
                failed.add(path)
                current.pop(path, None)
        return [FileChangeResult(path=p, original=originals.get(p, ""), proposed=c)
                for p, c in current.items()]

    async def _edit_plan_tier(self, req: EditRequest, plan: str,
                              run: RunHandle) -> Optional[PlanAndPatch]:
        prompt = build_edit_plan_prompt(req, plan)
        attempts = [
            (prompt, True, self._opts(temperature=max(0.0, self._temperature - 0.1),
                                      max_tokens=self._max_tokens(EDIT_PLAN_MAX_TOKENS))),
            (f"{prompt}\n\n{STRICT_JSON_INSTRUCTION}", False,
             self._opts(temperature=STRICT_TEMPERATURE,
                        max_tokens=self._max_tokens(EDIT_PLAN_MAX_TOKENS))),
        ]
        for attempt, (text, streaming, opts) in enumerate(attempts, start=1):
            run.throw_if_cancelled()
            self._step("plan", "Requesting edit plan" if attempt == 1 else
                       "Retrying edit plan (strict JSON)", {"attempt": attempt})
            raw = await race_with_cancel(
                run.run_id, run.token,
                self.backend.generate_completion(text, streaming, opts, run.run_id),
            )
            edit_plan = self._parse_plan(raw or "", req)
            if edit_plan is None:
                continue

            self._step("apply", "Applying edit plan locally")
            changes = [c for c in self._apply_locally(edit_plan, req) if c.changed]
            patch = build_patch(changes)
            if patch:
                logger.info("[Cascade] edit plan produced %d changed file(s)", len(changes))
                return PlanAndPatch(explanation=plan, patch=patch, tier="edit_plan",
                                    edit_plan=edit_plan, file_changes=changes)
            logger.info("[Cascade] edit plan applied with no effective change")
        return None

    # ── Tier 2: model-written unified diff ──

    def _changes_from_patch(self, patch: str, req: EditRequest) -> List[FileChangeResult]:
        """Apply each file chunk to the request's content; raises EditApplyError."""
        originals = {f.path: f.content or "" for f in req.files}
        changes: List[FileChangeResult] = []
        for path, chunk in split_patch_by_file(patch).items():
            original = originals.get(path, "")
            try:
                proposed = apply_unified_diff(original, chunk)
            except EditApplyError as exc:
                raise EditApplyError(f"{path}: {exc}") from exc
            changes.append(FileChangeResult(path=path, original=original, proposed=proposed))
        return changes

    async def _model_diff_tier(self, req: EditRequest, plan: str,
                               run: RunHandle) -> Optional[PlanAndPatch]:
        prompt = build_diff_only_prompt(req, plan)
        attempts = [
            (prompt, max(0.0, self._temperature - 0.1)),
            (f"{prompt}\n\n{STRICT_DIFF_INSTRUCTION}", STRICT_TEMPERATURE),
        ]
        for attempt, (text, temperature) in enumerate(attempts, start=1):
            run.throw_if_cancelled()
            self._step("diff", "Generating diff" if attempt == 1 else
                       "Retrying diff (strict format)", {"attempt": attempt})
            raw = await race_with_cancel(
                run.run_id, run.token,
                self.backend.generate_completion(
                    text, False,
                    self._opts(temperature=temperature,
                               max_tokens=self._max_tokens(MODEL_DIFF_MAX_TOKENS)),
                    run.run_id,
                ),
            )
            patch = extract_unified_diff(raw or "")
            if patch is None:
                logger.info("[Cascade] no valid unified diff in attempt %d", attempt)
                continue
            unsafe = [p for p in split_patch_by_file(patch) if not is_safe_rel_path(p)]
            if unsafe:
                logger.warning("[Cascade] diff touches paths outside the workspace: %s", unsafe)
                continue
            try:
                changes = self._changes_from_patch(patch, req)
            except EditApplyError as exc:
                logger.info("[Cascade] model diff does not apply: %s", exc)
                continue
            if not any(c.changed for c in changes):
                logger.info("[Cascade] model diff makes no effective change")
                continue

            capped, was_capped = cap_patch_lines(patch, self.fallback_diff_max_lines)
            return PlanAndPatch(
                explanation=extract_explanation(raw, patch),
                patch=patch,
                tier="model_diff",
                partial=was_capped,
                capped_patch=capped if was_capped else None,
                file_changes=changes,
            )
        return None

    # ── Tier 3: whole-file regeneration ──

    async def generate_file_edit(self, path: str, original: str, instructions: str,
                                 run: RunHandle, is_new: bool = False) -> str:
        """Full post-edit content for one file.

        Deterministic prepend patterns are tried first; the model is only
        called when none matches.
        """
        if not is_new:
            simple = apply_simple_edit(original, instructions)
            if simple is not None and simple != original:
                logger.info("[Cascade] simple edit pattern matched for %s", path)
                return simple

        raw = await self._guarded(
            run, "diff_generation", self.deadlines.diff_generation,
            self.backend.generate_chat(
                FILE_EDIT_SYSTEM_PROMPT,
                build_file_edit_prompt(path, original, instructions, is_new),
                GenerateOptions(temperature=FILE_EDIT_TEMPERATURE,
                                max_tokens=FILE_EDIT_MAX_TOKENS),
                run.run_id,
            ),
        )
        content = (raw or "").strip()
        fence = _WHOLE_FILE_FENCE.match(content)
        if fence:
            content = fence.group(1).strip()
        if not content:
            return original
        if original.endswith("\n") and not content.endswith("\n"):
            content += "\n"
        return content

    async def _whole_file_tier(self, req: EditRequest, plan: str,
                               run: RunHandle) -> Optional[PlanAndPatch]:
        sources = req.target_sources
        if not sources:
            return None
        self._step("diff", "Regenerating file content", {"files": len(sources)})

        changes: List[FileChangeResult] = []
        for f in sources:
            run.throw_if_cancelled()
            original = f.content or ""
            # Deterministic patterns see the bare request; the model also gets the plan
            simple = None if f.is_new else apply_simple_edit(original, req.prompt)
            try:
                if simple is not None and simple != original:
                    proposed = simple
                else:
                    proposed = await self.generate_file_edit(
                        f.path, original, f"{req.prompt}\n\nPlan: {plan}", run, is_new=f.is_new)
            except _ESCALATE as exc:
                logger.warning("[Cascade] whole-file edit failed for %s: %s", f.path, exc)
                continue
            change = FileChangeResult(path=f.path, original=original, proposed=proposed)
            if change.changed:
                changes.append(change)

        patch = build_patch(changes)
        if not patch:
            return None
        return PlanAndPatch(explanation=plan, patch=patch, tier="whole_file",
                            file_changes=changes)
