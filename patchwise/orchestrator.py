"""
Orchestrator — one run per user message.

Routes the message, then either opens a file, runs the patch cascade on
explicit or auto-discovered targets, or produces a chat reply. Every run
is registered as the current run, reports through the progress channel
and is unregistered when it ends, whatever the outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Literal, Optional

from .config import Config
from .editing import (
    EditPlanEngine, EditRequest, PatchGenerator, PlanAndPatch, PlanApplyResult,
    SourceFile, StepPlan,
)
from .editing.prompts import CHAT_SYSTEM_PROMPT, build_chat_user_prompt
from .errors import FileNotFoundInWorkspace, LLMError, RunCancelledError, WorkspaceError
from .intent import (
    HIGH_CONFIDENCE_THRESHOLD, ChatRoute, FileEditAutoSearchRoute, FileEditRoute,
    FileOpenRoute, MultiFileEditRoute, RouteContext, RouteDecision, SearchCandidate,
    route, search_files_for_edit,
)
from .llm.base import GenerateOptions, GenerativeBackend
from .progress import ProgressChannel, RunProgress
from .runs import PhaseDeadlines, RunHandle, RunRegistry, race_with_cancel
from .summary import (
    ChangeSummary, ProposalFile, ProposalGroundTruth, build_proposal_ground_truth,
    generate_proposal_summary,
)
from .workspace import Workspace

logger = logging.getLogger(__name__)

RunStatus = Literal["ready", "no_change", "needs_choice", "not_found", "cancelled", "failed"]

CHAT_MAX_TOKENS = 128
CHAT_MIN_TEMPERATURE = 0.2
CHAT_MAX_TEMPERATURE = 0.7
MULTI_FILE_SEARCH_TARGETS = 3


@dataclass
class RunOutcome:
    """What a run produced. ``message`` is always suitable to show the user."""
    run_id: str
    action: str
    status: RunStatus
    message: str = ""
    path: Optional[str] = None
    content: Optional[str] = None
    result: Optional[PlanAndPatch] = None
    ground_truth: Optional[ProposalGroundTruth] = None
    summary: Optional[ChangeSummary] = None
    candidates: List[SearchCandidate] = field(default_factory=list)

    @property
    def patch(self) -> str:
        return self.result.patch if self.result else ""


def format_backend_error(exc: Exception) -> str:
    """Readable backend failure for a chat reply."""
    lines = str(exc).strip().split("\n")
    first = lines[0] if lines and lines[0] else "unknown error"
    rest = "\n".join(lines[1:]).strip() or "Endpoint: n/a"
    return f"LOCAL_MODEL_ERROR: {first}\n{rest}"


class Orchestrator:
    """Ties routing, the run kernel, the cascade and summaries together."""

    def __init__(self, backend: GenerativeBackend, workspace: Workspace,
                 cfg: Config | None = None,
                 channel: ProgressChannel | None = None,
                 registry: RunRegistry | None = None):
        self.backend = backend
        self.workspace = workspace
        self.cfg = cfg or Config()
        self.channel = channel or ProgressChannel(max_history=self.cfg.PROGRESS_HISTORY)
        self.registry = registry or RunRegistry()
        self.deadlines = PhaseDeadlines.from_config(self.cfg)
        self.options = GenerateOptions(temperature=self.cfg.TEMPERATURE, top_p=self.cfg.TOP_P,
                                       max_tokens=self.cfg.MAX_TOKENS)

    # ── Run control ──

    def cancel(self) -> bool:
        """Cancel the current run. Returns False when nothing is running."""
        return self.registry.cancel_current()

    def _bind(self, run: RunHandle) -> None:
        bind = getattr(self.backend, "bind_token", None)
        if bind is not None:
            bind(run.run_id, run.token)

    def _release(self, run: RunHandle) -> None:
        release = getattr(self.backend, "release_token", None)
        if release is not None:
            release(run.run_id)

    # ── Entry point ──

    async def handle_message(self, message: str,
                             context: RouteContext | None = None) -> RunOutcome:
        run = self.registry.create_run()
        progress = RunProgress(self.channel, run, self.registry)
        dispose = run.token.add_cancel_callback(
            lambda run_id: self.channel.emit_step(run_id, "cancel", "Run cancelled",
                                                  level="warn"))
        self._bind(run)
        decision: RouteDecision = ChatRoute()
        try:
            progress.step("intent", "Classifying request")
            decision = route(message, context)
            progress.step("intent", f"Route: {decision.action}", {"action": decision.action})

            if isinstance(decision, FileOpenRoute):
                return self._open_file(run, progress, decision)
            if isinstance(decision, FileEditRoute):
                return await self._edit_targets(run, progress, message, decision)
            if isinstance(decision, FileEditAutoSearchRoute):
                return await self._edit_auto_search(run, progress, decision)
            if isinstance(decision, MultiFileEditRoute):
                return await self._edit_multi_file(run, progress, message, decision, context)
            return await self._chat(run, progress, message, context)
        except RunCancelledError:
            logger.info("[Orchestrator] run %s cancelled", run.run_id)
            return RunOutcome(run_id=run.run_id, action=decision.action, status="cancelled",
                              message="Cancelled.")
        except WorkspaceError as exc:
            logger.error("[Orchestrator] workspace error in %s: %s", run.run_id, exc)
            progress.step("fail", str(exc), level="error")
            return RunOutcome(run_id=run.run_id, action=decision.action, status="failed",
                              message=f"Error: {exc}")
        finally:
            dispose()
            self._release(run)
            self.registry.end_run(run.run_id)

    # ── Routes ──

    def _open_file(self, run: RunHandle, progress: RunProgress,
                   decision: FileOpenRoute) -> RunOutcome:
        progress.step("targets", f"Opening {decision.target_path}")
        try:
            path, content = self.workspace.read_project_file(decision.target_path)
        except FileNotFoundInWorkspace:
            progress.step("fail", f"{decision.target_path} not found", level="warn")
            return RunOutcome(run_id=run.run_id, action=decision.action, status="not_found",
                              message=f"{decision.target_path} not found.")
        progress.step("ready", f"Opened {path}", {"path": path})
        return RunOutcome(run_id=run.run_id, action=decision.action, status="ready",
                          message=f"Opened {path}.", path=path, content=content)

    def _load_sources(self, hints: List[str], allow_missing: bool = False) -> List[SourceFile]:
        sources: List[SourceFile] = []
        for hint in hints:
            try:
                path, content = self.workspace.read_project_file(hint)
                sources.append(SourceFile(path=path, content=content))
            except FileNotFoundInWorkspace:
                if not allow_missing:
                    raise
                logger.info("[Orchestrator] %s does not exist yet, treating as new", hint)
                sources.append(SourceFile(path=hint, content="", is_new=True))
        return sources

    async def _edit_targets(self, run: RunHandle, progress: RunProgress, message: str,
                            decision: FileEditRoute) -> RunOutcome:
        progress.step("targets", "Resolving target files", {"targets": decision.targets})
        try:
            sources = self._load_sources(decision.targets)
        except FileNotFoundInWorkspace as exc:
            progress.step("fail", str(exc), level="warn")
            return RunOutcome(run_id=run.run_id, action=decision.action, status="not_found",
                              message=f"{decision.targets[0]} not found.")
        prompt = decision.instructions or message
        return await self._run_edit(run, progress, decision.action,
                                    EditRequest(prompt=prompt, files=sources))

    async def _edit_auto_search(self, run: RunHandle, progress: RunProgress,
                                decision: FileEditAutoSearchRoute) -> RunOutcome:
        progress.step("search", "Searching for the file to edit")
        candidates = await search_files_for_edit(
            decision.instructions, self.workspace.root,
            lambda _root, kw: self.workspace.search_by_name(kw),
            file_list=self.workspace.list_files(),
            run_id=run.run_id, token=run.token,
        )
        if not candidates:
            progress.step("search", "No matching file found", level="warn")
            return RunOutcome(run_id=run.run_id, action=decision.action, status="not_found",
                              message="No matching file found. Name the file to edit.")

        top = candidates[0]
        progress.step("search", f"Best match {top.path}",
                      {"candidates": [(c.path, round(c.confidence, 2)) for c in candidates]})
        if top.confidence < HIGH_CONFIDENCE_THRESHOLD and len(candidates) > 1:
            listing = "\n".join(f"{i}. {c.path}" for i, c in enumerate(candidates, start=1))
            return RunOutcome(run_id=run.run_id, action=decision.action, status="needs_choice",
                              message=f"Which file?\n{listing}\n\nReply with a number.",
                              candidates=candidates)

        sources = self._load_sources([top.path])
        outcome = await self._run_edit(run, progress, decision.action,
                                       EditRequest(prompt=decision.instructions, files=sources))
        outcome.candidates = candidates
        return outcome

    async def _edit_multi_file(self, run: RunHandle, progress: RunProgress, message: str,
                               decision: MultiFileEditRoute,
                               context: RouteContext | None) -> RunOutcome:
        hints = list(decision.target_hints or [])
        if not hints:
            progress.step("search", "Searching for related files")
            found = await search_files_for_edit(
                decision.instructions, self.workspace.root,
                lambda _root, kw: self.workspace.search_by_name(kw),
                file_list=self.workspace.list_files(),
                run_id=run.run_id, token=run.token,
            )
            hints = [c.path for c in found[:MULTI_FILE_SEARCH_TARGETS]]
        if not hints and context and context.current_open_file:
            hints = [context.current_open_file]

        progress.step("targets", f"{len(hints)} target file(s)", {"targets": hints})
        sources = self._load_sources(hints, allow_missing=True)
        req = EditRequest(prompt=decision.instructions or message, files=sources,
                          allow_new_files=True)
        return await self._run_edit(run, progress, decision.action, req)

    async def _run_edit(self, run: RunHandle, progress: RunProgress, action: str,
                        req: EditRequest) -> RunOutcome:
        generator = PatchGenerator(
            self.backend, deadlines=self.deadlines, options=self.options,
            fallback_diff_max_lines=self.cfg.FALLBACK_DIFF_MAX_LINES, progress=progress,
        )
        stop_heartbeat = progress.start_heartbeat("diff", "Generating patch")
        try:
            result = await generator.generate(req, run)
        finally:
            stop_heartbeat()

        paths = [f.path for f in req.files]
        if result.empty:
            progress.step("ready", "No change produced", {"tier": result.tier}, level="warn")
            return RunOutcome(run_id=run.run_id, action=action, status="no_change",
                              message=result.explanation, path=paths[0] if paths else None,
                              result=result)

        if not result.file_changes:
            # A proposal is only ready once it is grounded in actual content
            logger.error("[Orchestrator] %s patch has no verified file changes", result.tier)
            progress.step("fail", "Patch does not apply to the current files", level="error")
            return RunOutcome(run_id=run.run_id, action=action, status="failed",
                              message="The proposed patch does not apply to the current files.",
                              path=paths[0] if paths else None, result=result)

        ground_truth = build_proposal_ground_truth(
            ProposalFile(path=c.path, original=c.original, proposed=c.proposed)
            for c in result.file_changes
        )
        proposed = {c.path: c.proposed for c in result.file_changes}
        progress.step("validate", "Summarizing changes")
        summary = await generate_proposal_summary(
            self.backend, ground_truth, [result.explanation], run,
            lambda p: proposed.get(p, ""), deadlines=self.deadlines,
        )

        progress.step("ready", "Patch ready",
                      {"tier": result.tier, "partial": result.partial, "files": paths})
        return RunOutcome(run_id=run.run_id, action=action, status="ready",
                          message=result.explanation, path=paths[0] if paths else None,
                          result=result, ground_truth=ground_truth, summary=summary)

    async def _chat(self, run: RunHandle, progress: RunProgress, message: str,
                    context: RouteContext | None) -> RunOutcome:
        files: List[SourceFile] = []
        if context and context.current_open_file:
            try:
                files = self._load_sources([context.current_open_file])
            except FileNotFoundInWorkspace:
                logger.debug("[Orchestrator] open file %s is gone", context.current_open_file)

        temperature = min(CHAT_MAX_TEMPERATURE,
                          max(CHAT_MIN_TEMPERATURE, self.options.temperature or 0.7))
        opts = self.options.but(temperature=temperature,
                                max_tokens=min(CHAT_MAX_TOKENS,
                                               self.options.max_tokens or CHAT_MAX_TOKENS))
        progress.step("plan", "Generating reply")
        try:
            reply = await race_with_cancel(
                run.run_id, run.token,
                self.backend.generate_chat(CHAT_SYSTEM_PROMPT,
                                           build_chat_user_prompt(message, files),
                                           opts, run.run_id),
            )
        except LLMError as exc:
            logger.error("[Orchestrator] chat failed: %s", exc)
            progress.step("fail", "Backend error", level="error")
            return RunOutcome(run_id=run.run_id, action="chat", status="failed",
                              message=format_backend_error(exc))
        reply = (reply or "").strip() or "No response."
        progress.step("ready", "Reply ready")
        return RunOutcome(run_id=run.run_id, action="chat", status="ready", message=reply)

    # ── Applying ──

    def apply(self, outcome: RunOutcome) -> PlanApplyResult:
        """Write a ready outcome to the workspace.

        Step plans are applied step by step; every other tier applies its
        unified diff with no fuzz. A failure reverts whatever was written.
        """
        if outcome.status != "ready" or outcome.result is None:
            raise ValueError(f"outcome {outcome.run_id} has nothing to apply")
        engine = EditPlanEngine(self.workspace)
        plan = outcome.result.edit_plan
        if isinstance(plan, StepPlan):
            applied = engine.apply_plan(plan)
        else:
            applied = engine.apply_patch(outcome.result.patch)
        if not applied.success:
            logger.warning("[Orchestrator] apply failed for %s: %s", outcome.run_id, applied.failed)
            engine.revert(applied.before_snapshots)
        return applied
