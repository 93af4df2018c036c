"""
Programmatic API for patchwise — use as a library from Python code.

Example usage::

    from patchwise import run_request

    result = run_request(
        "add a license header to src/main.py",
        provider="ollama",
        model="qwen2.5-coder:7b",
        working_dir="path/to/project",
    )
    print(result.status)
    print(result.patch)
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from .cli_display import token_tracker
from .config import Config
from .intent import RouteContext
from .llm import create_client
from .orchestrator import Orchestrator, RunOutcome
from .workspace import LocalWorkspace

logger = logging.getLogger(__name__)


@dataclass
class RequestResult:
    """Structured result returned by :func:`run_request`."""
    success: bool
    status: str
    action: str
    message: str = ""
    patch: str = ""
    tier: str = "none"
    partial: bool = False
    files: list[str] = field(default_factory=list)
    files_written: list[str] = field(default_factory=list)
    summary: dict = field(default_factory=dict)
    token_usage: dict = field(default_factory=dict)
    error: str = ""

    @classmethod
    def from_outcome(cls, outcome: RunOutcome) -> "RequestResult":
        result = outcome.result
        files = []
        if outcome.ground_truth is not None:
            files = outcome.ground_truth.paths
        elif outcome.path:
            files = [outcome.path]
        return cls(
            success=outcome.status == "ready",
            status=outcome.status,
            action=outcome.action,
            message=outcome.message,
            patch=result.patch if result else "",
            tier=result.tier if result else "none",
            partial=result.partial if result else False,
            files=files,
            summary=outcome.summary.model_dump(by_alias=True) if outcome.summary else {},
            error=outcome.message if outcome.status == "failed" else "",
        )


def run_request(
    message: str,
    *,
    provider: str | None = None,
    model: str | None = None,
    current_file: str | None = None,
    apply: bool = False,
    config_path: str | None = None,
    working_dir: str | None = None,
) -> RequestResult:
    """Handle one request against the project in *working_dir*.

    Args:
        message: The natural-language request.
        provider: ``"ollama"`` or ``"openai"`` (default: from config).
        model: Model name override (default: from config).
        current_file: Workspace-relative path of the file the user has open.
        apply: Write the resulting patch to disk when the run is ready.
        config_path: Explicit path to ``.patchwise.yaml``.
        working_dir: Project root (default: CWD).

    Returns:
        A :class:`RequestResult` with the status, patch and summary.
    """
    cfg = Config.load(config_path)
    root = os.path.abspath(working_dir or os.getcwd())
    try:
        backend = create_client(cfg, provider=provider, model=model)
    except ValueError as exc:
        return RequestResult(success=False, status="failed", action="none", error=str(exc))

    orchestrator = Orchestrator(backend, LocalWorkspace(root), cfg=cfg)
    context = RouteContext(current_open_file=current_file, workspace_root=root)
    outcome = asyncio.run(orchestrator.handle_message(message, context))

    result = RequestResult.from_outcome(outcome)
    if apply and outcome.status == "ready" and outcome.result is not None:
        applied = orchestrator.apply(outcome)
        result.files_written = list(applied.applied) if applied.success else []
        if not applied.success:
            result.success = False
            result.error = "; ".join(f"{p}: {e}" for p, e in applied.failed)

    result.token_usage = {
        "prompt_tokens": token_tracker.total_prompt_tokens,
        "completion_tokens": token_tracker.total_completion_tokens,
        "total_tokens": token_tracker.total_tokens,
        "calls": token_tracker.call_count,
    }
    return result
