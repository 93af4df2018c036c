"""
Run manager — explicit run registry plus cancellation and deadline races.

Exactly one run is "current" at a time: registering a new run makes it the
only target of :meth:`RunRegistry.cancel_current`. Every awaited step of a
run goes through :func:`race_with_cancel`, and phases with a hard deadline
also go through :func:`race_with_timeout`.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, TypeVar

from ..errors import PhaseTimeoutError, RunCancelledError
from .token import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Hard per-phase deadlines (seconds)
PLANNING_TIMEOUT = 60.0
DIFF_GENERATION_TIMEOUT = 90.0
VALIDATION_TIMEOUT = 30.0
# Plan + edit-plan JSON path; the diff itself is generated locally
PLAN_AND_EDIT_PLAN_TIMEOUT = 120.0


@dataclass(frozen=True)
class PhaseDeadlines:
    """Deadlines applied to each pipeline phase."""
    planning: float = PLANNING_TIMEOUT
    diff_generation: float = DIFF_GENERATION_TIMEOUT
    validation: float = VALIDATION_TIMEOUT
    plan_and_edit_plan: float = PLAN_AND_EDIT_PLAN_TIMEOUT
    enabled: bool = True

    @classmethod
    def from_config(cls, cfg) -> "PhaseDeadlines":
        return cls(
            planning=cfg.PLANNING_TIMEOUT,
            diff_generation=cfg.DIFF_GENERATION_TIMEOUT,
            validation=cfg.VALIDATION_TIMEOUT,
            plan_and_edit_plan=cfg.PLAN_AND_EDIT_PLAN_TIMEOUT,
            enabled=not cfg.NO_TIMEOUT,
        )


@dataclass(frozen=True)
class RunHandle:
    """Handle passed to every subordinate call of a run."""
    run_id: str
    token: CancellationToken

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def throw_if_cancelled(self) -> None:
        throw_if_cancelled(self.run_id, self.token)


def new_run_id() -> str:
    return f"run-{uuid.uuid4().hex[:12]}"


class RunRegistry:
    """Single-entry registry of the run the user can currently cancel."""

    def __init__(self) -> None:
        self._current: dict[str, CancellationToken] = {}

    def create_run(self, run_id: str | None = None) -> RunHandle:
        """Create a token for *run_id* and make it the current run."""
        run_id = run_id or new_run_id()
        token = CancellationToken(run_id)
        self._current = {run_id: token}
        logger.debug("[Run] registered %s", run_id)
        return RunHandle(run_id=run_id, token=token)

    @property
    def current_run_id(self) -> str | None:
        return next(iter(self._current), None)

    def get(self, run_id: str) -> CancellationToken | None:
        return self._current.get(run_id)

    def is_active(self, run_id: str, token: CancellationToken) -> bool:
        """True while *run_id* is still the current run and not cancelled."""
        return self._current.get(run_id) is token and not token.cancelled

    def cancel(self, run_id: str) -> bool:
        token = self._current.get(run_id)
        if token is None or token.cancelled:
            return False
        token.cancel()
        return True

    def cancel_current(self) -> bool:
        """Cancel the current run. Returns True if a run was cancelled."""
        run_id = self.current_run_id
        if run_id is None:
            return False
        return self.cancel(run_id)

    def end_run(self, run_id: str) -> None:
        """Unregister *run_id* (success, failure or cancel)."""
        if run_id in self._current:
            del self._current[run_id]
            logger.debug("[Run] unregistered %s", run_id)


def throw_if_cancelled(run_id: str, token: CancellationToken) -> None:
    """Raise :class:`RunCancelledError` if *token* is already cancelled."""
    if token.cancelled:
        raise RunCancelledError(run_id)


def _discard(task: Awaitable[Any]) -> None:
    if asyncio.iscoroutine(task):
        task.close()
    elif isinstance(task, asyncio.Future):
        task.cancel()


async def race_with_cancel(run_id: str, token: CancellationToken,
                           task: Awaitable[T]) -> T:
    """Await *task*, raising :class:`RunCancelledError` the instant *token*
    is cancelled, even if the task itself never observes the abort signal.

    The losing task is cancelled.
    """
    if token.cancelled:
        _discard(task)
        raise RunCancelledError(run_id)

    task_fut = asyncio.ensure_future(task)
    cancel_fut = token.when_cancelled()
    try:
        await asyncio.wait({task_fut, cancel_fut},
                           return_when=asyncio.FIRST_COMPLETED)
    except BaseException:
        task_fut.cancel()
        raise

    if token.cancelled:
        task_fut.cancel()
        raise RunCancelledError(run_id)
    return task_fut.result()


async def race_with_timeout(phase: str, seconds: float, task: Awaitable[T],
                            token: CancellationToken | None = None,
                            enabled: bool = True) -> T:
    """Await *task*, raising :class:`PhaseTimeoutError` after *seconds*.

    On timeout the token's in-flight request is aborted (no cancel event is
    emitted; the run itself stays alive so the caller can escalate).
    """
    if not enabled:
        return await task

    task_fut = asyncio.ensure_future(task)
    try:
        done, _ = await asyncio.wait({task_fut}, timeout=seconds)
    except BaseException:
        task_fut.cancel()
        raise

    if task_fut in done:
        return task_fut.result()

    logger.warning("[Run] %s exceeded %.1fs deadline", phase, seconds)
    if token is not None:
        try:
            token.abort_request()
        except Exception as exc:
            logger.debug("[Run] abort_request failed: %s", exc)
    task_fut.cancel()
    raise PhaseTimeoutError(phase, seconds)
