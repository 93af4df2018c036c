"""Cancellation/timeout kernel — per-run tokens, races and hard deadlines."""

from .token import CancellationToken
from .manager import (
    RunRegistry, RunHandle, PhaseDeadlines, new_run_id,
    race_with_cancel, race_with_timeout, throw_if_cancelled,
    PLANNING_TIMEOUT, DIFF_GENERATION_TIMEOUT, VALIDATION_TIMEOUT,
    PLAN_AND_EDIT_PLAN_TIMEOUT,
)

__all__ = [
    "CancellationToken", "RunRegistry", "RunHandle", "PhaseDeadlines",
    "new_run_id", "race_with_cancel", "race_with_timeout", "throw_if_cancelled",
    "PLANNING_TIMEOUT", "DIFF_GENERATION_TIMEOUT", "VALIDATION_TIMEOUT",
    "PLAN_AND_EDIT_PLAN_TIMEOUT",
]
