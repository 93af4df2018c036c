"""
Error taxonomy shared by every stage of a run.

Cancellation always propagates to the top of the run. Timeouts, plan
validation failures and diff parse failures are recovered locally by
escalating to the next fallback tier.
"""

from __future__ import annotations


class PatchwiseError(Exception):
    """Base class for all patchwise errors."""


class RunCancelledError(PatchwiseError):
    """Raised when the run owning a token has been cancelled."""

    def __init__(self, run_id: str):
        super().__init__("Run cancelled")
        self.run_id = run_id


class PhaseTimeoutError(PatchwiseError):
    """Raised when a phase does not settle before its deadline."""

    def __init__(self, phase: str, seconds: float):
        super().__init__(f"{phase} timed out after {seconds:g}s")
        self.phase = phase
        self.seconds = seconds


class PlanValidationError(PatchwiseError):
    """Malformed plan JSON or a schema violation."""

    def __init__(self, code: str, message: str, field: str | None = None,
                 step_index: int | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.field = field
        self.step_index = step_index

    def __repr__(self) -> str:
        return (f"PlanValidationError(code={self.code!r}, message={self.message!r}, "
                f"field={self.field!r}, step_index={self.step_index!r})")


class DiffParseError(PatchwiseError):
    """Diff text does not have the required unified-diff shape."""


class EditApplyError(PatchwiseError):
    """An edit operation cannot be applied to the current content."""


class WorkspaceError(PatchwiseError):
    """Workspace read/write failure."""


class FileNotFoundInWorkspace(WorkspaceError):
    """Requested file does not exist under the workspace root."""


class PathEscapeError(WorkspaceError):
    """A relative path resolves outside the workspace root."""


class LLMError(PatchwiseError):
    """Raised when all backend retries are exhausted."""
