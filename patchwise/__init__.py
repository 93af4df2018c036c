"""
patchwise — grounded, reviewable patches from natural-language requests.

Public API for library usage::

    from patchwise import run_request, RequestResult

    result = run_request("add a docstring to utils.py", working_dir=".")
"""

from .api import run_request, RequestResult
from .orchestrator import Orchestrator, RunOutcome

__all__ = ["run_request", "RequestResult", "Orchestrator", "RunOutcome"]
