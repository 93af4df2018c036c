"""
Cancellation token — one per run.

The token carries three things:

* a monotonic ``cancelled`` flag,
* an abort signal (``threading.Event``) shared with in-flight backend
  requests, which run on worker threads and poll it between chunks,
* a ``when_cancelled()`` future that is rejected exactly once with
  :class:`RunCancelledError`, so any await can be raced against it.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable

from ..errors import RunCancelledError

logger = logging.getLogger(__name__)


def _mark_retrieved(fut: asyncio.Future) -> None:
    # Avoid "exception was never retrieved" noise for unobserved tokens
    if not fut.cancelled():
        fut.exception()


class CancellationToken:
    """Cancellation state owned by exactly one run."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        self._cancelled = False
        self._lock = threading.Lock()
        self._signal = threading.Event()
        self._request_signal = threading.Event()
        self._future: asyncio.Future | None = None
        self._future_loop: asyncio.AbstractEventLoop | None = None
        self._callbacks: list[Callable[[str], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def signal(self) -> threading.Event:
        """Run-level abort signal; set once on cancel, never cleared."""
        return self._signal

    def new_request_signal(self) -> threading.Event:
        """Return a fresh abort signal for the next backend request.

        A timeout aborts only the request in flight; later requests of the
        same run get a clean signal unless the run itself is cancelled.
        """
        with self._lock:
            self._request_signal = threading.Event()
            if self._cancelled:
                self._request_signal.set()
            return self._request_signal

    def when_cancelled(self) -> asyncio.Future:
        """Future bound to the running loop; rejects once the run is cancelled."""
        loop = asyncio.get_running_loop()
        with self._lock:
            if self._future is None or self._future_loop is not loop:
                fut = loop.create_future()
                fut.add_done_callback(_mark_retrieved)
                self._future = fut
                self._future_loop = loop
                if self._cancelled:
                    fut.set_exception(RunCancelledError(self.run_id))
            return self._future

    def add_cancel_callback(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Register ``callback(run_id)`` to run on cancel. Returns a disposer."""
        self._callbacks.append(callback)

        def _dispose() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _dispose

    def abort_request(self) -> None:
        """Abort the in-flight request without cancelling the run (timeouts)."""
        self._request_signal.set()

    def cancel(self) -> None:
        """Cancel the run. Idempotent; only the first call has any effect."""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            self._signal.set()
            self._request_signal.set()
            fut, loop = self._future, self._future_loop
            callbacks = list(self._callbacks)

        if fut is not None and loop is not None and not loop.is_closed():
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                self._reject(fut)
            else:
                loop.call_soon_threadsafe(self._reject, fut)

        logger.info("[Run] %s cancelled", self.run_id)
        for cb in callbacks:
            try:
                cb(self.run_id)
            except Exception as exc:
                logger.error("[Run] cancel callback failed for %s: %s", self.run_id, exc)

    def _reject(self, fut: asyncio.Future) -> None:
        if not fut.done():
            fut.set_exception(RunCancelledError(self.run_id))

    def __repr__(self) -> str:
        return f"CancellationToken(run_id={self.run_id!r}, cancelled={self._cancelled})"
