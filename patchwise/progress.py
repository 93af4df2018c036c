"""
Progress channel — ordered, append-only event stream for runs.

Events have the shape ``{run_id, ts, level, phase, message, data}``. History
is a bounded buffer; subscribers are callbacks or bounded asyncio queues,
and every ``subscribe`` returns a disposer.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

logger = logging.getLogger(__name__)

ProgressLevel = Literal["info", "warn", "error", "debug"]
ProgressPhase = Literal[
    "intent", "targets", "search", "plan", "diff", "validate",
    "apply", "verify", "ready", "cancel", "fail",
]

MAX_HISTORY = 200
HEARTBEAT_INTERVAL = 2.0


@dataclass(frozen=True)
class ProgressEvent:
    run_id: str
    ts: float
    level: ProgressLevel
    phase: ProgressPhase
    message: str
    data: dict[str, Any] = field(default_factory=dict)


ProgressListener = Callable[[ProgressEvent], None]


class ProgressChannel:
    """Publish/subscribe channel with a bounded event history."""

    def __init__(self, max_history: int = MAX_HISTORY, queue_size: int = 256):
        self._history: deque[ProgressEvent] = deque(maxlen=max_history)
        self._listeners: list[ProgressListener] = []
        self._queue_size = queue_size

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register *listener*; returns a disposer that unsubscribes it."""
        self._listeners.append(listener)

        def _dispose() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _dispose

    def subscribe_queue(self) -> tuple[asyncio.Queue, Callable[[], None]]:
        """Subscribe with a bounded queue. When full, the oldest event is dropped."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)

        def _put(ev: ProgressEvent) -> None:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(ev)

        return queue, self.subscribe(_put)

    def emit(self, event: ProgressEvent) -> None:
        self._history.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                logger.error("[Progress] listener error: %s", exc)

    def emit_step(self, run_id: str, phase: ProgressPhase, message: str,
                  data: dict[str, Any] | None = None,
                  level: ProgressLevel = "info") -> ProgressEvent:
        event = ProgressEvent(run_id=run_id, ts=time.time(), level=level,
                              phase=phase, message=message, data=dict(data or {}))
        self.emit(event)
        return event

    def history(self, run_id: str | None = None) -> list[ProgressEvent]:
        if run_id is None:
            return list(self._history)
        return [e for e in self._history if e.run_id == run_id]

    def clear_history(self) -> None:
        self._history.clear()


class RunProgress:
    """Run-scoped emitter: drops events once the run is no longer active.

    This is what makes cancellation observably terminal: after ``cancel()``
    nothing but the single ``cancel`` event reaches subscribers.
    """

    def __init__(self, channel: ProgressChannel, run, registry):
        self.channel = channel
        self.run = run
        self.registry = registry

    @property
    def active(self) -> bool:
        return self.registry.is_active(self.run.run_id, self.run.token)

    def step(self, phase: ProgressPhase, message: str,
             data: dict[str, Any] | None = None,
             level: ProgressLevel = "info") -> None:
        if not self.active:
            logger.debug("[Progress] dropped late event for %s: %s",
                         self.run.run_id, message)
            return
        self.channel.emit_step(self.run.run_id, phase, message, data, level)

    def start_heartbeat(self, phase: ProgressPhase, message: str,
                        interval: float = HEARTBEAT_INTERVAL) -> Callable[[], None]:
        """Emit ``message (elapsed Ns)`` every *interval* seconds during a long
        phase. Returns a stop function; call it when the phase completes."""
        start = time.monotonic()

        async def _beat() -> None:
            while True:
                await asyncio.sleep(interval)
                elapsed = int(time.monotonic() - start)
                self.step(phase, f"{message} (elapsed {elapsed}s)", {"elapsed": elapsed})

        task = asyncio.get_running_loop().create_task(_beat())
        return task.cancel
