import logging
import os
import sys
import threading
from datetime import datetime


class TokenTracker:
    """Global tracker for token usage across all backend calls."""

    def __init__(self):
        self._lock = threading.Lock()
        self.total_prompt_tokens = 0
        self.total_completion_tokens = 0
        self.call_count = 0

    def record(self, prompt_tokens: int, completion_tokens: int):
        # Backend calls run on worker threads
        with self._lock:
            self.total_prompt_tokens += prompt_tokens
            self.total_completion_tokens += completion_tokens
            self.call_count += 1

    @property
    def total_tokens(self):
        return self.total_prompt_tokens + self.total_completion_tokens


# Global singleton
token_tracker = TokenTracker()


def setup_logger(log_dir: str = ".patchwise/logs") -> logging.Logger:
    """Attach a file handler to the package logger. All verbose output goes here."""
    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"patchwise_{timestamp}.log")

    logger = logging.getLogger("patchwise")
    logger.setLevel(logging.DEBUG)

    # File handler captures everything
    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%H:%M:%S"
    ))
    logger.addHandler(fh)

    return logger


# Package logger; handlers are attached by setup_logger()
log = logging.getLogger("patchwise")


class ProgressPrinter:
    """Renders progress events as one terminal line each."""

    _LEVEL_MARKS = {"info": "·", "warn": "!", "error": "✗", "debug": " "}

    def __init__(self, stream=None, show_debug: bool = False):
        self.stream = stream or sys.stderr
        self.show_debug = show_debug

    def __call__(self, event) -> None:
        if event.level == "debug" and not self.show_debug:
            return
        mark = self._LEVEL_MARKS.get(event.level, "·")
        ts = datetime.fromtimestamp(event.ts).strftime("%H:%M:%S")
        self.stream.write(f"{ts} {mark} [{event.phase:<8}] {event.message}\n")
        self.stream.flush()
