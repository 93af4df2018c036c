import asyncio
import random
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Callable, Optional, Protocol

from ..cli_display import log
from ..errors import LLMError
from ..runs.token import CancellationToken


class RequestAbortedError(LLMError):
    """Raised inside a worker thread when the request's abort signal fires."""


@dataclass(frozen=True)
class GenerateOptions:
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None

    def with_defaults(self, defaults: "GenerateOptions") -> "GenerateOptions":
        return GenerateOptions(
            temperature=self.temperature if self.temperature is not None else defaults.temperature,
            top_p=self.top_p if self.top_p is not None else defaults.top_p,
            max_tokens=self.max_tokens if self.max_tokens is not None else defaults.max_tokens,
        )

    def but(self, **changes) -> "GenerateOptions":
        return replace(self, **changes)


class GenerativeBackend(Protocol):
    """The narrow two-method contract every stage talks to."""

    async def generate_completion(self, prompt: str, streaming: bool,
                                  options: GenerateOptions,
                                  run_id: Optional[str] = None) -> str: ...

    async def generate_chat(self, system_prompt: str, user_prompt: str,
                            options: GenerateOptions,
                            run_id: Optional[str] = None) -> str: ...


class LLMClient(ABC):
    """HTTP backend base: retries, backoff and per-run abort signals.

    Blocking HTTP work runs on a worker thread; the coroutine methods are
    the :class:`GenerativeBackend` contract.
    """

    name = "LLM"

    def __init__(self, max_retries: int = 3, retry_delay: float = 2.0,
                 stream: bool = True,
                 defaults: GenerateOptions | None = None):
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.stream = stream
        self.defaults = defaults or GenerateOptions(temperature=0.7, top_p=0.9,
                                                    max_tokens=2048)
        self._tokens: dict[str, CancellationToken] = {}

    # ── Run association ──

    def bind_token(self, run_id: str, token: CancellationToken) -> None:
        """Associate *run_id* with its token so requests observe its abort signal."""
        self._tokens[run_id] = token

    def release_token(self, run_id: str) -> None:
        self._tokens.pop(run_id, None)

    def _request_signal(self, run_id: Optional[str]) -> threading.Event:
        token = self._tokens.get(run_id) if run_id else None
        if token is None:
            return threading.Event()
        return token.new_request_signal()

    # ── Public contract ──

    async def generate_completion(self, prompt: str, streaming: bool,
                                  options: GenerateOptions,
                                  run_id: Optional[str] = None) -> str:
        opts = options.with_defaults(self.defaults)
        signal = self._request_signal(run_id)
        use_stream = streaming and self.stream
        return await asyncio.to_thread(
            self._with_retries,
            lambda stream: self._complete(prompt, stream, opts, signal),
            use_stream, signal,
        )

    async def generate_chat(self, system_prompt: str, user_prompt: str,
                            options: GenerateOptions,
                            run_id: Optional[str] = None) -> str:
        opts = options.with_defaults(self.defaults)
        signal = self._request_signal(run_id)
        return await asyncio.to_thread(
            self._with_retries,
            lambda stream: self._chat(system_prompt, user_prompt, stream, opts, signal),
            False, signal,
        )

    # ── Retry loop ──

    def _backoff(self, attempt: int) -> float:
        # Jittered exponential backoff
        wait = self.retry_delay * (2 ** (attempt - 1))
        return wait + wait * 0.1 * random.random()

    def _with_retries(self, call: Callable[[bool], str], stream: bool,
                      signal: threading.Event) -> str:
        """Run *call* with automatic retry and exponential backoff.

        Raises :class:`RequestAbortedError` as soon as *signal* is set and
        :class:`LLMError` after all retries are exhausted.
        """
        last_error: Exception | None = None
        use_stream = stream  # falls back to non-streaming on failure

        for attempt in range(1, self.max_retries + 1):
            if signal.is_set():
                raise RequestAbortedError(f"[{self.name}] request aborted")
            try:
                result = call(use_stream)

                if not result or not result.strip():
                    log.warning(
                        f"[{self.name}] Empty response on attempt {attempt}/{self.max_retries}")
                    if attempt < self.max_retries:
                        if signal.wait(self._backoff(attempt)):
                            raise RequestAbortedError(f"[{self.name}] request aborted")
                        continue
                    raise LLMError("LLM returned empty response after all retries")

                return result

            except LLMError:
                raise
            except Exception as e:
                last_error = e
                log.warning(
                    f"[{self.name}] Error on attempt {attempt}/{self.max_retries}: {e}")

                if use_stream:
                    log.warning(f"[{self.name}] Streaming failed, falling back to non-streaming")
                    use_stream = False

                if attempt < self.max_retries:
                    wait = self._backoff(attempt)
                    if "429" in str(e):
                        wait *= 2
                        log.info(f"[{self.name}] Rate limit detected (429). Backing off for {wait:.1f}s")
                    if signal.wait(wait):
                        raise RequestAbortedError(f"[{self.name}] request aborted")

        raise LLMError(
            f"LLM failed after {self.max_retries} retries: {last_error}")

    # ── Subclass hooks ──

    @abstractmethod
    def _complete(self, prompt: str, stream: bool, options: GenerateOptions,
                  signal: threading.Event) -> str:
        """Blocking text completion."""

    @abstractmethod
    def _chat(self, system_prompt: str, user_prompt: str, stream: bool,
              options: GenerateOptions, signal: threading.Event) -> str:
        """Blocking chat completion."""
