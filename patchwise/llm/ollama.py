import json
import threading

import requests

from .base import GenerateOptions, LLMClient, RequestAbortedError
from ..cli_display import token_tracker, log


class OllamaClient(LLMClient):

    name = "Ollama"

    def __init__(self, base_url: str, model: str, **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url
        self.model = model
        # Derive the API root for endpoints like /api/chat
        if "/api/" in base_url:
            self._api_root = base_url.rsplit("/api/", 1)[0]
        else:
            self._api_root = base_url.rstrip("/")

    @staticmethod
    def _options(options: GenerateOptions) -> dict:
        out = {}
        if options.temperature is not None:
            out["temperature"] = options.temperature
        if options.top_p is not None:
            out["top_p"] = options.top_p
        if options.max_tokens is not None:
            out["num_predict"] = options.max_tokens
        return out

    # ── Completion ──

    def _complete(self, prompt: str, stream: bool, options: GenerateOptions,
                  signal: threading.Event) -> str:
        est_tokens = int(len(prompt.split()) * 1.3)
        log.debug(f"[Ollama] Sending ~{est_tokens} est. tokens (stream={stream})")
        log.debug(f"[Ollama] Prompt:\n{prompt}")

        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": stream,
            "options": self._options(options),
        }
        url = f"{self._api_root}/api/generate"
        if stream:
            return self._stream(url, payload, signal, lambda c: c.get("response", ""))

        response = requests.post(url, json=payload, timeout=(10, 300))
        response.raise_for_status()
        data = response.json()
        self._record_usage(data, est_tokens)
        result = data.get("response", "")
        log.debug(f"[Ollama] Response:\n{result}")
        return result

    # ── Chat ──

    def _chat(self, system_prompt: str, user_prompt: str, stream: bool,
              options: GenerateOptions, signal: threading.Event) -> str:
        est_tokens = int((len(system_prompt.split()) + len(user_prompt.split())) * 1.3)
        log.debug(f"[Ollama] Chat ~{est_tokens} est. tokens")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "stream": stream,
            "options": self._options(options),
        }
        url = f"{self._api_root}/api/chat"
        if stream:
            return self._stream(url, payload, signal,
                                lambda c: (c.get("message") or {}).get("content", ""))

        response = requests.post(url, json=payload, timeout=(10, 300))
        response.raise_for_status()
        data = response.json()
        self._record_usage(data, est_tokens)
        result = (data.get("message") or {}).get("content", "")
        log.debug(f"[Ollama] Response:\n{result}")
        return result

    # ── Streaming ──

    def _stream(self, url: str, payload: dict, signal: threading.Event, extract) -> str:
        content_parts: list[str] = []
        tokens_generated = 0
        prompt_tokens = 0

        response = requests.post(url, json=payload, stream=True, timeout=(10, 120))
        response.raise_for_status()
        try:
            for line in response.iter_lines(decode_unicode=True):
                if signal.is_set():
                    raise RequestAbortedError("[Ollama] request aborted")
                if not line:
                    continue
                try:
                    chunk = json.loads(line)
                except json.JSONDecodeError:
                    continue
                token = extract(chunk)
                if token:
                    content_parts.append(token)
                    tokens_generated += 1

                # Final chunk contains token counts
                if chunk.get("done", False):
                    pe = chunk.get("prompt_eval_count", 0)
                    prompt_tokens = pe if isinstance(pe, int) else 0
                    ec = chunk.get("eval_count", tokens_generated)
                    tokens_generated = ec if isinstance(ec, int) else tokens_generated
        finally:
            response.close()

        token_tracker.record(prompt_tokens, tokens_generated)
        result = "".join(content_parts)
        log.debug(f"[Ollama] Streamed {tokens_generated} tokens")
        return result

    @staticmethod
    def _record_usage(data: dict, est_tokens: int) -> None:
        prompt_tokens = data.get("prompt_eval_count", est_tokens)
        completion_tokens = data.get("eval_count", 0)
        token_tracker.record(
            prompt_tokens if isinstance(prompt_tokens, int) else est_tokens,
            completion_tokens if isinstance(completion_tokens, int) else 0,
        )
        log.debug(f"[Ollama] Usage: prompt={prompt_tokens} completion={completion_tokens}")
