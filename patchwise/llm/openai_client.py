import json
import threading
from typing import Optional

import requests

from .base import GenerateOptions, LLMClient, RequestAbortedError
from ..cli_display import token_tracker, log


class OpenAIClient(LLMClient):
    """Client for OpenAI-compatible servers (llama-server, vLLM, OpenAI)."""

    name = "OpenAI"

    def __init__(self, base_url: str, model: str, api_key: Optional[str] = None,
                 **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _payload(self, messages: list[dict], options: GenerateOptions,
                 stream: bool) -> dict:
        payload = {"model": self.model, "messages": messages, "stream": stream}
        if options.temperature is not None:
            payload["temperature"] = options.temperature
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.max_tokens is not None:
            payload["max_tokens"] = options.max_tokens
        return payload

    # ── Completion ──

    def _complete(self, prompt: str, stream: bool, options: GenerateOptions,
                  signal: threading.Event) -> str:
        # Completion prompts already carry their own instructions
        messages = [{"role": "user", "content": prompt}]
        return self._request(messages, stream, options, signal)

    # ── Chat ──

    def _chat(self, system_prompt: str, user_prompt: str, stream: bool,
              options: GenerateOptions, signal: threading.Event) -> str:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        return self._request(messages, stream, options, signal)

    def _request(self, messages: list[dict], stream: bool,
                 options: GenerateOptions, signal: threading.Event) -> str:
        est_tokens = int(sum(len(m["content"].split()) for m in messages) * 1.3)
        log.debug(f"[OpenAI] Sending ~{est_tokens} est. tokens (stream={stream})")

        url = f"{self.base_url}/chat/completions"
        payload = self._payload(messages, options, stream)
        if stream:
            return self._stream(url, payload, signal, est_tokens)

        response = requests.post(url, headers=self._headers(), json=payload,
                                 timeout=(10, 300))
        response.raise_for_status()
        data = response.json()

        usage = data.get("usage", {})
        prompt_tokens = usage.get("prompt_tokens", est_tokens)
        completion_tokens = usage.get("completion_tokens", 0)
        token_tracker.record(prompt_tokens, completion_tokens)
        log.debug(f"[OpenAI] Usage: prompt={prompt_tokens} completion={completion_tokens}")

        choices = data.get("choices") or [{}]
        response_text = (choices[0].get("message") or {}).get("content") or ""
        log.debug(f"[OpenAI] Response:\n{response_text}")
        return response_text

    # ── Streaming ──

    def _stream(self, url: str, payload: dict, signal: threading.Event,
                est_tokens: int) -> str:
        content_parts: list[str] = []
        tokens_generated = 0

        response = requests.post(url, headers=self._headers(), json=payload,
                                 stream=True, timeout=(10, 120))
        response.raise_for_status()
        try:
            for line in response.iter_lines(decode_unicode=True):
                if signal.is_set():
                    raise RequestAbortedError("[OpenAI] request aborted")
                if not line or not line.startswith("data: "):
                    continue
                data_str = line[6:]
                if data_str.strip() == "[DONE]":
                    break
                try:
                    chunk = json.loads(data_str)
                    delta = chunk.get("choices", [{}])[0].get("delta", {})
                    token = delta.get("content", "")
                except (json.JSONDecodeError, KeyError, IndexError):
                    continue
                if token:
                    content_parts.append(token)
                    tokens_generated += 1
        finally:
            response.close()

        result = "".join(content_parts)
        token_tracker.record(est_tokens, tokens_generated)
        log.debug(f"[OpenAI] Streamed {tokens_generated} tokens")
        log.debug(f"[OpenAI] Response:\n{result}")
        return result
