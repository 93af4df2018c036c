from .base import (
    GenerateOptions, GenerativeBackend, LLMClient, LLMError, RequestAbortedError,
)
from .ollama import OllamaClient
from .openai_client import OpenAIClient


def create_client(cfg, provider: str | None = None, model: str | None = None,
                  stream: bool | None = None) -> LLMClient:
    """Build the configured backend client."""
    provider = provider or cfg.PROVIDER
    model = model or cfg.DEFAULT_MODEL
    llm_kwargs = dict(
        max_retries=cfg.LLM_MAX_RETRIES,
        retry_delay=cfg.LLM_RETRY_DELAY,
        stream=cfg.STREAM_RESPONSES if stream is None else stream,
        defaults=GenerateOptions(temperature=cfg.TEMPERATURE, top_p=cfg.TOP_P,
                                 max_tokens=cfg.MAX_TOKENS),
    )
    if provider == "ollama":
        return OllamaClient(base_url=cfg.OLLAMA_BASE_URL, model=model, **llm_kwargs)
    if provider == "openai":
        return OpenAIClient(base_url=cfg.OPENAI_BASE_URL, model=model,
                            api_key=cfg.OPENAI_API_KEY, **llm_kwargs)
    raise ValueError(f"Unknown provider: {provider}")


__all__ = [
    "GenerateOptions", "GenerativeBackend", "LLMClient", "LLMError",
    "RequestAbortedError", "OllamaClient", "OpenAIClient", "create_client",
]
