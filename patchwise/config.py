"""
Configuration — loads settings from .patchwise.yaml, environment variables,
and built-in defaults (in that priority order: CLI args > env > YAML > defaults).
"""

import os

import yaml


_DEFAULTS = {
    "provider": "openai",
    "model": "qwen2.5-coder-7b-instruct-q4_k_m",
    "stream": True,
    "llm_max_retries": 3,
    "llm_retry_delay": 2.0,
    "temperature": 0.7,
    "top_p": 0.9,
    "max_tokens": 2048,
    "ollama_base_url": "http://localhost:11434/api/generate",
    "openai_base_url": "http://127.0.0.1:11435/v1",
    "openai_api_key": "",
    # Hard per-phase deadlines (seconds)
    "planning_timeout": 60.0,
    "diff_generation_timeout": 90.0,
    "validation_timeout": 30.0,
    "plan_and_edit_plan_timeout": 120.0,
    "no_timeout": False,
    "fallback_diff_max_lines": 300,
    "progress_history": 200,
    "log_dir": ".patchwise/logs",
}

# Config file search locations
_CONFIG_FILENAMES = [".patchwise.yaml", ".patchwise.yml"]


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


class Config:
    """Application configuration.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller)
    2. Environment variables
    3. .patchwise.yaml config file
    4. Built-in defaults
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = yaml_data or {}

        # Helper: env var > yaml > default
        def _get(env_key: str, yaml_key: str, default, cast=str):
            env_val = os.getenv(env_key)
            if env_val is not None:
                return cast(env_val)
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return cast(yaml_val)
            return default

        def _get_bool(env_key: str, yaml_key: str, default: bool) -> bool:
            env_val = os.getenv(env_key)
            if env_val is not None:
                return env_val.lower() in ("true", "1")
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return bool(yaml_val)
            return default

        self.PROVIDER = _get("PATCHWISE_PROVIDER", "provider", _DEFAULTS["provider"])
        self.DEFAULT_MODEL = _get("PATCHWISE_MODEL", "model", _DEFAULTS["model"])

        self.LLM_MAX_RETRIES = _get("LLM_MAX_RETRIES", "llm_max_retries",
                                    _DEFAULTS["llm_max_retries"], cast=int)
        self.LLM_RETRY_DELAY = _get("LLM_RETRY_DELAY", "llm_retry_delay",
                                    _DEFAULTS["llm_retry_delay"], cast=float)
        self.STREAM_RESPONSES = _get_bool("STREAM_RESPONSES", "stream",
                                          _DEFAULTS["stream"])

        # Sampling defaults
        self.TEMPERATURE = _get("PATCHWISE_TEMPERATURE", "temperature",
                                _DEFAULTS["temperature"], cast=float)
        self.TOP_P = _get("PATCHWISE_TOP_P", "top_p", _DEFAULTS["top_p"], cast=float)
        self.MAX_TOKENS = _get("PATCHWISE_MAX_TOKENS", "max_tokens",
                               _DEFAULTS["max_tokens"], cast=int)

        self.OLLAMA_BASE_URL = _get("OLLAMA_BASE_URL", "ollama_base_url",
                                    _DEFAULTS["ollama_base_url"])

        # OpenAI-compatible server (llama-server, LM Studio, OpenAI, ...)
        openai_section = yd.get("openai", {}) if isinstance(yd.get("openai"), dict) else {}
        self.OPENAI_API_KEY = os.getenv("OPENAI_API_KEY") or openai_section.get(
            "api_key", _DEFAULTS["openai_api_key"])
        self.OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or openai_section.get(
            "base_url", _DEFAULTS["openai_base_url"])

        # Phase deadlines
        timeouts = yd.get("timeouts", {}) if isinstance(yd.get("timeouts"), dict) else {}

        def _timeout(env_key: str, key: str) -> float:
            env_val = os.getenv(env_key)
            if env_val is not None:
                return float(env_val)
            if timeouts.get(key) is not None:
                return float(timeouts[key])
            return _DEFAULTS[key]

        self.PLANNING_TIMEOUT = _timeout("PATCHWISE_PLANNING_TIMEOUT", "planning_timeout")
        self.DIFF_GENERATION_TIMEOUT = _timeout("PATCHWISE_DIFF_TIMEOUT",
                                                "diff_generation_timeout")
        self.VALIDATION_TIMEOUT = _timeout("PATCHWISE_VALIDATION_TIMEOUT",
                                           "validation_timeout")
        self.PLAN_AND_EDIT_PLAN_TIMEOUT = _timeout("PATCHWISE_PLAN_TIMEOUT",
                                                   "plan_and_edit_plan_timeout")
        self.NO_TIMEOUT = _get_bool("PATCHWISE_NO_TIMEOUT", "no_timeout",
                                    _DEFAULTS["no_timeout"])

        self.FALLBACK_DIFF_MAX_LINES = _get("PATCHWISE_DIFF_MAX_LINES",
                                            "fallback_diff_max_lines",
                                            _DEFAULTS["fallback_diff_max_lines"],
                                            cast=int)
        self.PROGRESS_HISTORY = _get("PATCHWISE_PROGRESS_HISTORY", "progress_history",
                                     _DEFAULTS["progress_history"], cast=int)
        self.LOG_DIR = _get("PATCHWISE_LOG_DIR", "log_dir", _DEFAULTS["log_dir"])

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
