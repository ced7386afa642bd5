"""Configuration loading and defaults."""

from __future__ import annotations

import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict

import yaml

DEFAULT_SETTINGS: Dict[str, Any] = {
    "llm": {
        "provider": "ollama",
        "fallback_enabled": False,
        "timeout_ms": 60000,
        "temperature": 0.7,
        "max_tokens": 4096,
    },
    "providers": {
        "ollama": {
            "host": "http://localhost:11434",
            "model": "qwen2.5-coder:1.5b",
        },
        "gemini": {
            "base_url": "https://aiplatform.googleapis.com/v1",
            "model": "gemini-2.5-flash-lite",
        },
        "openai": {
            "base_url": None,
            "model": "gpt-4o-mini",
        },
    },
    "rate_limit": {
        "window_ms": 60000,
        "max_requests": 10,
        "max_tokens": None,
    },
    "retry": {
        "max_attempts": 4,
        "base_delay_ms": 1000,
        "max_delay_ms": 30000,
    },
    "sanitizer": {
        "max_input_length": 100000,
    },
}

# env var -> (section path, caster)
_ENV_OVERRIDES = {
    "LLM_PROVIDER": (("llm", "provider"), str),
    "LLM_FALLBACK_ENABLED": (("llm", "fallback_enabled"), lambda v: v.strip().lower() in {"1", "true", "yes", "on"}),
    "LLM_TIMEOUT_MS": (("llm", "timeout_ms"), int),
    "LLM_TEMPERATURE": (("llm", "temperature"), float),
    "LLM_MAX_TOKENS": (("llm", "max_tokens"), int),
    "OLLAMA_HOST": (("providers", "ollama", "host"), str),
    "OLLAMA_MODEL": (("providers", "ollama", "model"), str),
    "GEMINI_API_URL": (("providers", "gemini", "base_url"), str),
    "GEMINI_MODEL": (("providers", "gemini", "model"), str),
    "OPENAI_BASE_URL": (("providers", "openai", "base_url"), str),
    "OPENAI_MODEL": (("providers", "openai", "model"), str),
    "LLM_RATE_LIMIT_WINDOW_MS": (("rate_limit", "window_ms"), int),
    "LLM_RATE_LIMIT_MAX_REQUESTS": (("rate_limit", "max_requests"), int),
    "LLM_RATE_LIMIT_MAX_TOKENS": (("rate_limit", "max_tokens"), int),
    "LLM_RATE_LIMIT_MAX_RETRIES": (("retry", "max_attempts"), lambda v: int(v) + 1),
    "LLM_MAX_INPUT_LENGTH": (("sanitizer", "max_input_length"), int),
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_env_overrides(settings: Dict[str, Any]) -> Dict[str, Any]:
    for env_key, (path, cast) in _ENV_OVERRIDES.items():
        raw = os.getenv(env_key)
        if raw is None or raw.strip() == "":
            continue
        try:
            value = cast(raw)
        except ValueError as exc:
            raise ValueError(f"Invalid value for {env_key}: {raw!r}") from exc
        node = settings
        for key in path[:-1]:
            node = node.setdefault(key, {})
        node[path[-1]] = value
    return settings


def load_settings(settings_path: str | None = "config/settings.yaml", use_env: bool = True) -> Dict[str, Any]:
    """Loads settings.yaml, merges it onto defaults and applies env overrides."""
    merged = deepcopy(DEFAULT_SETTINGS)
    if settings_path:
        config_path = Path(settings_path)
        if config_path.exists():
            with config_path.open("r", encoding="utf-8") as f:
                user_cfg = yaml.safe_load(f) or {}
            merged = _deep_merge(merged, user_cfg)
    if use_env:
        merged = _apply_env_overrides(merged)
    return merged


def provider_settings(settings: Dict[str, Any] | None, name: str) -> Dict[str, Any]:
    """Returns the provider block merged over its defaults, plus the shared llm call defaults."""
    defaults = DEFAULT_SETTINGS["providers"].get(name, {})
    cfg = (settings or {}).get("providers", {}).get(name, {}) or {}
    merged = _deep_merge(defaults, cfg)
    llm_cfg = (settings or {}).get("llm", {})
    for key in ("timeout_ms", "temperature", "max_tokens"):
        merged.setdefault(key, llm_cfg.get(key, DEFAULT_SETTINGS["llm"][key]))
    return merged
