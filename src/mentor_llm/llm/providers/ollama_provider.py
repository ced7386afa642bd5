"""Local Ollama inference server provider."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import requests

from ...config import provider_settings
from ..retry import parse_retry_after
from ..types import (
    EmptyResponseError,
    GenerateOptions,
    ProviderConnectionError,
    ProviderError,
    ProviderHTTPError,
    ProviderTimeoutError,
    RateLimitedError,
)

logger = logging.getLogger(__name__)

HEALTH_TIMEOUT_SECONDS = 5


class OllamaProvider:
    name = "ollama"

    def __init__(self, settings: Dict[str, Any] | None = None) -> None:
        cfg = provider_settings(settings, self.name)
        self.host = str(cfg["host"]).rstrip("/")
        self.model = str(cfg["model"])
        self.timeout_ms = int(cfg["timeout_ms"])
        self.temperature = float(cfg["temperature"])
        self.max_tokens = int(cfg["max_tokens"])

    def _payload(self, prompt: str, options: GenerateOptions) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": options.temperature if options.temperature is not None else self.temperature,
                "num_predict": options.max_tokens or self.max_tokens,
            },
        }
        if options.json_mode:
            payload["format"] = "json"
        return payload

    async def generate(self, prompt: str, options: Optional[GenerateOptions] = None) -> str:
        options = options or GenerateOptions()
        timeout = options.timeout_seconds(self.timeout_ms)
        return await asyncio.to_thread(self._generate_sync, self._payload(prompt, options), timeout)

    def _generate_sync(self, payload: Dict[str, Any], timeout: float) -> str:
        try:
            res = requests.post(f"{self.host}/api/generate", json=payload, timeout=timeout)
        except requests.Timeout as exc:
            raise ProviderTimeoutError(f"Ollama request timed out after {timeout:g} seconds") from exc
        except requests.RequestException as exc:
            raise ProviderConnectionError(f"Ollama request failed: {exc}") from exc

        if res.status_code == 429:
            retry_after_ms = parse_retry_after(res.headers.get("Retry-After"))
            retry_info = f" (Retry after {retry_after_ms}ms)" if retry_after_ms else ""
            raise RateLimitedError(
                f"Ollama API rate limit (429){retry_info}: {res.text}",
                body=res.text,
                retry_after_ms=retry_after_ms,
            )
        if not 200 <= res.status_code < 300:
            raise ProviderHTTPError(
                f"Ollama API error: {res.status_code} - {res.text}",
                status_code=res.status_code,
                body=res.text,
            )

        try:
            data = res.json()
        except ValueError as exc:
            raise ProviderError(f"Ollama returned a non-JSON body: {res.text[:200]}") from exc

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str) or not text:
            raise EmptyResponseError("Ollama API returned empty response")
        return text

    async def check_health(self) -> bool:
        return await asyncio.to_thread(self._check_health_sync)

    def _check_health_sync(self) -> bool:
        try:
            res = requests.get(f"{self.host}/api/tags", timeout=HEALTH_TIMEOUT_SECONDS)
        except Exception as exc:
            logger.info("Ollama health check failed: %s", exc)
            return False
        return 200 <= res.status_code < 300
