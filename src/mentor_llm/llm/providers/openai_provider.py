"""OpenAI chat-completions provider."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import openai
from openai import AsyncOpenAI

from ...config import provider_settings
from ..types import (
    EmptyResponseError,
    GenerateOptions,
    ProviderConfigError,
    ProviderHTTPError,
    RateLimitedError,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


class OpenAIProvider:
    name = "openai"

    def __init__(self, settings: Dict[str, Any] | None = None) -> None:
        cfg = provider_settings(settings, self.name)
        self.model = str(cfg.get("model") or DEFAULT_MODEL)
        self.timeout_ms = int(cfg["timeout_ms"])
        self.temperature = float(cfg["temperature"])
        self.max_tokens = int(cfg["max_tokens"])
        self._configured_key = cfg.get("api_key")
        self._configured_base_url = cfg.get("base_url")
        # Built on first use so a missing key only surfaces when a call is made.
        self._client: Optional[AsyncOpenAI] = None

    @property
    def _api_key(self) -> Optional[str]:
        return self._configured_key or os.getenv("OPENAI_API_KEY")

    def _get_client(self) -> AsyncOpenAI:
        if self._client is not None:
            return self._client
        api_key = self._api_key
        if not api_key:
            raise ProviderConfigError("OPENAI_API_KEY environment variable is not set")
        base_url = self._configured_base_url or os.getenv("OPENAI_BASE_URL")
        # RetryPolicy is the only retry layer; the SDK must not resend on its own.
        kwargs: Dict[str, Any] = {"api_key": api_key, "max_retries": 0}
        if base_url:
            kwargs["base_url"] = base_url
        self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def generate(self, prompt: str, options: Optional[GenerateOptions] = None) -> str:
        client = self._get_client()
        options = options or GenerateOptions()
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": options.temperature if options.temperature is not None else self.temperature,
            "max_tokens": options.max_tokens or self.max_tokens,
            "timeout": options.timeout_seconds(self.timeout_ms),
        }
        if options.json_mode:
            request["response_format"] = {"type": "json_object"}

        try:
            response = await client.chat.completions.create(**request)
        except openai.APIStatusError as exc:
            message = f"OpenAI API error: {exc.status_code} - {exc.message}"
            if exc.status_code == 429:
                raise RateLimitedError(message, body=str(exc.body or "")) from exc
            raise ProviderHTTPError(message, status_code=exc.status_code, body=str(exc.body or "")) from exc

        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        text = getattr(message, "content", None)
        if not text:
            raise EmptyResponseError("OpenAI API returned empty response")
        return text

    async def check_health(self) -> bool:
        if not self._api_key:
            return False
        try:
            await self._get_client().models.list()
        except Exception as exc:
            logger.info("OpenAI health check failed: %s", exc)
            return False
        return True
