"""Google Gemini streaming REST provider."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from typing import Any, Dict, Iterable, List, Optional

import requests

from ...config import provider_settings
from ..retry import parse_retry_after
from ..types import (
    EmptyResponseError,
    GenerateOptions,
    NoCandidatesError,
    ProviderConfigError,
    ProviderConnectionError,
    ProviderError,
    ProviderHTTPError,
    ProviderTimeoutError,
    RateLimitedError,
)

logger = logging.getLogger(__name__)

HEALTH_TIMEOUT_SECONDS = 10


def _decode_line(line: Any) -> str:
    if isinstance(line, bytes):
        return line.decode("utf-8", errors="replace")
    return str(line)


def collect_stream_text(lines: Iterable[Any]) -> str:
    """Joins candidate text from newline-delimited JSON chunks in arrival order.

    Lines that are not JSON objects/arrays are skipped. When no line parses,
    the whole body is tried as a single JSON document.
    """
    raw_lines = [_decode_line(line) for line in lines]
    chunks: List[Any] = []
    for line in raw_lines:
        stripped = line.strip()
        if not stripped:
            continue
        try:
            parsed = json.loads(stripped)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, (dict, list)):
            chunks.append(parsed)

    if not chunks:
        body = "\n".join(raw_lines).strip()
        try:
            chunks.append(json.loads(body))
        except json.JSONDecodeError as exc:
            raise ProviderError(f"Failed to parse Gemini API response: {body[:200]}") from exc

    objects: List[Any] = []
    for chunk in chunks:
        objects.extend(chunk if isinstance(chunk, list) else [chunk])

    texts: List[str] = []
    saw_candidate = False
    for obj in objects:
        if not isinstance(obj, dict):
            continue
        error = obj.get("error")
        if isinstance(error, dict):
            code = error.get("code")
            raise ProviderHTTPError(
                f"Gemini API error: {code} - {error.get('message', '')}",
                status_code=code if isinstance(code, int) else None,
                body=json.dumps(error, ensure_ascii=False),
            )
        candidates = obj.get("candidates") or []
        if not isinstance(candidates, list):
            continue
        for candidate in candidates:
            saw_candidate = True
            content = candidate.get("content") if isinstance(candidate, dict) else None
            parts = content.get("parts") if isinstance(content, dict) else None
            for part in parts or []:
                text = part.get("text") if isinstance(part, dict) else None
                if isinstance(text, str) and text:
                    texts.append(text)

    if not saw_candidate:
        raise NoCandidatesError("Gemini API returned no candidates")
    if not texts:
        raise EmptyResponseError("Gemini API returned empty response")
    return "".join(texts)


class GeminiProvider:
    name = "gemini"

    def __init__(self, settings: Dict[str, Any] | None = None) -> None:
        cfg = provider_settings(settings, self.name)
        self.base_url = str(cfg["base_url"]).rstrip("/")
        self.model = str(cfg["model"])
        self.timeout_ms = int(cfg["timeout_ms"])
        self.temperature = float(cfg["temperature"])
        self.max_tokens = int(cfg["max_tokens"])
        self._configured_key = cfg.get("api_key")

    @property
    def _api_key(self) -> Optional[str]:
        # Resolved on every call so keys injected after construction are seen.
        return self._configured_key or os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")

    def _model_url(self) -> str:
        return f"{self.base_url}/publishers/google/models/{self.model}"

    def _payload(self, prompt: str, options: GenerateOptions) -> Dict[str, Any]:
        generation_config: Dict[str, Any] = {
            "temperature": options.temperature if options.temperature is not None else self.temperature,
            "maxOutputTokens": options.max_tokens or self.max_tokens,
        }
        if options.json_mode:
            generation_config["responseMimeType"] = "application/json"
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }

    async def generate(self, prompt: str, options: Optional[GenerateOptions] = None) -> str:
        api_key = self._api_key
        if not api_key:
            raise ProviderConfigError("GEMINI_API_KEY environment variable is not set")
        options = options or GenerateOptions()
        timeout = options.timeout_seconds(self.timeout_ms)
        return await asyncio.to_thread(self._generate_sync, api_key, self._payload(prompt, options), timeout)

    def _generate_sync(self, api_key: str, payload: Dict[str, Any], timeout: float) -> str:
        deadline = time.monotonic() + timeout
        timeout_error = ProviderTimeoutError(f"Gemini request timed out after {timeout:g} seconds")
        try:
            res = requests.post(
                f"{self._model_url()}:streamGenerateContent",
                params={"key": api_key},
                json=payload,
                timeout=timeout,
                stream=True,
            )
        except requests.Timeout as exc:
            raise timeout_error from exc
        except requests.RequestException as exc:
            raise ProviderConnectionError(f"Gemini request failed: {exc}") from exc

        try:
            if res.status_code == 429:
                raise RateLimitedError(
                    f"Gemini API error: 429 - {res.text}",
                    body=res.text,
                    retry_after_ms=parse_retry_after(res.headers.get("Retry-After")),
                )
            if not 200 <= res.status_code < 300:
                raise ProviderHTTPError(
                    f"Gemini API error: {res.status_code} - {res.text}",
                    status_code=res.status_code,
                    body=res.text,
                )
            lines: List[Any] = []
            for line in res.iter_lines():
                if time.monotonic() > deadline:
                    raise timeout_error
                lines.append(line)
        except requests.Timeout as exc:
            raise timeout_error from exc
        except requests.RequestException as exc:
            raise ProviderConnectionError(f"Gemini stream interrupted: {exc}") from exc
        finally:
            res.close()

        return collect_stream_text(lines)

    async def check_health(self) -> bool:
        api_key = self._api_key
        if not api_key:
            return False
        return await asyncio.to_thread(self._check_health_sync, api_key)

    def _check_health_sync(self, api_key: str) -> bool:
        try:
            res = requests.get(self._model_url(), params={"key": api_key}, timeout=HEALTH_TIMEOUT_SECONDS)
        except Exception as exc:
            logger.info("Gemini health check failed: %s", exc)
            return False
        return 200 <= res.status_code < 300
