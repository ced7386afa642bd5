"""Provider selection and the rate-limited, retrying dispatch pipeline."""

from __future__ import annotations

import logging
import os
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from .providers.base import LLMProvider
from .providers.gemini_provider import GeminiProvider
from .providers.ollama_provider import OllamaProvider
from .providers.openai_provider import OpenAIProvider
from .rate_limiter import RateLimiter
from .retry import RetryPolicy, retry_with_backoff
from .token_estimator import estimate_tokens
from .types import (
    GenerateOptions,
    ProviderConnectionError,
    ProviderError,
    ProviderHTTPError,
    ProviderTimeoutError,
)

logger = logging.getLogger(__name__)


class ProviderKind(str, Enum):
    OLLAMA = "ollama"
    GEMINI = "gemini"
    OPENAI = "openai"

    @classmethod
    def parse(cls, name: Optional[str]) -> "ProviderKind":
        """Unset or unknown names fall through to the local provider."""
        try:
            return cls((name or "").strip().lower())
        except ValueError:
            return cls.OLLAMA


_FACTORIES: Dict[ProviderKind, Callable[[Dict[str, Any] | None], LLMProvider]] = {
    ProviderKind.OLLAMA: OllamaProvider,
    ProviderKind.GEMINI: GeminiProvider,
    ProviderKind.OPENAI: OpenAIProvider,
}

if set(_FACTORIES) != set(ProviderKind):  # pragma: no cover - guards new enum members
    raise RuntimeError("Every ProviderKind needs a factory")


def create_provider(kind: ProviderKind, settings: Dict[str, Any] | None = None) -> LLMProvider:
    return _FACTORIES[kind](settings)


class ProviderSelector:
    def __init__(
        self,
        settings: Dict[str, Any] | None = None,
        providers: Mapping[ProviderKind, LLMProvider] | None = None,
    ) -> None:
        self.settings = settings or {}
        self.preferred = ProviderKind.parse(self.settings.get("llm", {}).get("provider"))
        self._cache: Dict[ProviderKind, LLMProvider] = dict(providers or {})

    def provider_for(self, kind: ProviderKind) -> LLMProvider:
        provider = self._cache.get(kind)
        if provider is None:
            provider = create_provider(kind, self.settings)
            self._cache[kind] = provider
        return provider

    def get_provider(self) -> LLMProvider:
        return self.provider_for(self.preferred)

    def provider_order(self) -> List[ProviderKind]:
        return [self.preferred] + [kind for kind in ProviderKind if kind is not self.preferred]

    def is_configured(self, kind: ProviderKind) -> bool:
        if kind in self._cache and kind is not ProviderKind.OLLAMA:
            return bool(getattr(self._cache[kind], "_api_key", True))
        providers_cfg = self.settings.get("providers", {})
        if kind is ProviderKind.GEMINI:
            return bool(
                providers_cfg.get("gemini", {}).get("api_key")
                or os.getenv("GEMINI_API_KEY")
                or os.getenv("GOOGLE_API_KEY")
            )
        if kind is ProviderKind.OPENAI:
            return bool(providers_cfg.get("openai", {}).get("api_key") or os.getenv("OPENAI_API_KEY"))
        return True


def is_service_unavailable(error: BaseException) -> bool:
    if isinstance(error, (ProviderConnectionError, ProviderTimeoutError)):
        return True
    if isinstance(error, ProviderHTTPError) and error.status_code == 503:
        return True
    message = str(error).lower()
    return any(
        marker in message
        for marker in ("503", "service unavailable", "connection refused", "connection reset", "timed out")
    )


class LLMClient:
    """Rate limiter -> retry handler -> selected provider."""

    def __init__(
        self,
        selector: ProviderSelector,
        rate_limiter: RateLimiter,
        retry_policy: RetryPolicy | None = None,
        fallback_enabled: bool = False,
        default_max_tokens: int = 4096,
    ) -> None:
        self.selector = selector
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy or RetryPolicy()
        self.fallback_enabled = fallback_enabled
        # Token budget reserved for the reply when a call does not set max_tokens.
        self.default_max_tokens = default_max_tokens

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> "LLMClient":
        return cls(
            selector=ProviderSelector(settings),
            rate_limiter=RateLimiter.from_settings(settings),
            retry_policy=RetryPolicy.from_settings(settings),
            fallback_enabled=bool(settings.get("llm", {}).get("fallback_enabled", False)),
            default_max_tokens=int(settings.get("llm", {}).get("max_tokens") or 4096),
        )

    def _candidates(self) -> List[ProviderKind]:
        if not self.fallback_enabled:
            return [self.selector.preferred]
        order = [kind for kind in self.selector.provider_order() if self.selector.is_configured(kind)]
        return order or [self.selector.preferred]

    async def generate(self, prompt: str, options: Optional[GenerateOptions] = None) -> str:
        options = options or GenerateOptions()
        last_error: Optional[BaseException] = None
        for kind in self._candidates():
            provider = self.selector.provider_for(kind)
            await self.rate_limiter.acquire(estimate_tokens(prompt) + (options.max_tokens or self.default_max_tokens))

            def _log_retry(error: BaseException, attempt: int, delay_ms: int, name: str = kind.value) -> None:
                logger.info("%s call failed (attempt %d): %s; retrying in %dms", name, attempt, error, delay_ms)

            try:
                return await retry_with_backoff(
                    lambda: provider.generate(prompt, options),
                    self.retry_policy,
                    on_retry=_log_retry,
                )
            except Exception as exc:
                last_error = exc
                if self.fallback_enabled and is_service_unavailable(exc):
                    logger.info("%s unavailable, trying next provider: %s", kind.value, exc)
                    continue
                raise

        if last_error is not None:
            raise last_error
        raise ProviderError("No available LLM provider")

    async def check_health(self) -> bool:
        for kind in self._candidates():
            if await self.selector.provider_for(kind).check_health():
                return True
        return False
