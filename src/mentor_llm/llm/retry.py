"""Bounded exponential-backoff retry for provider calls."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import openai
import requests

from .types import (
    ProviderConfigError,
    ProviderConnectionError,
    ProviderHTTPError,
    ProviderTimeoutError,
    RateLimitedError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({429, 502, 503, 504})


def is_rate_limit_error(error: BaseException) -> bool:
    if isinstance(error, RateLimitedError):
        return True
    if isinstance(error, ProviderHTTPError):
        # Status code only; a body may mention "429" as a line number or id.
        return error.status_code == 429
    message = str(error).lower()
    return "429" in message or "rate limit" in message


def is_retryable_error(error: BaseException) -> bool:
    """Default classification: rate limits and transient transport failures retry."""
    if isinstance(error, (ProviderTimeoutError, ProviderConfigError)):
        return False
    if isinstance(error, (requests.Timeout, openai.APITimeoutError, asyncio.TimeoutError)):
        return False
    if is_rate_limit_error(error):
        return True
    if isinstance(error, ProviderHTTPError):
        return error.status_code in TRANSIENT_STATUS_CODES
    return isinstance(error, (ProviderConnectionError, requests.ConnectionError, openai.APIConnectionError))


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    retryable: Callable[[BaseException], bool] = is_retryable_error

    @classmethod
    def from_settings(cls, settings: Dict[str, Any] | None) -> "RetryPolicy":
        cfg = (settings or {}).get("retry", {})
        return cls(
            max_attempts=max(1, int(cfg.get("max_attempts", 4))),
            base_delay_ms=int(cfg.get("base_delay_ms", 1000)),
            max_delay_ms=int(cfg.get("max_delay_ms", 30000)),
        )

    def delay_ms(self, attempt: int, error: Optional[BaseException] = None) -> int:
        """Backoff before the retry that follows failed attempt number `attempt` (1-based)."""
        retry_after = getattr(error, "retry_after_ms", None)
        if retry_after is not None and retry_after > 0:
            return min(int(retry_after), self.max_delay_ms)
        return min(self.base_delay_ms * 2 ** (attempt - 1), self.max_delay_ms)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    on_retry: Optional[Callable[[BaseException, int, int], None]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Runs `fn`, retrying retryable failures; the last error is re-raised unchanged."""
    policy = policy or RetryPolicy()
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as exc:
            if attempt >= policy.max_attempts or not policy.retryable(exc):
                raise
            delay_ms = policy.delay_ms(attempt, exc)
            if on_retry is not None:
                on_retry(exc, attempt, delay_ms)
            logger.info(
                "Retry %d/%d in %dms after error: %s",
                attempt,
                policy.max_attempts - 1,
                delay_ms,
                exc,
            )
            await sleep(delay_ms / 1000.0)
            attempt += 1


def parse_retry_after(header: Optional[str]) -> Optional[int]:
    """Converts a Retry-After header (seconds or HTTP date) to milliseconds."""
    if not header:
        return None
    value = header.strip()
    if value.isdigit():
        return int(value) * 1000
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    wait_ms = int((when.timestamp() - time.time()) * 1000)
    return max(wait_ms, 0)
