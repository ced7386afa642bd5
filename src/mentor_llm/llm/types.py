"""Shared LLM data structures and the provider error taxonomy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class GenerateOptions:
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    json_mode: bool = False
    timeout_ms: Optional[int] = None

    def timeout_seconds(self, default_ms: int) -> float:
        return (self.timeout_ms if self.timeout_ms is not None else default_ms) / 1000.0


class ProviderError(RuntimeError):
    """Provider failed to return a valid generation."""


class ProviderConfigError(ProviderError):
    """Required configuration (API key, model, URL) is missing."""


class ProviderTimeoutError(ProviderError):
    """The request exceeded its client-side timeout and was aborted."""


class ProviderConnectionError(ProviderError):
    """The backend could not be reached."""


class ProviderHTTPError(ProviderError):
    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RateLimitedError(ProviderHTTPError):
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = 429,
        body: str = "",
        retry_after_ms: Optional[int] = None,
    ) -> None:
        super().__init__(message, status_code=status_code, body=body)
        self.retry_after_ms = retry_after_ms


class EmptyResponseError(ProviderError):
    """The backend answered successfully but produced no text."""


class NoCandidatesError(EmptyResponseError):
    """A streamed response carried no candidates at all."""
