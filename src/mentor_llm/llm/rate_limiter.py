"""Sliding-window admission control for outbound LLM requests."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class RateLimiter:
    """Bounds request count (and optionally estimated tokens) per rolling window.

    One instance is shared by every caller that talks to the same backend
    selection. Admission decisions are serialized by an asyncio lock; a caller
    that has to wait keeps the lock while sleeping, so callers are admitted
    in arrival order and the window ceiling is never exceeded.
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        max_requests: int = 10,
        max_tokens: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if max_tokens is not None and max_tokens < 1:
            raise ValueError("max_tokens must be at least 1 when set")
        self.window_seconds = float(window_seconds)
        self.max_requests = int(max_requests)
        self.max_tokens = max_tokens
        self._clock = clock
        self._sleep = sleep
        self._entries: Deque[Tuple[float, int]] = deque()
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Dict[str, Any] | None) -> "RateLimiter":
        cfg = (settings or {}).get("rate_limit", {})
        max_tokens = cfg.get("max_tokens")
        return cls(
            window_seconds=int(cfg.get("window_ms", 60000)) / 1000.0,
            max_requests=int(cfg.get("max_requests", 10)),
            max_tokens=int(max_tokens) if max_tokens else None,
        )

    async def acquire(self, estimated_tokens: int = 0) -> None:
        """Suspends until the request fits in the current window, then records it."""
        tokens = max(0, int(estimated_tokens or 0))
        async with self._lock:
            while True:
                now = self._clock()
                self._cleanup(now)
                wait_seconds = self._wait_time(now, tokens)
                if wait_seconds <= 0:
                    self._entries.append((now, tokens))
                    return
                logger.info(
                    "Rate limit reached (%d requests/%d tokens per %.1fs); waiting %.2fs",
                    len(self._entries),
                    self._used_tokens(),
                    self.window_seconds,
                    wait_seconds,
                )
                await self._sleep(wait_seconds)

    def status(self) -> Dict[str, Any]:
        self._cleanup(self._clock())
        return {
            "current_requests": len(self._entries),
            "current_tokens": self._used_tokens(),
            "max_requests": self.max_requests,
            "max_tokens": self.max_tokens,
            "window_ms": int(self.window_seconds * 1000),
        }

    def _cleanup(self, now: float) -> None:
        while self._entries and self._entries[0][0] + self.window_seconds <= now:
            self._entries.popleft()

    def _used_tokens(self) -> int:
        return sum(tokens for _, tokens in self._entries)

    def _wait_time(self, now: float, tokens: int) -> float:
        if not self._entries:
            # An oversized request still gets through an empty window.
            return 0.0
        oldest_expiry = self._entries[0][0] + self.window_seconds - now
        if len(self._entries) >= self.max_requests:
            return oldest_expiry
        if self.max_tokens is not None and self._used_tokens() + tokens > self.max_tokens:
            return oldest_expiry
        return 0.0
