import asyncio

import pytest

from mentor_llm.llm.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


def _limiter(clock, **kwargs):
    return RateLimiter(clock=clock, sleep=clock.sleep, **kwargs)


def test_concurrent_callers_are_admitted_in_window_order():
    clock = FakeClock()
    limiter = _limiter(clock, window_seconds=10, max_requests=3)
    admitted = []

    async def caller():
        await limiter.acquire()
        admitted.append(clock.now)

    async def run():
        await asyncio.gather(*(caller() for _ in range(5)))

    asyncio.run(run())

    assert admitted == [0.0, 0.0, 0.0, 10.0, 10.0]
    assert clock.sleeps == [10.0]


def test_token_ceiling_delays_until_oldest_entry_expires():
    clock = FakeClock()
    limiter = _limiter(clock, window_seconds=10, max_requests=10, max_tokens=100)

    async def run():
        await limiter.acquire(60)
        clock.now = 4.0
        await limiter.acquire(60)

    asyncio.run(run())

    assert clock.sleeps == [6.0]
    assert clock.now == 10.0
    assert limiter.status()["current_tokens"] == 60


def test_oversized_request_is_admitted_into_an_empty_window():
    clock = FakeClock()
    limiter = _limiter(clock, window_seconds=10, max_requests=2, max_tokens=100)

    asyncio.run(limiter.acquire(500))

    assert clock.sleeps == []
    assert limiter.status()["current_tokens"] == 500


def test_status_reports_usage_and_forgets_expired_entries():
    clock = FakeClock()
    limiter = _limiter(clock, window_seconds=60, max_requests=10, max_tokens=1000)

    async def run():
        await limiter.acquire(100)
        await limiter.acquire(50)

    asyncio.run(run())

    assert limiter.status() == {
        "current_requests": 2,
        "current_tokens": 150,
        "max_requests": 10,
        "max_tokens": 1000,
        "window_ms": 60000,
    }

    clock.now = 60.0
    assert limiter.status()["current_requests"] == 0


def test_from_settings_reads_rate_limit_section():
    limiter = RateLimiter.from_settings({"rate_limit": {"window_ms": 30000, "max_requests": 5, "max_tokens": 2000}})
    assert limiter.window_seconds == 30.0
    assert limiter.max_requests == 5
    assert limiter.max_tokens == 2000


def test_invalid_limits_are_rejected():
    with pytest.raises(ValueError):
        RateLimiter(max_requests=0)
    with pytest.raises(ValueError):
        RateLimiter(window_seconds=0)
