"""
Tests for statement_extractor.llm.rate_limiter — sliding-window throttling.

A fake clock advances only when the limiter sleeps, so the tests are instant.
"""

import asyncio

import pytest

from statement_extractor.llm.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestThrottle:
    @pytest.mark.asyncio
    async def test_under_limit_does_not_wait(self, clock):
        limiter = RateLimiter(3, clock=clock, sleep=clock.sleep)
        for _ in range(3):
            await limiter.throttle()
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_waits_for_oldest_call_to_leave_window(self, clock):
        limiter = RateLimiter(2, clock=clock, sleep=clock.sleep)
        await limiter.throttle()
        clock.now += 10
        await limiter.throttle()
        clock.now += 5

        await limiter.throttle()
        # oldest call was 15s ago → 45s remaining in its window
        assert clock.sleeps == [pytest.approx(45.0)]

    @pytest.mark.asyncio
    async def test_never_more_than_n_calls_in_any_window(self, clock):
        limit = 4
        limiter = RateLimiter(limit, clock=clock, sleep=clock.sleep)
        starts = []
        for _ in range(13):
            await limiter.throttle()
            starts.append(clock.now)
            clock.now += 1.5

        for t in starts:
            in_window = [s for s in starts if t <= s < t + 60]
            assert len(in_window) <= limit

    @pytest.mark.asyncio
    async def test_concurrent_waiters_reevaluate(self, clock):
        async def yielding_sleep(seconds):
            target = clock.now + seconds
            clock.sleeps.append(seconds)
            await asyncio.sleep(0)
            clock.now = max(clock.now, target)

        limiter = RateLimiter(2, clock=clock, sleep=yielding_sleep)
        starts = []

        async def call():
            await limiter.throttle()
            starts.append(clock.now)

        await asyncio.gather(*(call() for _ in range(5)))

        assert sorted(starts) == [1000.0, 1000.0, 1060.0, 1060.0, 1120.0]
        # the fifth caller woke with the others, found the window full again and re-waited
        assert len(clock.sleeps) == 4


class TestStats:
    @pytest.mark.asyncio
    async def test_stats_reflect_window(self, clock):
        limiter = RateLimiter(5, clock=clock, sleep=clock.sleep)
        await limiter.throttle()
        await limiter.throttle()

        stats = limiter.get_stats()
        assert stats["requests_per_minute"] == 5
        assert stats["current_requests"] == 2
        assert stats["available_requests"] == 3
        assert stats["next_reset"]

    @pytest.mark.asyncio
    async def test_stats_prune_expired(self, clock):
        limiter = RateLimiter(5, clock=clock, sleep=clock.sleep)
        await limiter.throttle()
        clock.now += 61
        assert limiter.get_stats()["current_requests"] == 0
