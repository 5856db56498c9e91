"""Unit tests for ProviderRateLimiter and throttled_gather."""

from __future__ import annotations

import asyncio

import pytest

from knowledge_engine.models.providers import DEFAULT_PROVIDER_LIMITS, ProviderRateLimits
from knowledge_engine.utils.concurrency import throttled_gather
from knowledge_engine.utils.rate_limiter import ProviderRateLimiter, estimate_tokens, limited_call


class _FakeClock:
    """Manual clock whose sleep advances time instead of waiting."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _limiter(clock: _FakeClock, **limits) -> ProviderRateLimiter:
    params = {"provider": "test", "max_concurrent_requests": 10, "requests_per_minute": 100}
    params.update(limits)
    return ProviderRateLimiter(ProviderRateLimits(**params), clock=clock, sleep=clock.sleep)


# ======================================================================
# Requests per minute
# ======================================================================


class TestRequestsPerMinute:
    @pytest.mark.asyncio
    async def test_under_limit_does_not_wait(self) -> None:
        clock = _FakeClock()
        limiter = _limiter(clock, requests_per_minute=3)

        for _ in range(3):
            async with limiter.acquire():
                pass

        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_waits_for_oldest_request_to_leave_window(self) -> None:
        clock = _FakeClock()
        limiter = _limiter(clock, requests_per_minute=2)

        async with limiter.acquire():
            pass
        clock.now = 10.0
        async with limiter.acquire():
            pass
        clock.now = 15.0
        async with limiter.acquire():
            pass

        assert clock.sleeps == [pytest.approx(45.0)]
        assert clock.now == pytest.approx(60.0)

    @pytest.mark.asyncio
    async def test_window_slides(self) -> None:
        clock = _FakeClock()
        limiter = _limiter(clock, requests_per_minute=1)

        async with limiter.acquire():
            pass
        clock.now = 61.0
        async with limiter.acquire():
            pass

        assert clock.sleeps == []


# ======================================================================
# Tokens per minute
# ======================================================================


class TestTokensPerMinute:
    @pytest.mark.asyncio
    async def test_waits_when_token_budget_exceeded(self) -> None:
        clock = _FakeClock()
        limiter = _limiter(clock, tokens_per_minute=100)

        async with limiter.acquire(tokens=60):
            pass
        clock.now = 5.0
        async with limiter.acquire(tokens=60):
            pass

        assert clock.sleeps == [pytest.approx(55.0)]

    @pytest.mark.asyncio
    async def test_oversized_request_allowed_on_empty_window(self) -> None:
        clock = _FakeClock()
        limiter = _limiter(clock, tokens_per_minute=100)

        async with limiter.acquire(tokens=500):
            pass

        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_no_token_limit_configured(self) -> None:
        clock = _FakeClock()
        limiter = _limiter(clock)

        for _ in range(5):
            async with limiter.acquire(tokens=1_000_000):
                pass

        assert clock.sleeps == []


# ======================================================================
# Concurrency
# ======================================================================


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_limited_call_bounds_in_flight_requests(self) -> None:
        limiter = ProviderRateLimiter(
            ProviderRateLimits(provider="test", max_concurrent_requests=2, requests_per_minute=1000)
        )
        active = 0
        peak = 0

        async def call() -> None:
            nonlocal active, peak
            async with limited_call(limiter, tokens=1):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(call() for _ in range(6)))

        assert peak == 2

    def test_exposes_limits(self) -> None:
        limits = DEFAULT_PROVIDER_LIMITS["openai"]
        limiter = ProviderRateLimiter(limits)
        assert limiter.limits is limits
        assert limiter.provider_name == "openai"


class TestThrottledGather:
    @pytest.mark.asyncio
    async def test_preserves_order(self) -> None:
        async def value(i: int) -> int:
            await asyncio.sleep(0.001 * (5 - i))
            return i

        results = await throttled_gather([value(i) for i in range(5)], asyncio.Semaphore(2))

        assert results == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_failure_cancels_siblings(self) -> None:
        cancelled = asyncio.Event()

        async def fails() -> None:
            raise ValueError("boom")

        async def slow() -> None:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        with pytest.raises(ValueError, match="boom"):
            await throttled_gather([slow(), fails()], asyncio.Semaphore(2))

        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_return_exceptions(self) -> None:
        async def fails() -> None:
            raise ValueError("boom")

        async def ok() -> str:
            return "ok"

        results = await throttled_gather([ok(), fails()], asyncio.Semaphore(1), return_exceptions=True)

        assert results[0] == "ok"
        assert isinstance(results[1], ValueError)


def test_estimate_tokens() -> None:
    assert estimate_tokens([]) == 0
    assert estimate_tokens(["abcd", ""]) == 3
    assert estimate_tokens(["x" * 400]) == 101
