"""Per-provider sliding-window rate limiter.

One :class:`ProviderRateLimiter` exists per model provider per process.  It
is constructed once at startup from :class:`ProviderRateLimits` and injected
into every client that talks to that provider, so ingestion batches and
query-time embeddings draw from the same budget.

Three ceilings are enforced together:

1. **Concurrency** -- an ``asyncio.Semaphore`` of ``max_concurrent_requests``
   slots held for the duration of the provider call.
2. **Requests per minute** -- timestamps of the calls started in the last
   60 seconds; a new call waits until the oldest one leaves the window.
3. **Tokens per minute** (optional) -- the same window over estimated
   token counts.  A single request larger than the whole budget is let
   through on an empty window instead of waiting forever.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

import structlog

from knowledge_engine.models.providers import ProviderRateLimits

logger = structlog.get_logger(logger_name=__name__)

_WINDOW_SECONDS = 60.0


class ProviderRateLimiter:
    """Concurrency + RPM + TPM limiter for a single provider.

    Parameters
    ----------
    limits:
        The provider's configured ceilings.
    clock:
        Monotonic clock; injectable for tests.
    sleep:
        Async sleep; injectable for tests.
    """

    def __init__(
        self,
        limits: ProviderRateLimits,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._limits = limits
        self._clock = clock
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(limits.max_concurrent_requests)
        # Reservation lock: waiters queue here in FIFO order.
        self._lock = asyncio.Lock()
        self._request_times: deque[float] = deque()
        self._token_log: deque[tuple[float, int]] = deque()
        self._tokens_in_window = 0

    @property
    def limits(self) -> ProviderRateLimits:
        return self._limits

    @property
    def provider_name(self) -> str:
        return self._limits.provider

    @property
    def concurrency(self) -> asyncio.Semaphore:
        """Semaphore callers can use to bound fan-out to this provider."""
        return self._semaphore

    @asynccontextmanager
    async def acquire(self, tokens: int = 0) -> AsyncIterator[None]:
        """Hold one request slot for the duration of the ``async with`` block.

        Parameters
        ----------
        tokens:
            Estimated tokens the request will consume (0 if unknown).
        """
        await self._reserve(tokens)
        yield

    async def _reserve(self, tokens: int) -> None:
        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)
                wait = self._required_wait(now, tokens)
                if wait <= 0:
                    self._request_times.append(now)
                    if tokens > 0:
                        self._token_log.append((now, tokens))
                        self._tokens_in_window += tokens
                    return
                logger.debug(
                    "rate_limit_wait",
                    provider=self.provider_name,
                    wait_s=round(wait, 3),
                    requests_in_window=len(self._request_times),
                    tokens_in_window=self._tokens_in_window,
                )
                await self._sleep(wait)

    def _evict(self, now: float) -> None:
        cutoff = now - _WINDOW_SECONDS
        while self._request_times and self._request_times[0] <= cutoff:
            self._request_times.popleft()
        while self._token_log and self._token_log[0][0] <= cutoff:
            _, expired = self._token_log.popleft()
            self._tokens_in_window -= expired

    def _required_wait(self, now: float, tokens: int) -> float:
        wait = 0.0
        if len(self._request_times) >= self._limits.requests_per_minute:
            wait = self._request_times[0] + _WINDOW_SECONDS - now

        tpm = self._limits.tokens_per_minute
        if tpm is not None and tokens > 0 and self._token_log:
            excess = self._tokens_in_window + tokens - tpm
            if excess > 0:
                # Walk the window oldest-first until enough tokens expire.
                freed = 0
                for started, used in self._token_log:
                    freed += used
                    if freed >= excess:
                        wait = max(wait, started + _WINDOW_SECONDS - now)
                        break
        return wait


@asynccontextmanager
async def limited_call(limiter: ProviderRateLimiter, tokens: int = 0) -> AsyncIterator[None]:
    """Hold a concurrency slot *and* a window reservation on *limiter*."""
    async with limiter.concurrency:
        async with limiter.acquire(tokens):
            yield


def estimate_tokens(texts: list[str]) -> int:
    """Approximate token usage of *texts* (~4 characters per token)."""
    return sum(len(t) // 4 + 1 for t in texts)
