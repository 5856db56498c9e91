"""Bounded exponential-backoff retries for transient provider failures.

Only errors that are worth retrying (rate-limit responses, timeouts,
unreachable providers) go through the retry loop; anything else propagates
on the first attempt.  The sleep function is injectable so tests can verify
backoff without waiting in real time.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import structlog

from knowledge_engine.utils.errors import TRANSIENT_ERRORS

_T = TypeVar("_T")

logger = structlog.get_logger(logger_name=__name__)

RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (*TRANSIENT_ERRORS, TimeoutError)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration.

    Attributes
    ----------
    max_attempts:
        Total attempts including the first call (default 3).
    base_delay:
        Delay in seconds after the first failure (default 0.5).
    backoff_factor:
        Multiplier applied per subsequent failure (default 2.0).
    max_delay:
        Upper bound on any single delay (default 8.0).
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    backoff_factor: float = 2.0
    max_delay: float = 8.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")

    def delay_for(self, attempt: int) -> float:
        """Return the delay to wait after failed *attempt* (1-based)."""
        return min(self.base_delay * (self.backoff_factor ** (attempt - 1)), self.max_delay)


async def retry_async(
    operation: Callable[[], Awaitable[_T]],
    policy: RetryPolicy,
    *,
    operation_name: str,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE_EXCEPTIONS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> _T:
    """Await ``operation()`` until it succeeds or *policy* is exhausted.

    The last transient exception is re-raised unchanged once
    ``policy.max_attempts`` is reached, so callers decide how to wrap it.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except retry_on as exc:
            if attempt >= policy.max_attempts:
                logger.error(
                    "retry_exhausted",
                    operation=operation_name,
                    attempts=attempt,
                    error=str(exc),
                )
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "transient_failure_retrying",
                operation=operation_name,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                backoff_s=delay,
                error=str(exc),
            )
            await sleep(delay)

    # Unreachable: the loop either returns or raises.
    raise RuntimeError(f"{operation_name}: retry loop exited without result")
