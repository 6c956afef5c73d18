"""Backoff schedule for polling a freshly started ``osrm-routed``.

A server that has just bound its port may still be loading routing data
into memory, so its first route checks can fail.  The lifecycle manager
re-checks on the schedule computed here before declaring the instance
unhealthy: ``base_delay``, then doubling, capped at ``max_delay``.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig(BaseModel):
    """How long to keep polling an instance before giving up on it."""

    max_retries: int = Field(default=5, ge=0, description="Checks after the first one before the instance is unhealthy.")
    base_delay: float = Field(default=2.0, gt=0.0, description="Seconds to wait before the second check.")
    max_delay: float = Field(default=30.0, gt=0.0, description="Longest wait between two checks, in seconds.")
    jitter: bool = Field(default=False, description="Spread each wait over [0.5x, 1.5x] of its nominal value.")


def compute_delay(attempt: int, config: RetryConfig) -> float:
    """Seconds to wait after failed check number *attempt* (zero-based)."""
    delay: float = min(config.base_delay * (2**attempt), config.max_delay)
    if config.jitter:
        delay *= random.uniform(0.5, 1.5)  # noqa: S311
    return delay


async def async_retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run the health check *fn* until it passes or the schedule runs out.

    Parameters
    ----------
    fn:
        Zero-argument coroutine function performing one check.  It signals
        "not ready yet" by raising one of *retryable_exceptions*.
    config:
        Polling schedule.
    retryable_exceptions:
        Failures that mean "check again later"; any other exception is a real
        error and propagates immediately.
    sleep:
        Awaitable used between checks; tests pass a no-op.

    Raises
    ------
    Exception
        The failure from the final check once the schedule is exhausted.
    """
    last_exception: Exception | None = None

    for attempt in range(config.max_retries + 1):
        try:
            return await fn()
        except retryable_exceptions as exc:
            last_exception = exc
            if attempt >= config.max_retries:
                break
            delay = compute_delay(attempt, config)
            logger.info("Check %d/%d failed (%s); next in %.1fs", attempt + 1, config.max_retries + 1, exc, delay)
            await sleep(delay)

    assert last_exception is not None  # noqa: S101
    raise last_exception
