"""Bounded retry with exponential backoff and jitter."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from coinfolio.core.exceptions import ProviderError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry parameters for a fallible provider call.

    Delay before attempt n+1 is base_delay * multiplier**(n-1), spread by
    +/- jitter (a fraction of the delay) and capped at max_delay.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 1.5
    jitter: float = 0.25
    max_delay: float = 30.0

    def delay_for(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Return the backoff delay after the given (1-based) failed attempt."""
        delay = min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter and delay > 0:
            spread = delay * self.jitter
            delay += (rng or random).uniform(-spread, spread)
        return max(0.0, delay)

    def should_retry(self, error: Exception) -> bool:
        """Only transient provider failures are retried."""
        return isinstance(error, ProviderError) and error.retryable


async def with_retry(
    policy: RetryPolicy,
    operation: Callable[[], Awaitable[T]],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Optional[random.Random] = None,
) -> T:
    """
    Run `operation` until it succeeds or the policy gives up.

    Non-retryable errors propagate immediately. When attempts run out a
    RetryExhaustedError chained from the last error is raised.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except ProviderError as exc:
            if not policy.should_retry(exc):
                raise
            if attempt >= policy.max_attempts:
                raise RetryExhaustedError(exc, attempt) from exc
            delay = policy.delay_for(attempt, rng)
            logger.info(
                "Attempt %d/%d failed (%s); retrying in %.2fs",
                attempt,
                policy.max_attempts,
                exc.message,
                delay,
            )
            await sleep(delay)
