"""Per-provider request budget over a rolling 60-second window."""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from coinfolio.core.exceptions import RateLimitedError

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


@dataclass(frozen=True)
class Allowed:
    """Permit granted; the call has been counted against the budget."""


@dataclass(frozen=True)
class MustWaitFor:
    """Budget exhausted; retry after `seconds`."""

    seconds: float


AcquireResult = Union[Allowed, MustWaitFor]


class RateLimiter:
    """
    Sliding-log rate limiter keyed by provider id.

    Every granted call is recorded with its timestamp and weight, so no rolling
    window of `window_seconds` ever holds more than the provider's budget. Most
    calls weigh 1; providers that bill some endpoints higher pass a larger
    weight. A provider 429 overrides the local log with a cooldown (see
    `penalize`).
    """

    def __init__(
        self,
        budgets: dict[str, int],
        default_budget: int = 30,
        window_seconds: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._budgets = dict(budgets)
        self._default_budget = default_budget
        self._window = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._calls: dict[str, deque[tuple[float, int]]] = {}
        self._cooldown_until: dict[str, float] = {}

    def budget_for(self, provider_id: str) -> int:
        """Return the per-window call budget for a provider."""
        return self._budgets.get(provider_id, self._default_budget)

    def try_acquire(self, provider_id: str, weight: int = 1) -> AcquireResult:
        """
        Attempt to take `weight` permits without waiting.

        Returns Allowed (and records the call) or MustWaitFor(seconds). A
        weight above the whole budget is clamped to it.
        """
        now = self._clock()

        cooldown_until = self._cooldown_until.get(provider_id)
        if cooldown_until is not None:
            if now < cooldown_until:
                return MustWaitFor(cooldown_until - now)
            del self._cooldown_until[provider_id]

        budget = self.budget_for(provider_id)
        weight = max(1, min(weight, budget))
        calls = self._calls.setdefault(provider_id, deque())
        while calls and now - calls[0][0] >= self._window:
            calls.popleft()

        used = sum(w for _, w in calls)
        if used + weight <= budget:
            calls.append((now, weight))
            return Allowed()

        # Wait until enough of the oldest calls have left the window
        excess = used + weight - budget
        for started, call_weight in calls:
            excess -= call_weight
            if excess <= 0:
                return MustWaitFor(started + self._window - now)
        return MustWaitFor(calls[-1][0] + self._window - now)

    async def acquire(
        self,
        provider_id: str,
        max_wait: Optional[float] = None,
        weight: int = 1,
    ) -> None:
        """
        Wait for a permit.

        Suspends only this logical call. Raises a non-retryable RateLimitedError
        when the required wait exceeds `max_wait`, so the caller can fall back
        to stale data instead.
        """
        waited = 0.0
        while True:
            result = self.try_acquire(provider_id, weight)
            if isinstance(result, Allowed):
                return
            if max_wait is not None and waited + result.seconds > max_wait:
                raise RateLimitedError(
                    provider_id,
                    f"local budget exhausted, next slot in {result.seconds:.1f}s",
                    retry_after=result.seconds,
                    retryable=False,
                )
            logger.debug("Rate limit reached for %s; waiting %.2fs", provider_id, result.seconds)
            await self._sleep(result.seconds)
            waited += result.seconds

    def penalize(self, provider_id: str, retry_after: Optional[float] = None) -> float:
        """
        React to a provider 429.

        Resets the local window and blocks the provider for at least the
        remaining window (and at least `retry_after`). Returns the cooldown length.
        """
        now = self._clock()
        calls = self._calls.get(provider_id)
        if calls:
            remaining = max(0.0, calls[0][0] + self._window - now)
        else:
            remaining = self._window
        cooldown = max(remaining, retry_after or 0.0)

        self._calls[provider_id] = deque()
        self._cooldown_until[provider_id] = now + cooldown
        logger.warning("%s returned 429; cooling down for %.1fs", provider_id, cooldown)
        return cooldown

    def recent_calls(self, provider_id: str) -> list[float]:
        """Timestamps of calls counted in the current window."""
        return [started for started, _ in self._calls.get(provider_id, ())]

    def used_weight(self, provider_id: str) -> int:
        """Weight recorded for a provider (calls that left the window are pruned on the next acquire)."""
        return sum(w for _, w in self._calls.get(provider_id, ()))
