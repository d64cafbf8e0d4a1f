"""
Per-provider rate-limit budget shared by every job in a batch.

Each provider gets a counting semaphore (how many calls may be in flight)
and an adaptive limiter (how fast calls may start) that backs off on 429
responses and slowly recovers.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

log = logging.getLogger(__name__)


class AdaptiveRateLimiter:
    """
    Dynamically adjusts call rate based on provider feedback (429 errors).
    """

    def __init__(
        self, initial_calls_per_second: float = 4.0, max_calls_per_second: float = 8.0
    ):
        """
        Args:
            initial_calls_per_second: The starting rate of calls per second.
            max_calls_per_second: The maximum rate to recover to.
        """
        self._rate = initial_calls_per_second
        self._max_rate = max_calls_per_second
        self._min_interval = 1.0 / self._rate
        self._last_call_time = 0.0
        self._last_429_time = 0.0
        self._blocked_until = 0.0
        self._lock = asyncio.Lock()

    @property
    def rate(self) -> float:
        return self._rate

    async def on_429(self, retry_after: Optional[float] = None) -> None:
        """Halves the current request rate and honours an explicit pause."""
        async with self._lock:
            self._rate = max(0.5, self._rate * 0.5)
            self._min_interval = 1.0 / self._rate
            self._last_429_time = time.monotonic()
            if retry_after:
                self._blocked_until = max(self._blocked_until, time.monotonic() + retry_after)

    async def acquire(self) -> None:
        """
        Waits if necessary to respect the current rate limit before allowing a call to proceed.
        """
        async with self._lock:
            now = time.monotonic()
            if self._last_429_time and now - self._last_429_time > 300:
                self._rate = min(self._max_rate, self._rate * 1.05)
                self._min_interval = 1.0 / self._rate

            wait = max(
                self._blocked_until - now,
                self._min_interval - (now - self._last_call_time),
            )
            if wait > 0:
                await asyncio.sleep(wait)

            self._last_call_time = time.monotonic()


class RateLimitBudget:
    """
    Owns one semaphore and one adaptive limiter per provider name.

    Usage:
        async with budget.slot("lrclib"):
            await http.get_json(...)
    """

    def __init__(
        self,
        default_concurrency: int = 4,
        default_rate: float = 4.0,
        overrides: Optional[Dict[str, float]] = None,
    ):
        self._default_concurrency = default_concurrency
        self._default_rate = default_rate
        self._overrides = dict(overrides or {})
        self._semaphores: Dict[str, asyncio.Semaphore] = {}
        self._limiters: Dict[str, AdaptiveRateLimiter] = {}
        self._in_flight: Dict[str, int] = {}

    def _ensure(self, name: str) -> None:
        if name not in self._semaphores:
            rate = self._overrides.get(name, self._default_rate)
            self._semaphores[name] = asyncio.Semaphore(self._default_concurrency)
            self._limiters[name] = AdaptiveRateLimiter(rate, rate * 2)
            self._in_flight[name] = 0

    def in_flight(self, name: str) -> int:
        return self._in_flight.get(name, 0)

    @asynccontextmanager
    async def slot(self, name: str) -> AsyncIterator[None]:
        """Holds one of the provider's slots for the duration of a call."""
        self._ensure(name)
        async with self._semaphores[name]:
            await self._limiters[name].acquire()
            self._in_flight[name] += 1
            try:
                yield
            finally:
                self._in_flight[name] -= 1

    async def on_rate_limited(self, name: str, retry_after: Optional[float] = None) -> None:
        self._ensure(name)
        await self._limiters[name].on_429(retry_after)
        log.warning(
            f"[yellow]Rate limit hit for {name}. "
            f"New rate: {self._limiters[name].rate:.1f} calls/s[/yellow]"
        )
