"""
Provides an adaptive rate limiter to avoid 429 "Too Many Requests" errors from the provider.
"""

import asyncio
import logging
import time

log = logging.getLogger(__name__)


class AdaptiveRateLimiter:
    """
    Spaces out provider calls, halving the rate on throttling and slowly
    recovering once the provider has been quiet for a while.
    """

    def __init__(
        self,
        initial_calls_per_second: float = 4.0,
        max_calls_per_second: float = 8.0,
        recovery_after_seconds: float = 300.0,
    ):
        """
        Args:
            initial_calls_per_second: The starting rate of calls per second.
            max_calls_per_second: The maximum rate to recover to.
            recovery_after_seconds: Quiet period after a 429 before recovery starts.
        """
        self._rate = initial_calls_per_second
        self._max_rate = max_calls_per_second
        self._recovery_after = recovery_after_seconds
        self._min_interval = 1.0 / self._rate
        self._last_call_time = 0.0
        self._last_throttle_time = 0.0
        self._lock = asyncio.Lock()

    @property
    def rate(self) -> float:
        return self._rate

    async def on_throttled(self) -> None:
        """Called when the provider answers 429. Halves the current request rate."""
        async with self._lock:
            self._rate = max(0.5, self._rate * 0.5)
            self._min_interval = 1.0 / self._rate
            self._last_throttle_time = time.monotonic()
            log.warning(
                f"[yellow]Provider throttled requests. New rate: {self._rate:.1f} calls/s[/yellow]"
            )

    async def acquire(self) -> None:
        """Waits if necessary so that calls respect the current rate."""
        async with self._lock:
            now = time.monotonic()
            if now - self._last_throttle_time > self._recovery_after:
                self._rate = min(self._max_rate, self._rate * 1.005)
                self._min_interval = 1.0 / self._rate

            time_since_last = now - self._last_call_time
            if time_since_last < self._min_interval:
                await asyncio.sleep(self._min_interval - time_since_last)

            self._last_call_time = time.monotonic()
