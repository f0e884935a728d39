"""
A bounded permit pool for the expensive media probing step.
"""

import asyncio
import logging

log = logging.getLogger(__name__)


class ResourceSlotPool:
    """
    Counting semaphore shared by every sync session in the process. Waiters are
    served in FIFO order and `in_use` never exceeds `capacity`.

    Usage:
        async with pool:
            duration = await prober.probe_duration(path)
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("Slot pool capacity must be at least 1.")
        self._capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self._in_use = 0
        self._waiting = 0
        self._peak_in_use = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def waiting(self) -> int:
        return self._waiting

    @property
    def peak_in_use(self) -> int:
        return self._peak_in_use

    async def acquire(self) -> None:
        """Takes a slot, waiting behind earlier callers when the pool is saturated."""
        if self._in_use >= self._capacity:
            log.debug(f"Slot pool saturated ({self._in_use}/{self._capacity}), waiting.")
        self._waiting += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._waiting -= 1
        self._in_use += 1
        self._peak_in_use = max(self._peak_in_use, self._in_use)

    def release(self) -> None:
        """Returns a slot and wakes the earliest waiter, if any."""
        if self._in_use <= 0:
            raise RuntimeError("ResourceSlotPool.release() called without a held slot.")
        self._in_use -= 1
        self._semaphore.release()

    async def __aenter__(self) -> "ResourceSlotPool":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False
