"""
Circuit breaker guarding calls to the content provider.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Optional

from feedvault.exceptions import ProviderError

log = logging.getLogger(__name__)


class CircuitState(Enum):
    """States of the circuit breaker."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreakerError(ProviderError):
    """Raised when a call is attempted while the circuit is open."""


class CircuitBreaker:
    """
    Stops hammering the provider after repeated failures.

    States:
    - CLOSED: requests pass through
    - OPEN: too many consecutive failures, requests are rejected
    - HALF_OPEN: recovery probe, a few requests are let through
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        success_threshold: int = 2,
    ):
        """
        Args:
            name: Label used in log messages (e.g. "listing", "download").
            failure_threshold: Consecutive failures before opening the circuit.
            recovery_timeout: Seconds to stay open before probing again.
            success_threshold: Consecutive successes needed to close it again.
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    def _maybe_half_open(self) -> None:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return
        elapsed = time.monotonic() - self._opened_at
        if elapsed >= self.recovery_timeout:
            log.info(
                f"[yellow]Circuit '{self.name}' half-open after {elapsed:.0f}s, "
                "probing provider.[/yellow]"
            )
            self._state = CircuitState.HALF_OPEN
            self._success_count = 0

    async def record_success(self) -> None:
        async with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    log.info(f"[green]✓ Circuit '{self.name}' closed again.[/green]")
                    self._state = CircuitState.CLOSED
                    self._success_count = 0

    async def record_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN:
                log.warning(
                    f"[yellow]Circuit '{self.name}': recovery probe failed, "
                    "reopening.[/yellow]"
                )
                self._open()
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                log.error(
                    f"[red]✗ Circuit '{self.name}' opened after "
                    f"{self._failure_count} consecutive failures. "
                    f"Requests blocked for {self.recovery_timeout:.0f}s.[/red]"
                )
                self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = time.monotonic()
        self._failure_count = 0
        self._success_count = 0

    async def __aenter__(self):
        async with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.OPEN:
                raise CircuitBreakerError(
                    f"Circuit '{self.name}' is open. Will retry after "
                    f"{self.recovery_timeout:.0f} seconds."
                )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            await self.record_success()
        elif not issubclass(exc_type, asyncio.CancelledError):
            await self.record_failure()
        return False
