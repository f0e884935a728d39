"""
Sync sessions and the registries that keep at most one active run per id.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, Hashable, Optional, TypeVar

from feedvault.exceptions import AlreadyRunningError

from .cancellation import CancellationToken

log = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
R = TypeVar("R")


class SyncPhase(str, Enum):
    IDLE = "idle"
    LISTING = "listing"
    BATCHING = "batching"
    DOWNLOADING = "downloading"
    COOLDOWN = "cooldown"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class SyncSession:
    """State of one parent's in-progress sync."""

    parent_id: int
    token: CancellationToken = field(default_factory=CancellationToken)
    phase: SyncPhase = SyncPhase.IDLE
    downloaded: int = 0
    skipped: int = 0
    failed: int = 0
    started_at: float = field(default_factory=time.monotonic)

    def request_stop(self) -> None:
        self.token.cancel()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at


@dataclass
class TaskRun:
    """State of one in-progress task run."""

    task_id: int
    token: CancellationToken = field(default_factory=CancellationToken)
    downloaded: int = 0
    started_at: float = field(default_factory=time.monotonic)

    def request_stop(self) -> None:
        self.token.cancel()


class RunRegistry(Generic[K, R]):
    """
    Map of active runs keyed by id. Insertion is check-then-set under a lock and
    removal only drops the exact run that was registered.
    """

    def __init__(self, kind: str):
        self.kind = kind
        self._runs: dict[K, R] = {}
        self._lock = threading.Lock()

    def register(self, key: K, run: R) -> R:
        with self._lock:
            if key in self._runs:
                raise AlreadyRunningError(f"{self.kind.capitalize()} {key} is already running.")
            self._runs[key] = run
        log.debug(f"Registered {self.kind} run {key}.")
        return run

    def release(self, key: K, run: R) -> None:
        with self._lock:
            if self._runs.get(key) is run:
                del self._runs[key]
                log.debug(f"Released {self.kind} run {key}.")

    def get(self, key: K) -> Optional[R]:
        with self._lock:
            return self._runs.get(key)

    def is_active(self, key: K) -> bool:
        with self._lock:
            return key in self._runs

    def any_active(self) -> bool:
        with self._lock:
            return bool(self._runs)

    def keys(self) -> list[K]:
        with self._lock:
            return list(self._runs)

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)
