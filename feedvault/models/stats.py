"""
Result records returned by finished sync sessions and task runs.
"""

from dataclasses import dataclass, field
from typing import Optional

from .entities import TaskStatus
from .progress import SyncState


@dataclass
class SyncResult:
    """Outcome of one parent sync session."""

    parent_id: int
    status: SyncState
    downloaded: int = 0
    skipped: int = 0
    failed: int = 0
    queued: int = 0
    error: Optional[str] = None
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == SyncState.COMPLETED

    @classmethod
    def rejected(cls, parent_id: int, error: str) -> "SyncResult":
        """A result for a parent whose sync never started."""
        return cls(parent_id=parent_id, status=SyncState.FAILED, error=error)


@dataclass
class TaskResult:
    """Outcome of one task run, aggregated over its parents."""

    task_id: int
    status: TaskStatus
    cancelled: bool = False
    downloaded: int = 0
    total_items: int = 0
    baseline: int = 0
    parent_results: list[SyncResult] = field(default_factory=list)
    error: Optional[str] = None
    elapsed_seconds: float = 0.0

    @property
    def skipped(self) -> int:
        return sum(r.skipped for r in self.parent_results)

    @property
    def failed_parents(self) -> int:
        return sum(1 for r in self.parent_results if r.status == SyncState.FAILED)
