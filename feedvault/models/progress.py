"""
Event shapes pushed to the progress bus while syncs, tasks and schedules run.
"""

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional


class SyncState(str, Enum):
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


class TaskState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class SyncProgress:
    """Progress of a single parent's sync session."""

    parent_id: int
    nickname: str
    status: SyncState
    message: str
    current: int = 0
    total: int = 0
    downloaded: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class TaskProgress:
    """Progress of a task run. `downloaded` includes the historical baseline."""

    task_id: int
    status: TaskState
    message: str
    current_parent: Optional[str] = None
    parent_index: int = 0
    total_parents: int = 0
    current: int = 0
    total: int = 0
    downloaded: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class SchedulerLog:
    """One entry of the scheduler's activity log."""

    level: str
    message: str
    kind: str
    target_name: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def render(self) -> str:
        if self.target_name:
            return f"{self.message} ({self.target_name})"
        return self.message
