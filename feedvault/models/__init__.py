"""
Data Models Layer.

This package contains the Pydantic configuration model and the dataclasses that
describe parents, tasks, items, progress events and run results.
"""

from .config import SyncConfig
from .entities import (
    ContentItem,
    ItemDescriptor,
    ParentEntity,
    ParentSyncStatus,
    Task,
    TaskStatus,
)
from .progress import SchedulerLog, SyncProgress, SyncState, TaskProgress, TaskState
from .stats import SyncResult, TaskResult

__all__ = [
    "ContentItem",
    "ItemDescriptor",
    "ParentEntity",
    "ParentSyncStatus",
    "SchedulerLog",
    "SyncConfig",
    "SyncProgress",
    "SyncResult",
    "SyncState",
    "Task",
    "TaskProgress",
    "TaskResult",
    "TaskState",
    "TaskStatus",
]
