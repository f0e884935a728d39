"""
Cron-driven automatic syncs for parents and tasks, built on APScheduler.
"""

import logging
import time
from collections import deque
from typing import Optional

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from feedvault.exceptions import InvalidScheduleError
from feedvault.models.entities import ParentEntity, ParentSyncStatus, Task
from feedvault.models.progress import SchedulerLog

from .orchestrator import TaskOrchestrator
from .progress import ProgressBus
from .sync_engine import SyncEngine

log = logging.getLogger(__name__)

_LOG_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")


def _weekday_number(text: str) -> int:
    number = int(text)
    if not 0 <= number <= 7:
        raise ValueError(f"day of week out of range: {text}")
    return number


def _crontab_day_of_week(field: str) -> str:
    """Rewrites a numeric crontab day-of-week field (e.g. '1-5', '0,6', '*/2') as day names."""
    if not any(ch.isdigit() for ch in field):
        return field

    days: list[str] = []
    for part in field.split(","):
        base, _, step_text = part.partition("/")
        step = int(step_text) if step_text else 1
        if step < 1:
            raise ValueError(f"invalid step: {part}")

        if base == "*":
            first, last = 0, 6
        elif "-" in base:
            start, _, end = base.partition("-")
            first, last = _weekday_number(start), _weekday_number(end)
            if first > last:
                raise ValueError(f"invalid range: {part}")
        else:
            first = _weekday_number(base)
            last = max(first, 6) if step_text else first

        for number in range(first, last + 1, step):
            name = _WEEKDAY_NAMES[number]
            if name not in days:
                days.append(name)
    return ",".join(days)


class SyncScheduler:
    """
    Keeps one cron job per scheduled parent and per scheduled task.

    Scheduled fires are guarded: a parent fire is skipped while that parent (or
    any other parent) is syncing, a task fire is skipped while the task runs.
    Fires never raise; failures end up in the scheduler log.
    """

    def __init__(
        self,
        store,
        engine: SyncEngine,
        orchestrator: TaskOrchestrator,
        scheduler: Optional[AsyncIOScheduler] = None,
        progress_bus: Optional[ProgressBus] = None,
        log_buffer_size: int = 500,
    ):
        self.store = store
        self.engine = engine
        self.orchestrator = orchestrator
        self.scheduler = scheduler or AsyncIOScheduler()
        self.progress_bus = progress_bus
        self._parent_jobs: dict[int, Job] = {}
        self._task_jobs: dict[int, Job] = {}
        self._logs: deque[SchedulerLog] = deque(maxlen=log_buffer_size)

    # --- Cron helpers ---

    @staticmethod
    def build_trigger(expression: str) -> CronTrigger:
        """
        Builds a trigger from a 5-field crontab expression.

        The day-of-week field uses crontab numbering (0 and 7 are Sunday), not
        APScheduler's (0 is Monday), so numeric weekdays are rewritten as names.
        """
        try:
            fields = expression.split()
            if len(fields) != 5:
                raise ValueError(f"expected 5 fields, got {len(fields)}")
            minute, hour, day, month, day_of_week = fields
            return CronTrigger(
                minute=minute,
                hour=hour,
                day=day,
                month=month,
                day_of_week=_crontab_day_of_week(day_of_week),
            )
        except (ValueError, AttributeError) as e:
            raise InvalidScheduleError(f"Invalid cron expression '{expression}': {e}") from e

    @staticmethod
    def validate_cron_expression(expression: str) -> bool:
        if not expression or not expression.strip():
            return False
        try:
            SyncScheduler.build_trigger(expression)
        except InvalidScheduleError:
            return False
        return True

    # --- Registration ---

    def schedule_parent(self, parent: ParentEntity) -> bool:
        """
        Registers (or replaces) the cron job of a parent.

        Returns False when the cron expression is invalid; the existing job, if
        any, is then left as it was. A parent with auto-sync off or no cron has
        its job removed.
        """
        name = parent.display_name
        if parent.sync_cron and not self.validate_cron_expression(parent.sync_cron):
            self._record("error", f"Invalid cron expression '{parent.sync_cron}'", "parent", name)
            return False
        if not parent.auto_sync or not parent.sync_cron:
            self.unschedule_parent(parent.id)
            return True

        trigger = self.build_trigger(parent.sync_cron)
        self.unschedule_parent(parent.id)
        self._parent_jobs[parent.id] = self.scheduler.add_job(
            self.execute_parent_sync,
            trigger,
            args=[parent.id],
            id=f"parent:{parent.id}",
            name=f"sync {name}",
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )
        self._record("info", f"Scheduled sync with cron '{parent.sync_cron}'", "parent", name)
        return True

    def schedule_task(self, task: Task) -> bool:
        """Registers (or replaces) the cron job of a task. Same rules as `schedule_parent`."""
        if task.sync_cron and not self.validate_cron_expression(task.sync_cron):
            self._record("error", f"Invalid cron expression '{task.sync_cron}'", "task", task.name)
            return False
        if not task.auto_sync or not task.sync_cron:
            self.unschedule_task(task.id)
            return True

        trigger = self.build_trigger(task.sync_cron)
        self.unschedule_task(task.id)
        self._task_jobs[task.id] = self.scheduler.add_job(
            self.execute_task_download,
            trigger,
            args=[task.id],
            id=f"task:{task.id}",
            name=f"task {task.name}",
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )
        self._record("info", f"Scheduled task with cron '{task.sync_cron}'", "task", task.name)
        return True

    def unschedule_parent(self, parent_id: int) -> None:
        job = self._parent_jobs.pop(parent_id, None)
        if job is not None:
            self._remove_job(job)
            log.debug(f"Unscheduled parent {parent_id}.")

    def unschedule_task(self, task_id: int) -> None:
        job = self._task_jobs.pop(task_id, None)
        if job is not None:
            self._remove_job(job)
            log.debug(f"Unscheduled task {task_id}.")

    def _remove_job(self, job: Job) -> None:
        try:
            self.scheduler.remove_job(job.id)
        except JobLookupError:
            pass

    def scheduled_parent_ids(self) -> list[int]:
        return sorted(self._parent_jobs)

    def scheduled_task_ids(self) -> list[int]:
        return sorted(self._task_jobs)

    def get_parent_job(self, parent_id: int) -> Optional[Job]:
        return self._parent_jobs.get(parent_id)

    def get_task_job(self, task_id: int) -> Optional[Job]:
        return self._task_jobs.get(task_id)

    # --- Fires ---

    async def execute_parent_sync(self, parent_id: int) -> bool:
        """Scheduled sync of one parent. Returns True if it ran and completed."""
        name = str(parent_id)
        try:
            parent = await self.store.get_parent(parent_id)
            if parent is None:
                self._record("warning", "Parent no longer exists, removing schedule", "parent", name)
                self.unschedule_parent(parent_id)
                return False
            name = parent.display_name

            if self.engine.is_running(parent_id):
                self._record("warning", "Skipped: parent is already syncing", "parent", name)
                return False
            if self.engine.any_running():
                self._record("warning", "Skipped: another sync is in progress", "parent", name)
                return False

            self._record("info", "Scheduled sync started", "parent", name)
            result = await self.engine.start(parent_id)
            if not result.succeeded:
                self._record("error", f"Scheduled sync ended {result.status.value}", "parent", name)
                return False

            await self.store.update_parent_sync_status(
                parent_id, ParentSyncStatus.IDLE, int(time.time())
            )
            self._record(
                "info",
                f"Scheduled sync complete: {result.downloaded} new, {result.skipped} skipped",
                "parent",
                name,
            )
            return True
        except Exception as e:
            self._record("error", f"Scheduled sync failed: {e}", "parent", name)
            return False

    async def execute_task_download(self, task_id: int) -> bool:
        """Scheduled run of one task. Returns True if it ran and completed."""
        name = str(task_id)
        try:
            task = await self.store.get_task(task_id)
            if task is None:
                self._record("warning", "Task no longer exists, removing schedule", "task", name)
                self.unschedule_task(task_id)
                return False
            name = task.name

            if self.orchestrator.is_running(task_id):
                self._record("warning", "Skipped: task is already running", "task", name)
                return False

            self._record("info", "Scheduled task started", "task", name)
            result = await self.orchestrator.start(task_id)
            if result.cancelled or result.error:
                self._record(
                    "error",
                    f"Scheduled task ended {'cancelled' if result.cancelled else 'failed'}",
                    "task",
                    name,
                )
                return False

            await self.store.update_task(task_id, last_run_at=int(time.time()))
            self._record(
                "info", f"Scheduled task complete: {result.downloaded} new items", "task", name
            )
            return True
        except Exception as e:
            self._record("error", f"Scheduled task failed: {e}", "task", name)
            return False

    # --- Lifecycle ---

    async def init(self) -> None:
        """Schedules every auto-sync parent and task, then starts the scheduler loop."""
        parents = await self.store.list_auto_sync_parents()
        tasks = await self.store.list_auto_sync_tasks()
        for parent in parents:
            self.schedule_parent(parent)
        for task in tasks:
            self.schedule_task(task)
        if not self.scheduler.running:
            self.scheduler.start()
        log.info(
            f"Scheduler started: {len(self._parent_jobs)} parent(s), "
            f"{len(self._task_jobs)} task(s) scheduled."
        )

    def shutdown(self) -> None:
        for parent_id in list(self._parent_jobs):
            self.unschedule_parent(parent_id)
        for task_id in list(self._task_jobs):
            self.unschedule_task(task_id)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        log.info("Scheduler stopped.")

    # --- Activity log ---

    def logs(self) -> list[SchedulerLog]:
        """Most recent entries first."""
        return list(self._logs)

    def clear_logs(self) -> None:
        self._logs.clear()

    def _record(self, level: str, message: str, kind: str, target_name: Optional[str] = None) -> None:
        entry = SchedulerLog(level=level, message=message, kind=kind, target_name=target_name)
        self._logs.appendleft(entry)
        log.log(_LOG_LEVELS.get(level, logging.INFO), f"Scheduler: {entry.render()}")
        if self.progress_bus is not None:
            self.progress_bus.publish(entry)
