"""
Task-level orchestration: fans a task's parents out over the sync engine with a
bounded pool of workers.
"""

import asyncio
import logging
import time
from typing import Optional

from feedvault.exceptions import NotFoundError
from feedvault.models.entities import ParentEntity, Task, TaskStatus
from feedvault.models.progress import TaskProgress, TaskState
from feedvault.models.stats import SyncResult, TaskResult

from .progress import ProgressBus
from .session import RunRegistry, TaskRun
from .sync_engine import SyncEngine

log = logging.getLogger(__name__)


class TaskOrchestrator:
    """
    Runs every parent of a task through the SyncEngine, at most
    `task.concurrency` at a time. A failing parent never stops its siblings.
    """

    def __init__(
        self,
        store,
        engine: SyncEngine,
        progress_bus: ProgressBus,
        registry: Optional[RunRegistry[int, TaskRun]] = None,
    ):
        self.store = store
        self.engine = engine
        self.progress_bus = progress_bus
        self.registry = registry if registry is not None else RunRegistry("task")

    def is_running(self, task_id: int) -> bool:
        return self.registry.is_active(task_id)

    def running_task_ids(self) -> list[int]:
        return self.registry.keys()

    def stop(self, task_id: int) -> bool:
        """Sets the task's abort flag; every parent session it spawned observes it."""
        run = self.registry.get(task_id)
        if run is None:
            return False
        run.request_stop()
        log.info(f"[yellow]Stop requested for task {task_id}.[/yellow]")
        return True

    async def start(self, task_id: int) -> TaskResult:
        """
        Runs a task to completion and returns its aggregated result.

        Raises:
            NotFoundError: The task id is unknown.
            ConfigurationError: The credential token is not configured.
            AlreadyRunningError: The task is already running.
        """
        task = await self.store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} does not exist.")
        self.engine.ensure_ready()
        run = self.registry.register(task_id, TaskRun(task_id))

        result = TaskResult(task_id=task_id, status=TaskStatus.RUNNING)
        try:
            try:
                await self._drive(task, run, result)
            except asyncio.CancelledError:
                result.status = TaskStatus.FAILED
                result.cancelled = True
                result.downloaded = run.downloaded
                await self._persist_terminal(task, result)
                raise
            except Exception as e:
                result.status = TaskStatus.FAILED
                result.error = str(e) or type(e).__name__
                result.downloaded = run.downloaded
                log.error(
                    f"[red]✗ Task '{task.name}' failed: {result.error}[/red]",
                    exc_info=log.getEffectiveLevel() == logging.DEBUG,
                )
                await self._persist_terminal(task, result)
                self._emit(
                    task, TaskState.FAILED, f"Task failed: {result.error}",
                    downloaded=result.baseline + run.downloaded,
                )
        finally:
            self.registry.release(task_id, run)

        result.downloaded = run.downloaded
        result.elapsed_seconds = time.monotonic() - run.started_at
        return result

    async def _drive(self, task: Task, run: TaskRun, result: TaskResult) -> None:
        await self.store.update_task(task.id, status=TaskStatus.RUNNING)

        parents = await self.store.get_parents(task.parent_ids)
        result.baseline = sum(p.downloaded_count for p in parents)
        total = len(parents)
        workers = max(1, min(task.concurrency, total))

        log.info(
            f"[bold cyan]▶ Task:[/] {task.name} "
            f"({total} parents, {workers} at a time)"
        )
        self._emit(
            task, TaskState.RUNNING, f"Starting task with {total} parents...",
            total_parents=total, downloaded=result.baseline,
        )

        queue: asyncio.Queue = asyncio.Queue()
        for index, parent in enumerate(parents, 1):
            queue.put_nowait((index, parent))
        results: dict[int, SyncResult] = {}

        await asyncio.gather(
            *(self._worker(task, run, queue, results, total, result.baseline) for _ in range(workers))
        )

        result.parent_results = [results[i] for i in sorted(results)]
        result.total_items = sum(r.queued for r in result.parent_results)
        result.downloaded = run.downloaded

        if run.token.cancelled:
            result.status = TaskStatus.FAILED
            result.cancelled = True
            await self._persist_terminal(task, result)
            self._emit(
                task, TaskState.CANCELLED,
                f"Task cancelled after {run.downloaded} new items",
                total_parents=total, downloaded=result.baseline + run.downloaded,
            )
            log.info(f"[yellow]○ Task '{task.name}' cancelled.[/yellow]")
        else:
            result.status = TaskStatus.COMPLETED
            await self._persist_terminal(task, result)
            self._emit(
                task, TaskState.COMPLETED,
                f"Task complete: {run.downloaded} new items",
                total_parents=total, downloaded=result.baseline + run.downloaded,
            )
            log.info(
                f"[green]✓ Task '{task.name}' complete:[/green] {run.downloaded} new, "
                f"{result.failed_parents} parent(s) failed."
            )

    async def _worker(
        self,
        task: Task,
        run: TaskRun,
        queue: asyncio.Queue,
        results: dict[int, SyncResult],
        total: int,
        baseline: int,
    ) -> None:
        while not run.token.cancelled:
            try:
                index, parent = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            self._emit(
                task, TaskState.RUNNING, f"Syncing {parent.display_name} ({index}/{total})",
                current_parent=parent.display_name, parent_index=index,
                total_parents=total, downloaded=baseline + run.downloaded,
            )
            sync_result = await self._sync_parent(parent, run)
            results[index] = sync_result
            run.downloaded += sync_result.downloaded

            self._emit(
                task, TaskState.RUNNING, f"Finished {parent.display_name} ({index}/{total})",
                current_parent=parent.display_name, parent_index=index,
                total_parents=total, downloaded=baseline + run.downloaded,
            )

    async def _sync_parent(self, parent: ParentEntity, run: TaskRun) -> SyncResult:
        """Runs one parent sync, turning any failure into a zero-count result."""
        try:
            return await self.engine.start(parent.id, cancel_token=run.token)
        except Exception as e:
            error = str(e) or type(e).__name__
            log.warning(f"[yellow]○ Skipping {parent.display_name}: {error}[/yellow]")
            return SyncResult.rejected(parent.id, error)

    async def _persist_terminal(self, task: Task, result: TaskResult) -> None:
        try:
            await self.store.update_task(
                task.id,
                status=result.status,
                total_items=result.total_items,
                downloaded_items=result.downloaded,
            )
        except Exception as e:
            log.error(f"[red]Could not record status of task '{task.name}': {e}[/red]")

    def _emit(
        self,
        task: Task,
        state: TaskState,
        message: str,
        current_parent: Optional[str] = None,
        parent_index: int = 0,
        total_parents: int = 0,
        downloaded: int = 0,
    ) -> None:
        self.progress_bus.publish(
            TaskProgress(
                task_id=task.id,
                status=state,
                message=message,
                current_parent=current_parent,
                parent_index=parent_index,
                total_parents=total_parents or len(task.parent_ids),
                current=parent_index,
                total=total_parents or len(task.parent_ids),
                downloaded=downloaded,
            )
        )
