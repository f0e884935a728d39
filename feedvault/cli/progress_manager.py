"""
Renders progress bus events in the terminal: a live bar per syncing parent, and
plain log lines for task and scheduler activity.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from feedvault.core.progress import ProgressBus
from feedvault.models.progress import (
    SchedulerLog,
    SyncProgress,
    SyncState,
    TaskProgress,
    TaskState,
)
from feedvault.utils.formatting import shorten

log = logging.getLogger(__name__)

_SYNC_STYLES = {
    SyncState.COMPLETED: "green",
    SyncState.FAILED: "red",
    SyncState.STOPPED: "yellow",
}
_TASK_STYLES = {
    TaskState.RUNNING: "cyan",
    TaskState.COMPLETED: "green",
    TaskState.FAILED: "red",
    TaskState.CANCELLED: "yellow",
}
_LOG_STYLES = {"info": "cyan", "warning": "yellow", "error": "red"}


class ProgressManager:
    """
    Subscribes to a ProgressBus for the lifetime of an `async with` block.

    With `live=False` (used by `serve`, where output can run for days) every
    event is printed as a line instead of driving progress bars.
    """

    def __init__(self, console: Console, progress_bus: ProgressBus, live: bool = True):
        self.console = console
        self.progress_bus = progress_bus
        self.live = live

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.fields[name]}", justify="left"),
            BarColumn(bar_width=30),
            MofNCompleteColumn(),
            "•",
            TextColumn("{task.description}"),
            "•",
            TimeElapsedColumn(),
            console=console,
            transient=False,
        )
        self._bars: dict[int, TaskID] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._stats = {"events": 0, "peak_parallel": 0}

    def handle(self, event: Any) -> None:
        """Progress bus listener."""
        self._stats["events"] += 1
        if isinstance(event, SyncProgress):
            self._on_sync(event)
        elif isinstance(event, TaskProgress):
            self._on_task(event)
        elif isinstance(event, SchedulerLog):
            style = _LOG_STYLES.get(event.level, "")
            self.console.print(f"[{style}]⏱ {event.render()}[/{style}]")
        else:
            log.debug(f"Ignoring unknown progress event: {event!r}")

    def _on_sync(self, event: SyncProgress) -> None:
        if not self.live:
            if event.status != SyncState.SYNCING:
                style = _SYNC_STYLES[event.status]
                self.console.print(f"[{style}]{event.message}[/{style}]")
            return

        bar = self._bars.get(event.parent_id)
        if bar is None:
            bar = self.progress.add_task(
                event.message, name=shorten(event.nickname, 24), total=event.total or None
            )
            self._bars[event.parent_id] = bar
            self._stats["peak_parallel"] = max(
                self._stats["peak_parallel"],
                sum(1 for t in self.progress.tasks if not t.finished),
            )

        style = _SYNC_STYLES.get(event.status)
        description = f"[{style}]{event.message}[/{style}]" if style else event.message
        self.progress.update(
            bar,
            description=description,
            completed=event.current,
            total=event.total or None,
        )
        if event.status != SyncState.SYNCING:
            self.progress.stop_task(bar)
            self._bars.pop(event.parent_id, None)

    def _on_task(self, event: TaskProgress) -> None:
        style = _TASK_STYLES[event.status]
        self.console.print(f"[{style}]▶ Task {event.task_id}: {event.message}[/{style}]")

    def get_statistics(self) -> dict:
        return self._stats.copy()

    async def __aenter__(self):
        self._unsubscribe = self.progress_bus.subscribe(self.handle)
        if self.live:
            self.progress.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        if self.live:
            await asyncio.sleep(0.1)
            self.progress.stop()
