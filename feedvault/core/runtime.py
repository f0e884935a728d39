"""
Builds the object graph used by the CLI from a loaded configuration.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from feedvault.api.client import ContentProviderClient
from feedvault.media.prober import MediaProber
from feedvault.models.config import SyncConfig
from feedvault.storage.store import ContentStore

from .orchestrator import TaskOrchestrator
from .progress import ProgressBus
from .scheduler import SyncScheduler
from .session import RunRegistry
from .slot_pool import ResourceSlotPool
from .sync_engine import SyncEngine

log = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Every long-lived collaborator of one process, wired together."""

    config: SyncConfig
    store: ContentStore
    provider: ContentProviderClient
    slot_pool: ResourceSlotPool
    progress_bus: ProgressBus
    engine: SyncEngine
    orchestrator: TaskOrchestrator
    scheduler: SyncScheduler

    def stop_all(self) -> None:
        """Requests a cooperative stop of every running task and parent sync."""
        for task_id in self.orchestrator.running_task_ids():
            self.orchestrator.stop(task_id)
        for parent_id in self.engine.running_parent_ids():
            self.engine.stop(parent_id)

    async def close(self) -> None:
        self.scheduler.shutdown()
        await self.provider.close()
        log.debug("Runtime closed.")


def create_runtime(
    config: SyncConfig,
    store: Optional[ContentStore] = None,
    provider: Optional[ContentProviderClient] = None,
) -> Runtime:
    """
    Wires store, provider, slot pool, registries, engine, orchestrator and
    scheduler. The registries and the slot pool are shared by every component
    of the returned runtime.
    """
    store = store or ContentStore(Path(config.config_path))
    provider = provider or ContentProviderClient(
        config.api_base_url,
        config.token,
        max_connections=max(config.download_concurrency * 2, 4),
    )
    slot_pool = ResourceSlotPool(config.probe_slots)
    progress_bus = ProgressBus()

    engine = SyncEngine(
        config,
        store,
        provider,
        MediaProber(),
        slot_pool,
        progress_bus,
        sessions=RunRegistry("parent"),
    )
    orchestrator = TaskOrchestrator(
        store, engine, progress_bus, registry=RunRegistry("task")
    )
    scheduler = SyncScheduler(
        store,
        engine,
        orchestrator,
        scheduler=AsyncIOScheduler(),
        progress_bus=progress_bus,
    )
    return Runtime(
        config=config,
        store=store,
        provider=provider,
        slot_pool=slot_pool,
        progress_bus=progress_bus,
        engine=engine,
        orchestrator=orchestrator,
        scheduler=scheduler,
    )
