"""
Runs the sync of a single parent: list remote items, skip archived ones, then
download the rest in sequential batches of concurrent downloads.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from pathlib import Path
from typing import Optional

from feedvault.exceptions import (
    AlreadyRunningError,
    ItemDownloadError,
    NotFoundError,
    SessionAbortedError,
)
from feedvault.models.config import SyncConfig
from feedvault.models.entities import (
    ContentItem,
    ItemDescriptor,
    ParentEntity,
    ParentSyncStatus,
)
from feedvault.models.progress import SyncProgress, SyncState
from feedvault.models.stats import SyncResult
from feedvault.utils.path import parent_dir

from .cancellation import CancellationToken
from .progress import ProgressBus
from .session import RunRegistry, SyncPhase, SyncSession
from .slot_pool import ResourceSlotPool

log = logging.getLogger(__name__)

_TERMINAL_STATES = {
    SyncPhase.COMPLETED: SyncState.COMPLETED,
    SyncPhase.STOPPED: SyncState.STOPPED,
    SyncPhase.FAILED: SyncState.FAILED,
}


class SyncEngine:
    """
    Drives one parent's `listing → batching → (downloading → cooldown)*` run.

    The engine owns no global state: the session registry, slot pool and
    progress bus are injected so several engines (or tests) can share or
    isolate them.
    """

    SKIP_PROGRESS_INTERVAL = 20

    def __init__(
        self,
        config: SyncConfig,
        store,
        provider,
        prober,
        slot_pool: ResourceSlotPool,
        progress_bus: ProgressBus,
        sessions: Optional[RunRegistry[int, SyncSession]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.store = store
        self.provider = provider
        self.prober = prober
        self.slot_pool = slot_pool
        self.progress_bus = progress_bus
        self.sessions = sessions if sessions is not None else RunRegistry("parent")
        self._sleep = sleep

    # --- Registry queries ---

    def is_running(self, parent_id: int) -> bool:
        return self.sessions.is_active(parent_id)

    def any_running(self) -> bool:
        return self.sessions.any_active()

    def running_parent_ids(self) -> list[int]:
        return self.sessions.keys()

    def get_session(self, parent_id: int) -> Optional[SyncSession]:
        return self.sessions.get(parent_id)

    def stop(self, parent_id: int) -> bool:
        """Requests a cooperative stop. Returns False if the parent is not syncing."""
        session = self.sessions.get(parent_id)
        if session is None:
            return False
        session.request_stop()
        log.info(f"[yellow]Stop requested for parent {parent_id}.[/yellow]")
        return True

    def ensure_ready(self) -> None:
        """Fails fast with ConfigurationError when the credential token is missing."""
        self.config.require_token()

    # --- Session lifecycle ---

    async def start(
        self, parent_id: int, cancel_token: Optional[CancellationToken] = None
    ) -> SyncResult:
        """
        Runs a full sync for one parent and returns its result.

        Args:
            parent_id: Content store id of the parent.
            cancel_token: Optional outer token (e.g. the task's); stopping it also
                stops this session.

        Raises:
            AlreadyRunningError: A session for this parent is already active.
            ConfigurationError: The credential token is not configured.
            NotFoundError: The parent id is unknown.
        """
        if self.sessions.is_active(parent_id):
            raise AlreadyRunningError(f"Parent {parent_id} is already syncing.")
        self.ensure_ready()

        # No await between the guard above and registration.
        token = cancel_token.child() if cancel_token else CancellationToken()
        session = self.sessions.register(parent_id, SyncSession(parent_id, token=token))

        error: Optional[str] = None
        queued = 0
        try:
            parent = await self.store.get_parent(parent_id)
            if parent is None:
                raise NotFoundError(f"Parent {parent_id} does not exist.")

            try:
                await self.store.update_parent_sync_status(parent_id, ParentSyncStatus.SYNCING)
                queued = await self._run(parent, session)
                session.phase = SyncPhase.COMPLETED
            except asyncio.CancelledError:
                session.phase = SyncPhase.STOPPED
                await self._finish(parent, session, queued, error)
                raise
            except SessionAbortedError:
                session.phase = SyncPhase.STOPPED
            except Exception as e:
                session.phase = SyncPhase.FAILED
                error = str(e) or type(e).__name__
                log.error(
                    f"[red]✗ Sync of {parent.display_name} failed: {error}[/red]",
                    exc_info=log.getEffectiveLevel() == logging.DEBUG,
                )
            await self._finish(parent, session, queued, error)
        finally:
            self.sessions.release(parent_id, session)

        return SyncResult(
            parent_id=parent_id,
            status=_TERMINAL_STATES[session.phase],
            downloaded=session.downloaded,
            skipped=session.skipped,
            failed=session.failed,
            queued=queued,
            error=error,
            elapsed_seconds=session.elapsed,
        )

    async def _run(self, parent: ParentEntity, session: SyncSession) -> int:
        cap = parent.effective_cap(self.config.default_item_cap)
        target_dir = parent_dir(self.config.resolve_download_dir(), parent.external_id)

        session.phase = SyncPhase.LISTING
        self._emit(
            parent, session, SyncState.SYNCING,
            f"Fetching item list for {parent.display_name}...", total=cap,
        )
        log.info(f"[bold cyan]▶ Sync:[/] {parent.display_name} (cap: {cap or 'unlimited'})")

        pending = await self._collect_pending(parent, session, cap)
        log.info(
            f"  Listing done for {parent.display_name}: {len(pending)} new, "
            f"{session.skipped} already archived."
        )
        if pending:
            await self._download_batches(parent, session, pending, target_dir)
        return len(pending)

    async def _collect_pending(
        self, parent: ParentEntity, session: SyncSession, cap: int
    ) -> list[ItemDescriptor]:
        """Walks the listing and buffers unarchived items, stopping at the cap."""
        pending: list[ItemDescriptor] = []
        seen: set[str] = set()
        listing = self.provider.fetch_parent_items(parent.external_id, max_count=cap)
        async with aclosing(listing) as pages:
            async for page in pages:
                session.token.raise_if_cancelled()
                for descriptor in page:
                    session.token.raise_if_cancelled()
                    item_id = descriptor.item_id
                    if not item_id or item_id in seen:
                        continue
                    seen.add(item_id)

                    if await self.store.item_exists(item_id):
                        session.skipped += 1
                        if session.skipped % self.SKIP_PROGRESS_INTERVAL == 0:
                            self._emit(
                                parent, session, SyncState.SYNCING,
                                f"Skipped {session.skipped} already downloaded items...",
                                total=cap,
                            )
                        continue

                    pending.append(descriptor)
                    if cap > 0 and len(pending) >= cap:
                        return pending
        return pending

    async def _download_batches(
        self,
        parent: ParentEntity,
        session: SyncSession,
        pending: list[ItemDescriptor],
        target_dir: Path,
    ) -> None:
        batch_size = self.config.download_concurrency
        batches = [pending[i : i + batch_size] for i in range(0, len(pending), batch_size)]
        total = len(pending)

        session.phase = SyncPhase.BATCHING
        self._emit(parent, session, SyncState.SYNCING, f"Starting download of {total} items...", total=total)

        for number, batch in enumerate(batches, 1):
            session.token.raise_if_cancelled()

            session.phase = SyncPhase.DOWNLOADING
            self._emit(
                parent, session, SyncState.SYNCING,
                f"Downloading batch {number}/{len(batches)}...", total=total,
            )
            await asyncio.gather(
                *(self._download_one(parent, session, d, target_dir) for d in batch)
            )
            self._emit(
                parent, session, SyncState.SYNCING,
                f"Finished {session.downloaded}/{total}", total=total,
            )

            if number < len(batches) and not session.token.cancelled:
                session.phase = SyncPhase.COOLDOWN
                cooldown = self.config.cooldown_seconds
                self._emit(
                    parent, session, SyncState.SYNCING,
                    f"Cooling down for {cooldown:g}s...", total=total,
                )
                await self._sleep(cooldown)

        session.token.raise_if_cancelled()

    async def _download_one(
        self,
        parent: ParentEntity,
        session: SyncSession,
        descriptor: ItemDescriptor,
        target_dir: Path,
    ) -> bool:
        """Downloads, probes and archives one item. Never raises for item failures."""
        if session.token.cancelled:
            return False

        try:
            media = await self.provider.download_item(descriptor, target_dir)

            duration = None
            if not descriptor.is_gallery and media.media_path is not None:
                duration = await self._probe(media.media_path)

            await self.store.persist_item(
                ContentItem(
                    item_id=descriptor.item_id,
                    parent_id=parent.id,
                    external_id=parent.external_id,
                    nickname=descriptor.nickname or parent.nickname,
                    caption=descriptor.caption,
                    description=descriptor.description,
                    item_type=descriptor.item_type,
                    create_time=descriptor.create_time,
                    folder_name=media.folder.name,
                    media_path=str(media.media_path or media.folder),
                    duration=duration,
                )
            )
        except Exception as e:
            session.failed += 1
            if not isinstance(e, ItemDownloadError):
                e = ItemDownloadError(descriptor.item_id, str(e) or type(e).__name__)
            log.error(
                f"[red]  ✗ {e}[/red]",
                exc_info=log.getEffectiveLevel() == logging.DEBUG,
            )
            return False

        session.downloaded += 1
        log.debug(f"  [green]✓[/green] {descriptor.item_id} archived")
        return True

    async def _probe(self, media_path: Path) -> Optional[float]:
        async with self.slot_pool:
            try:
                return await self.prober.probe_duration(media_path)
            except Exception as e:
                log.warning(
                    f"  [yellow]○ Could not read duration of '{media_path.name}': {e}[/yellow]"
                )
                return None

    async def _finish(
        self,
        parent: ParentEntity,
        session: SyncSession,
        queued: int,
        error: Optional[str],
    ) -> None:
        """Persists the parent's terminal sync status and emits the final event."""
        name = parent.display_name
        if session.phase == SyncPhase.COMPLETED:
            status, synced_at = ParentSyncStatus.IDLE, int(time.time())
            if queued == 0:
                message = f"{name}: no new items, {session.skipped} already downloaded"
            else:
                skip_msg = f", skipped {session.skipped} already downloaded" if session.skipped else ""
                message = f"{name} sync complete: {session.downloaded} new{skip_msg}"
            state = SyncState.COMPLETED
        elif session.phase == SyncPhase.STOPPED:
            status, synced_at = ParentSyncStatus.IDLE, None
            message = "Sync cancelled"
            state = SyncState.STOPPED
        else:
            status, synced_at = ParentSyncStatus.ERROR, None
            message = f"Sync failed: {error}"
            state = SyncState.FAILED

        try:
            await self.store.update_parent_sync_status(parent.id, status, synced_at)
        except Exception as e:
            log.error(f"[red]Could not record sync status for {name}: {e}[/red]")

        self._emit(parent, session, state, message, total=queued)
        log.info(f"  {message}")

    def _emit(
        self,
        parent: ParentEntity,
        session: SyncSession,
        state: SyncState,
        message: str,
        total: int = 0,
    ) -> None:
        self.progress_bus.publish(
            SyncProgress(
                parent_id=parent.id,
                nickname=parent.display_name,
                status=state,
                message=message,
                current=session.downloaded,
                total=total,
                downloaded=session.downloaded,
                skipped=session.skipped,
            )
        )
