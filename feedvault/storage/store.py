"""
Manages the SQLite database holding tracked parents, tasks and the archive of
downloaded items used to skip anything already fetched.
"""

import asyncio
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

from feedvault.models.entities import (
    ContentItem,
    ParentEntity,
    ParentSyncStatus,
    Task,
    TaskStatus,
)

log = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS parents (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        external_id TEXT UNIQUE NOT NULL,
        nickname TEXT DEFAULT '',
        item_cap INTEGER DEFAULT 0,
        auto_sync INTEGER DEFAULT 0,
        sync_cron TEXT DEFAULT '',
        sync_status TEXT DEFAULT 'idle',
        last_synced_at INTEGER,
        created_at INTEGER DEFAULT (strftime('%s', 'now'))
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        status TEXT DEFAULT 'pending',
        concurrency INTEGER DEFAULT 3,
        total_items INTEGER DEFAULT 0,
        downloaded_items INTEGER DEFAULT 0,
        auto_sync INTEGER DEFAULT 0,
        sync_cron TEXT DEFAULT '',
        created_at INTEGER DEFAULT (strftime('%s', 'now')),
        updated_at INTEGER DEFAULT (strftime('%s', 'now')),
        last_run_at INTEGER
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS task_parents (
        task_id INTEGER NOT NULL,
        parent_id INTEGER NOT NULL,
        position INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (task_id, parent_id),
        FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE,
        FOREIGN KEY (parent_id) REFERENCES parents(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS items (
        item_id TEXT PRIMARY KEY NOT NULL,
        parent_id INTEGER NOT NULL,
        external_id TEXT NOT NULL,
        nickname TEXT,
        caption TEXT,
        description TEXT,
        item_type INTEGER DEFAULT 0,
        create_time TEXT,
        folder_name TEXT,
        media_path TEXT,
        duration REAL,
        downloaded_at INTEGER DEFAULT (strftime('%s', 'now')),
        FOREIGN KEY (parent_id) REFERENCES parents(id) ON DELETE CASCADE
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_items_parent ON items(parent_id);",
)

_PARENT_COLUMNS = (
    "p.id, p.external_id, p.nickname, p.item_cap, p.auto_sync, p.sync_cron, "
    "p.sync_status, p.last_synced_at, "
    "(SELECT COUNT(*) FROM items i WHERE i.parent_id = p.id) AS downloaded_count"
)


def _row_to_parent(row: sqlite3.Row) -> ParentEntity:
    return ParentEntity(
        id=row["id"],
        external_id=row["external_id"],
        nickname=row["nickname"] or "",
        item_cap=row["item_cap"] or 0,
        auto_sync=bool(row["auto_sync"]),
        sync_cron=row["sync_cron"] or "",
        sync_status=ParentSyncStatus(row["sync_status"] or "idle"),
        last_synced_at=row["last_synced_at"],
        downloaded_count=row["downloaded_count"],
    )


def _row_to_task(row: sqlite3.Row, parent_ids: list[int]) -> Task:
    return Task(
        id=row["id"],
        name=row["name"],
        status=TaskStatus(row["status"] or "pending"),
        concurrency=row["concurrency"] or 3,
        parent_ids=parent_ids,
        total_items=row["total_items"] or 0,
        downloaded_items=row["downloaded_items"] or 0,
        auto_sync=bool(row["auto_sync"]),
        sync_cron=row["sync_cron"] or "",
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        last_run_at=row["last_run_at"],
    )


class ContentStore:
    """
    A thread-safe SQLite store for parents, tasks and archived items. Blocking
    queries run in worker threads behind a small connection semaphore.
    """

    def __init__(self, config_dir_path: Path, pool_size: int = 5):
        self.db_path = config_dir_path / "feedvault.sqlite"
        self._pool_size = pool_size
        self._connection_semaphore = asyncio.Semaphore(pool_size)
        config_dir_path.mkdir(parents=True, exist_ok=True)
        self._initialize_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Gets a new database connection with optimized PRAGMA settings."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA foreign_keys=ON;")
            conn.execute("PRAGMA temp_store=MEMORY;")
            return conn
        except sqlite3.Error as e:
            log.error(f"Failed to connect to content database: {e}")
            raise

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_connection()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _initialize_db(self) -> None:
        """Creates the tables and indexes if they don't exist."""
        try:
            with self._connection() as conn:
                for statement in _SCHEMA:
                    conn.execute(statement)
        except sqlite3.Error as e:
            log.error(f"Failed to initialize content database at '{self.db_path}': {e}")
            raise

    async def _run_in_executor(self, func, *args):
        """Runs a synchronous database function within the connection pool semaphore."""
        async with self._connection_semaphore:
            return await asyncio.to_thread(func, *args)

    # --- Parents ---

    def _create_parent_sync(
        self, external_id: str, nickname: str, item_cap: int, sync_cron: str
    ) -> int:
        with self._connection() as conn:
            cursor = conn.execute(
                "INSERT INTO parents (external_id, nickname, item_cap, auto_sync, sync_cron)"
                " VALUES (?, ?, ?, ?, ?)",
                (external_id, nickname, item_cap, int(bool(sync_cron)), sync_cron),
            )
            return cursor.lastrowid

    async def create_parent(
        self, external_id: str, nickname: str = "", item_cap: int = 0, sync_cron: str = ""
    ) -> ParentEntity:
        """Adds a tracked parent. A non-empty cron enables automatic syncing."""
        parent_id = await self._run_in_executor(
            self._create_parent_sync, external_id, nickname, item_cap, sync_cron
        )
        return await self.get_parent(parent_id)

    def _query_parents_sync(self, where: str = "", params: tuple = ()) -> list[ParentEntity]:
        query = f"SELECT {_PARENT_COLUMNS} FROM parents p {where} ORDER BY p.id"  # noqa: S608
        with self._connection() as conn:
            return [_row_to_parent(row) for row in conn.execute(query, params)]

    async def get_parent(self, parent_id: int) -> Optional[ParentEntity]:
        parents = await self._run_in_executor(
            self._query_parents_sync, "WHERE p.id = ?", (parent_id,)
        )
        return parents[0] if parents else None

    async def get_parents(self, parent_ids: list[int]) -> list[ParentEntity]:
        """Returns the parents for the given ids, preserving the order of `parent_ids`."""
        if not parent_ids:
            return []
        placeholders = ",".join("?" * len(parent_ids))
        found = await self._run_in_executor(
            self._query_parents_sync, f"WHERE p.id IN ({placeholders})", tuple(parent_ids)
        )
        by_id = {p.id: p for p in found}
        return [by_id[pid] for pid in parent_ids if pid in by_id]

    async def list_parents(self) -> list[ParentEntity]:
        return await self._run_in_executor(self._query_parents_sync)

    async def list_auto_sync_parents(self) -> list[ParentEntity]:
        return await self._run_in_executor(
            self._query_parents_sync, "WHERE p.auto_sync = 1 AND p.sync_cron != ''"
        )

    def _update_parent_sync_status_sync(
        self, parent_id: int, status: str, synced_at: Optional[int]
    ) -> None:
        with self._connection() as conn:
            if synced_at is None:
                conn.execute(
                    "UPDATE parents SET sync_status = ? WHERE id = ?", (status, parent_id)
                )
            else:
                conn.execute(
                    "UPDATE parents SET sync_status = ?, last_synced_at = ? WHERE id = ?",
                    (status, synced_at, parent_id),
                )

    async def update_parent_sync_status(
        self,
        parent_id: int,
        status: ParentSyncStatus,
        synced_at: Optional[int] = None,
    ) -> None:
        await self._run_in_executor(
            self._update_parent_sync_status_sync,
            parent_id,
            ParentSyncStatus(status).value,
            synced_at,
        )

    def _set_parent_schedule_sync(self, parent_id: int, enabled: bool, cron: str) -> None:
        with self._connection() as conn:
            conn.execute(
                "UPDATE parents SET auto_sync = ?, sync_cron = ? WHERE id = ?",
                (int(enabled), cron, parent_id),
            )

    async def set_parent_schedule(
        self, parent_id: int, enabled: bool, cron: str = ""
    ) -> Optional[ParentEntity]:
        await self._run_in_executor(self._set_parent_schedule_sync, parent_id, enabled, cron)
        return await self.get_parent(parent_id)

    # --- Tasks ---

    def _create_task_sync(
        self, name: str, parent_ids: list[int], concurrency: int, sync_cron: str
    ) -> int:
        with self._connection() as conn:
            cursor = conn.execute(
                "INSERT INTO tasks (name, concurrency, auto_sync, sync_cron)"
                " VALUES (?, ?, ?, ?)",
                (name, concurrency, int(bool(sync_cron)), sync_cron),
            )
            task_id = cursor.lastrowid
            conn.executemany(
                "INSERT OR IGNORE INTO task_parents (task_id, parent_id, position)"
                " VALUES (?, ?, ?)",
                [(task_id, pid, pos) for pos, pid in enumerate(parent_ids)],
            )
            return task_id

    async def create_task(
        self,
        name: str,
        parent_ids: list[int],
        concurrency: int = 3,
        sync_cron: str = "",
    ) -> Task:
        task_id = await self._run_in_executor(
            self._create_task_sync, name, list(dict.fromkeys(parent_ids)), concurrency, sync_cron
        )
        return await self.get_task(task_id)

    def _query_tasks_sync(self, where: str = "", params: tuple = ()) -> list[Task]:
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM tasks {where} ORDER BY id", params  # noqa: S608
            ).fetchall()
            tasks = []
            for row in rows:
                parent_ids = [
                    r["parent_id"]
                    for r in conn.execute(
                        "SELECT parent_id FROM task_parents WHERE task_id = ?"
                        " ORDER BY position",
                        (row["id"],),
                    )
                ]
                tasks.append(_row_to_task(row, parent_ids))
            return tasks

    async def get_task(self, task_id: int) -> Optional[Task]:
        tasks = await self._run_in_executor(self._query_tasks_sync, "WHERE id = ?", (task_id,))
        return tasks[0] if tasks else None

    async def list_tasks(self) -> list[Task]:
        return await self._run_in_executor(self._query_tasks_sync)

    async def list_auto_sync_tasks(self) -> list[Task]:
        return await self._run_in_executor(
            self._query_tasks_sync, "WHERE auto_sync = 1 AND sync_cron != ''"
        )

    def _update_task_sync(self, task_id: int, fields: dict[str, Any]) -> None:
        fields["updated_at"] = int(time.time())
        assignments = ", ".join(f"{column} = ?" for column in fields)
        with self._connection() as conn:
            conn.execute(
                f"UPDATE tasks SET {assignments} WHERE id = ?",  # noqa: S608
                (*fields.values(), task_id),
            )

    async def update_task(
        self,
        task_id: int,
        *,
        status: Optional[TaskStatus] = None,
        total_items: Optional[int] = None,
        downloaded_items: Optional[int] = None,
        last_run_at: Optional[int] = None,
    ) -> None:
        """Updates the given task columns; omitted arguments are left untouched."""
        fields: dict[str, Any] = {}
        if status is not None:
            fields["status"] = TaskStatus(status).value
        if total_items is not None:
            fields["total_items"] = total_items
        if downloaded_items is not None:
            fields["downloaded_items"] = downloaded_items
        if last_run_at is not None:
            fields["last_run_at"] = last_run_at
        await self._run_in_executor(self._update_task_sync, task_id, fields)

    def _set_task_schedule_sync(self, task_id: int, enabled: bool, cron: str) -> None:
        with self._connection() as conn:
            conn.execute(
                "UPDATE tasks SET auto_sync = ?, sync_cron = ? WHERE id = ?",
                (int(enabled), cron, task_id),
            )

    async def set_task_schedule(
        self, task_id: int, enabled: bool, cron: str = ""
    ) -> Optional[Task]:
        await self._run_in_executor(self._set_task_schedule_sync, task_id, enabled, cron)
        return await self.get_task(task_id)

    # --- Items ---

    def _item_exists_sync(self, item_id: str) -> bool:
        try:
            with self._connection() as conn:
                row = conn.execute(
                    "SELECT 1 FROM items WHERE item_id = ? LIMIT 1", (item_id,)
                ).fetchone()
                return row is not None
        except sqlite3.Error as e:
            log.error(f"Archive lookup failed for item '{item_id}': {e}")
            raise

    async def item_exists(self, item_id: str) -> bool:
        """Checks whether an item id is already in the archive."""
        return await self._run_in_executor(self._item_exists_sync, item_id)

    def _persist_item_sync(self, item: ContentItem) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO items (
                    item_id, parent_id, external_id, nickname, caption, description,
                    item_type, create_time, folder_name, media_path, duration
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(item_id) DO UPDATE SET
                    parent_id = excluded.parent_id,
                    folder_name = excluded.folder_name,
                    media_path = excluded.media_path,
                    duration = excluded.duration,
                    downloaded_at = strftime('%s', 'now')
                """,
                (
                    item.item_id,
                    item.parent_id,
                    item.external_id,
                    item.nickname,
                    item.caption,
                    item.description,
                    item.item_type,
                    item.create_time,
                    item.folder_name,
                    item.media_path,
                    item.duration,
                ),
            )

    async def persist_item(self, item: ContentItem) -> None:
        """Records a downloaded item. A concurrent duplicate insert overwrites the row."""
        await self._run_in_executor(self._persist_item_sync, item)

    def _count_items_sync(self, parent_id: Optional[int]) -> int:
        with self._connection() as conn:
            if parent_id is None:
                return conn.execute("SELECT COUNT(*) FROM items").fetchone()[0]
            return conn.execute(
                "SELECT COUNT(*) FROM items WHERE parent_id = ?", (parent_id,)
            ).fetchone()[0]

    async def count_items(self, parent_id: Optional[int] = None) -> int:
        return await self._run_in_executor(self._count_items_sync, parent_id)

    # --- Maintenance ---

    def _get_stats_sync(self) -> dict[str, Any] | None:
        """Synchronous implementation for getting archive statistics."""
        try:
            with self._connection() as conn:
                total_items = conn.execute("SELECT COUNT(*) FROM items").fetchone()[0]
                top_parents = conn.execute(
                    """
                    SELECT COALESCE(NULLIF(p.nickname, ''), p.external_id) AS name,
                           COUNT(i.item_id) AS count
                    FROM parents p JOIN items i ON i.parent_id = p.id
                    GROUP BY p.id
                    ORDER BY count DESC
                    LIMIT 10
                    """
                ).fetchall()
                return {
                    "total_items": total_items,
                    "top_parents": [(row["name"], row["count"]) for row in top_parents],
                }
        except sqlite3.Error as e:
            log.error(f"Failed to get archive stats: {e}")
            return None

    async def get_stats(self) -> dict[str, Any] | None:
        """Retrieves statistics from the item archive."""
        return await self._run_in_executor(self._get_stats_sync)

    def _vacuum_sync(self) -> bool:
        """Synchronous implementation for optimizing the database."""
        try:
            conn = self._get_connection()
            try:
                conn.execute("VACUUM;")
                conn.execute("ANALYZE;")
            finally:
                conn.close()
            log.info("Content database optimized successfully.")
            return True
        except sqlite3.Error as e:
            log.error(f"Database vacuum failed: {e}")
            return False

    async def vacuum(self) -> bool:
        """Optimizes the database file by rebuilding it."""
        return await self._run_in_executor(self._vacuum_sync)
