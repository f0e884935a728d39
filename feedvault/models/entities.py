"""
Dataclasses for the records kept in the content store and the items listed remotely.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

# Remote item type used for image posts (galleries have no duration to probe)
GALLERY_ITEM_TYPE = 68


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ParentSyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


@dataclass
class ParentEntity:
    """A tracked remote account whose items are archived."""

    id: int
    external_id: str
    nickname: str = ""
    item_cap: int = 0
    auto_sync: bool = False
    sync_cron: str = ""
    sync_status: ParentSyncStatus = ParentSyncStatus.IDLE
    last_synced_at: Optional[int] = None
    downloaded_count: int = 0

    @property
    def display_name(self) -> str:
        return self.nickname or self.external_id

    def effective_cap(self, global_default: int) -> int:
        """The per-parent override when positive, else the global default (0 = unlimited)."""
        return self.item_cap if self.item_cap > 0 else global_default


@dataclass
class Task:
    """A user-defined batch job grouping several parents."""

    id: int
    name: str
    status: TaskStatus = TaskStatus.PENDING
    concurrency: int = 3
    parent_ids: list[int] = field(default_factory=list)
    total_items: int = 0
    downloaded_items: int = 0
    auto_sync: bool = False
    sync_cron: str = ""
    created_at: Optional[int] = None
    updated_at: Optional[int] = None
    last_run_at: Optional[int] = None


@dataclass
class ItemDescriptor:
    """One remote item as returned by a listing page."""

    item_id: str
    description: str = ""
    caption: str = ""
    item_type: int = 0
    create_time: str = ""
    nickname: str = ""
    video_url: Optional[str] = None
    cover_url: Optional[str] = None
    music_url: Optional[str] = None
    image_urls: list[str] = field(default_factory=list)

    @property
    def is_gallery(self) -> bool:
        return self.item_type == GALLERY_ITEM_TYPE or bool(self.image_urls)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ItemDescriptor":
        """Builds a descriptor from a raw listing entry, tolerating missing fields."""
        images = data.get("images") or []
        return cls(
            item_id=str(data.get("id") or ""),
            description=data.get("desc") or "",
            caption=data.get("caption") or "",
            item_type=int(data.get("type") or 0),
            create_time=str(data.get("create_time") or ""),
            nickname=(data.get("author") or {}).get("nickname", ""),
            video_url=(data.get("video") or {}).get("url"),
            cover_url=(data.get("cover") or {}).get("url"),
            music_url=(data.get("music") or {}).get("url"),
            image_urls=[img["url"] for img in images if img.get("url")],
        )


@dataclass
class ContentItem:
    """An archived item. `item_id` is the dedup key."""

    item_id: str
    parent_id: int
    external_id: str
    nickname: str = ""
    caption: str = ""
    description: str = ""
    item_type: int = 0
    create_time: str = ""
    folder_name: str = ""
    media_path: str = ""
    duration: Optional[float] = None
    downloaded_at: Optional[int] = None
