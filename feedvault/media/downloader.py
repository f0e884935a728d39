"""
Handles the low-level downloading of item media over HTTP with retries, and lays
out the files of one item inside its own folder.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import aiofiles
import aiohttp

from feedvault.exceptions import ItemDownloadError
from feedvault.models.entities import ItemDescriptor
from feedvault.utils.path import create_dir, item_folder_name

log = logging.getLogger(__name__)


@dataclass
class DownloadedItem:
    """The files written for one item. `media_path` is what gets probed."""

    folder: Path
    media_path: Optional[Path] = None
    files: list[Path] = field(default_factory=list)


class Downloader:
    """A streamed file downloader with retry logic and a shared connection pool."""

    CHUNK_SIZE = 262144  # 256 KB

    def __init__(
        self,
        max_connections: int = 8,
        max_attempts: int = 3,
        base_delay: float = 1.5,
        headers: Optional[dict[str, str]] = None,
    ):
        self.max_connections = max_connections
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._headers = headers or {}
        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        """Gets or creates the pooled session used for every media download."""
        async with self._session_lock:
            if self._session and not self._session.closed:
                return self._session

            connector = aiohttp.TCPConnector(
                limit=self.max_connections * 2,
                limit_per_host=self.max_connections,
                ttl_dns_cache=600,
                keepalive_timeout=30,
                enable_cleanup_closed=True,
            )
            timeout = aiohttp.ClientTimeout(total=None, sock_connect=15, sock_read=90)
            self._session = aiohttp.ClientSession(
                connector=connector, timeout=timeout, headers=self._headers
            )
            log.debug(f"Created media download pool with limit_per_host={self.max_connections}")
            return self._session

    async def close(self) -> None:
        async with self._session_lock:
            if self._session and not self._session.closed:
                await self._session.close()
                log.debug("Media download pool closed.")
            self._session = None

    async def download_file(self, url: str, destination_path: Path) -> int:
        """
        Streams a URL into `destination_path`, retrying network errors with
        exponential backoff. Data lands in a `.part` file that is renamed on success.

        Returns:
            The number of bytes written.
        """
        temp_path = destination_path.with_name(destination_path.name + ".part")
        last_exception: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                session = await self._get_session()
                async with session.get(url, allow_redirects=True) as response:
                    response.raise_for_status()
                    bytes_downloaded = 0
                    async with aiofiles.open(temp_path, "wb") as f:
                        async for chunk in response.content.iter_chunked(self.CHUNK_SIZE):
                            await f.write(chunk)
                            bytes_downloaded += len(chunk)
                await asyncio.to_thread(os.replace, temp_path, destination_path)
                return bytes_downloaded
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_exception = e
                log.debug(
                    f"Download attempt {attempt}/{self.max_attempts} for "
                    f"'{destination_path.name}' failed: {e}. Retrying..."
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.base_delay * (2 ** (attempt - 1)))
            finally:
                if temp_path.exists():
                    temp_path.unlink(missing_ok=True)

        raise ItemDownloadError(destination_path.parent.name, str(last_exception))

    async def _download_asset(self, url: Optional[str], destination_path: Path) -> Optional[Path]:
        """Downloads an optional asset (cover, music); failures are not fatal."""
        if not url:
            return None
        try:
            await self.download_file(url, destination_path)
            return destination_path
        except ItemDownloadError as e:
            log.debug(f"Skipping asset '{destination_path.name}': {e}")
            return None

    async def download_item(
        self, descriptor: ItemDescriptor, target_dir: Path
    ) -> DownloadedItem:
        """
        Materializes one item into `target_dir/<item id>/`: the video (or every
        gallery image), then cover, music and a text file with the description.
        """
        folder = target_dir / item_folder_name(descriptor.item_id)
        await asyncio.to_thread(create_dir, folder)
        result = DownloadedItem(folder=folder)

        if descriptor.is_gallery:
            if not descriptor.image_urls:
                raise ItemDownloadError(descriptor.item_id, "gallery has no images")
            for index, url in enumerate(descriptor.image_urls, 1):
                image_path = folder / f"image_{index}.jpg"
                await self.download_file(url, image_path)
                result.files.append(image_path)
            result.media_path = result.files[0]
        else:
            if not descriptor.video_url:
                raise ItemDownloadError(descriptor.item_id, "no video URL in listing")
            video_path = folder / "video.mp4"
            await self.download_file(descriptor.video_url, video_path)
            result.files.append(video_path)
            result.media_path = video_path

        for url, name in (
            (descriptor.cover_url, "cover.jpg"),
            (descriptor.music_url, "music.mp3"),
        ):
            if asset := await self._download_asset(url, folder / name):
                result.files.append(asset)

        if descriptor.description:
            desc_path = folder / "desc.txt"
            async with aiofiles.open(desc_path, "w", encoding="utf-8") as f:
                await f.write(descriptor.description)
            result.files.append(desc_path)

        return result
