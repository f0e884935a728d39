"""
Async client for the content provider's JSON API, with rate limiting and
circuit breaker protection.
"""

import logging
import time
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, List, Optional

import aiohttp

from feedvault import __version__
from feedvault.exceptions import ConfigurationError, ProviderError
from feedvault.media.downloader import DownloadedItem, Downloader
from feedvault.models.entities import ItemDescriptor
from feedvault.utils.circuit_breaker import CircuitBreaker, CircuitBreakerError

from .rate_limiter import AdaptiveRateLimiter

log = logging.getLogger(__name__)


class ContentProviderClient:
    """
    Lists the items of a parent account page by page and downloads their media.

    Features:
    - Lazy, finite pagination (an async generator per listing)
    - Circuit breaker for API resilience
    - Adaptive rate limiting
    - Connection pooling for both JSON calls and media downloads
    """

    PAGE_SIZE = 20

    def __init__(
        self,
        base_url: str,
        token: str,
        max_connections: int = 8,
        downloader: Optional[Downloader] = None,
    ):
        """
        Args:
            base_url: Root of the provider API, ending with a slash.
            token: Access token sent with every request.
            max_connections: Used to size both connection pools.
            downloader: Media downloader; one is created when omitted.
        """
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.token = token
        self.max_connections = max_connections

        self._session: Optional[aiohttp.ClientSession] = None
        self._rate_limiter = AdaptiveRateLimiter()
        self._circuit_breaker = CircuitBreaker(
            "listing",
            failure_threshold=5,
            recovery_timeout=60,
            success_threshold=2,
        )
        self.downloader = downloader or Downloader(
            max_connections=max_connections,
            headers={"User-Agent": self._user_agent()},
        )

    @staticmethod
    def _user_agent() -> str:
        return f"feedvault/{__version__}"

    async def _initialize_session(self) -> None:
        """Ensures an active aiohttp session is available."""
        if not self.token:
            raise ConfigurationError("The provider client needs an access token.")
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_connections * 2,
                limit_per_host=self.max_connections,
                ttl_dns_cache=300,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={
                    "User-Agent": self._user_agent(),
                    "Authorization": f"Bearer {self.token}",
                    "Accept-Encoding": "gzip, deflate",
                },
                timeout=aiohttp.ClientTimeout(total=60, connect=15, sock_read=30),
            )

    async def close(self) -> None:
        """Gracefully closes both HTTP sessions."""
        if self._session and not self._session.closed:
            await self._session.close()
        await self.downloader.close()

    async def api_call(self, endpoint: str, **params: Any) -> Dict[str, Any]:
        """
        Makes an authenticated GET call with rate limiting and circuit breaker.
        """
        await self._initialize_session()

        try:
            async with self._circuit_breaker:
                await self._rate_limiter.acquire()
                start_time = time.monotonic()
                async with self._session.get(self.base_url + endpoint, params=params) as r:
                    duration_ms = (time.monotonic() - start_time) * 1000
                    log.debug(f"GET {endpoint} -> {r.status} in {duration_ms:.0f}ms")

                    if r.status == 429:
                        await self._rate_limiter.on_throttled()
                    if r.status in (401, 403):
                        raise ConfigurationError(
                            "The provider rejected the access token. "
                            "Run 'feedvault init --force <TOKEN>'."
                        )
                    r.raise_for_status()
                    payload = await r.json()
        except CircuitBreakerError as e:
            log.error(f"[red]Circuit breaker is open for provider calls: {e}[/red]")
            raise
        except aiohttp.ContentTypeError as e:
            raise ProviderError(f"Provider returned a non-JSON response for {endpoint}") from e

        if not isinstance(payload, dict):
            raise ProviderError(f"Unexpected payload type from {endpoint}: {type(payload).__name__}")
        return payload

    async def fetch_parent_items(
        self, external_id: str, max_count: int = 0
    ) -> AsyncGenerator[List[ItemDescriptor], None]:
        """
        Yields pages of item descriptors for one parent, newest first. Every
        listing starts from the first page; `max_count` (0 = unlimited) stops
        paging once that many items have been yielded.
        """
        cursor: Any = 0
        yielded = 0

        while True:
            count = self.PAGE_SIZE
            if max_count > 0:
                count = min(count, max_count - yielded)
            response = await self.api_call(
                f"accounts/{external_id}/items", cursor=cursor, count=count
            )

            raw_items = response.get("items") or []
            if not raw_items:
                break

            page = [ItemDescriptor.from_api(item) for item in raw_items]
            yield page
            yielded += len(page)

            if not response.get("has_more") or (max_count > 0 and yielded >= max_count):
                break
            next_cursor = response.get("cursor")
            if next_cursor is None or next_cursor == cursor:
                log.debug(f"Listing for '{external_id}' returned no new cursor; stopping.")
                break
            cursor = next_cursor

    async def download_item(
        self, descriptor: ItemDescriptor, target_dir: Path
    ) -> DownloadedItem:
        """Downloads one item's media into its folder under `target_dir`."""
        return await self.downloader.download_item(descriptor, target_dir)
