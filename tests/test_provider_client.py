# tests/test_provider_client.py

from __future__ import annotations

from pathlib import Path

import pytest

from feedvault.api.client import ContentProviderClient
from feedvault.exceptions import ConfigurationError, ItemDownloadError
from feedvault.media.downloader import Downloader
from feedvault.models.entities import GALLERY_ITEM_TYPE, ItemDescriptor


def raw_items(start: int, count: int) -> list[dict]:
    return [
        {"id": str(i), "desc": f"item {i}", "video": {"url": f"https://cdn/{i}.mp4"}}
        for i in range(start, start + count)
    ]


class ScriptedCalls:
    def __init__(self, responses: list[dict]) -> None:
        self.responses = list(responses)
        self.params: list[dict] = []

    async def __call__(self, endpoint: str, **params):
        self.params.append({"endpoint": endpoint, **params})
        return self.responses.pop(0)


async def collect(generator) -> list[list[ItemDescriptor]]:
    return [page async for page in generator]


@pytest.mark.asyncio
async def test_listing_follows_cursor_until_has_more_is_false(monkeypatch) -> None:
    client = ContentProviderClient("https://api.example.com/v1", "token")
    calls = ScriptedCalls(
        [
            {"items": raw_items(0, 2), "cursor": "c1", "has_more": True},
            {"items": raw_items(2, 2), "cursor": "c2", "has_more": False},
        ]
    )
    monkeypatch.setattr(client, "api_call", calls)

    pages = await collect(client.fetch_parent_items("alice"))

    assert [[d.item_id for d in page] for page in pages] == [["0", "1"], ["2", "3"]]
    assert calls.params[0] == {"endpoint": "accounts/alice/items", "cursor": 0, "count": 20}
    assert calls.params[1]["cursor"] == "c1"
    await client.close()


@pytest.mark.asyncio
async def test_listing_stops_at_max_count(monkeypatch) -> None:
    client = ContentProviderClient("https://api.example.com/v1/", "token")
    calls = ScriptedCalls(
        [
            {"items": raw_items(0, 20), "cursor": "c1", "has_more": True},
            {"items": raw_items(20, 5), "cursor": "c2", "has_more": True},
        ]
    )
    monkeypatch.setattr(client, "api_call", calls)

    pages = await collect(client.fetch_parent_items("alice", max_count=25))

    assert sum(len(p) for p in pages) == 25
    assert calls.params[1]["count"] == 5
    assert calls.responses == []


@pytest.mark.asyncio
async def test_listing_stops_on_empty_page_or_stuck_cursor(monkeypatch) -> None:
    client = ContentProviderClient("https://api.example.com/v1/", "token")
    calls = ScriptedCalls(
        [
            {"items": raw_items(0, 1), "cursor": 0, "has_more": True},
        ]
    )
    monkeypatch.setattr(client, "api_call", calls)

    pages = await collect(client.fetch_parent_items("alice"))

    assert len(pages) == 1

    calls = ScriptedCalls([{"items": [], "has_more": True}])
    monkeypatch.setattr(client, "api_call", calls)
    assert await collect(client.fetch_parent_items("alice")) == []


@pytest.mark.asyncio
async def test_api_call_without_token_is_a_configuration_error() -> None:
    client = ContentProviderClient("https://api.example.com/v1/", "")
    with pytest.raises(ConfigurationError):
        await client.api_call("accounts/alice/items")
    await client.close()


def test_descriptor_from_api_reads_nested_fields() -> None:
    descriptor = ItemDescriptor.from_api(
        {
            "id": 123,
            "desc": "hello",
            "caption": "cap",
            "type": GALLERY_ITEM_TYPE,
            "create_time": 1700000000,
            "author": {"nickname": "Alice"},
            "cover": {"url": "https://cdn/c.jpg"},
            "images": [{"url": "https://cdn/1.jpg"}, {"url": ""}, {"url": "https://cdn/2.jpg"}],
        }
    )

    assert descriptor.item_id == "123"
    assert descriptor.nickname == "Alice"
    assert descriptor.create_time == "1700000000"
    assert descriptor.image_urls == ["https://cdn/1.jpg", "https://cdn/2.jpg"]
    assert descriptor.video_url is None
    assert descriptor.is_gallery


def test_descriptor_tolerates_missing_fields() -> None:
    descriptor = ItemDescriptor.from_api({})
    assert descriptor.item_id == ""
    assert descriptor.is_gallery is False


@pytest.mark.asyncio
async def test_item_without_media_url_fails(tmp_path: Path) -> None:
    downloader = Downloader()
    with pytest.raises(ItemDownloadError, match="no video URL"):
        await downloader.download_item(ItemDescriptor(item_id="v1"), tmp_path)
    with pytest.raises(ItemDownloadError, match="no images"):
        await downloader.download_item(
            ItemDescriptor(item_id="g1", item_type=GALLERY_ITEM_TYPE), tmp_path
        )
    assert (tmp_path / "v1").is_dir()
    await downloader.close()
