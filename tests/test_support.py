# tests/test_support.py

from __future__ import annotations

from pathlib import Path

import pytest

import feedvault.__main__ as entry_point
from feedvault.core.cancellation import CancellationToken
from feedvault.core.progress import ProgressBus
from feedvault.core.session import RunRegistry, SyncSession
from feedvault.exceptions import (
    AlreadyRunningError,
    MediaProbeError,
    NotFoundError,
    SessionAbortedError,
)
from feedvault.media.prober import MediaProber
from feedvault.models.entities import ParentEntity
from feedvault.utils.circuit_breaker import CircuitBreaker, CircuitBreakerError, CircuitState
from feedvault.utils.formatting import format_duration, shorten
from feedvault.utils.path import item_folder_name, parent_dir


def test_child_token_observes_parent_cancellation() -> None:
    task_token = CancellationToken()
    parent_token = task_token.child()

    parent_token.raise_if_cancelled()
    task_token.cancel()

    assert parent_token.cancelled
    with pytest.raises(SessionAbortedError):
        parent_token.raise_if_cancelled()


def test_cancelling_child_does_not_touch_parent() -> None:
    task_token = CancellationToken()
    task_token.child().cancel()
    assert not task_token.cancelled


def test_registry_rejects_duplicates_and_releases_only_owner() -> None:
    registry: RunRegistry[int, SyncSession] = RunRegistry("parent")
    first = registry.register(1, SyncSession(1))

    with pytest.raises(AlreadyRunningError):
        registry.register(1, SyncSession(1))

    registry.release(1, SyncSession(1))
    assert registry.get(1) is first

    registry.release(1, first)
    assert not registry.is_active(1)
    assert not registry.any_active()
    assert len(registry) == 0


def test_bus_isolates_failing_listeners() -> None:
    bus = ProgressBus()
    received: list = []

    def broken(event):
        raise RuntimeError("window closed")

    bus.subscribe(broken)
    unsubscribe = bus.subscribe(received.append)
    bus.publish("one")
    unsubscribe()
    bus.publish("two")

    assert received == ["one"]
    assert len(bus) == 1


@pytest.mark.asyncio
async def test_circuit_opens_after_threshold_and_blocks_calls() -> None:
    breaker = CircuitBreaker("test", failure_threshold=2, recovery_timeout=60)

    for _ in range(2):
        with pytest.raises(ValueError):
            async with breaker:
                raise ValueError("HTTP 500")

    assert breaker.state == CircuitState.OPEN
    with pytest.raises(CircuitBreakerError):
        async with breaker:
            pass


@pytest.mark.asyncio
async def test_circuit_recovers_after_timeout() -> None:
    breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=0, success_threshold=1)
    with pytest.raises(ValueError):
        async with breaker:
            raise ValueError("HTTP 500")

    async with breaker:
        pass

    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_prober_rejects_non_media_files(tmp_path: Path) -> None:
    not_media = tmp_path / "desc.txt"
    not_media.write_text("just text", encoding="utf-8")

    with pytest.raises(MediaProbeError):
        await MediaProber().probe_duration(not_media)
    with pytest.raises(MediaProbeError):
        await MediaProber().probe_duration(tmp_path / "missing.mp4")


def test_effective_cap_prefers_positive_override() -> None:
    assert ParentEntity(id=1, external_id="x", item_cap=2).effective_cap(50) == 2
    assert ParentEntity(id=1, external_id="x").effective_cap(50) == 50
    assert ParentEntity(id=1, external_id="x").effective_cap(0) == 0


def test_paths_are_sanitized(tmp_path: Path) -> None:
    assert parent_dir(tmp_path, "a/b:c") != tmp_path / "a/b:c"
    assert parent_dir(tmp_path, "a/b:c").parent == tmp_path
    assert item_folder_name("7301") == "7301"


def test_formatting_helpers() -> None:
    assert format_duration(3725) == "1h 2m 5s"
    assert format_duration(0) == "0s"
    assert shorten("a  very   long description here", 10) == "a very lon…"


@pytest.mark.parametrize(
    "error, exit_code",
    [
        (NotFoundError("Parent 9 does not exist."), 1),
        (RuntimeError("boom"), 1),
        (KeyboardInterrupt(), 130),
    ],
)
def test_entry_point_maps_errors_to_exit_codes(monkeypatch, error, exit_code) -> None:
    def failing_app():
        raise error

    monkeypatch.setattr(entry_point, "app", failing_app)

    with pytest.raises(SystemExit) as excinfo:
        entry_point.main()
    assert excinfo.value.code == exit_code
