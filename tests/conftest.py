# tests/conftest.py

from __future__ import annotations

from pathlib import Path

import pytest

from feedvault.core.orchestrator import TaskOrchestrator
from feedvault.core.progress import ProgressBus
from feedvault.core.session import RunRegistry
from feedvault.core.slot_pool import ResourceSlotPool
from feedvault.core.sync_engine import SyncEngine
from feedvault.models.config import SyncConfig

from .fakes import FakeProber, FakeProvider, FakeStore, RecordingSleep


@pytest.fixture()
def config(tmp_path: Path) -> SyncConfig:
    return SyncConfig(
        token="test-token",
        config_path=str(tmp_path),
        default_item_cap=50,
        download_concurrency=3,
        cooldown_seconds=3.0,
        probe_slots=2,
    )


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture()
def prober() -> FakeProber:
    return FakeProber()


@pytest.fixture()
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def slot_pool(config: SyncConfig) -> ResourceSlotPool:
    return ResourceSlotPool(config.probe_slots)


@pytest.fixture()
def bus() -> ProgressBus:
    return ProgressBus()


@pytest.fixture()
def events(bus: ProgressBus) -> list:
    """Every event published on the bus, in order."""
    received: list = []
    bus.subscribe(received.append)
    return received


@pytest.fixture()
def engine(config, store, provider, prober, slot_pool, bus, sleep) -> SyncEngine:
    return SyncEngine(
        config,
        store,
        provider,
        prober,
        slot_pool,
        bus,
        sessions=RunRegistry("parent"),
        sleep=sleep,
    )


@pytest.fixture()
def orchestrator(store, engine, bus) -> TaskOrchestrator:
    return TaskOrchestrator(store, engine, bus, registry=RunRegistry("task"))
