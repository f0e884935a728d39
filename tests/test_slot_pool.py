# tests/test_slot_pool.py

from __future__ import annotations

import asyncio

import pytest

from feedvault.core.progress import ProgressBus
from feedvault.core.slot_pool import ResourceSlotPool
from feedvault.core.sync_engine import SyncEngine

from .fakes import FakeProber, make_items


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ResourceSlotPool(0)


@pytest.mark.asyncio
async def test_acquire_is_immediate_below_capacity() -> None:
    pool = ResourceSlotPool(2)
    await pool.acquire()
    await pool.acquire()
    assert pool.in_use == 2
    assert pool.waiting == 0
    pool.release()
    pool.release()
    assert pool.in_use == 0


@pytest.mark.asyncio
async def test_waiters_are_served_in_arrival_order() -> None:
    pool = ResourceSlotPool(1)
    order: list[int] = []
    await pool.acquire()

    async def waiter(n: int) -> None:
        async with pool:
            order.append(n)

    tasks = [asyncio.create_task(waiter(i)) for i in range(3)]
    await asyncio.sleep(0)
    assert pool.waiting == 3

    pool.release()
    await asyncio.gather(*tasks)

    assert order == [0, 1, 2]
    assert pool.in_use == 0
    assert pool.peak_in_use == 1


def test_release_without_slot_raises() -> None:
    pool = ResourceSlotPool(1)
    with pytest.raises(RuntimeError):
        pool.release()


@pytest.mark.asyncio
async def test_context_manager_releases_on_error() -> None:
    pool = ResourceSlotPool(1)
    with pytest.raises(KeyError):
        async with pool:
            raise KeyError("probe blew up")
    assert pool.in_use == 0


@pytest.mark.asyncio
async def test_probes_stay_within_capacity_across_concurrent_sessions(
    config, store, provider, sleep
) -> None:
    config.download_concurrency = 4
    pool = ResourceSlotPool(2)
    prober = FakeProber(delay=0.01)
    engine = SyncEngine(config, store, provider, prober, pool, ProgressBus(), sleep=sleep)
    parents = []
    for name in ("a", "b", "c"):
        parents.append(store.add_parent(name))
        provider.listings[name] = [make_items(name, 4)]

    results = await asyncio.gather(*(engine.start(p.id) for p in parents))

    assert sum(r.downloaded for r in results) == 12
    assert len(prober.calls) == 12
    assert prober.max_in_flight == 2
    assert pool.peak_in_use == 2
    assert pool.in_use == 0
