# tests/test_orchestrator.py

from __future__ import annotations

import asyncio

import pytest

from feedvault.core.session import TaskRun
from feedvault.exceptions import (
    AlreadyRunningError,
    ConfigurationError,
    NotFoundError,
    ProviderError,
)
from feedvault.models.entities import TaskStatus
from feedvault.models.progress import SyncState, TaskProgress, TaskState

from .fakes import make_items


def task_events(events: list) -> list[TaskProgress]:
    return [e for e in events if isinstance(e, TaskProgress)]


@pytest.mark.asyncio
async def test_task_sums_new_items_across_parents(orchestrator, store, provider, events) -> None:
    parent_a = store.add_parent("a")
    parent_b = store.add_parent("b")
    provider.listings["a"] = [make_items("a", 5)]
    b_items = make_items("b", 3)
    provider.listings["b"] = [b_items]
    store.seed_items(parent_b, [i.item_id for i in b_items])
    task = store.add_task("nightly", [parent_a.id, parent_b.id], concurrency=2)

    result = await orchestrator.start(task.id)

    assert result.status == TaskStatus.COMPLETED
    assert result.downloaded == 5
    assert result.baseline == 3
    by_parent = {r.parent_id: r for r in result.parent_results}
    assert by_parent[parent_b.id].skipped == 3
    assert by_parent[parent_b.id].downloaded == 0
    assert store.tasks[task.id].status == TaskStatus.COMPLETED
    assert store.tasks[task.id].downloaded_items == 5
    assert store.tasks[task.id].total_items == 5
    assert task_events(events)[-1].status == TaskState.COMPLETED
    assert task_events(events)[-1].downloaded == 8
    assert not orchestrator.is_running(task.id)


@pytest.mark.asyncio
async def test_failing_parent_does_not_stop_siblings(orchestrator, store, provider) -> None:
    parents = [store.add_parent(name) for name in ("a", "b", "c")]
    provider.listings["a"] = [make_items("a", 2)]
    provider.list_errors["b"] = ProviderError("listing exploded")
    provider.listings["c"] = [make_items("c", 3)]
    task = store.add_task("mixed", [p.id for p in parents], concurrency=3)

    result = await orchestrator.start(task.id)

    assert result.status == TaskStatus.COMPLETED
    assert result.downloaded == 5
    assert result.failed_parents == 1
    failed = [r for r in result.parent_results if r.status == SyncState.FAILED]
    assert failed[0].parent_id == parents[1].id


@pytest.mark.asyncio
async def test_parent_already_syncing_elsewhere_counts_as_zero(
    orchestrator, engine, store, provider
) -> None:
    parent_a = store.add_parent("a")
    parent_b = store.add_parent("b")
    provider.listings["a"] = [make_items("a", 2)]
    provider.listings["b"] = [make_items("b", 4)]
    gate = asyncio.Event()
    provider.gates["a"] = gate
    manual = asyncio.create_task(engine.start(parent_a.id))
    for _ in range(50):
        if provider.active_listings:
            break
        await asyncio.sleep(0)
    task = store.add_task("overlap", [parent_a.id, parent_b.id], concurrency=2)

    result = await orchestrator.start(task.id)

    assert result.status == TaskStatus.COMPLETED
    assert result.downloaded == 4
    rejected = next(r for r in result.parent_results if r.parent_id == parent_a.id)
    assert rejected.downloaded == 0
    assert "already" in rejected.error

    gate.set()
    manual_result = await manual
    assert manual_result.downloaded == 2


@pytest.mark.asyncio
async def test_stop_cancels_task_and_reports_cancelled(
    orchestrator, store, provider, config, events
) -> None:
    config.download_concurrency = 1
    parents = [store.add_parent(name) for name in ("a", "b")]
    provider.listings["a"] = [make_items("a", 3)]
    provider.listings["b"] = [make_items("b", 3)]
    task = store.add_task("stoppable", [p.id for p in parents], concurrency=1)

    def stop_task(descriptor):
        if descriptor.item_id == "a0":
            orchestrator.stop(task.id)

    provider.on_download = stop_task

    result = await orchestrator.start(task.id)

    assert result.cancelled is True
    assert result.status == TaskStatus.FAILED
    assert result.downloaded == 1
    assert provider.download_calls == ["a0"]
    assert store.tasks[task.id].status == TaskStatus.FAILED
    assert store.tasks[task.id].downloaded_items == 1
    assert task_events(events)[-1].status == TaskState.CANCELLED
    assert not orchestrator.is_running(task.id)


@pytest.mark.asyncio
async def test_worker_pool_bounds_parallel_parent_syncs(orchestrator, store, provider) -> None:
    parents = [store.add_parent(f"p{i}") for i in range(5)]
    for p in parents:
        provider.listings[p.external_id] = [make_items(p.external_id, 1), make_items(p.external_id, 1, start=1)]
    task = store.add_task("wide", [p.id for p in parents], concurrency=2)

    result = await orchestrator.start(task.id)

    assert result.downloaded == 10
    assert provider.max_active_listings == 2


@pytest.mark.asyncio
async def test_running_task_cannot_be_started_again(orchestrator, store) -> None:
    parent = store.add_parent("a")
    task = store.add_task("busy", [parent.id])
    orchestrator.registry.register(task.id, TaskRun(task.id))

    with pytest.raises(AlreadyRunningError):
        await orchestrator.start(task.id)

    assert store.tasks[task.id].status == TaskStatus.PENDING


@pytest.mark.asyncio
async def test_unknown_task_raises_not_found(orchestrator) -> None:
    with pytest.raises(NotFoundError):
        await orchestrator.start(42)


@pytest.mark.asyncio
async def test_missing_token_fails_before_marking_running(orchestrator, store, config) -> None:
    parent = store.add_parent("a")
    task = store.add_task("no-token", [parent.id])
    config.token = ""

    with pytest.raises(ConfigurationError):
        await orchestrator.start(task.id)

    assert store.tasks[task.id].status == TaskStatus.PENDING
    assert orchestrator.running_task_ids() == []


@pytest.mark.asyncio
async def test_stop_unknown_task_returns_false(orchestrator) -> None:
    assert orchestrator.stop(7) is False


@pytest.mark.asyncio
async def test_cancelled_task_is_not_left_running(orchestrator, engine, store, provider) -> None:
    parent = store.add_parent("a")
    provider.listings["a"] = [make_items("a", 2)]
    provider.gates["a"] = asyncio.Event()
    task = store.add_task("interrupted", [parent.id])

    run = asyncio.create_task(orchestrator.start(task.id))
    for _ in range(200):
        if engine.is_running(parent.id):
            break
        await asyncio.sleep(0)
    assert store.tasks[task.id].status == TaskStatus.RUNNING
    run.cancel()

    with pytest.raises(asyncio.CancelledError):
        await run

    assert store.tasks[task.id].status == TaskStatus.FAILED
    assert not orchestrator.is_running(task.id)
    assert not engine.is_running(parent.id)
