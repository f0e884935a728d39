# tests/test_scheduler.py

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from feedvault.core.scheduler import SyncScheduler
from feedvault.core.session import TaskRun
from feedvault.exceptions import InvalidScheduleError, ProviderError
from feedvault.models.progress import SchedulerLog, SyncState

from .fakes import make_items


@pytest.fixture()
def scheduler(store, engine, orchestrator, bus) -> SyncScheduler:
    return SyncScheduler(
        store, engine, orchestrator, scheduler=AsyncIOScheduler(), progress_bus=bus
    )


def jobs_for(scheduler: SyncScheduler, job_id: str) -> list:
    return [job for job in scheduler.scheduler.get_jobs() if job.id == job_id]


@pytest.mark.parametrize(
    "expression, valid",
    [
        ("*/5 * * * *", True),
        ("0 3 * * mon-fri", True),
        ("30 2 1 * *", True),
        ("61 * * * *", False),
        ("* * * *", False),
        ("not a cron", False),
        ("", False),
    ],
)
def test_validate_cron_expression(expression: str, valid: bool) -> None:
    assert SyncScheduler.validate_cron_expression(expression) is valid


def test_build_trigger_rejects_bad_expression() -> None:
    with pytest.raises(InvalidScheduleError):
        SyncScheduler.build_trigger("99 99 * * *")


@pytest.mark.asyncio
async def test_rescheduling_replaces_the_existing_job(scheduler, store) -> None:
    parent = store.add_parent("alice", auto_sync=True, sync_cron="0 * * * *")

    assert scheduler.schedule_parent(parent) is True
    assert scheduler.schedule_parent(replace(parent, sync_cron="*/5 * * * *")) is True

    jobs = jobs_for(scheduler, f"parent:{parent.id}")
    assert len(jobs) == 1
    assert "minute='*/5'" in str(jobs[0].trigger)
    assert scheduler.scheduled_parent_ids() == [parent.id]


@pytest.mark.asyncio
async def test_invalid_cron_leaves_existing_job_untouched(scheduler, store) -> None:
    parent = store.add_parent("alice", auto_sync=True, sync_cron="0 * * * *")
    scheduler.schedule_parent(parent)
    job = scheduler.get_parent_job(parent.id)

    assert scheduler.schedule_parent(replace(parent, sync_cron="every hour")) is False

    assert scheduler.get_parent_job(parent.id) is job
    assert len(jobs_for(scheduler, f"parent:{parent.id}")) == 1
    assert scheduler.logs()[0].level == "error"


@pytest.mark.asyncio
async def test_disabling_auto_sync_removes_the_job(scheduler, store) -> None:
    parent = store.add_parent("alice", auto_sync=True, sync_cron="0 * * * *")
    scheduler.schedule_parent(parent)

    assert scheduler.schedule_parent(replace(parent, auto_sync=False)) is True

    assert scheduler.scheduled_parent_ids() == []
    assert jobs_for(scheduler, f"parent:{parent.id}") == []


@pytest.mark.asyncio
async def test_unschedule_is_idempotent(scheduler, store) -> None:
    parent = store.add_parent("alice", auto_sync=True, sync_cron="0 * * * *")
    task = store.add_task("t", [parent.id], auto_sync=True, sync_cron="0 4 * * *")
    scheduler.schedule_parent(parent)
    scheduler.schedule_task(task)

    scheduler.unschedule_parent(parent.id)
    scheduler.unschedule_parent(parent.id)
    scheduler.unschedule_task(task.id)
    scheduler.unschedule_task(task.id)
    scheduler.unschedule_task(12345)

    assert scheduler.scheduler.get_jobs() == []


@pytest.mark.asyncio
async def test_fire_is_skipped_while_parent_syncs_manually(scheduler, engine, store, provider) -> None:
    parent = store.add_parent("alice", auto_sync=True, sync_cron="*/10 * * * *")
    provider.listings["alice"] = [make_items("a", 2)]
    gate = asyncio.Event()
    provider.gates["alice"] = gate
    scheduler.schedule_parent(parent)

    manual = asyncio.create_task(engine.start(parent.id))
    for _ in range(50):
        if engine.is_running(parent.id):
            break
        await asyncio.sleep(0)

    assert await scheduler.execute_parent_sync(parent.id) is False
    assert "already syncing" in scheduler.logs()[0].message
    assert scheduler.get_parent_job(parent.id) is not None

    gate.set()
    result = await manual
    assert result.status == SyncState.COMPLETED
    assert result.downloaded == 2
    assert provider.download_calls == ["a0", "a1"]


@pytest.mark.asyncio
async def test_fire_is_skipped_while_any_other_sync_runs(scheduler, engine, store, provider) -> None:
    busy = store.add_parent("busy")
    idle = store.add_parent("idle")
    provider.listings["idle"] = [make_items("i", 1)]
    gate = asyncio.Event()
    provider.gates["busy"] = gate

    manual = asyncio.create_task(engine.start(busy.id))
    for _ in range(50):
        if engine.is_running(busy.id):
            break
        await asyncio.sleep(0)

    assert await scheduler.execute_parent_sync(idle.id) is False
    assert "another sync" in scheduler.logs()[0].message
    assert provider.download_calls == []

    gate.set()
    await manual


@pytest.mark.asyncio
async def test_successful_fire_records_last_sync(scheduler, store, provider, events) -> None:
    parent = store.add_parent("alice")
    provider.listings["alice"] = [make_items("a", 3)]

    assert await scheduler.execute_parent_sync(parent.id) is True

    assert store.parents[parent.id].last_synced_at is not None
    assert len(store.items) == 3
    assert "3 new" in scheduler.logs()[0].message
    assert any(isinstance(e, SchedulerLog) for e in events)


@pytest.mark.asyncio
async def test_fire_never_raises(scheduler, store, provider, monkeypatch) -> None:
    parent = store.add_parent("alice")
    provider.list_errors["alice"] = ProviderError("HTTP 503")
    assert await scheduler.execute_parent_sync(parent.id) is False

    async def broken_get_parent(parent_id):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(store, "get_parent", broken_get_parent)
    assert await scheduler.execute_parent_sync(parent.id) is False
    assert scheduler.logs()[0].level == "error"
    assert "database is locked" in scheduler.logs()[0].message


@pytest.mark.asyncio
async def test_fire_for_deleted_parent_removes_schedule(scheduler, store) -> None:
    parent = store.add_parent("gone", auto_sync=True, sync_cron="0 * * * *")
    scheduler.schedule_parent(parent)
    del store.parents[parent.id]

    assert await scheduler.execute_parent_sync(parent.id) is False
    assert scheduler.scheduled_parent_ids() == []


@pytest.mark.asyncio
async def test_task_fire_is_skipped_while_task_runs(scheduler, orchestrator, store, provider) -> None:
    parent = store.add_parent("alice")
    task = store.add_task("t", [parent.id])
    orchestrator.registry.register(task.id, TaskRun(task.id))

    assert await scheduler.execute_task_download(task.id) is False
    assert "already running" in scheduler.logs()[0].message
    assert provider.download_calls == []


@pytest.mark.asyncio
async def test_task_fire_sets_last_run(scheduler, store, provider) -> None:
    parent = store.add_parent("alice")
    provider.listings["alice"] = [make_items("a", 2)]
    task = store.add_task("t", [parent.id])

    assert await scheduler.execute_task_download(task.id) is True

    assert store.tasks[task.id].last_run_at is not None
    assert store.tasks[task.id].downloaded_items == 2


@pytest.mark.asyncio
async def test_init_schedules_auto_sync_entries_and_shutdown_clears(scheduler, store) -> None:
    auto = store.add_parent("auto", auto_sync=True, sync_cron="0 * * * *")
    store.add_parent("manual")
    task = store.add_task("t", [auto.id], auto_sync=True, sync_cron="0 4 * * *")

    await scheduler.init()
    try:
        assert scheduler.scheduler.running
        assert scheduler.scheduled_parent_ids() == [auto.id]
        assert scheduler.scheduled_task_ids() == [task.id]
        assert scheduler.get_parent_job(auto.id).next_run_time is not None
    finally:
        scheduler.shutdown()

    assert scheduler.scheduled_parent_ids() == []
    assert scheduler.scheduled_task_ids() == []
    assert not scheduler.scheduler.running


@pytest.mark.asyncio
async def test_log_buffer_is_bounded_and_newest_first(store, engine, orchestrator) -> None:
    scheduler = SyncScheduler(
        store, engine, orchestrator, scheduler=AsyncIOScheduler(), log_buffer_size=3
    )
    parent = store.add_parent("alice", auto_sync=True)
    for minute in range(5):
        scheduler.schedule_parent(replace(parent, sync_cron=f"{minute} * * * *"))

    logs = scheduler.logs()
    assert len(logs) == 3
    assert "'4 * * * *'" in logs[0].message
    assert "'2 * * * *'" in logs[2].message

    scheduler.clear_logs()
    assert scheduler.logs() == []


@pytest.mark.parametrize(
    "expression, weekdays",
    [
        ("0 9 * * 1", {0}),
        ("0 9 * * 0", {6}),
        ("0 9 * * 7", {6}),
        ("0 9 * * 1-5", {0, 1, 2, 3, 4}),
        ("0 9 * * 0,6", {5, 6}),
        ("0 9 * * 5-7", {4, 5, 6}),
        ("0 9 * * */3", {6, 2, 5}),
        ("0 9 * * sat", {5}),
    ],
)
def test_numeric_weekdays_follow_crontab_numbering(expression: str, weekdays: set[int]) -> None:
    trigger = SyncScheduler.build_trigger(expression)
    now = datetime(2026, 10, 18, 12, 0, tzinfo=trigger.timezone)

    fired: set[int] = set()
    cursor = now
    for _ in range(14):
        fire_time = trigger.get_next_fire_time(None, cursor)
        fired.add(fire_time.weekday())
        cursor = fire_time + timedelta(minutes=1)

    assert fired == weekdays


@pytest.mark.parametrize("expression", ["* * * * 7", "0 0 * * 0-7", "0 0 * * 7/2"])
def test_sunday_as_seven_is_accepted(expression: str) -> None:
    assert SyncScheduler.validate_cron_expression(expression) is True


@pytest.mark.parametrize("expression", ["0 9 * * 8", "0 9 * * 5-2", "0 9 * * */0"])
def test_out_of_range_weekdays_are_rejected(expression: str) -> None:
    assert SyncScheduler.validate_cron_expression(expression) is False


@pytest.mark.asyncio
async def test_simultaneous_fires_run_only_one_sync(scheduler, engine, store, provider, monkeypatch) -> None:
    first = store.add_parent("first")
    second = store.add_parent("second")
    provider.listings["first"] = [make_items("f", 2)]
    provider.listings["second"] = [make_items("s", 2)]
    original_get_parent = store.get_parent
    peak_running: list[int] = []

    async def slow_get_parent(parent_id):
        await asyncio.sleep(0.01)
        peak_running.append(len(engine.running_parent_ids()))
        return await original_get_parent(parent_id)

    monkeypatch.setattr(store, "get_parent", slow_get_parent)

    results = await asyncio.gather(
        scheduler.execute_parent_sync(first.id),
        scheduler.execute_parent_sync(second.id),
    )

    assert sorted(results) == [False, True]
    assert max(peak_running) == 1
    assert len(provider.download_calls) == 2
    assert any("another sync" in entry.message for entry in scheduler.logs())
