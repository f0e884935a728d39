"""
Core sync engine.

`SyncEngine` runs one parent's listing and batched downloads, `TaskOrchestrator`
fans a task's parents out over the engine, and `SyncScheduler` fires both on
cron schedules. `create_runtime` wires them together with the shared slot pool,
run registries and progress bus.
"""
