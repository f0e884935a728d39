"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import os
import signal
from enum import Enum
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from feedvault import __version__
from feedvault.core.runtime import Runtime, create_runtime
from feedvault.core.scheduler import SyncScheduler
from feedvault.exceptions import NotFoundError
from feedvault.models.config import SyncConfig
from feedvault.storage.config_manager import ConfigManager
from feedvault.storage.store import ContentStore

from .formatters import (
    print_config,
    print_parents_table,
    print_stats_table,
    print_sync_summary,
    print_task_summary,
    print_tasks_table,
    print_validation_table,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("feedvault")

app = typer.Typer(
    name="feedvault",
    help=(
        "Keep a local archive of the items published by the accounts you track."
        " Use 'feedvault <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


class ScheduleTarget(str, Enum):
    PARENT = "parent"
    TASK = "task"


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "feedvault"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


def _load_config(cli_options: dict | None = None) -> SyncConfig:
    return ConfigManager(CONFIG_FILE).load_config(cli_options)


def _install_stop_handler(runtime: Runtime, stop_event: asyncio.Event | None = None) -> None:
    """Turns Ctrl+C into a cooperative stop of every running sync."""

    def _on_interrupt():
        console.print(
            "\n[yellow]⚠️  Stopping... waiting for in-flight items to finish.[/yellow]"
        )
        runtime.stop_all()
        if stop_event is not None:
            stop_event.set()

    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, _on_interrupt)
    except (NotImplementedError, RuntimeError):
        log.debug("Signal handlers are not supported here; Ctrl+C will abort immediately.")


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
):
    """feedvault: archive and sync content from tracked accounts"""
    if version:
        console.print(f"[bold]feedvault[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "INFO"
    if verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("feedvault").setLevel(log_level)

    if show_config:
        if not CONFIG_FILE.is_file():
            console.print(
                "[red]✗ Config file not found.[/] Run [cyan]feedvault init[/cyan]"
                " first."
            )
            raise typer.Exit(code=1)
        config_manager = ConfigManager(CONFIG_FILE)
        print_config(CONFIG_FILE, config_manager.get_config_as_dict())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    token: str = typer.Argument(..., help="Access token for the content provider API."),
    download_path: str | None = typer.Option(
        None, "--path", "-p", help="Folder for downloaded items."
    ),
    api_base_url: str | None = typer.Option(
        None, "--api", help="Base URL of the provider API."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration without asking."
    ),
):
    """Initialize configuration with an access token."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {"token": token}
    if download_path:
        settings["download_path"] = download_path
    if api_base_url:
        settings["api_base_url"] = api_base_url

    ConfigManager(CONFIG_FILE).save_new_config(settings)
    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    console.print("Next: [cyan]feedvault add-parent <EXTERNAL_ID>[/cyan]")


@app.command()
def validate():
    """Validate the current configuration."""
    config = _load_config()
    print_validation_table(config)
    if not config.token:
        console.print("[red]✗ No access token configured.[/red]")
        raise typer.Exit(code=1)


@app.command(name="add-parent")
def add_parent(
    external_id: str = typer.Argument(..., help="Account id on the provider."),
    nickname: str = typer.Option("", "--nickname", "-n", help="Display name."),
    cap: int = typer.Option(
        0, "--cap", min=0, help="Max new items per sync (0 = use the global default)."
    ),
    cron: str = typer.Option("", "--cron", help="Enable automatic syncs on this cron schedule."),
):
    """Start tracking a remote account."""
    if cron:
        SyncScheduler.build_trigger(cron)

    async def _add():
        store = ContentStore(CONFIG_DIR)
        parent = await store.create_parent(external_id, nickname, cap, cron)
        console.print(f"[green]✓ Tracking '{parent.display_name}' as parent {parent.id}.[/green]")

    asyncio.run(_add())


@app.command(name="add-task")
def add_task(
    name: str = typer.Argument(..., help="Task name."),
    parent_ids: list[int] = typer.Argument(..., help="Parent ids, in run order."),  # noqa: B008
    concurrency: int = typer.Option(
        3, "--concurrency", "-c", min=1, max=16, help="Parents synced at the same time."
    ),
    cron: str = typer.Option("", "--cron", help="Run the task on this cron schedule."),
):
    """Group parents into a task."""
    if cron:
        SyncScheduler.build_trigger(cron)

    async def _add():
        store = ContentStore(CONFIG_DIR)
        found = await store.get_parents(parent_ids)
        missing = set(parent_ids) - {p.id for p in found}
        if missing:
            raise NotFoundError(f"Unknown parent id(s): {', '.join(map(str, sorted(missing)))}")
        task = await store.create_task(name, parent_ids, concurrency, cron)
        console.print(
            f"[green]✓ Created task {task.id} '{task.name}' with "
            f"{len(task.parent_ids)} parents.[/green]"
        )

    asyncio.run(_add())


@app.command(name="list")
def list_command():
    """Show tracked parents and tasks."""

    async def _list():
        config = _load_config()
        store = ContentStore(CONFIG_DIR)
        print_parents_table(await store.list_parents(), config.default_item_cap)
        console.print()
        print_tasks_table(await store.list_tasks())

    asyncio.run(_list())


@app.command()
def sync(
    parent_id: int = typer.Argument(..., help="Parent id (see `feedvault list`)."),
    workers: int | None = typer.Option(
        None, "-w", "--workers", help="Items downloaded per batch (overrides config)."
    ),
):
    """Sync one parent now."""
    cli_options = {"download_concurrency": workers} if workers else None

    async def _sync_async():
        runtime = create_runtime(_load_config(cli_options))
        try:
            parent = await runtime.store.get_parent(parent_id)
            name = parent.display_name if parent else str(parent_id)
            async with ProgressManager(console, runtime.progress_bus):
                _install_stop_handler(runtime)
                result = await runtime.engine.start(parent_id)
        finally:
            await runtime.close()
        print_sync_summary(result, name)
        if not result.succeeded:
            raise typer.Exit(code=1)

    asyncio.run(_sync_async())


@app.command(name="run-task")
def run_task(
    task_id: int = typer.Argument(..., help="Task id (see `feedvault list`)."),
    workers: int | None = typer.Option(
        None, "-w", "--workers", help="Items downloaded per batch (overrides config)."
    ),
):
    """Run every parent of a task now."""
    cli_options = {"download_concurrency": workers} if workers else None

    async def _run_async():
        runtime = create_runtime(_load_config(cli_options))
        try:
            task = await runtime.store.get_task(task_id)
            name = task.name if task else str(task_id)
            async with ProgressManager(console, runtime.progress_bus):
                _install_stop_handler(runtime)
                result = await runtime.orchestrator.start(task_id)
        finally:
            await runtime.close()
        print_task_summary(result, name)
        if result.cancelled or result.error:
            raise typer.Exit(code=1)

    asyncio.run(_run_async())


@app.command()
def schedule(
    target: ScheduleTarget = typer.Argument(..., help="What to schedule."),
    target_id: int = typer.Argument(..., help="Parent or task id."),
    cron: str = typer.Argument(..., help="5-field cron expression, e.g. '0 */6 * * *'."),
):
    """Enable automatic runs for a parent or task (picked up by `serve`)."""
    SyncScheduler.build_trigger(cron)

    async def _schedule():
        store = ContentStore(CONFIG_DIR)
        if target == ScheduleTarget.PARENT:
            updated = await store.set_parent_schedule(target_id, True, cron)
        else:
            updated = await store.set_task_schedule(target_id, True, cron)
        if updated is None:
            raise NotFoundError(f"{target.value.capitalize()} {target_id} does not exist.")
        console.print(f"[green]✓ {target.value.capitalize()} {target_id} scheduled: {cron}[/green]")

    asyncio.run(_schedule())


@app.command()
def unschedule(
    target: ScheduleTarget = typer.Argument(..., help="What to unschedule."),
    target_id: int = typer.Argument(..., help="Parent or task id."),
):
    """Disable automatic runs for a parent or task."""

    async def _unschedule():
        store = ContentStore(CONFIG_DIR)
        if target == ScheduleTarget.PARENT:
            updated = await store.set_parent_schedule(target_id, False)
        else:
            updated = await store.set_task_schedule(target_id, False)
        if updated is None:
            raise NotFoundError(f"{target.value.capitalize()} {target_id} does not exist.")
        console.print(f"[green]✓ {target.value.capitalize()} {target_id} unscheduled.[/green]")

    asyncio.run(_unschedule())


@app.command(name="validate-cron")
def validate_cron(expression: str = typer.Argument(..., help="Cron expression to check.")):
    """Check a cron expression."""
    if SyncScheduler.validate_cron_expression(expression):
        console.print(f"[green]✓ '{expression}' is a valid cron expression.[/green]")
    else:
        console.print(f"[red]✗ '{expression}' is not a valid 5-field cron expression.[/red]")
        raise typer.Exit(code=1)


@app.command()
def serve():
    """Run scheduled syncs and tasks until interrupted."""

    async def _serve_async():
        config = _load_config()
        config.require_token()
        runtime = create_runtime(config)
        stop_event = asyncio.Event()
        try:
            async with ProgressManager(console, runtime.progress_bus, live=False):
                _install_stop_handler(runtime, stop_event)
                await runtime.scheduler.init()
                console.print(
                    "[bold cyan]⏱ Scheduler running.[/bold cyan] "
                    "[dim]Press Ctrl+C to stop.[/dim]"
                )
                await stop_event.wait()
                while runtime.engine.any_running() or runtime.orchestrator.running_task_ids():
                    await asyncio.sleep(0.5)
        finally:
            await runtime.close()

    asyncio.run(_serve_async())


@app.command()
def stats():
    """Show statistics from the item archive."""

    async def _get_stats():
        store = ContentStore(CONFIG_DIR)
        stats_data = await store.get_stats()
        if stats_data:
            print_stats_table(stats_data)
        else:
            console.print("[yellow]Could not retrieve stats.[/yellow]")

    asyncio.run(_get_stats())


@app.command()
def vacuum():
    """Optimize the archive database."""

    async def _vacuum():
        console.print("[cyan]Optimizing archive database...[/cyan]")
        store = ContentStore(CONFIG_DIR)
        if await store.vacuum():
            console.print("[green]✓ Database optimized.[/green]")
        else:
            console.print("[red]✗ Optimization failed.[/red]")

    asyncio.run(_vacuum())
