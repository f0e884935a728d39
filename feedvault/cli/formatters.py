"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from feedvault.models.config import SyncConfig
from feedvault.models.entities import ParentEntity, ParentSyncStatus, Task, TaskStatus
from feedvault.models.progress import SyncState
from feedvault.models.stats import SyncResult, TaskResult
from feedvault.utils.formatting import format_duration, format_timestamp


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Run `feedvault init <TOKEN>` to create a configuration.",
            "• Run `feedvault validate` to check the current settings.",
        ],
        "AlreadyRunningError": [
            "• Wait for the running sync to finish, or stop it first.",
            "• A scheduled run may have started it; see `feedvault serve` output.",
        ],
        "NotFoundError": [
            "• Run `feedvault list` to see the known parent and task ids.",
        ],
        "InvalidScheduleError": [
            "• Use a 5-field cron expression, e.g. '0 */6 * * *'.",
            "• Check it first with `feedvault validate-cron`.",
        ],
        "CircuitBreakerError": [
            "• The app has detected too many API failures and is cooling down.",
            "• Check your internet connection.",
            "• Lower `download_concurrency` if you are being rate-limited.",
        ],
        "ProviderError": [
            "• The provider API returned an unexpected response.",
            "• Check `api_base_url` in the configuration.",
        ],
        "ClientResponseError": [
            "• A network connection issue occurred.",
            "• The provider API might be temporarily unavailable.",
            "• Please try again in a few minutes.",
        ],
        "TimeoutError": [
            "• A request timed out, which may indicate network throttling.",
            "• Try increasing `cooldown_seconds`.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration, hiding the token."""
    console = Console()
    content = ""
    for key, value in config_data.items():
        if key == "token":
            value = "[hidden]" if value else "[not set]"
        content += f"{key} = {value}\n"

    console.print(
        Panel(
            Text(content.strip()),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_validation_table(config: SyncConfig):
    """Displays a summary of the current settings."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    table.add_row(
        "Token:", "[green]✓ Set[/green]" if config.token else "[red]✗ Missing[/red]"
    )
    table.add_row("API:", config.api_base_url)
    table.add_row("Downloads:", f"[dim]{config.resolve_download_dir()}[/dim]")
    table.add_row(
        "Default Cap:",
        str(config.default_item_cap) if config.default_item_cap else "unlimited",
    )
    table.add_row("Batch Size:", str(config.download_concurrency))
    table.add_row("Cooldown:", f"{config.cooldown_seconds:g}s")
    table.add_row("Probe Slots:", str(config.probe_slots))

    console.print(
        Panel(
            table,
            title="[bold green]✓ Validated Settings[/bold green]",
            border_style="green",
        )
    )


def print_stats_table(stats_data: dict[str, Any]):
    """Displays archive statistics."""
    console = Console()
    console.print(
        "\n[bold]Total Items in Archive:[/] "
        f"[green]{stats_data['total_items']}[/green]\n"
    )

    if top_parents := stats_data.get("top_parents"):
        table = Table(title="Top 10 Parents")
        table.add_column("Rank", style="dim")
        table.add_column("Parent", style="cyan")
        table.add_column("Items", justify="right", style="green")
        for i, (name, count) in enumerate(top_parents, 1):
            table.add_row(str(i), name, str(count))
        console.print(table)
    else:
        console.print("[dim]No items in the archive yet.[/dim]")


_PARENT_STATUS_STYLES = {
    ParentSyncStatus.IDLE: "green",
    ParentSyncStatus.SYNCING: "cyan",
    ParentSyncStatus.ERROR: "red",
}
_TASK_STATUS_STYLES = {
    TaskStatus.PENDING: "dim",
    TaskStatus.RUNNING: "cyan",
    TaskStatus.COMPLETED: "green",
    TaskStatus.FAILED: "red",
}


def print_parents_table(parents: list[ParentEntity], default_cap: int):
    console = Console()
    if not parents:
        console.print("[dim]No parents tracked yet. Add one with `feedvault add-parent`.[/dim]")
        return

    table = Table(title="Parents", box=box.ROUNDED)
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("External ID", style="dim")
    table.add_column("Cap", justify="right")
    table.add_column("Archived", justify="right", style="green")
    table.add_column("Status")
    table.add_column("Schedule")
    table.add_column("Last Sync")
    for p in parents:
        cap = p.effective_cap(default_cap)
        style = _PARENT_STATUS_STYLES[p.sync_status]
        table.add_row(
            str(p.id),
            p.display_name,
            p.external_id,
            str(cap) if cap else "∞",
            str(p.downloaded_count),
            f"[{style}]{p.sync_status.value}[/{style}]",
            p.sync_cron if p.auto_sync else "[dim]off[/dim]",
            format_timestamp(p.last_synced_at),
        )
    console.print(table)


def print_tasks_table(tasks: list[Task]):
    console = Console()
    if not tasks:
        console.print("[dim]No tasks defined yet. Create one with `feedvault add-task`.[/dim]")
        return

    table = Table(title="Tasks", box=box.ROUNDED)
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Parents", justify="right")
    table.add_column("Workers", justify="right")
    table.add_column("Status")
    table.add_column("Last Result", justify="right")
    table.add_column("Schedule")
    table.add_column("Last Run")
    for t in tasks:
        style = _TASK_STATUS_STYLES[t.status]
        table.add_row(
            str(t.id),
            t.name,
            str(len(t.parent_ids)),
            str(t.concurrency),
            f"[{style}]{t.status.value}[/{style}]",
            f"{t.downloaded_items}/{t.total_items}",
            t.sync_cron if t.auto_sync else "[dim]off[/dim]",
            format_timestamp(t.last_run_at),
        )
    console.print(table)


def _counts_table(downloaded: int, skipped: int, failed: int, elapsed: float) -> Table:
    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=16)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row("✓ Downloaded:", f"[bold green]{downloaded}[/bold green]")
    if skipped > 0:
        stats_table.add_row("○ Skipped:", f"[yellow]{skipped} (archived)[/yellow]")
    if failed > 0:
        stats_table.add_row("✗ Failed:", f"[bold red]{failed}[/bold red]")
    stats_table.add_row("", "")
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(elapsed)}[/blue]")
    if downloaded > 0 and elapsed > 0:
        stats_table.add_row("Throughput:", f"[cyan]{downloaded / elapsed * 60:.1f} items/min[/cyan]")
    return stats_table


def print_sync_summary(result: SyncResult, name: str):
    """Displays the final summary of one parent sync."""
    console = Console()
    table = _counts_table(result.downloaded, result.skipped, result.failed, result.elapsed_seconds)
    if result.error:
        table.add_row("Error:", f"[red]{result.error}[/red]")

    titles = {
        SyncState.COMPLETED: ("✓ [bold]Sync Complete[/bold]", "green"),
        SyncState.STOPPED: ("○ [bold]Sync Cancelled[/bold]", "yellow"),
        SyncState.FAILED: ("✗ [bold]Sync Failed[/bold]", "red"),
    }
    title, border_color = titles.get(result.status, ("Sync", "white"))

    console.print()
    console.print(
        Panel(
            table,
            title=f"{title}: {name}",
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )


def print_task_summary(result: TaskResult, name: str):
    """Displays the final summary of a task run, with one row per parent."""
    console = Console()
    failed_items = sum(r.failed for r in result.parent_results)
    table = _counts_table(result.downloaded, result.skipped, failed_items, result.elapsed_seconds)
    table.add_row("Archive Total:", f"[cyan]{result.baseline + result.downloaded}[/cyan]")
    if result.failed_parents:
        table.add_row("Failed Parents:", f"[red]{result.failed_parents}[/red]")
    if result.error:
        table.add_row("Error:", f"[red]{result.error}[/red]")

    if result.cancelled:
        title, border_color = "○ [bold]Task Cancelled[/bold]", "yellow"
    elif result.status == TaskStatus.COMPLETED:
        title, border_color = "✓ [bold]Task Complete[/bold]", "green"
    else:
        title, border_color = "✗ [bold]Task Failed[/bold]", "red"

    console.print()
    console.print(
        Panel(
            table,
            title=f"{title}: {name}",
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
