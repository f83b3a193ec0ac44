"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from mclaunch_cli.exceptions import PreparationError
from mclaunch_cli.models.credential import SessionStatus
from mclaunch_cli.models.manifest import LatestVersions, ManifestEntry
from mclaunch_cli.storage.instances import InstanceConfig
from mclaunch_cli.utils.formatting import format_duration, format_size, format_timestamp

MAX_LISTED_FAILURES = 10

_SUGGESTIONS = {
    "ConfigurationError": [
        "• Run `mclaunch init <CLIENT_ID>` to create a configuration.",
        "• Or set the MS_CLIENT_ID environment variable.",
    ],
    "AuthNetworkError": [
        "• Microsoft or Xbox Live services did not answer in time.",
        "• Check your internet connection and try again.",
    ],
    "InvalidGrantError": [
        "• Your saved login has expired or was revoked.",
        "• Run `mclaunch auth login` to sign in again.",
    ],
    "LoginRequiredError": [
        "• Run `mclaunch auth login` to sign in.",
        "• Or rerun without --no-interactive.",
    ],
    "ConsentDeniedError": [
        "• The permission request was declined in the browser.",
        "• Run `mclaunch auth login` and accept the request.",
    ],
    "EntitlementError": [
        "• Sign in with the Microsoft account that bought Minecraft: Java Edition.",
        "• Game Pass accounts must launch the official launcher once first.",
    ],
    "XboxAccountError": [
        "• Sign in on xbox.com to finish setting up the Xbox profile.",
        "• Child accounts must be added to a Microsoft Family by an adult.",
    ],
    "AuthProtocolError": [
        "• Check that `client_id` matches your Azure app registration.",
        "• The redirect URI must be http://localhost:<redirect_port>.",
    ],
    "ManifestUnavailableError": [
        "• Mojang's metadata servers could not be reached.",
        "• Please try again in a few minutes.",
    ],
    "VersionNotFoundError": [
        "• Run `mclaunch versions` to list available versions.",
        "• Use `release` or `snapshot` for the latest ones.",
    ],
    "DescriptorError": [
        "• The version metadata is malformed or corrupted.",
        "• Run `mclaunch prepare` again to refetch it.",
    ],
    "InstanceNotFoundError": [
        "• Run `mclaunch instance list` to see the known instances.",
        "• Create one with `mclaunch instance create <name> <version>`.",
    ],
    "InstanceError": [
        "• Instance names use letters, digits, `-` and `_` (64 at most).",
        "• Run `mclaunch instance list` to see the names already taken.",
    ],
    "DownloadError": [
        "• Some files could not be downloaded or failed verification.",
        "• Run the same command again; verified files are not refetched.",
        "• Try fewer `--workers` on a slow connection.",
    ],
}


def _suggestions_for(error: BaseException) -> list[str]:
    if isinstance(error, PreparationError) and error.cause is not None:
        error = error.cause
    if isinstance(error, PreparationError) and error.stage == "download":
        return _SUGGESTIONS["DownloadError"]
    for cls in type(error).__mro__:
        if cls.__name__ in _SUGGESTIONS:
            return _SUGGESTIONS[cls.__name__]
    return ["• Run the command with -v for detailed logs."]


def format_error_with_suggestions(
    error: BaseException, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)

    stage = getattr(error, "stage", None)
    if stage:
        content.add_row(Text(f"Stage: {getattr(stage, 'value', stage)}", style="dim"))

    failed = getattr(error, "failed_tasks", None)
    if failed:
        lines = Text()
        for task in failed[:MAX_LISTED_FAILURES]:
            lines.append("✗ ", style="red")
            lines.append(f"{task.artifact.path}")
            lines.append(f"  {task.error}\n", style="dim")
        if len(failed) > MAX_LISTED_FAILURES:
            lines.append(f"… and {len(failed) - MAX_LISTED_FAILURES} more", style="dim")
        content.add_row(lines)

    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(_suggestions_for(error))))

    if context:
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration."""
    console = Console()
    content = "\n".join(f"{key} = {value}" for key, value in sorted(config_data.items()))
    console.print(
        Panel(
            content,
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_session_status(status: SessionStatus, credential_path: Path):
    """Displays the persisted session state."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    if not status.persisted:
        table.add_row("Session:", "[yellow]✗ Not signed in[/yellow]")
    else:
        table.add_row("Player:", f"[bold]{status.player_name}[/bold]")
        if status.valid:
            table.add_row("Session:", "[green]✓ Valid[/green]")
        else:
            table.add_row("Session:", "[yellow]○ Expired (will refresh)[/yellow]")
        table.add_row("Expires:", format_timestamp(status.expires_at))
        if status.seconds_left > 0:
            table.add_row("Time Left:", format_duration(status.seconds_left))
        table.add_row(
            "Refresh Token:",
            "✓ Present" if status.has_refresh_token else "[red]✗ Missing[/red]",
        )
    table.add_row("Stored In:", f"[dim]{credential_path}[/dim]")

    console.print(Panel(table, title="[bold]Minecraft Session[/bold]", border_style="cyan"))


def print_versions_table(
    latest: LatestVersions, entries: list[ManifestEntry], limit: Optional[int] = None
):
    """Displays manifest entries with the latest markers."""
    console = Console()
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("Version", style="bold")
    table.add_column("Type")
    table.add_column("Released", style="dim")
    table.add_column("")

    type_colors = {"release": "green", "snapshot": "yellow"}
    shown = entries[:limit] if limit else entries
    for entry in shown:
        marker = ""
        if entry.id == latest.release:
            marker = "[green]latest release[/green]"
        elif entry.id == latest.snapshot:
            marker = "[yellow]latest snapshot[/yellow]"
        color = type_colors.get(entry.type, "dim")
        table.add_row(
            entry.id,
            f"[{color}]{entry.type}[/{color}]",
            (entry.release_time or "")[:10],
            marker,
        )

    console.print(table)
    if len(shown) < len(entries):
        console.print(f"[dim]Showing {len(shown)} of {len(entries)} versions.[/dim]")


def print_instances_table(instances: list[InstanceConfig]):
    """Displays the known instances."""
    console = Console()
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("Instance", style="bold")
    table.add_column("Version", style="cyan")
    table.add_column("Created", style="dim")
    table.add_column("Description")
    for instance in instances:
        table.add_row(
            instance.name,
            instance.version,
            (instance.created or "")[:10],
            instance.description or "",
        )
    console.print(table)


def print_instance_info(instance: InstanceConfig, instance_dir: Path):
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()
    table.add_row("Version:", instance.version)
    if instance.description:
        table.add_row("Description:", instance.description)
    if instance.created:
        table.add_row("Created:", instance.created)
    for key, value in (instance.model_extra or {}).items():
        table.add_row(f"{key}:", str(value))
    table.add_row("Directory:", f"[dim]{instance_dir}[/dim]")
    Console().print(
        Panel(table, title=f"[bold]Instance {instance.name}[/bold]", border_style="cyan")
    )

def print_summary_panel(context, duration_s: float):
    """Displays the final summary of a successful preparation."""
    console = Console()
    report = context.report

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=18)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row("Version:", f"[bold]{context.descriptor.id}[/bold]")
    if context.instance is not None:
        stats_table.add_row("Instance:", context.instance.name)
    stats_table.add_row("Player:", context.credential.profile.name)
    stats_table.add_row("", "")
    stats_table.add_row("✓ Fetched:", f"[bold green]{report.fetched}[/bold green]")
    stats_table.add_row("○ Already Present:", f"[yellow]{report.cache_hits}[/yellow]")
    stats_table.add_row(
        "Downloaded:", f"[cyan]{format_size(report.bytes_downloaded)}[/cyan]"
    )
    avg_speed = report.bytes_downloaded / duration_s if duration_s > 0 else 0
    stats_table.add_row("Avg. Speed:", f"[magenta]{format_size(avg_speed)}/s[/magenta]")
    stats_table.add_row("Peak Concurrent:", f"[green]{report.peak_in_flight}[/green]")
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")
    if context.descriptor.java_major_version:
        stats_table.add_row("Java:", f"{context.descriptor.java_major_version}+")

    console.print()
    console.print(
        Panel(
            stats_table,
            title="🎮 [bold]Ready to Launch[/bold]",
            border_style="green",
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()
