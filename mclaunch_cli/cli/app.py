"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from mclaunch_cli import __version__
from mclaunch_cli.api.auth import AuthFlow
from mclaunch_cli.api.client import ServicesClient
from mclaunch_cli.api.login import LocalRedirectReceiver, PromptReceiver
from mclaunch_cli.core.orchestrator import LaunchContext, LaunchOrchestrator
from mclaunch_cli.core.resolver import AssetResolver
from mclaunch_cli.core.scheduler import DownloadScheduler
from mclaunch_cli.core.token_broker import TokenBroker
from mclaunch_cli.models.config import LauncherConfig
from mclaunch_cli.storage.cache import CacheManager
from mclaunch_cli.storage.config_manager import ConfigManager
from mclaunch_cli.storage.credential_store import CredentialStore
from mclaunch_cli.storage.instances import InstanceStore
from mclaunch_cli.transfer.downloader import Downloader, close_connection_pool
from mclaunch_cli.utils.platform import get_config_dir
from mclaunch_cli.utils.retry import RetryPolicy

from .formatters import (
    print_config,
    print_instance_info,
    print_instances_table,
    print_session_status,
    print_summary_panel,
    print_versions_table,
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
log = logging.getLogger("mclaunch_cli")

app = typer.Typer(
    name="mclaunch",
    help=(
        "Prepares Minecraft: Java Edition for launch: signs in with a Microsoft"
        " account and downloads a verified set of game files. Use 'mclaunch"
        " <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)
auth_app = typer.Typer(help="Manage the stored Microsoft/Minecraft session.")
app.add_typer(auth_app, name="auth")
instance_app = typer.Typer(help="Create and manage named game instances.")
app.add_typer(instance_app, name="instance")

CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"

VERSION_TYPES = ("release", "snapshot", "old_beta", "old_alpha")


def _load_config(cli_options: Optional[dict] = None) -> LauncherConfig:
    return ConfigManager(CONFIG_FILE).load_config(cli_options)


def _build_broker(
    config: LauncherConfig, client: ServicesClient, paste: bool = False
) -> TokenBroker:
    if paste:
        receiver = PromptReceiver(open_browser=config.open_browser)
    else:
        receiver = LocalRedirectReceiver(
            port=config.redirect_port, open_browser=config.open_browser
        )
    flow = AuthFlow(
        client,
        client_id=config.client_id,
        redirect_uri=config.redirect_uri,
        receiver=receiver,
        retry_policy=RetryPolicy(
            max_attempts=config.auth_attempts, base_delay=config.retry_base_delay
        ),
    )
    return TokenBroker(
        CredentialStore(Path(config.config_path)),
        flow,
        safety_margin=config.safety_margin,
    )


def _build_resolver(config: LauncherConfig, client: ServicesClient) -> AssetResolver:
    return AssetResolver(
        client,
        config.game_path,
        retry_policy=RetryPolicy(
            max_attempts=config.download_attempts, base_delay=config.retry_base_delay
        ),
        cache=CacheManager(
            Path(config.config_path),
            max_age_seconds=config.manifest_cache_hours * 3600,
        ),
        manifest_url=config.manifest_url,
    )


async def _run_preparation(
    config: LauncherConfig, target: str, is_instance: bool, interactive: bool
) -> tuple[LaunchContext, float]:
    start_time = time.monotonic()
    async with ServicesClient() as client:
        try:
            async with ProgressManager(console, enabled=console.is_terminal) as progress:
                scheduler = DownloadScheduler(
                    Downloader(config.max_workers),
                    max_workers=config.max_workers,
                    retry_policy=RetryPolicy(
                        max_attempts=config.download_attempts,
                        base_delay=config.retry_base_delay,
                    ),
                    listener=progress,
                )
                orchestrator = LaunchOrchestrator(
                    _build_broker(config, client),
                    _build_resolver(config, client),
                    scheduler,
                    config.game_path,
                )
                if is_instance:
                    context = await orchestrator.launch(target, interactive=interactive)
                else:
                    context = await orchestrator.prepare(target, interactive=interactive)
        finally:
            await close_connection_pool()
    return context, time.monotonic() - start_time


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Show debug logs.",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the effective configuration."
    ),
):
    """Minecraft launch preparation CLI"""
    if version:
        console.print(f"[bold]mclaunch-cli[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    logging.getLogger("mclaunch_cli").setLevel("DEBUG" if verbose >= 1 else "INFO")

    if show_config:
        config = _load_config()
        data = config.model_dump(exclude={"config_path"})
        data["game_dir"] = str(config.game_path)
        print_config(CONFIG_FILE, data)
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    client_id: str = typer.Argument(
        ..., help="Application (client) id of your Azure app registration."
    ),
    game_dir: Optional[Path] = typer.Option(
        None, "--game-dir", help="Game directory (defaults to the official launcher's)."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration without asking."
    ),
):
    """Write the configuration file."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {"client_id": client_id.strip()}
    if game_dir is not None:
        settings["game_dir"] = str(game_dir.expanduser())
    ConfigManager(CONFIG_FILE).save_new_config(settings)
    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    console.print("Next: [cyan]mclaunch auth login[/cyan], then [cyan]mclaunch prepare release[/cyan]")


@app.command()
def prepare(
    version: str = typer.Argument(
        ..., help="Version id, or 'release' / 'snapshot' for the latest one."
    ),
    workers: Optional[int] = typer.Option(
        None, "-w", "--workers", help="Number of simultaneous downloads (default 16)."
    ),
    game_dir: Optional[Path] = typer.Option(
        None, "--game-dir", help="Game directory to download into."
    ),
    no_interactive: bool = typer.Option(
        False,
        "--no-interactive",
        help="Fail instead of opening a browser when a new login is needed.",
    ),
):
    """Sign in and download every file a version needs."""
    config = _load_config(
        {
            "max_workers": workers,
            "game_dir": str(game_dir.expanduser()) if game_dir else None,
        }
    )
    context, duration = asyncio.run(
        _run_preparation(config, version, is_instance=False, interactive=not no_interactive)
    )
    print_summary_panel(context, duration)


@app.command()
def launch(
    instance: str = typer.Argument(..., help="Name of an instance in <game_dir>/instances."),
    as_json: bool = typer.Option(
        False, "--json", help="Print the launch context as JSON (includes the access token)."
    ),
    no_interactive: bool = typer.Option(
        False,
        "--no-interactive",
        help="Fail instead of opening a browser when a new login is needed.",
    ),
):
    """Prepare an instance and print what the game process needs."""
    config = _load_config()
    context, duration = asyncio.run(
        _run_preparation(config, instance, is_instance=True, interactive=not no_interactive)
    )
    if as_json:
        typer.echo(json.dumps(context.to_dict(), indent=2))
        return
    print_summary_panel(context, duration)
    console.print(
        f"Main class [cyan]{context.descriptor.main_class}[/cyan], "
        f"{len(context.classpath())} classpath entries, {len(context.natives())} natives."
    )


@app.command()
def versions(
    version_type: Optional[str] = typer.Option(
        None, "--type", "-t", help=f"Only list one type: {', '.join(VERSION_TYPES)}."
    ),
    text_filter: Optional[str] = typer.Option(
        None, "--filter", help="Only list versions whose id contains this text."
    ),
    limit: Optional[int] = typer.Option(
        20, "--limit", "-n", help="Maximum number of versions to show (0 for all)."
    ),
):
    """List the versions available in the manifest."""
    if version_type is not None and version_type not in VERSION_TYPES:
        raise typer.BadParameter(
            f"Unknown type '{version_type}'. Use one of: {', '.join(VERSION_TYPES)}.",
            param_hint="--type",
        )
    config = _load_config()

    async def _list():
        async with ServicesClient() as client:
            return await _build_resolver(config, client).list_versions(
                types=[version_type] if version_type else None, text=text_filter
            )

    latest, entries = asyncio.run(_list())
    if not entries:
        console.print("[yellow]No versions match.[/yellow]")
        return
    print_versions_table(latest, entries, limit=limit or None)


@auth_app.command("status")
def auth_status():
    """Show the stored session without contacting any server."""
    config = _load_config()

    async def _status():
        async with ServicesClient() as client:
            broker = _build_broker(config, client)
            return await broker.status(), broker.store.path

    status, path = asyncio.run(_status())
    print_session_status(status, path)


@auth_app.command("login")
def auth_login(
    paste: bool = typer.Option(
        False, "--paste", help="Paste the redirect URL instead of using a local listener."
    ),
):
    """Sign in with a Microsoft account and store the session."""
    config = _load_config()

    async def _login():
        async with ServicesClient() as client:
            return await _build_broker(config, client, paste=paste).reauthenticate()

    credential = asyncio.run(_login())
    console.print(f"[bold green]✓ Signed in as {credential.profile.name}[/bold green]")


@auth_app.command("refresh")
def auth_refresh():
    """Make sure the stored session is valid, refreshing it if needed."""
    config = _load_config()

    async def _refresh():
        async with ServicesClient() as client:
            return await _build_broker(config, client).obtain_valid_token(interactive=False)

    credential = asyncio.run(_refresh())
    console.print(
        f"[green]✓ Session for {credential.profile.name} is valid "
        f"for {int(credential.seconds_left() // 60)} more minutes.[/green]"
    )


@auth_app.command("clear")
def auth_clear():
    """Delete the stored session."""
    config = _load_config()

    async def _clear():
        async with ServicesClient() as client:
            return await _build_broker(config, client).clear_session()

    if asyncio.run(_clear()):
        console.print("[green]✓ Stored session removed.[/green]")
    else:
        console.print("[dim]No stored session.[/dim]")


@instance_app.command("list")
def instance_list():
    """List the instances in the game directory."""
    config = _load_config()
    store = InstanceStore(config.game_path)
    instances = store.list_instances()
    if not instances:
        console.print(f"[dim]No instances in {store.root}.[/dim]")
        return
    print_instances_table(instances)


@instance_app.command("create")
def instance_create(
    name: str = typer.Argument(..., help="Letters, digits, '-' and '_' only."),
    version: str = typer.Argument(
        ..., help="Version id, or 'release' / 'snapshot' to pin the latest one."
    ),
    description: Optional[str] = typer.Option(
        None, "--description", "-d", help="Free-form note shown by 'instance info'."
    ),
):
    """Create an instance pinned to a version from the manifest."""
    config = _load_config()

    async def _find():
        async with ServicesClient() as client:
            return await _build_resolver(config, client).find_version(version)

    entry = asyncio.run(_find())
    instance = InstanceStore(config.game_path).create(name, entry.id, description)
    console.print(
        f"[bold green]✓ Created instance '{instance.name}' ({instance.version})[/bold green]"
    )
    console.print(f"Next: [cyan]mclaunch launch {instance.name}[/cyan]")


@instance_app.command("info")
def instance_info(name: str = typer.Argument(..., help="Instance name.")):
    """Show one instance's settings."""
    config = _load_config()
    store = InstanceStore(config.game_path)
    print_instance_info(store.get(name), store.root / name)


@instance_app.command("delete")
def instance_delete(
    name: str = typer.Argument(..., help="Instance name."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
):
    """Delete an instance directory and everything in it."""
    config = _load_config()
    store = InstanceStore(config.game_path)
    if not yes and not typer.confirm(f"Delete instance '{name}' and all its files?"):
        raise typer.Abort()
    store.delete(name)
    console.print(f"[green]✓ Instance '{name}' deleted.[/green]")
