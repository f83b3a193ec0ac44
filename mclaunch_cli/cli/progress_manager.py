"""
Manages a Rich Live display for the concurrent artifact downloads.
Shows overall progress, the larger active transfers, and running statistics.
"""

import asyncio
import logging
import time

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from mclaunch_cli.models.report import DownloadTask, TaskState
from mclaunch_cli.utils.formatting import format_size

log = logging.getLogger("mclaunch_cli")

# Files smaller than this only move the overall bar.
DETAIL_THRESHOLD = 1024 * 1024


class ProgressManager:
    """
    Receives scheduler notifications and renders them.

    Small files (most assets) only advance the overall counter; larger ones
    get their own transfer bar while in flight.
    """

    def __init__(self, console: Console, enabled: bool = True):
        self.console = console
        self.enabled = enabled

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=20),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "•",
            DownloadColumn(),
            "•",
            TransferSpeedColumn(),
            "•",
            TimeRemainingColumn(),
            console=console,
        )
        self.overall_progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            MofNCompleteColumn(),
            console=console,
        )

        self._live: Live | None = None
        self._overall_task_id: TaskID | None = None
        self._active_tasks: dict[str, TaskID] = {}
        self._stats = {
            "completed": 0,
            "cached": 0,
            "failed": 0,
            "active_downloads": 0,
            "peak_concurrent": 0,
            "downloaded_size": 0,
            "start_time": None,
        }

    # Scheduler notifications

    def fetch_started(self, total: int) -> None:
        self._stats["start_time"] = time.monotonic()
        if self.enabled:
            self._overall_task_id = self.overall_progress.add_task(
                "Files", total=total
            )

    def task_started(self, task: DownloadTask) -> None:
        self._stats["active_downloads"] += 1
        self._stats["peak_concurrent"] = max(
            self._stats["peak_concurrent"], self._stats["active_downloads"]
        )
        size = task.artifact.size or 0
        if self.enabled and size >= DETAIL_THRESHOLD:
            name = task.artifact.path.rsplit("/", 1)[-1]
            if len(name) > 40:
                name = name[:38] + "…"
            self._active_tasks[task.artifact.path] = self.progress.add_task(
                name, total=size
            )
        self._update_display()

    def bytes_received(self, task: DownloadTask, count: int) -> None:
        self._stats["downloaded_size"] += count
        task_id = self._active_tasks.get(task.artifact.path)
        if task_id is not None:
            self.progress.update(task_id, advance=count)

    def task_finished(self, task: DownloadTask) -> None:
        if task.cache_hit:
            self._stats["cached"] += 1
        else:
            self._stats["active_downloads"] -= 1
            key = "completed" if task.state is TaskState.VERIFIED else "failed"
            self._stats[key] += 1
            if task.state is TaskState.FAILED:
                log.error(f"  [red]✗ Failed:[/] {task.artifact.path} ({task.error})")
        task_id = self._active_tasks.pop(task.artifact.path, None)
        if task_id is not None:
            self.progress.remove_task(task_id)
        if self._overall_task_id is not None:
            self.overall_progress.advance(self._overall_task_id)
        self._update_display()

    # Rendering

    def _generate_stats_line(self) -> Table:
        table = Table.grid(padding=(0, 3))
        elapsed = time.monotonic() - (self._stats["start_time"] or time.monotonic())
        speed = self._stats["downloaded_size"] / elapsed if elapsed > 0 else 0
        table.add_row(
            f"[green]✓ {self._stats['completed']} fetched[/green]",
            f"[dim]○ {self._stats['cached']} cached[/dim]",
            f"[red]✗ {self._stats['failed']}[/red]",
            f"[cyan]{format_size(self._stats['downloaded_size'])}[/cyan]",
            f"[magenta]{format_size(speed)}/s[/magenta]",
            f"active {self._stats['active_downloads']}",
        )
        return table

    def _render(self) -> Panel:
        return Panel(
            Group(self.overall_progress, self._generate_stats_line(), self.progress),
            title="[bold]📥 Preparing game files[/bold]",
            border_style="green",
        )

    def _update_display(self):
        if self._live is not None:
            self._live.update(self._render())

    def get_statistics(self) -> dict:
        return self._stats.copy()

    async def __aenter__(self):
        if not self.enabled:
            return self
        self._live = Live(
            self._render(),
            console=self.console,
            refresh_per_second=8,
            transient=True,
        )
        self._live.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._live is not None:
            await asyncio.sleep(0.1)
            self._live.stop()
            self._live = None
