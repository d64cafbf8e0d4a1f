"""
Manages a Rich Live display for concurrent jobs: overall progress, session
statistics and one line per active job showing its current stage.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.text import Text

from tunefetch.models.job import PIPELINE_ORDER, JobState, ProgressEvent
from tunefetch.utils.formatting import format_duration, truncate

log = logging.getLogger(__name__)

STATE_STYLES = {
    JobState.QUEUED: "dim",
    JobState.FETCHING: "cyan",
    JobState.RESOLVING_METADATA: "blue",
    JobState.FILTERING: "magenta",
    JobState.TRANSCODING: "yellow",
    JobState.EMBEDDING: "green",
}

# Stages between QUEUED and COMPLETED, used as per-job progress steps
STAGE_COUNT = PIPELINE_ORDER[JobState.COMPLETED]


class ProgressManager:
    """
    Consumes job progress events and renders them. Instances are callable and
    can be registered directly as a scheduler observer.
    """

    def __init__(self, console: Console, quiet: bool = False):
        self.console = console
        self.quiet = quiet

        self.jobs_progress = Progress(
            SpinnerColumn(),
            TextColumn("{task.description}", justify="left"),
            BarColumn(bar_width=20),
            TextColumn("{task.fields[stage]}"),
            TimeElapsedColumn(),
            console=console,
        )
        self.overall_progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            MofNCompleteColumn(),
            "[progress.percentage]{task.percentage:>3.0f}%",
            console=console,
        )

        self._live: Optional[Live] = None
        self._overall_task_id: Optional[TaskID] = None
        self._job_tasks: dict[str, TaskID] = {}
        self._stats = {
            "total": 0,
            "completed": 0,
            "failed": 0,
            "cancelled": 0,
            "active": 0,
            "peak_active": 0,
            "start_time": None,
        }

    def __call__(self, event: ProgressEvent) -> None:
        self.handle(event)

    def handle(self, event: ProgressEvent) -> None:
        if self._stats["start_time"] is None:
            self._stats["start_time"] = datetime.now()

        if event.previous is None:
            self._stats["total"] += 1
            if self._overall_task_id is not None:
                self.overall_progress.update(self._overall_task_id, total=self._stats["total"])
        elif event.previous is JobState.QUEUED and not event.state.is_terminal:
            self._start_job(event)

        if event.state.is_terminal:
            self._finish_job(event)
        elif event.job_id in self._job_tasks:
            style = STATE_STYLES.get(event.state, "white")
            self.jobs_progress.update(
                self._job_tasks[event.job_id],
                completed=PIPELINE_ORDER[event.state],
                stage=f"[{style}]{event.state.label}[/{style}]",
            )
        self._refresh()

    def _start_job(self, event: ProgressEvent) -> None:
        if self.quiet:
            return
        self._job_tasks[event.job_id] = self.jobs_progress.add_task(
            truncate(event.label, 50), total=STAGE_COUNT, stage=""
        )
        self._stats["active"] = len(self._job_tasks)
        self._stats["peak_active"] = max(self._stats["peak_active"], self._stats["active"])

    def _finish_job(self, event: ProgressEvent) -> None:
        self._stats[event.state.value] += 1
        task_id = self._job_tasks.pop(event.job_id, None)
        if task_id is not None:
            self.jobs_progress.remove_task(task_id)
        self._stats["active"] = len(self._job_tasks)
        if self._overall_task_id is not None:
            settled = self._stats["completed"] + self._stats["failed"] + self._stats["cancelled"]
            self.overall_progress.update(self._overall_task_id, completed=settled)

    def _generate_stats_panel(self) -> Panel:
        elapsed = 0.0
        if self._stats["start_time"]:
            elapsed = (datetime.now() - self._stats["start_time"]).total_seconds()

        stats_table = Table.grid(padding=(0, 2))
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")
        stats_table.add_row(
            "Completed:",
            f"[green]{self._stats['completed']}[/green]",
            "Failed:",
            f"[red]{self._stats['failed']}[/red]",
        )
        stats_table.add_row(
            "Active:",
            f"[cyan]{self._stats['active']}[/cyan]",
            "Peak:",
            f"[magenta]{self._stats['peak_active']}[/magenta]",
        )
        stats_table.add_row(
            "Cancelled:",
            f"[yellow]{self._stats['cancelled']}[/yellow]",
            "Elapsed:",
            f"[blue]{format_duration(elapsed)}[/blue]",
        )

        combined = Table.grid()
        combined.add_row(stats_table)
        combined.add_row("")
        if self._overall_task_id is not None:
            combined.add_row(self.overall_progress)
        return Panel(combined, title="[bold]📊 Session[/bold]", border_style="blue")

    def _generate_jobs_panel(self) -> Panel:
        if not self._job_tasks:
            return Panel(
                Text("Waiting for jobs to start...", style="dim italic", justify="center"),
                title="[bold]📥 Active Jobs[/bold]",
                border_style="green",
            )
        return Panel(
            self.jobs_progress,
            title=f"[bold]📥 Active Jobs ({len(self._job_tasks)})[/bold]",
            border_style="green",
        )

    def _render(self) -> Group:
        return Group(self._generate_stats_panel(), self._generate_jobs_panel())

    def _refresh(self) -> None:
        if self._live is not None:
            self._live.update(self._render())

    def get_statistics(self) -> dict:
        return self._stats.copy()

    async def __aenter__(self):
        if self.quiet:
            return self
        self._overall_task_id = self.overall_progress.add_task(
            "Overall Progress", total=self._stats["total"] or None
        )
        self._live = Live(
            self._render(),
            console=self.console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._live is not None:
            await asyncio.sleep(0.2)
            self._live.update(self._render())
            self._live.stop()
            self._live = None
