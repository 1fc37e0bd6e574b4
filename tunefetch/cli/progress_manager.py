"""
Manages a Rich Live display that follows jobs in the registry while they run.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TextColumn
from rich.table import Table
from rich.text import Text

from tunefetch.models.job import Job, JobStatus
from tunefetch.storage.registry import JobRegistry
from tunefetch.utils.formatting import shorten, styled_status

log = logging.getLogger(__name__)


class ProgressManager:
    """
    Polls the registry and renders one progress bar per job plus session
    counters. Finished jobs are removed from the bar list and counted.
    """

    def __init__(
        self,
        console: Console,
        registry: JobRegistry,
        refresh_interval: float = 0.25,
        enabled: bool = True,
    ):
        self.console = console
        self.registry = registry
        self.refresh_interval = refresh_interval
        self.enabled = enabled

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=24),
            "[progress.percentage]{task.percentage:>3.0f}%",
            TextColumn("{task.fields[status]}"),
            console=console,
            transient=False,
        )

        self._job_ids: list[str] = []
        self._tasks: dict[str, TaskID] = {}
        self._finished: set[str] = set()
        self._stats = {"completed": 0, "failed": 0, "peak_active": 0}
        self._start_time: Optional[datetime] = None
        self._live: Optional[Live] = None
        self._layout: Optional[Layout] = None
        self._poller: Optional[asyncio.Task] = None

    def track(self, job_ids: list[str]) -> None:
        """Adds jobs to the display."""
        for job_id in job_ids:
            if job_id not in self._job_ids:
                self._job_ids.append(job_id)

    def get_statistics(self) -> dict:
        stats = self._stats.copy()
        stats["total"] = len(self._job_ids)
        return stats

    def _describe(self, job: Job) -> str:
        return shorten(job.title or job.source_url)

    def refresh(self) -> None:
        """Pulls fresh snapshots from the registry and updates every bar."""
        jobs = self.registry.list_jobs(self._job_ids)
        active = 0
        for job in jobs:
            if job.id in self._finished:
                continue
            task_id = self._tasks.get(job.id)
            if task_id is None:
                task_id = self.progress.add_task(
                    self._describe(job), total=100, status=styled_status(job.status)
                )
                self._tasks[job.id] = task_id
            self.progress.update(
                task_id,
                completed=job.progress,
                description=self._describe(job),
                status=styled_status(job.status),
            )
            if job.status.is_terminal:
                self._finish(job)
            elif job.status is not JobStatus.QUEUED:
                active += 1
        self._stats["peak_active"] = max(self._stats["peak_active"], active)
        self._update_display()

    def _finish(self, job: Job) -> None:
        self._finished.add(job.id)
        if job.status is JobStatus.COMPLETED:
            self._stats["completed"] += 1
        else:
            self._stats["failed"] += 1
            log.warning(f"[red]✗ {self._describe(job)}:[/red] {job.error}")
        self.progress.remove_task(self._tasks.pop(job.id))

    def _create_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="progress", ratio=1),
        )
        return layout

    def _generate_header(self) -> Panel:
        elapsed = (
            (datetime.now() - self._start_time).total_seconds()
            if self._start_time
            else 0
        )
        header = Table.grid(padding=(0, 2))
        header.add_row(
            Text("🎵 tunefetch", style="bold cyan"),
            Text(f"{int(elapsed // 60):02d}:{int(elapsed % 60):02d}", style="yellow"),
            Text(f"✓ {self._stats['completed']}", style="green"),
            Text(f"✗ {self._stats['failed']}", style="red"),
            Text(
                f"{len(self._job_ids) - len(self._finished)} remaining", style="cyan"
            ),
        )
        return Panel(header, border_style="cyan")

    def _update_display(self) -> None:
        if not self.enabled or not self._layout:
            return
        self._layout["header"].update(self._generate_header())
        self._layout["progress"].update(
            Panel(self.progress, title="[bold]📥 Jobs[/bold]", border_style="green")
        )

    async def _poll(self) -> None:
        while True:
            self.refresh()
            await asyncio.sleep(self.refresh_interval)

    async def __aenter__(self):
        self._start_time = datetime.now()
        if self.enabled:
            self._layout = self._create_layout()
            self._update_display()
            self._live = Live(
                self._layout,
                console=self.console,
                refresh_per_second=8,
                vertical_overflow="visible",
            )
            self._live.start()
        self._poller = asyncio.create_task(self._poll())
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._poller:
            self._poller.cancel()
            try:
                await self._poller
            except asyncio.CancelledError:
                pass
        self.refresh()
        if self._live:
            self._live.stop()
