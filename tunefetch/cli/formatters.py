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

from tunefetch.models.config import ServerConfig, describe_quality
from tunefetch.models.job import Job, JobStatus, Playlist
from tunefetch.utils.formatting import (
    format_duration,
    format_size,
    shorten,
    styled_status,
)


def format_error_with_suggestions(
    error: Exception, context: Optional[dict] = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Check the values in your configuration file.",
            "• Run `tunefetch init --force` to write a fresh default file.",
            "• TUNEFETCH_* environment variables override the file.",
        ],
        "ExtractorError": [
            "• Make sure yt-dlp is installed and on your PATH.",
            "• Set `ytdlp_path` in the configuration if it lives elsewhere.",
            "• Update yt-dlp; sites change often.",
        ],
        "ExtractionFailed": [
            "• The source may be unavailable, private, or region-locked.",
            "• Run with -vv to see the extractor's diagnostics.",
        ],
        "NoItemsFound": [
            "• The playlist may be private or empty.",
            "• Check that the URL still opens in a browser.",
        ],
        "ArchiveError": [
            "• Check free disk space in the downloads directory.",
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


def print_config(config_path: Path, config: ServerConfig, file_values: dict[str, Any]):
    """Displays the effective configuration, marking values that come from the file."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()
    table.add_column(style="dim")

    for key in sorted(ServerConfig.get_ini_keys()):
        value = getattr(config, key)
        if key == "default_quality":
            value = f"{value} ({describe_quality(value)})"
        source = "file" if key in file_values else "default/env"
        table.add_row(key, str(value), source)

    console.print(
        Panel(
            table,
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_summary_panel(
    jobs: list[Job],
    playlists: list[Playlist],
    duration_s: float,
    progress_stats: Optional[dict] = None,
):
    """Displays a per-job table and a final summary of the fetch session."""
    console = Console()

    jobs_table = Table(box=box.SIMPLE_HEAD)
    jobs_table.add_column("#", style="dim", justify="right")
    jobs_table.add_column("Title")
    jobs_table.add_column("Status")
    jobs_table.add_column("Size", justify="right")
    jobs_table.add_column("Length", justify="right")
    for index, job in enumerate(jobs, 1):
        detail = shorten(job.title or job.source_url)
        if job.status is JobStatus.ERROR and job.error:
            detail += f"\n[dim red]{job.error}[/dim red]"
        duration = job.metadata.duration if job.metadata else None
        jobs_table.add_row(
            str(index),
            detail,
            styled_status(job.status),
            format_size(job.size_bytes),
            format_duration(duration) if duration else "-",
        )

    completed = [j for j in jobs if j.status is JobStatus.COMPLETED]
    failed = [j for j in jobs if j.status is JobStatus.ERROR]
    total_size = sum(j.size_bytes or 0 for j in completed)

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=18)
    stats_table.add_column(style="white", justify="left")
    stats_table.add_row("✓ Completed:", f"[bold green]{len(completed)}[/bold green]")
    if failed:
        stats_table.add_row("✗ Failed:", f"[bold red]{len(failed)}[/bold red]")
    stats_table.add_row("Total Size:", f"[cyan]{format_size(total_size)}[/cyan]")
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")
    if progress_stats:
        stats_table.add_row(
            "Peak Concurrent:",
            f"[green]{progress_stats.get('peak_active', 0)}[/green]",
        )
    for playlist in playlists:
        if playlist.archive_path:
            archive = f"[green]{playlist.archive_path}[/green]"
        else:
            archive = f"[red]{playlist.archive_error or 'not built'}[/red]"
        stats_table.add_row("Archive:", f"{playlist.title}: {archive}")

    border_color = "green" if not failed else "yellow"
    console.print()
    console.print(jobs_table)
    console.print(
        Panel(
            stats_table,
            title="🎵 [bold]Fetch Complete[/bold]",
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()
