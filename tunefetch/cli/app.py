"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from tunefetch import __version__
from tunefetch.core.download_manager import DownloadManager
from tunefetch.exceptions import TunefetchError
from tunefetch.models.config import describe_quality, validate_quality
from tunefetch.storage.config_manager import DEFAULT_CONFIG_FILE, ConfigManager

from .formatters import (
    format_error_with_suggestions,
    print_config,
    print_summary_panel,
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
log = logging.getLogger("tunefetch")

app = typer.Typer(
    name="tunefetch",
    help=(
        "Turn media URLs into tagged MP3 files, from the shell or over HTTP."
        " Use 'tunefetch <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


class _State:
    config_file: Path = DEFAULT_CONFIG_FILE


state = _State()


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
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to the configuration file (default {DEFAULT_CONFIG_FILE}).",
    ),
):
    """tunefetch media-to-audio engine"""
    if version:
        console.print(f"[bold]tunefetch[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "INFO"
    if verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("tunefetch").setLevel(log_level)

    if config_file is not None:
        state.config_file = config_file.expanduser()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


def _load(cli_options: Optional[dict] = None):
    try:
        return ConfigManager(state.config_file).load_config(cli_options)
    except TunefetchError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e


@app.command()
def init(
    downloads_dir: Optional[Path] = typer.Option(
        None, "--downloads-dir", "-d", help="Where finished files are written."
    ),
    ytdlp_path: Optional[str] = typer.Option(
        None, "--yt-dlp", help="Path or name of the yt-dlp executable."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing file without asking."
    ),
):
    """Write a configuration file with default settings."""
    config_file = state.config_file
    if (
        config_file.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {}
    if downloads_dir is not None:
        settings["downloads_dir"] = str(downloads_dir.expanduser().resolve())
    if ytdlp_path:
        settings["ytdlp_path"] = ytdlp_path

    try:
        ConfigManager(config_file).save_new_config(settings)
    except TunefetchError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e
    console.print(f"\n[bold green]✓ Configuration saved to '{config_file}'[/bold green]")
    console.print("Ready! Try: [cyan]tunefetch fetch <URL>[/cyan] or [cyan]tunefetch serve[/cyan]")


@app.command(name="show-config")
def show_config():
    """Display the effective configuration."""
    config = _load()
    file_values = {}
    if state.config_file.is_file():
        file_values = ConfigManager(state.config_file).read_raw()
    print_config(state.config_file, config, file_values)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to listen on."),
    workers: Optional[int] = typer.Option(
        None, "-w", "--workers", help="Maximum simultaneous extractions."
    ),
):
    """Run the HTTP server."""
    import uvicorn

    from tunefetch.api.app import create_app

    config = _load({"host": host, "port": port, "max_concurrent": workers})
    console.print(
        f"[bold cyan]🎵 Serving on http://{config.host}:{config.port}[/bold cyan] "
        f"[dim](downloads: {config.downloads_dir})[/dim]"
    )
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_config=None,
    )


def _read_urls_from_stdin() -> list[str]:
    """Reads URLs from stdin, one per line."""
    if sys.stdin.isatty():
        console.print(
            "[yellow]⚠️  No input detected on stdin. Please pipe URLs or redirect"
            " a file.[/yellow]"
        )
        raise typer.Exit(code=1)

    urls = [
        line.strip()
        for line in sys.stdin
        if line.strip() and not line.strip().startswith("#")
    ]
    if not urls:
        console.print("[yellow]⚠️  No valid URLs found in stdin.[/yellow]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓ Read {len(urls)} URLs from stdin.[/green]")
    return urls


@app.command()
def fetch(
    urls: Optional[list[str]] = typer.Argument(  # noqa: B008
        None, help="One or more media or playlist URLs."
    ),
    quality: Optional[int] = typer.Option(
        None,
        "-q",
        "--quality",
        help="MP3 bitrate in kbps (96-320), or 0 for best available.",
    ),
    output_dir: Optional[Path] = typer.Option(
        None, "-o", "--output", help="Directory for finished files."
    ),
    workers: Optional[int] = typer.Option(
        None, "-w", "--workers", help="Maximum simultaneous extractions."
    ),
    stdin: bool = typer.Option(
        False, "--stdin", help="Read URLs from standard input, one URL per line."
    ),
    no_progress: bool = typer.Option(
        False, "--no-progress", help="Disable the live progress display."
    ),
):
    """Download URLs in-process and print a summary."""
    if stdin:
        urls = _read_urls_from_stdin()
    elif not urls:
        console.print(
            "[red]✗ No URLs provided.[/red] "
            "Use: [cyan]tunefetch fetch <URL>[/cyan] or [cyan]--stdin[/cyan]"
        )
        raise typer.Exit(code=1)

    if quality is not None:
        try:
            validate_quality(quality)
        except ValueError as e:
            console.print(f"[red]✗ {e}[/red]")
            raise typer.Exit(code=1) from e

    config = _load(
        {
            "downloads_dir": str(output_dir) if output_dir else None,
            "max_concurrent": workers,
        }
    )
    effective_quality = config.default_quality if quality is None else quality

    async def _fetch_async():
        manager = DownloadManager(config)
        console.print(
            f"[bold cyan]🎵 Fetching {len(urls)} URL(s) as "
            f"{describe_quality(effective_quality)}...[/bold cyan]"
        )
        start_time = time.monotonic()
        async with ProgressManager(
            console, manager.registry, enabled=not no_progress
        ) as progress:
            try:
                result = await manager.start(urls, effective_quality)
                progress.track(result.job_ids)
                await manager.wait_idle()
            except (KeyboardInterrupt, asyncio.CancelledError):
                await manager.shutdown()
                raise
        duration = time.monotonic() - start_time

        jobs = manager.registry.list_jobs(result.job_ids)
        playlists = [
            manager.registry.get_playlist(p.id) or p for p in result.playlists
        ]
        print_summary_panel(jobs, playlists, duration, progress.get_statistics())
        return jobs

    jobs = asyncio.run(_fetch_async())
    if any(job.error for job in jobs):
        raise typer.Exit(code=1)
