"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from tunefetch import __version__
from tunefetch.core.expansion import BatchInput, CsvImport, PlaylistReference
from tunefetch.core.pipeline import build_pipeline
from tunefetch.core.scheduler import BatchScheduler
from tunefetch.exceptions import TuneFetchError
from tunefetch.models.config import DownloadConfig
from tunefetch.models.track import TrackRequest
from tunefetch.sources.base import PlaylistExpander
from tunefetch.storage.config_manager import DEFAULT_CONFIG_PATH, ConfigManager
from tunefetch.utils.structured_logger import create_structured_logger

from .formatters import print_job_warnings, print_summary_panel, print_validation_table
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
        "Download tracks from YouTube, SoundCloud, Spotify or direct links with"
        " merged metadata, lyrics and cover art. Use 'tunefetch <command> --help'"
        " for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-v shows job warnings, -vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
):
    """tunefetch track downloader"""
    if version:
        console.print(f"[bold]tunefetch[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    logging.getLogger("tunefetch").setLevel("DEBUG" if verbose >= 2 else "INFO")
    ctx.obj = {"verbose": verbose}

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


def _read_url_file(path: Path) -> list[str]:
    """Reads a plain text file of URLs or queries, one per line."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return [line.strip() for line in f if line.strip() and not line.startswith("#")]
    except (OSError, UnicodeDecodeError) as e:
        log.error(f"[red]Could not read file {path}: {e}[/red]")
        return []


def build_inputs(
    urls: list[str],
    playlists: list[str],
    csv_files: list[Path],
    expanders: list[PlaylistExpander],
) -> list[BatchInput]:
    """
    Turns command-line arguments into batch inputs.

    Positional arguments may be track URLs, playlist URLs, free-text search
    queries, CSV files or text files with one URL per line.
    """
    expanded: list[str] = []
    inputs: list[BatchInput] = []
    for source in urls:
        path = Path(source)
        if path.suffix.lower() == ".csv" and path.is_file():
            inputs.append(CsvImport(path))
        elif path.is_file():
            log.info(f"Reading URLs from file: [dim]{source}[/dim]")
            expanded.extend(_read_url_file(path))
        else:
            expanded.append(source)

    unique = list(dict.fromkeys(expanded))
    if len(unique) < len(expanded):
        log.info(f"Removed {len(expanded) - len(unique)} duplicate URLs.")

    for source in unique:
        if any(expander.handles(source) for expander in expanders):
            inputs.append(PlaylistReference(source))
        else:
            inputs.append(TrackRequest(source=source))
    inputs.extend(PlaylistReference(url) for url in dict.fromkeys(playlists))
    inputs.extend(CsvImport(path) for path in csv_files)
    return inputs


@app.command(name="download")
def download_command(
    ctx: typer.Context,
    urls: Optional[list[str]] = typer.Argument(  # noqa: B008
        None, help="Track URLs, search queries, CSV files or files containing URLs."
    ),
    playlists: Optional[list[str]] = typer.Option(  # noqa: B008
        None, "--playlist", "-p", help="Playlist or album URL to expand (repeatable)."
    ),
    csv_files: Optional[list[Path]] = typer.Option(  # noqa: B008
        None, "--csv", help="CSV file with one track per row (repeatable)."
    ),
    workers: Optional[int] = typer.Option(
        None, "-w", "--workers", help="Number of simultaneous jobs (default 3)."
    ),
    audio_format: Optional[str] = typer.Option(
        None, "-f", "--format", help="Target format: mp3, m4a, opus, ogg, flac or wav."
    ),
    bitrate: Optional[int] = typer.Option(
        None, "-b", "--bitrate", help="Target bitrate in kbps for lossy formats."
    ),
    output_dir: Optional[Path] = typer.Option(
        None, "-o", "--output", help="Directory the finished files are written to."
    ),
    template: Optional[str] = typer.Option(
        None, "--template", help="File name template, e.g. '{artist} - {title}.{ext}'."
    ),
    no_lyrics: bool = typer.Option(False, "--no-lyrics", help="Do not fetch or embed lyrics."),
    no_cover: bool = typer.Option(False, "--no-cover", help="Do not embed cover art."),
    no_sponsorblock: bool = typer.Option(
        False, "--no-sponsorblock", help="Do not cut SponsorBlock segments."
    ),
    log_dir: Optional[Path] = typer.Option(
        None, "--log-dir", help="Write JSON-lines event logs to this directory."
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help=f"Config file (default {DEFAULT_CONFIG_PATH})."
    ),
):
    """Download tracks, playlists and CSV imports."""
    if not urls and not playlists and not csv_files:
        console.print(
            "[red]✗ Nothing to download.[/red] "
            "Use: [cyan]tunefetch download <URL>[/cyan], [cyan]--playlist[/cyan] or [cyan]--csv[/cyan]"
        )
        raise typer.Exit(code=1)

    cli_options = {
        "concurrency_limit": workers,
        "default_format": audio_format,
        "default_bitrate": bitrate,
        "output_dir": output_dir,
        "output_template": template,
        "download_lyrics": False if no_lyrics else None,
        "download_cover": False if no_cover else None,
        "sponsorblock_enabled": False if no_sponsorblock else None,
    }
    config = ConfigManager(config_path).load_config(cli_options)
    verbose = (ctx.obj or {}).get("verbose", 0)

    result = asyncio.run(
        _download_async(config, urls or [], playlists or [], csv_files or [], log_dir)
    )

    print_summary_panel(result, console)
    if verbose:
        print_job_warnings(result, console)
    if result.failed:
        raise typer.Exit(code=1)


async def _download_async(
    config: DownloadConfig,
    urls: list[str],
    playlists: list[str],
    csv_files: list[Path],
    log_dir: Optional[Path],
):
    base_logger, job_logger, session_logger = create_structured_logger(log_dir)
    pipeline = build_pipeline(config)
    try:
        inputs = build_inputs(urls, playlists, csv_files, list(pipeline.expanders))
        session_logger.session_started(
            total_inputs=len(inputs),
            target=str(config.default_target),
            max_workers=config.concurrency_limit,
        )
        console.print("[bold cyan]🎵 Starting download session...[/bold cyan]")
        async with ProgressManager(console) as progress:
            scheduler = BatchScheduler(pipeline, observers=[progress, job_logger])
            result = await scheduler.run(inputs)
        session_logger.session_completed(result)
        if base_logger.path is not None:
            log.info(f"Event log written to [dim]{base_logger.path}[/dim]")
        return result
    finally:
        await pipeline.close()
        base_logger.close()


@app.command()
def validate(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help=f"Config file (default {DEFAULT_CONFIG_PATH})."
    ),
):
    """Validate the configuration file and show the effective settings."""
    try:
        config = ConfigManager(config_path).load_config()
    except TuneFetchError as e:
        console.print(f"[red]✗ Configuration is invalid: {e}[/red]")
        raise typer.Exit(code=1) from e
    print_validation_table(config, console)
