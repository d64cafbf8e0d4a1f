"""
Functions for formatting and displaying data in the console using Rich.
"""

from typing import Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tunefetch.models.config import DownloadConfig
from tunefetch.models.job import BatchResult
from tunefetch.utils.formatting import format_duration, format_size, truncate


def format_error_with_suggestions(error: Exception, context: Optional[dict] = None) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Check the values in your config.ini.",
            "• Run `tunefetch validate` to see which settings are loaded.",
        ],
        "UnsupportedSource": [
            "• Spotify links need `spotify_client_id` and `spotify_client_secret`.",
            "• Make sure yt-dlp is installed and on your PATH.",
        ],
        "ProcessFailure": [
            "• Make sure ffmpeg, ffprobe and yt-dlp are installed.",
            "• Point `ffmpeg_bin` / `yt_dlp_bin` at the binaries in the config.",
        ],
        "RateLimited": [
            "• A provider is rate limiting requests.",
            "• Reduce `--workers` or lower `provider_concurrency`.",
        ],
        "ClientResponseError": [
            "• A network connection issue occurred.",
            "• The remote service might be temporarily unavailable.",
        ],
    }

    suggestions = suggestions_map.get(error_type, ["• Run the command with -vv for detailed logs."])

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


def print_validation_table(config: DownloadConfig, console: Optional[Console] = None):
    """Displays a summary of the effective settings."""
    console = console or Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    def enabled(flag: bool) -> str:
        return "✓ Enabled" if flag else "✗ Disabled"

    table.add_row("Default Format:", str(config.default_target))
    table.add_row("Workers:", str(config.concurrency_limit))
    table.add_row("Max Retries:", str(config.max_retries))
    table.add_row("Output Directory:", f"[dim]{config.output_dir}[/dim]")
    table.add_row("Output Template:", f"[dim]{config.output_template}[/dim]")
    table.add_row("Embed Metadata:", enabled(config.embed_metadata))
    table.add_row("Lyrics:", enabled(config.download_lyrics))
    table.add_row("Cover Art:", enabled(config.download_cover))
    table.add_row("SponsorBlock:", enabled(config.sponsorblock_enabled))
    table.add_row("Lyrics Providers:", ", ".join(config.lyrics_providers) or "-")
    table.add_row("Tag Providers:", ", ".join(config.tag_providers) or "-")
    table.add_row(
        "Spotify:",
        "[green]credentials set[/green]"
        if config.has_spotify_credentials
        else "[yellow]no credentials[/yellow]",
    )

    console.print(
        Panel(
            table,
            title="[bold green]✓ Validated Settings[/bold green]",
            border_style="green",
        )
    )


def print_failure_table(result: BatchResult, console: Optional[Console] = None):
    """Lists failed jobs and inputs that never became jobs."""
    if not result.failed and not result.expansion_failures:
        return
    console = console or Console()
    table = Table(title="Failures", box=box.ROUNDED, title_style="bold red")
    table.add_column("Source", style="cyan", overflow="fold")
    table.add_column("Reason", style="red")
    table.add_column("Retries", justify="right", style="dim")

    for outcome in result.failed:
        table.add_row(
            truncate(outcome.request.label, 60), outcome.reason or "-", str(outcome.retries)
        )
    for failure in result.expansion_failures:
        table.add_row(truncate(failure.origin, 60), failure.reason, "-")
    console.print(table)


def print_summary_panel(result: BatchResult, console: Optional[Console] = None):
    """Displays the final summary of a batch run."""
    console = console or Console()
    summary = result.summary()

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=20)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row("✓ Completed:", f"[bold green]{summary['completed']}[/bold green]")
    if summary["failed"]:
        stats_table.add_row("✗ Failed:", f"[bold red]{summary['failed']}[/bold red]")
    if summary["cancelled"]:
        stats_table.add_row("○ Cancelled:", f"[yellow]{summary['cancelled']}[/yellow]")
    if summary["expansion_failures"]:
        stats_table.add_row(
            "⚠ Skipped Inputs:", f"[yellow]{summary['expansion_failures']}[/yellow]"
        )
    if summary["retries"]:
        stats_table.add_row("Retries:", f"[magenta]{summary['retries']}[/magenta]")

    stats_table.add_row("", "")

    total_size = 0
    for outcome in result.completed:
        if outcome.output_path is not None and outcome.output_path.exists():
            total_size += outcome.output_path.stat().st_size
    stats_table.add_row("Total Size:", f"[cyan]{format_size(total_size)}[/cyan]")
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(result.duration)}[/blue]")
    stats_table.add_row("Peak Concurrent:", f"[green]{result.peak_active}[/green]")

    if result.completed and result.duration > 0:
        tracks_per_minute = len(result.completed) / result.duration * 60
        stats_table.add_row("Throughput:", f"[cyan]{tracks_per_minute:.1f} tracks/min[/cyan]")

    warnings = sum(len(o.warnings) for o in result.outcomes)
    if warnings:
        stats_table.add_row("Warnings:", f"[yellow]{warnings}[/yellow] (run with -v to see them)")

    if summary["failed"] or summary["cancelled"]:
        title, border_color = "🎵 [bold]Batch Finished With Problems[/bold]", "yellow"
    else:
        title, border_color = "🎵 [bold]Download Complete![/bold]", "green"

    console.print()
    console.print(
        Panel(
            stats_table,
            title=title,
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    print_failure_table(result, console)
    console.print()


def print_job_warnings(result: BatchResult, console: Optional[Console] = None):
    """Prints the degradation warnings collected by each job."""
    console = console or Console()
    for outcome in result.outcomes:
        if not outcome.warnings:
            continue
        console.print(f"[bold yellow]⚠ {escape(outcome.request.label)}[/bold yellow]")
        for warning in outcome.warnings:
            console.print(f"  [dim]• {escape(warning)}[/dim]")
