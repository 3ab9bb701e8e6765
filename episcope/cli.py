"""Command-line interface for Episcope.

Provides a thin wrapper around the Episcope API for command-line usage.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from episcope.config.models import EpiscopeConfig
from episcope.core.exceptions import EpiscopeError

app = typer.Typer(
    name="episcope",
    help="Episcope - Episode inspection and analytics for LeRobot datasets",
    add_completion=False,
)
console = Console()

CONFIG_OPTION_HELP = "YAML config file (defaults to EPISCOPE_* environment)"


def _load_config(config_file: Path | None) -> EpiscopeConfig:
    if config_file is None:
        return EpiscopeConfig.from_env()
    if not config_file.exists():
        console.print(f"[red]Error:[/red] Config file not found: {config_file}")
        raise typer.Exit(1)
    return EpiscopeConfig.from_yaml(config_file)


def _fail(e: Exception) -> NoReturn:
    console.print(f"[red]Error:[/red] {e}")
    raise typer.Exit(1)


@app.command("version")
def version_cmd() -> None:
    """Show Episcope version."""
    from episcope import __version__

    console.print(f"Episcope v{__version__}")


@app.command("info")
def info_cmd(
    dataset: str = typer.Argument(..., help="Local path, hf:// URL or repo id"),
    output: str = typer.Option("text", "--output", "-o", help="Output format: text, json"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
) -> None:
    """Show headline facts about a dataset.

    Examples:
        episcope info lerobot/pusht
        episcope info ./my_dataset --output json
    """
    from episcope.resolve import EpisodeResolver

    resolver = EpisodeResolver(_load_config(config_file))
    try:
        with console.status("[bold green]Reading dataset metadata..."):
            summary = resolver.dataset_summary(dataset)
    except (EpiscopeError, ValueError) as e:
        _fail(e)

    if output == "json":
        console.print_json(json.dumps(summary.to_dict()))
        return

    table = Table(title=f"Dataset: {summary.dataset_id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Version", summary.version)
    table.add_row("FPS", f"{summary.fps:g}")
    table.add_row("Episodes", str(summary.total_episodes))
    table.add_row("Frames", str(summary.total_frames))
    table.add_row("Tasks", str(summary.total_tasks))
    table.add_row("Robot", summary.robot_type or "-")
    table.add_row("Size", f"{summary.dataset_size_mb:.1f} MB")
    console.print(table)

    if summary.cameras:
        cameras = Table(title="Cameras")
        cameras.add_column("Name", style="cyan")
        cameras.add_column("Resolution", justify="right")
        for camera in summary.cameras:
            cameras.add_row(camera.name, f"{camera.width}x{camera.height}")
        console.print(cameras)


@app.command("episode")
def episode_cmd(
    dataset: str = typer.Argument(..., help="Local path, hf:// URL or repo id"),
    episode_index: int = typer.Argument(..., help="Episode index"),
    output: str = typer.Option("text", "--output", "-o", help="Output format: text, json"),
    insights: bool = typer.Option(
        False, "--insights", "-i", help="Also run single-episode analytics"
    ),
    config_file: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
) -> None:
    """Locate one episode and show its series groups.

    Examples:
        episcope episode lerobot/pusht 3
        episcope episode ./my_dataset 0 --insights
    """
    from episcope.analytics import CrossEpisodeAnalyzer
    from episcope.charts import column_min_max, group_series
    from episcope.resolve import EpisodeResolver

    resolver = EpisodeResolver(_load_config(config_file))
    try:
        with console.status(f"[bold green]Resolving episode {episode_index}..."):
            location, record = resolver.resolve_episode(dataset, episode_index)
            descriptor = resolver.load_descriptor(dataset)
    except (EpiscopeError, ValueError) as e:
        _fail(e)

    groups = group_series(record)
    ranges = column_min_max(groups)

    if output == "json":
        payload = {
            "location": location.to_dict(),
            "record": record.to_dict(),
            "groups": [group.series for group in groups],
            "column_min_max": {k: list(v) for k, v in ranges.items()},
        }
        console.print_json(json.dumps(payload))
        return

    console.print(f"[bold]Episode {location.episode_index}[/bold] of {location.dataset_id}")
    console.print(f"  Data file: {location.data_path}")
    frames = location.length or record.num_frames
    console.print(f"  Rows: {location.from_index}..{location.to_index} ({frames} frames)")
    console.print(f"  Duration: {record.duration:.2f}s")
    console.print(f"  Task: {record.task or '-'}")
    for video in location.videos:
        end = f"{video.end:.2f}s" if video.end is not None else "end of file"
        console.print(f"  Video [cyan]{video.video_key}[/cyan]: {video.url}")
        console.print(f"    from {video.start:.2f}s to {end}")
    if record.ignored_columns:
        console.print(f"  [dim]Ignored: {', '.join(record.ignored_columns)}[/dim]")
    console.print()

    for i, group in enumerate(groups):
        table = Table(title=f"Group {i + 1}")
        table.add_column("Series", style="cyan")
        table.add_column("Min", justify="right")
        table.add_column("Max", justify="right")
        for name in group.series:
            lo, hi = ranges.get(name, (None, None))
            table.add_row(
                name,
                "-" if lo is None else f"{lo:.3f}",
                "-" if hi is None else f"{hi:.3f}",
            )
        console.print(table)

    if insights:
        analyzer = CrossEpisodeAnalyzer(fps=descriptor.fps)
        report = analyzer.analyze_record(record, dataset_id=descriptor.dataset_id)
        _print_report(report)


@app.command("lengths")
def lengths_cmd(
    dataset: str = typer.Argument(..., help="Local path, hf:// URL or repo id"),
    min_seconds: float | None = typer.Option(
        None, "--min", help="Flag episodes shorter than this many seconds"
    ),
    max_seconds: float | None = typer.Option(
        None, "--max", help="Flag episodes longer than this many seconds"
    ),
    config_file: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
) -> None:
    """Show episode-length statistics from episode metadata.

    Examples:
        episcope lengths lerobot/pusht
        episcope lengths ./my_dataset --min 2.0 --max 30
    """
    from episcope.export import episodes_outside_range, format_episode_ids
    from episcope.resolve import EpisodeResolver
    from episcope.stats.models import EpisodeLength

    resolver = EpisodeResolver(_load_config(config_file))
    try:
        with console.status("[bold green]Scanning episode metadata..."):
            stats = resolver.length_stats(dataset)
    except (EpiscopeError, ValueError) as e:
        _fail(e)

    if stats is None:
        console.print("[yellow]No episode length metadata found.[/yellow]")
        return

    table = Table(title="Episode Lengths", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Episodes", str(stats.num_episodes))
    table.add_row("Mean", f"{stats.mean_seconds:.2f}s")
    table.add_row("Median", f"{stats.median_seconds:.2f}s")
    table.add_row("Std", f"{stats.std_seconds:.2f}s")
    table.add_row("Min", f"{stats.min_seconds:.2f}s")
    table.add_row("Max", f"{stats.max_seconds:.2f}s")
    table.add_row("Shortest", ", ".join(f"ep {e.episode_index}" for e in stats.shortest))
    table.add_row("Longest", ", ".join(f"ep {e.episode_index}" for e in stats.longest))
    console.print(table)

    histogram = Table(title="Histogram")
    histogram.add_column("Bin", style="cyan")
    histogram.add_column("Count", justify="right")
    histogram.add_column("")
    peak = max((b.count for b in stats.histogram), default=1) or 1
    for b in stats.histogram:
        histogram.add_row(b.label, str(b.count), "█" * max(0, round(30 * b.count / peak)))
    console.print(histogram)

    if min_seconds is not None or max_seconds is not None:
        lengths = resolver.episode_lengths(dataset)
        descriptor = resolver.load_descriptor(dataset)
        entries = [
            EpisodeLength(ep, frames, round(frames / (descriptor.fps or 1.0), 2))
            for ep, frames in lengths
        ]
        outside = episodes_outside_range(entries, min_seconds, max_seconds)
        console.print(f"{len(outside)} episode(s) outside range: {format_episode_ids(outside) or '-'}")


@app.command("analyze")
def analyze_cmd(
    dataset: str = typer.Argument(..., help="Local path, hf:// URL or repo id"),
    sample: int | None = typer.Option(
        None, "--sample", "-s", help="Maximum episodes to sample (10-500)"
    ),
    output: Path | None = typer.Option(None, "--output", "-o", help="Save report to JSON file"),
    export: Path | None = typer.Option(
        None, "--export", "-e", help="Write flagged episode ids (.csv for the full table)"
    ),
    flag: list[int] | None = typer.Option(
        None, "--flag", "-f", help="Additional episode ids to include in the export"
    ),
    config_file: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
) -> None:
    """Run cross-episode analytics over a sample of episodes.

    Examples:
        episcope analyze lerobot/pusht
        episcope analyze ./my_dataset --sample 50 --output report.json
        episcope analyze lerobot/pusht --export flagged.txt --flag 12
    """
    from episcope.analytics import AnalyticsConfig, CrossEpisodeAnalyzer
    from episcope.export import write_flagged
    from episcope.resolve import EpisodeResolver

    config = _load_config(config_file)
    if sample is not None:
        config = dataclasses.replace(config, sample_cap=sample)

    resolver = EpisodeResolver(config)
    try:
        with console.status("[bold green]Sampling episodes...") as status:
            descriptor = resolver.load_descriptor(dataset)
            trajectories = resolver.sample(dataset)
            status.update(f"[bold green]Analyzing {len(trajectories)} episodes...")
            analyzer = CrossEpisodeAnalyzer(
                AnalyticsConfig(fps=descriptor.fps), max_workers=config.num_workers
            )
            report = analyzer.analyze(trajectories, dataset_id=descriptor.dataset_id)
    except (EpiscopeError, ValueError) as e:
        _fail(e)

    console.print(
        f"[cyan]Analyzed[/cyan] {report.num_episodes} episodes of {report.dataset_id} "
        f"[dim]({descriptor.version}, {descriptor.fps:g} fps)[/dim]"
    )
    _print_report(report)

    if output:
        report.to_json(output)
        console.print(f"[green]Report saved to:[/green] {output}")

    if export:
        ids = write_flagged(export, report, extra=flag or ())
        console.print(f"[green]Exported {len(ids)} flagged episodes to:[/green] {export}")


def _print_report(report) -> None:
    from episcope.analytics import ANALYTIC_KINDS, NotComputed

    table = Table(title="Insights")
    table.add_column("Analytic", style="cyan")
    table.add_column("Result")

    for kind in ANALYTIC_KINDS:
        if kind not in report.results:
            continue
        result = report.results[kind]
        if isinstance(result, NotComputed):
            table.add_row(kind, f"[dim]not computed: {result.reason}[/dim]")
        else:
            table.add_row(kind, _summarize(kind, result))

    console.print(table)


def _summarize(kind: str, result) -> str:
    if kind == "autocorrelation":
        chunk = result.suggested_chunk
        return f"suggested chunk length: {chunk if chunk is not None else 'n/a'} frames"
    if kind == "velocity":
        if result.verdict is None:
            return "no active dimensions"
        return f"{result.verdict} ({result.tip})"
    if kind == "variance_heatmap":
        return f"{len(result.time_bins)} time bins x {len(result.action_names)} dims"
    if kind == "multimodality":
        return f"{result.verdict} ({result.bimodal_fraction:.0%} bimodal cells)"
    if kind == "alignment":
        seconds = result.control_delay_seconds
        delay = f" ({seconds * 1000:.0f} ms)" if seconds is not None else ""
        return f"control delay: {result.control_delay} frames{delay}"
    if kind == "speed":
        return f"{result.verdict}, CV {result.cv:.2f} ({result.tip})"
    if kind == "trajectory_clusters":
        return (
            f"{result.num_clusters} clusters (silhouette {result.silhouette:.2f}), "
            f"{len(result.outliers)} outliers"
        )
    return ""


@app.command("config")
def config_cmd(
    template: Path | None = typer.Option(
        None, "--template", "-t", help="Write a YAML config template to this path"
    ),
) -> None:
    """Show the effective configuration or write a template.

    Examples:
        episcope config
        episcope config --template episcope.yaml
    """
    if template is not None:
        EpiscopeConfig().to_yaml(template)
        console.print(f"[green]Config template written to:[/green] {template}")
        return

    console.print_json(json.dumps(EpiscopeConfig.from_env().to_dict()))


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Episcope - Episode inspection and analytics for LeRobot datasets.

    Locate episodes across LeRobot v2.x and v3.0 layouts, chart their
    series, and compute cross-episode training insights.
    """
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, rich_tracebacks=True)],
        )


if __name__ == "__main__":
    app()
