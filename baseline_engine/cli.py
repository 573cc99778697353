"""CLI entry point for the baseline engine."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from baseline_engine.baseline.differ import VisualDiffer
from baseline_engine.engine import BaselineEngine
from baseline_engine.errors import BaselineNotFoundError, ImageDecodeError
from baseline_engine.models.baseline import BaselineUpdateRequest, ScreenshotUpdate
from baseline_engine.models.config import DiffConfig, EngineConfig, ViewportConfig

console = Console()

DEFAULT_CONFIG = "baseline-config.json"


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def load_config(path: str) -> EngineConfig:
    try:
        return EngineConfig.load(path)
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {path}[/red]")
        console.print("Run 'baseline-engine init' to create a default config.")
        sys.exit(1)


def parse_viewport(value: str) -> ViewportConfig:
    try:
        return ViewportConfig.parse(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from None


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Visual baseline capture and comparison"""
    setup_logging(verbose)


@cli.command()
@click.option("--reference-url", "-u", default="", help="Deployment baselines are captured from")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def init(reference_url: str, config: str) -> None:
    """Create a default configuration file."""
    config_path = Path(config)
    if config_path.exists():
        if not click.confirm(f"{config} already exists. Overwrite?"):
            return

    cfg = EngineConfig(reference_url=reference_url or None)
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    if not cfg.reference_url:
        console.print("[yellow]No reference URL set; baseline capture stays disabled.[/yellow]")


@cli.command()
@click.option("--route", "-r", "routes", multiple=True, help="Route to baseline (default: manifest)")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def ensure(routes: tuple[str, ...], config: str) -> None:
    """Create baselines that do not exist yet."""
    engine = BaselineEngine(load_config(config))
    engine.ensure(routes)


@cli.command()
@click.option("--route", "-r", "routes", multiple=True, help="Route to capture (default: manifest)")
@click.option("--missing-only", is_flag=True, help="Only capture routes without any baseline")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def capture(routes: tuple[str, ...], missing_only: bool, config: str) -> None:
    """Capture baselines from the reference deployment."""
    engine = BaselineEngine(load_config(config))
    results = engine.capture(routes, missing_only=missing_only)
    console.print(f"[green]Captured {len(results)} baselines[/green]")
    for result in results:
        console.print(f"  {result.key}")


@cli.command()
@click.argument("route")
@click.argument("screenshot", type=click.Path(exists=True, dir_okay=False))
@click.option("--viewport", "-w", default="1920x1080", help="Viewport as WIDTHxHEIGHT")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def compare(route: str, screenshot: str, viewport: str, config: str) -> None:
    """Compare a screenshot with the stored baseline for ROUTE."""
    engine = BaselineEngine(load_config(config))
    outcome = engine.compare_file(route, parse_viewport(viewport), screenshot)

    table = Table(title=f"{route} @ {viewport}")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("State", outcome.state.value)
    table.add_row("Difference", f"{outcome.diff_percentage:.2f}%")
    table.add_row(
        "Result",
        "[red]changed[/red]" if outcome.has_difference else "[green]unchanged[/green]",
    )
    console.print(table)

    if outcome.has_difference:
        sys.exit(1)


@cli.command()
@click.argument("baseline", type=click.Path(exists=True, dir_okay=False))
@click.argument("current", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", default=None, help="Write the diff image here")
@click.option("--threshold", "-t", type=float, default=None, help="Per-pixel colour tolerance (0-1)")
def diff(baseline: str, current: str, output: str | None, threshold: float | None) -> None:
    """Diff two image files directly."""
    differ = VisualDiffer(DiffConfig(threshold=threshold) if threshold is not None else None)
    try:
        result = differ.diff_images(Path(baseline).read_bytes(), Path(current).read_bytes())
    except ImageDecodeError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    console.print(
        f"{result.pixels_diff} of {result.total_pixels} pixels differ "
        f"([bold]{result.percentage:.2f}%[/bold])"
    )
    if result.regions:
        table = Table(title="Diff regions")
        for col in ("x", "y", "width", "height", "type"):
            table.add_column(col)
        for region in result.regions:
            table.add_row(str(region.x), str(region.y), str(region.width), str(region.height), region.type)
        console.print(table)
    if output and result.diff_image:
        Path(output).write_bytes(result.diff_image)
        console.print(f"Diff image: [blue]{output}[/blue]")


@cli.command()
@click.argument("route")
@click.argument("screenshot", type=click.Path(exists=True, dir_okay=False))
@click.option("--viewport", "-w", default="1920x1080", help="Viewport as WIDTHxHEIGHT")
@click.option("--commit", required=True, help="Commit the screenshot was taken at")
@click.option("--author", default="", help="Commit author")
@click.option("--pr", "pr_number", type=int, default=None, help="Pull request number")
@click.option("--tag", "tags", multiple=True, help="Extra tag for the baseline")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def record(
    route: str, screenshot: str, viewport: str, commit: str, author: str,
    pr_number: int | None, tags: tuple[str, ...], config: str,
) -> None:
    """Record a screenshot as a new versioned baseline."""
    engine = BaselineEngine(load_config(config))
    request = BaselineUpdateRequest(
        pr_number=pr_number,
        screenshots=[ScreenshotUpdate(
            route=route,
            viewport=parse_viewport(viewport).key,
            buffer=Path(screenshot).read_bytes(),
            tags=list(tags),
        )],
    )
    saved = engine.manager.update_baselines(request, engine.repository_ref(), commit=commit, author=author)
    if not saved:
        console.print("[red]Baseline was not recorded[/red]")
        sys.exit(1)
    console.print(f"[green]Recorded baseline {saved[0].id}[/green]")


@cli.command("list")
@click.option("--route", "-r", default=None, help="Filter by route")
@click.option("--viewport", "-w", default=None, help="Filter by viewport")
@click.option("--tag", "tags", multiple=True, help="Filter by tag")
@click.option("--limit", "-n", default=10, help="Maximum rows")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def list_baselines(route: str | None, viewport: str | None, tags: tuple[str, ...], limit: int, config: str) -> None:
    """List versioned baselines, newest first."""
    engine = BaselineEngine(load_config(config))
    baselines = engine.list_baselines(route=route, viewport=viewport, tags=list(tags), limit=limit)
    if not baselines:
        console.print("[yellow]No baselines found[/yellow]")
        return

    table = Table(title="Baselines")
    for col in ("ID", "Route", "Viewport", "Branch", "Commit", "Tags"):
        table.add_column(col)
    for b in baselines:
        table.add_row(
            b.id, b.route, b.viewport, b.repository.branch,
            b.metadata.commit[:8], ", ".join(b.metadata.tags or []),
        )
    console.print(table)


@cli.command()
@click.argument("route")
@click.option("--viewport", "-w", default="1920x1080", help="Viewport as WIDTHxHEIGHT")
@click.option("--commit", default=None, help="Promote the baseline from this commit")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def promote(route: str, viewport: str, commit: str | None, config: str) -> None:
    """Tag the latest baseline for ROUTE as stable."""
    engine = BaselineEngine(load_config(config))
    try:
        baseline = engine.promote(route, parse_viewport(viewport).key, commit=commit)
    except BaselineNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]Promoted {baseline.id} to stable[/green]")


@cli.command()
@click.option("--keep-days", default=30, help="Keep baselines newer than this")
@click.option("--keep-count", default=10, help="Keep this many per route and viewport")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def cleanup(keep_days: int, keep_count: int, config: str) -> None:
    """Delete old versioned baselines."""
    engine = BaselineEngine(load_config(config))
    deleted = engine.cleanup(keep_days=keep_days, keep_count=keep_count)
    console.print(f"[green]Deleted {deleted} old baselines[/green]")


if __name__ == "__main__":
    cli()
