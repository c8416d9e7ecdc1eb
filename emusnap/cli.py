"""CLI entry point for the snapshot harness."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from PIL import Image, UnidentifiedImageError
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from emusnap.comparator.comparator import compare, render_diff_image
from emusnap.errors import ConfigurationError, FrameConstructionError
from emusnap.formatters.console import SimpleConsoleFormatter, status_style
from emusnap.models.config import RunMode, RunnerOptions, ToleranceConfig
from emusnap.models.frame import FrameBuffer
from emusnap.orchestrator import Orchestrator

console = Console()

EXIT_FAILURES = 1
EXIT_CONFIG = 2


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Snapshot tests for emulators: compare rendered frames against reference images."""
    setup_logging(verbose)


def _load_options(config: str) -> RunnerOptions:
    path = Path(config)
    if not path.exists():
        return RunnerOptions()
    try:
        return RunnerOptions.load(path)
    except (ValidationError, ValueError) as e:
        console.print(f"[red]Invalid config {config}:[/red] {e}")
        sys.exit(EXIT_CONFIG)


@cli.command()
@click.option("--config", "-c", default="emusnap.json", help="Config file path")
@click.option("--roms", "-r", type=click.Path(file_okay=False), help="Directory containing test ROMs")
@click.option("--extension", "-e", help="ROM file extension, e.g. .gb")
@click.option("--emulator", "-m", help="Emulation callback as 'module:function' or 'file.py:function'")
@click.option("--snapshots", "-s", type=click.Path(file_okay=False), help="Snapshot directory")
@click.option("--update", is_flag=True, help="Write produced frames as the new baselines")
@click.option("--workers", "-j", type=int, help="Number of parallel workers")
@click.option("--timeout", "-t", type=float, help="Per-test timeout in seconds")
@click.option("--allow-missing", is_flag=True, help="Do not fail the run for tests without a baseline")
@click.option("--no-progress", is_flag=True, help="Disable the progress bar")
def run(
    config: str,
    roms: str | None,
    extension: str | None,
    emulator: str | None,
    snapshots: str | None,
    update: bool,
    workers: int | None,
    timeout: float | None,
    allow_missing: bool,
    no_progress: bool,
) -> None:
    """Run every discovered ROM through the emulator and check its snapshot."""
    options = _load_options(config)
    overrides = {
        "rom_directory": roms,
        "rom_extension": extension,
        "emulator": emulator,
        "snapshot_directory": snapshots,
        "worker_count": workers,
        "per_test_timeout_seconds": timeout,
    }
    data = options.model_dump()
    data.update({k: v for k, v in overrides.items() if v is not None})
    if update:
        data["mode"] = RunMode.UPDATE
    if allow_missing:
        data["treat_missing_baseline_as_failure"] = False
    try:
        options = RunnerOptions(**data)
    except ValidationError as e:
        console.print(f"[red]Invalid options:[/red] {e}")
        sys.exit(EXIT_CONFIG)

    formatter = SimpleConsoleFormatter(console=console, show_progress=not no_progress)
    orchestrator = Orchestrator(options, sink=formatter)
    try:
        summary, reports = orchestrator.run(handle_interrupts=True)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(EXIT_CONFIG)

    for fmt, path in reports.items():
        console.print(f"  {fmt.upper()} report: [blue]{path}[/blue]")

    if not summary.is_success(options.treat_missing_baseline_as_failure):
        sys.exit(EXIT_FAILURES)


@cli.command()
@click.argument("expected", type=click.Path(exists=True, dir_okay=False))
@click.argument("actual", type=click.Path(exists=True, dir_okay=False))
@click.option("--threshold", type=click.IntRange(0, 255), default=0, help="Per-channel threshold")
@click.option("--max-fraction", type=click.FloatRange(0.0, 1.0), default=0.0,
              help="Largest fraction of differing pixels that still passes")
@click.option("--ignore", "ignore", multiple=True, metavar="X,Y,W,H",
              help="Region to leave out of the comparison (repeatable)")
@click.option("--diff", "diff_path", type=click.Path(dir_okay=False), help="Write a diff image here")
def diff(
    expected: str,
    actual: str,
    threshold: int,
    max_fraction: float,
    ignore: tuple[str, ...],
    diff_path: str | None,
) -> None:
    """Compare two PNG images with the snapshot tolerance rules."""
    try:
        regions = []
        for region in ignore:
            x, y, w, h = (int(part) for part in region.split(","))
            regions.append({"x": x, "y": y, "width": w, "height": h})
        tolerance = ToleranceConfig(
            per_channel_threshold=threshold,
            max_differing_pixel_fraction=max_fraction,
            ignored_regions=regions,
        )
    except (ValueError, ValidationError) as e:
        console.print(f"[red]Invalid tolerance:[/red] {e}")
        sys.exit(EXIT_CONFIG)

    try:
        with Image.open(expected) as img:
            baseline = FrameBuffer.from_image(img)
        with Image.open(actual) as img:
            frame = FrameBuffer.from_image(img)
    except (OSError, UnidentifiedImageError, FrameConstructionError) as e:
        console.print(f"[red]Cannot read image:[/red] {e}")
        sys.exit(EXIT_CONFIG)

    outcome = compare(frame, baseline, tolerance)
    style = status_style(outcome.status)
    table = Table(title="Comparison")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Result", f"[{style}]{outcome.status.upper()}[/{style}]")
    if outcome.status == "dimension_mismatch":
        table.add_row("Expected", str(outcome.expected))
        table.add_row("Actual", str(outcome.actual))
    else:
        table.add_row("Differing pixels", f"{outcome.differing_pixel_count} / {outcome.compared_pixels}")
        table.add_row("Differing fraction", f"{outcome.differing_fraction:.4%}")
        if outcome.status == "failed":
            table.add_row("First difference", "({}, {})".format(*outcome.first_diff_coordinate))
    console.print(table)

    if diff_path and outcome.status != "dimension_mismatch":
        render_diff_image(frame, baseline, tolerance).save(diff_path, format="PNG")
        console.print(f"Diff image: [blue]{diff_path}[/blue]")

    if outcome.status != "passed":
        sys.exit(EXIT_FAILURES)


@cli.command()
@click.option("--config", "-c", default="emusnap.json", help="Config file path")
@click.option("--roms", "-r", prompt="ROM directory", help="Directory containing test ROMs")
@click.option("--emulator", "-m", prompt="Emulator callback (module:function)", help="Emulation callback")
def init(config: str, roms: str, emulator: str) -> None:
    """Create a default configuration file."""
    config_path = Path(config)
    if config_path.exists():
        if not click.confirm(f"{config} already exists. Overwrite?"):
            return

    try:
        options = RunnerOptions(rom_directory=roms, emulator=emulator)
    except ValidationError as e:
        console.print(f"[red]Invalid options:[/red] {e}")
        sys.exit(EXIT_CONFIG)
    options.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nRecord the first baselines with:")
    console.print("  [blue]emusnap run --update[/blue]")


if __name__ == "__main__":
    cli()
