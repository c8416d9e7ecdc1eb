"""Console formatter: live progress bar and a final pass/fail/error tally."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn

from emusnap.models.candidate import TestCandidate
from emusnap.models.test_result import RunSummary, TestRunResult

logger = logging.getLogger(__name__)

_STATUS_STYLES = {
    "passed": "green",
    "failed": "red",
    "dimension_mismatch": "red",
    "no_baseline": "yellow",
    "baseline_updated": "blue",
    "error": "bold red",
}


class SimpleConsoleFormatter:
    """Renders a progress bar while the run is live and a tally once it ends."""

    def __init__(self, console: Console | None = None, show_progress: bool = True):
        self.console = console or Console()
        self.show_progress = show_progress
        self._progress: Progress | None = None
        self._task_id = None
        self._running: list[str] = []

    def on_start(self, total: int) -> None:
        self.console.print(f"=== Running [green]{total}[/green] Snapshot Tests ===\n")
        if not self.show_progress:
            return
        self._progress = Progress(
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TextColumn("{task.description}"),
            console=self.console,
            transient=True,
        )
        self._task_id = self._progress.add_task("", total=total)
        self._progress.start()

    def on_candidate_start(self, candidate: TestCandidate) -> None:
        self._running.append(candidate.id)
        self._update_message()

    def on_candidate_done(self, result: TestRunResult) -> None:
        if result.candidate_id in self._running:
            self._running.remove(result.candidate_id)
        if self._progress is not None:
            self._progress.advance(self._task_id)
        self._update_message()

    def _update_message(self) -> None:
        if self._progress is None:
            return
        message = ", ".join(self._running[:3])
        if len(message) > 30:
            message = message[:30] + "..."
        self._progress.update(self._task_id, description=f"Running: {message}" if message else "")

    def on_finish(self, summary: RunSummary) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None

        errors = [r for r in summary.results if r.is_error]
        if errors:
            self.console.print("[white on red]== Found errors ==[/white on red]")
            for r in errors:
                self.console.print(f"= [red]{r.candidate_id}[/red] ({r.input_path}) =")
                self.console.print(f"Error ({r.outcome.kind}): {r.outcome.message}\n")

        failures = [r for r in summary.results if r.is_failure]
        if failures:
            self.console.print("[white on dark_cyan]== Found failures ==[/white on dark_cyan]\n")
            for r in failures:
                self.console.print(f"= [dark_cyan]{r.candidate_id}[/dark_cyan] ({r.input_path}) =")
                self.console.print(_describe_failure(r))
                for label, path in r.artifacts.items():
                    self.console.print(f"{label.capitalize()}: {path}")
                self.console.print()

        changed = [r for r in summary.results if r.changed]
        if changed:
            self.console.print("[white on purple]== Found changes ==[/white on purple]\n")
            for r in changed:
                self.console.print(f"= [purple]{r.candidate_id}[/purple] ({r.input_path}) =")
                self.console.print(f"Changed: {r.artifacts.get('changed', '')}\n")

        self.console.print(
            f"=== Report - Ran [green]{len(summary.results)}[/green] tests "
            f"in [magenta]{summary.duration_seconds:.2f}s[/magenta] "
            f"(out of [green]{summary.total_candidates}[/green]) ==="
        )
        newly_passing = sum(1 for r in summary.results if r.status == "passed" and r.is_new)
        new_fails = sum(1 for r in summary.results if (r.is_failure or r.is_error) and r.is_new)

        self._tally_line("Passed:", summary.passed, "green",
                         f"{newly_passing} newly passing" if newly_passing else "")
        self._tally_line("No baseline:", summary.no_baseline, "yellow",
                         f"{len(changed)} changed" if changed else "")
        self._tally_line("Updated:", summary.updated, "blue", "")
        self._tally_line("Failed:", summary.failed, "red",
                         f"{new_fails} new fails" if new_fails else "")
        self._tally_line("Died:", summary.errored, "red", "")
        if summary.cancelled:
            self.console.print(
                f"[yellow]Run cancelled: {summary.unresolved} test(s) not run[/yellow]"
            )

    def _tally_line(self, label: str, count: int, style: str, note: str) -> None:
        colour = style if count else "grey50"
        line = f"{label: <14} [{colour}]{count}[/{colour}]"
        if note:
            line += f" ({note})"
        self.console.print(line)


def _describe_failure(result: TestRunResult) -> str:
    outcome = result.outcome
    if outcome.status == "dimension_mismatch":
        return f"Dimension mismatch: expected {outcome.expected}, got {outcome.actual}"
    x, y = outcome.first_diff_coordinate
    return (
        f"{outcome.differing_pixel_count} of {outcome.compared_pixels} pixels differ "
        f"({outcome.differing_fraction:.2%}), first at ({x}, {y})"
    )


def status_style(status: str) -> str:
    return _STATUS_STYLES.get(status, "white")
