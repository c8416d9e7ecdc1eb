"""Pipeline orchestrator: discover, run, mark, report."""

from __future__ import annotations

import importlib
import importlib.util
import logging
from pathlib import Path

from emusnap.discovery import find_all_in_directory
from emusnap.errors import ConfigurationError
from emusnap.formatters.base import NullSink, ProgressSink
from emusnap.models.candidate import TestCandidate
from emusnap.models.config import RunnerOptions
from emusnap.models.test_result import RunSummary, TestRunResult
from emusnap.reporter.regression_detector import mark_new_results
from emusnap.reporter.reporter import Reporter, load_previous_summary
from emusnap.runner.isolation import EmulateFn
from emusnap.runner.runner import Runner

logger = logging.getLogger(__name__)


def load_emulator(reference: str) -> EmulateFn:
    """Resolve ``"package.module:function"`` or ``"path/to/file.py:function"``."""
    module_ref, sep, attr_path = reference.rpartition(":")
    if not sep or not module_ref or not attr_path:
        raise ConfigurationError(f"Emulator must look like 'module:function', got '{reference}'")

    try:
        if module_ref.endswith(".py"):
            module_path = Path(module_ref)
            if not module_path.is_file():
                raise ConfigurationError(f"Emulator module not found: {module_path}")
            spec = importlib.util.spec_from_file_location(f"_emusnap_emulator_{module_path.stem}", module_path)
            if spec is None or spec.loader is None:
                raise ConfigurationError(f"Failed to load emulator from {module_path}")
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
        else:
            module = importlib.import_module(module_ref)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import emulator module '{module_ref}': {e}") from e

    target = module
    for name in attr_path.split("."):
        try:
            target = getattr(target, name)
        except AttributeError:
            raise ConfigurationError(f"'{module_ref}' has no attribute '{attr_path}'") from None
    if not callable(target):
        raise ConfigurationError(f"Emulator '{reference}' is not callable")
    return target


class _DeferredFinishSink:
    """Forwards live events; holds back ``on_finish`` until results are marked."""

    def __init__(self, inner: ProgressSink):
        self.inner = inner

    def on_start(self, total: int) -> None:
        self.inner.on_start(total)

    def on_candidate_start(self, candidate: TestCandidate) -> None:
        handler = getattr(self.inner, "on_candidate_start", None)
        if handler is not None:
            handler(candidate)

    def on_candidate_done(self, result: TestRunResult) -> None:
        self.inner.on_candidate_done(result)

    def on_finish(self, summary: RunSummary) -> None:
        pass


class Orchestrator:
    """Coordinates discovery, the test run and reporting."""

    def __init__(self, options: RunnerOptions, sink: ProgressSink | None = None):
        self.options = options
        self.sink = sink or NullSink()
        self.runner: Runner | None = None

    def discover(self) -> list[TestCandidate]:
        if self.options.rom_directory is None:
            raise ConfigurationError("No ROM directory configured")
        if not Path(self.options.rom_directory).is_dir():
            raise ConfigurationError(f"ROM directory not found: {self.options.rom_directory}")
        candidates = find_all_in_directory(self.options.rom_directory, self.options.rom_extension)
        logger.info("Discovered %d tests in %s", len(candidates), self.options.rom_directory)
        return candidates

    def run(
        self,
        candidates: list[TestCandidate] | None = None,
        emulate: EmulateFn | None = None,
        handle_interrupts: bool = False,
    ) -> tuple[RunSummary, dict[str, str]]:
        """Run the whole pipeline. Returns the summary and the written report paths."""
        if emulate is None:
            if not self.options.emulator:
                raise ConfigurationError("No emulator configured")
            emulate = load_emulator(self.options.emulator)
        if candidates is None:
            candidates = self.discover()

        report_dir = Path(self.options.report_output_dir)
        self.runner = Runner(self.options, sink=_DeferredFinishSink(self.sink))
        summary = self.runner.run(candidates, emulate, handle_interrupts=handle_interrupts)

        previous = load_previous_summary(report_dir, summary.run_id)
        if previous is not None:
            logger.debug("Comparing against previous run %s", previous.run_id)
        summary = mark_new_results(previous, summary)

        reports = Reporter(self.options).generate_reports(summary, previous_run=previous, output_dir=report_dir)
        self.sink.on_finish(summary)
        return summary, reports
