"""Report generation orchestration."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from emusnap.models.config import RunnerOptions
from emusnap.models.test_result import RunSummary

from .json_report import generate_json_report
from .regression_detector import Regression, detect_regressions

logger = logging.getLogger(__name__)


class Reporter:
    """Writes reports for a finished run."""

    def __init__(self, options: RunnerOptions):
        self.options = options

    def generate_reports(
        self,
        summary: RunSummary,
        previous_run: RunSummary | None = None,
        output_dir: Path | None = None,
    ) -> dict[str, str]:
        """Generate all configured report formats. Returns format -> file path."""
        out_dir = output_dir or Path(self.options.report_output_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        generated = {}
        logger.debug("Report output directory: %s", out_dir)

        regressions: list[Regression] = []
        if previous_run:
            logger.debug("Detecting regressions against %s...", previous_run.run_id)
            regressions = detect_regressions(previous_run, summary)

        if "json" in self.options.report_formats:
            path = out_dir / f"report_{summary.run_id}.json"
            generate_json_report(summary, regressions, path)
            generated["json"] = str(path)
            logger.info("JSON report: %s", path)

        return generated


def load_previous_summary(report_dir: Path, current_run_id: str) -> RunSummary | None:
    """Load the most recent earlier run from the JSON reports in ``report_dir``."""
    if not report_dir.exists():
        return None

    report_files = sorted(
        report_dir.glob("report_run_*.json"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
    for report_path in report_files:
        try:
            with open(report_path) as f:
                data = json.load(f)
            if data.get("run_id") == current_run_id:
                continue
            data.pop("regressions", None)
            return RunSummary.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.debug("Could not load previous run from %s: %s", report_path, e)
            continue
    return None
