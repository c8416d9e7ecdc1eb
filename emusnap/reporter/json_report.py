"""JSON report output."""

from __future__ import annotations

import json
from pathlib import Path

from emusnap.models.test_result import RunSummary

from .regression_detector import Regression


def generate_json_report(
    summary: RunSummary,
    regressions: list[Regression],
    output_path: Path,
) -> None:
    """Write a machine-readable JSON report."""
    report = summary.model_dump(mode="json")
    report["regressions"] = [
        {
            "candidate_id": r.candidate_id,
            "previous_status": r.previous_status,
            "current_status": r.current_status,
            "message": r.message,
        }
        for r in regressions
    ]

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(report, f, indent=2, default=str)
