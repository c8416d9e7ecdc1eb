"""Tests for reporter module: JSON report, regression detector, reporter orchestration."""

import json
import os
from pathlib import Path

import pytest

from emusnap.models.config import RunnerOptions
from emusnap.models.test_result import (
    EmulationError,
    Failed,
    NoBaseline,
    Passed,
    RunSummary,
    TestRunResult,
)
from emusnap.reporter.json_report import generate_json_report
from emusnap.reporter.regression_detector import Regression, detect_regressions, mark_new_results
from emusnap.reporter.reporter import Reporter, load_previous_summary


# ============================================================================
# Helpers
# ============================================================================

def _failed(count=4, fraction=0.25) -> Failed:
    return Failed(differing_pixel_count=count, differing_fraction=fraction,
                  first_diff_coordinate=(0, 1), compared_pixels=16)


def _make_run(outcomes: dict, run_id="run_abc123") -> RunSummary:
    results = [TestRunResult(candidate_id=cid, outcome=o) for cid, o in outcomes.items()]
    return RunSummary.from_results(
        results,
        run_id=run_id,
        started_at="2026-01-01T00:00:00Z",
        completed_at="2026-01-01T00:00:05Z",
        total_candidates=len(results),
        duration_seconds=5.0,
    )


# ============================================================================
# Regression Detector
# ============================================================================

class TestDetectRegressions:

    def test_pass_to_fail(self):
        previous = _make_run({"a": Passed(), "b": Passed()})
        current = _make_run({"a": _failed(), "b": Passed()})
        regressions = detect_regressions(previous, current)
        assert regressions == [Regression(
            candidate_id="a", previous_status="passed", current_status="failed",
            message="4 pixels differ (25.00%)",
        )]

    def test_pass_to_error(self):
        previous = _make_run({"a": Passed()})
        current = _make_run({"a": EmulationError(kind="timeout", message="too slow")})
        regressions = detect_regressions(previous, current)
        assert regressions[0].current_status == "error"
        assert regressions[0].message == "too slow"

    def test_still_failing_is_not_a_regression(self):
        previous = _make_run({"a": _failed()})
        current = _make_run({"a": _failed(count=5)})
        assert detect_regressions(previous, current) == []

    def test_new_candidate_is_not_a_regression(self):
        previous = _make_run({})
        current = _make_run({"a": _failed()})
        assert detect_regressions(previous, current) == []


class TestMarkNewResults:

    def test_first_run_marks_passes_as_new(self):
        current = _make_run({"a": Passed(), "b": _failed(), "c": NoBaseline()})
        marked = mark_new_results(None, current)
        assert [r.is_new for r in marked.results] == [True, False, False]

    def test_against_previous_run(self):
        previous = _make_run({"fixed": _failed(), "stable": Passed(), "broke": Passed(),
                              "still_broken": _failed()})
        current = _make_run({"fixed": Passed(), "stable": Passed(), "broke": _failed(),
                             "still_broken": _failed()})
        marked = mark_new_results(previous, current)
        assert {r.candidate_id: r.is_new for r in marked.results} == {
            "fixed": True, "stable": False, "broke": True, "still_broken": False,
        }

    def test_counts_unchanged(self):
        current = _make_run({"a": Passed(), "b": _failed()})
        marked = mark_new_results(None, current)
        assert (marked.passed, marked.failed) == (current.passed, current.failed)
        assert current.results[0].is_new is False


# ============================================================================
# JSON report
# ============================================================================

class TestJsonReport:

    def test_report_contents(self, tmp_path: Path):
        run = _make_run({"a": Passed(), "b": _failed()})
        path = tmp_path / "nested" / "report.json"
        generate_json_report(run, [Regression("b", "passed", "failed", "x")], path)

        data = json.loads(path.read_text())
        assert data["run_id"] == "run_abc123"
        assert data["passed"] == 1
        assert data["failed"] == 1
        assert data["results"][1]["outcome"]["status"] == "failed"
        assert data["results"][1]["outcome"]["first_diff_coordinate"] == [0, 1]
        assert data["regressions"][0]["candidate_id"] == "b"

    def test_report_reloads_as_summary(self, tmp_path: Path):
        run = _make_run({"a": Passed(), "b": EmulationError(kind="exception", message="boom")})
        path = tmp_path / "report_run_abc123.json"
        generate_json_report(run, [], path)

        loaded = load_previous_summary(tmp_path, current_run_id="run_other")
        assert loaded == run


# ============================================================================
# Reporter orchestration
# ============================================================================

class TestReporter:

    @pytest.fixture
    def options(self, tmp_path: Path) -> RunnerOptions:
        return RunnerOptions(report_output_dir=tmp_path / "reports")

    def test_generates_json(self, options):
        run = _make_run({"a": Passed()})
        reports = Reporter(options).generate_reports(run)
        assert Path(reports["json"]).name == "report_run_abc123.json"
        assert Path(reports["json"]).exists()

    def test_explicit_output_dir(self, options, tmp_path: Path):
        reports = Reporter(options).generate_reports(_make_run({}), output_dir=tmp_path / "elsewhere")
        assert Path(reports["json"]).parent == tmp_path / "elsewhere"

    def test_regressions_included(self, options):
        previous = _make_run({"a": Passed()}, run_id="run_prev")
        current = _make_run({"a": _failed()})
        reports = Reporter(options).generate_reports(current, previous_run=previous)
        data = json.loads(Path(reports["json"]).read_text())
        assert data["regressions"][0]["previous_status"] == "passed"


class TestLoadPreviousSummary:

    def test_missing_directory(self, tmp_path: Path):
        assert load_previous_summary(tmp_path / "nope", "run_x") is None

    def test_newest_other_run_wins(self, tmp_path: Path):
        older = tmp_path / "report_run_old.json"
        newer = tmp_path / "report_run_new.json"
        current = tmp_path / "report_run_cur.json"
        generate_json_report(_make_run({"a": _failed()}, run_id="run_old"), [], older)
        generate_json_report(_make_run({"a": Passed()}, run_id="run_new"), [], newer)
        generate_json_report(_make_run({"a": Passed()}, run_id="run_cur"), [], current)
        os.utime(older, (1_000, 1_000))
        os.utime(newer, (2_000, 2_000))
        os.utime(current, (3_000, 3_000))

        loaded = load_previous_summary(tmp_path, "run_cur")
        assert loaded.run_id == "run_new"

    def test_corrupt_reports_are_skipped(self, tmp_path: Path):
        good = tmp_path / "report_run_good.json"
        generate_json_report(_make_run({"a": Passed()}, run_id="run_good"), [], good)
        bad = tmp_path / "report_run_bad.json"
        bad.write_text("{not json")
        os.utime(good, (1_000, 1_000))
        os.utime(bad, (2_000, 2_000))

        assert load_previous_summary(tmp_path, "run_x").run_id == "run_good"
