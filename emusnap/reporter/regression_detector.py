"""Regression detection: compares a run against the previous one."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from emusnap.models.test_result import RunSummary, TestRunResult

logger = logging.getLogger(__name__)

_FAILING = ("failed", "dimension_mismatch", "error")


@dataclass
class Regression:
    candidate_id: str
    previous_status: str
    current_status: str
    message: str | None = None


def _message(result: TestRunResult) -> str | None:
    outcome = result.outcome
    if outcome.status == "error":
        return outcome.message
    if outcome.status == "failed":
        return f"{outcome.differing_pixel_count} pixels differ ({outcome.differing_fraction:.2%})"
    if outcome.status == "dimension_mismatch":
        return f"expected {outcome.expected}, got {outcome.actual}"
    return None


def detect_regressions(previous: RunSummary, current: RunSummary) -> list[Regression]:
    """Find candidates that passed in ``previous`` and fail or error in ``current``."""
    prev_by_id = {r.candidate_id: r for r in previous.results}
    regressions = []
    for result in current.results:
        prev = prev_by_id.get(result.candidate_id)
        if prev and prev.status == "passed" and result.status in _FAILING:
            regressions.append(Regression(
                candidate_id=result.candidate_id,
                previous_status=prev.status,
                current_status=result.status,
                message=_message(result),
            ))

    if regressions:
        logger.warning("Detected %d regressions", len(regressions))
    return regressions


def mark_new_results(previous: RunSummary | None, current: RunSummary) -> RunSummary:
    """Flag newly passing and newly failing results.

    A pass is new unless the candidate also passed last time. A failure is
    new only when the candidate passed last time.
    """
    prev_by_id = {r.candidate_id: r for r in previous.results} if previous else {}
    marked = []
    for result in current.results:
        prev = prev_by_id.get(result.candidate_id)
        if result.status == "passed":
            is_new = prev is None or prev.status != "passed"
        elif result.status in _FAILING:
            is_new = prev is not None and prev.status == "passed"
        else:
            is_new = False
        marked.append(result.model_copy(update={"is_new": is_new}) if is_new != result.is_new else result)
    return current.model_copy(update={"results": marked})
