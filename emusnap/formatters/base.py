"""Progress sink interface consumed by the runner."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from emusnap.models.candidate import TestCandidate
from emusnap.models.test_result import RunSummary, TestRunResult


@runtime_checkable
class ProgressSink(Protocol):
    """Observer of a run.

    ``on_start`` comes first and ``on_finish`` last. ``on_candidate_done``
    arrives once per resolved candidate, in completion order rather than
    submission order. Sinks may also define ``on_candidate_start(candidate)``,
    called when a worker picks a candidate up.
    """

    def on_start(self, total: int) -> None: ...

    def on_candidate_done(self, result: TestRunResult) -> None: ...

    def on_finish(self, summary: RunSummary) -> None: ...


class NullSink:
    """Discards every event."""

    def on_start(self, total: int) -> None:
        pass

    def on_candidate_start(self, candidate: TestCandidate) -> None:
        pass

    def on_candidate_done(self, result: TestRunResult) -> None:
        pass

    def on_finish(self, summary: RunSummary) -> None:
        pass
