"""Test runner: drives candidates through the emulator and the comparator on a bounded worker pool."""

from __future__ import annotations

import asyncio
import logging
import signal
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable

from pydantic import ValidationError

from emusnap.comparator.comparator import compare
from emusnap.errors import ConfigurationError, SnapshotError
from emusnap.formatters.base import NullSink, ProgressSink
from emusnap.models.candidate import TestCandidate
from emusnap.models.config import RunMode, RunnerOptions, ToleranceConfig
from emusnap.models.frame import FrameBuffer
from emusnap.models.test_result import (
    BaselineUpdated,
    EmulationError,
    RunSummary,
    TestRunResult,
)
from emusnap.snapshots.artifacts import OutputDirectory
from emusnap.snapshots.store import SnapshotStore

from .isolation import EmulateFn, call_emulator, error_from_exception

logger = logging.getLogger(__name__)


class Runner:
    """Runs a batch of test candidates and aggregates their outcomes.

    Each candidate goes Queued -> Running -> Compared | Errored -> Reported,
    exactly once and without retries. A candidate that raises or times out
    is recorded as an ``EmulationError`` and the batch carries on. The
    summary lists results in submission order whatever order they finished in.

    A runner can be reused: each run gets a fresh ``run_id``, and a
    ``cancel()`` is cleared once the run it stopped has been summarised.
    """

    def __init__(
        self,
        options: RunnerOptions,
        sink: ProgressSink | None = None,
        store: SnapshotStore | None = None,
    ):
        self.options = options
        self.sink = sink or NullSink()
        self.store = store or SnapshotStore(options.snapshot_directory)
        self.output = OutputDirectory(options.output_directory) if options.output_directory else None
        self.run_id: str | None = None
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Stop dispatching new candidates. Safe to call from any thread or a signal handler."""
        if not self._cancel.is_set():
            logger.warning("Cancellation requested, finishing in-flight tests")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(
        self,
        candidates: Iterable[TestCandidate],
        emulate: EmulateFn,
        handle_interrupts: bool = False,
    ) -> RunSummary:
        """Run every candidate and return the summary.

        With ``handle_interrupts`` the first Ctrl-C cancels the run gracefully
        and a second one aborts it.
        """
        if not handle_interrupts or threading.current_thread() is not threading.main_thread():
            return asyncio.run(self.run_async(candidates, emulate))

        def on_interrupt(signum, frame):
            if self.cancelled:
                raise KeyboardInterrupt
            self.cancel()

        previous = signal.signal(signal.SIGINT, on_interrupt)
        try:
            return asyncio.run(self.run_async(candidates, emulate))
        finally:
            signal.signal(signal.SIGINT, previous)

    async def run_async(self, candidates: Iterable[TestCandidate], emulate: EmulateFn) -> RunSummary:
        candidates = list(candidates)
        self._check_configuration(candidates, emulate)
        self.run_id = f"run_{uuid.uuid4().hex[:8]}"

        started_at = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        start_time = time.monotonic()
        total = len(candidates)
        worker_count = min(self.options.worker_count, total)
        logger.info("Starting %s of %d tests on %d workers (mode=%s)",
                    self.run_id, total, worker_count, self.options.mode.value)
        self._notify("on_start", total)

        queue: asyncio.Queue[tuple[int, TestCandidate]] = asyncio.Queue()
        for item in enumerate(candidates):
            queue.put_nowait(item)

        # Per-worker buffers; merged once everything has resolved
        buffers: list[list[tuple[int, TestRunResult]]] = [[] for _ in range(worker_count)]
        with ThreadPoolExecutor(max_workers=max(worker_count, 1),
                                thread_name_prefix="emusnap-compare") as executor:
            workers = [
                asyncio.create_task(self._worker(queue, buffers[i], emulate, executor),
                                    name=f"emusnap-worker-{i}")
                for i in range(worker_count)
            ]
            await asyncio.gather(*workers)

        ordered = sorted((item for buf in buffers for item in buf), key=lambda item: item[0])
        duration = time.monotonic() - start_time
        summary = RunSummary.from_results(
            [result for _, result in ordered],
            run_id=self.run_id,
            started_at=started_at,
            completed_at=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            total_candidates=total,
            mode=self.options.mode,
            cancelled=self.cancelled,
            duration_seconds=duration,
        )
        # A cancellation only ever applies to the run it interrupted
        self._cancel.clear()
        logger.info(
            "Run complete: %d passed, %d failed, %d errors, %d updated, %d without baseline (%.1fs)",
            summary.passed, summary.failed, summary.errored, summary.updated,
            summary.no_baseline, duration,
        )
        if summary.unresolved:
            logger.warning("%d tests were not run", summary.unresolved)
        self._notify("on_finish", summary)
        return summary

    def _check_configuration(self, candidates: list[TestCandidate], emulate: EmulateFn) -> None:
        """Everything that must hold before the first candidate is dispatched."""
        if not callable(emulate):
            raise ConfigurationError(f"Emulator callback is not callable: {emulate!r}")

        try:
            ToleranceConfig.model_validate(self.options.tolerance.model_dump())
        except ValidationError as e:
            raise ConfigurationError(f"Invalid tolerance: {e}") from e

        seen: set[str] = set()
        duplicates = []
        for candidate in candidates:
            if candidate.id in seen:
                duplicates.append(candidate.id)
            seen.add(candidate.id)
        if duplicates:
            raise ConfigurationError(f"Duplicate test ids: {', '.join(sorted(set(duplicates)))}")

        self.store.setup()
        if self.output is not None:
            self.output.setup()

    async def _worker(
        self,
        queue: asyncio.Queue,
        buffer: list[tuple[int, TestRunResult]],
        emulate: EmulateFn,
        executor: ThreadPoolExecutor,
    ) -> None:
        loop = asyncio.get_running_loop()
        while not self.cancelled:
            try:
                index, candidate = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            self._notify("on_candidate_start", candidate)
            logger.debug("Running test [%d]: %s", index + 1, candidate.id)
            test_start = time.monotonic()
            try:
                frame = await call_emulator(emulate, candidate, self.options.per_test_timeout_seconds)
            except Exception as e:
                error = error_from_exception(e)
                result = TestRunResult(
                    candidate_id=candidate.id,
                    input_path=str(candidate.input_path),
                    outcome=error,
                    duration_seconds=round(time.monotonic() - test_start, 3),
                )
                if error.kind == "timeout":
                    logger.warning("[TIMEOUT] %s: %s", candidate.id, error.message)
                else:
                    logger.warning("[ERROR] %s: %s", candidate.id, error.message)
            else:
                emulation_time = time.monotonic() - test_start
                result = await loop.run_in_executor(
                    executor, self._evaluate, candidate, frame, emulation_time,
                )
                logger.info("[%s] %s (%.2fs)", result.status.upper(), candidate.id,
                            result.duration_seconds)

            buffer.append((index, result))
            queue.task_done()
            self._notify("on_candidate_done", result)

    def _evaluate(self, candidate: TestCandidate, frame: FrameBuffer, emulation_time: float) -> TestRunResult:
        """Compare or store a produced frame. Runs on the comparison pool."""
        artifacts: dict[str, str] = {}
        changed = False
        try:
            new_path = None
            if self.output is not None:
                new_path = self.output.write_new(candidate.id, frame)
                artifacts["new"] = str(new_path)

            if self.options.mode == RunMode.UPDATE:
                entry = self.store.save(candidate.id, frame)
                outcome = BaselineUpdated(
                    replaced=entry.replaced,
                    snapshot_path=str(self.store.path_for(candidate.id)),
                )
            else:
                baseline = self.store.load(candidate.id)
                outcome = compare(frame, baseline, self.options.tolerance)
                if new_path is not None:
                    if outcome.status in ("failed", "dimension_mismatch"):
                        artifacts["snapshot"] = str(self.store.path_for(candidate.id))
                        artifacts.update(self.output.record_failure(
                            candidate.id, new_path, frame, baseline, self.options.tolerance,
                        ))
                    elif outcome.status == "no_baseline":
                        changed_path = self.output.check_changed(candidate.id, new_path, frame)
                        if changed_path is not None:
                            changed = True
                            artifacts["changed"] = str(changed_path)
        except SnapshotError as e:
            logger.error("Snapshot storage failed for %s: %s", candidate.id, e)
            outcome = EmulationError(kind="persistence", message=str(e))
        except Exception as e:
            logger.exception("Evaluating %s crashed", candidate.id)
            outcome = error_from_exception(e)

        return TestRunResult(
            candidate_id=candidate.id,
            input_path=str(candidate.input_path),
            outcome=outcome,
            duration_seconds=round(emulation_time, 3),
            changed=changed,
            artifacts=artifacts,
        )

    def _notify(self, event: str, payload) -> None:
        handler = getattr(self.sink, event, None)
        if handler is None:
            return
        try:
            handler(payload)
        except Exception:
            logger.exception("Progress sink failed handling %s", event)
