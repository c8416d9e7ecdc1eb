"""Pytest configuration and shared fixtures."""

import threading
from pathlib import Path

import pytest

from emusnap.models.candidate import TestCandidate
from emusnap.models.config import RunnerOptions, ToleranceConfig
from emusnap.models.frame import FrameBuffer, PixelFormat
from emusnap.models.test_result import RunSummary, TestRunResult


# ============================================================================
# Frame helpers
# ============================================================================


def make_frame(width=3, height=3, pixel_format=PixelFormat.RGB8, value=0) -> FrameBuffer:
    """Create a frame with every pixel set to ``value``."""
    return FrameBuffer.filled(width, height, pixel_format, value)


def with_pixel(frame: FrameBuffer, x: int, y: int, value: tuple[int, ...]) -> FrameBuffer:
    """Return a copy of ``frame`` with one pixel replaced."""
    data = bytearray(frame.data)
    offset = (y * frame.width + x) * frame.bytes_per_pixel
    data[offset:offset + frame.bytes_per_pixel] = bytes(value)
    return FrameBuffer(frame.width, frame.height, frame.pixel_format, bytes(data))


def frame_for(candidate: TestCandidate, value: int = 0) -> FrameBuffer:
    """Deterministic frame derived from the ROM contents, like a tiny emulator."""
    payload = candidate.read_input()
    shade = (payload[0] if payload else value) % 256
    return make_frame(4, 4, PixelFormat.RGB8, shade)


# ============================================================================
# Sinks
# ============================================================================


class RecordingSink:
    """Progress sink that records every event it receives."""

    def __init__(self):
        self.lock = threading.Lock()
        self.started_with: int | None = None
        self.started: list[str] = []
        self.done: list[TestRunResult] = []
        self.summary: RunSummary | None = None
        self.events: list[str] = []

    def on_start(self, total: int) -> None:
        self.started_with = total
        self.events.append("start")

    def on_candidate_start(self, candidate: TestCandidate) -> None:
        with self.lock:
            self.started.append(candidate.id)

    def on_candidate_done(self, result: TestRunResult) -> None:
        with self.lock:
            self.done.append(result)
            self.events.append("done")

    def on_finish(self, summary: RunSummary) -> None:
        self.summary = summary
        self.events.append("finish")


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def snapshot_dir(tmp_path: Path) -> Path:
    return tmp_path / "expected"


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "output"


@pytest.fixture
def runner_options(snapshot_dir: Path, output_dir: Path, tmp_path: Path) -> RunnerOptions:
    """Options writing everything under tmp_path, with four workers."""
    return RunnerOptions(
        worker_count=4,
        snapshot_directory=snapshot_dir,
        output_directory=output_dir,
        report_output_dir=tmp_path / "reports",
        tolerance=ToleranceConfig(),
    )


# ============================================================================
# Candidate Fixtures
# ============================================================================


def write_roms(directory: Path, names: list[str], extension: str = ".gb") -> list[TestCandidate]:
    """Create one fake ROM per name; the first byte is the frame shade."""
    directory.mkdir(parents=True, exist_ok=True)
    candidates = []
    for i, name in enumerate(names):
        path = directory / f"{name}{extension}"
        path.write_bytes(bytes([i * 10 % 256, 0xAA, 0x55]))
        candidates.append(TestCandidate(id=name, input_path=path))
    return candidates


@pytest.fixture
def rom_dir(tmp_path: Path) -> Path:
    return tmp_path / "roms"


@pytest.fixture
def candidates(rom_dir: Path) -> list[TestCandidate]:
    """Five candidates with distinct ROM payloads."""
    return write_roms(rom_dir, ["cpu_instrs", "dmg_acid2", "halt_bug", "mem_timing", "oam_bug"])


# A loadable emulator module: frames shaded by the ROM's first byte, like frame_for
EMULATOR_SOURCE = '''
from emusnap.models.frame import FrameBuffer, PixelFormat


def run(candidate):
    shade = candidate.read_input()[0]
    return FrameBuffer.filled(4, 4, PixelFormat.RGB8, shade)


class Harness:
    @staticmethod
    def run(candidate):
        return run(candidate)


NOT_CALLABLE = 42
'''
