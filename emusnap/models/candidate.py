"""Test candidate: one ROM to run through the emulator."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict


class TestCandidate(BaseModel):
    """An identified input to be emulated and checked.

    ``id`` must be unique within a run and stable across runs; it keys the
    reference snapshot.
    """
    __test__ = False  # not a pytest class
    model_config = ConfigDict(frozen=True)

    id: str
    input_path: Path

    def read_input(self) -> bytes:
        """Read the ROM payload."""
        return self.input_path.read_bytes()
