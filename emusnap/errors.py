"""Exception hierarchy for the snapshot harness."""

from __future__ import annotations


class EmuSnapError(Exception):
    """Base class for all harness errors."""


class ConfigurationError(EmuSnapError):
    """Invalid run configuration. Fatal: raised before any candidate is dispatched."""


class SnapshotError(EmuSnapError):
    """A reference snapshot could not be read or written."""

    def __init__(self, candidate_id: str, message: str):
        super().__init__(f"{candidate_id}: {message}")
        self.candidate_id = candidate_id


class FrameConstructionError(ValueError, EmuSnapError):
    """Pixel data does not match the declared frame dimensions and format."""
