"""Test discovery: find ROM files and turn them into test candidates."""

from __future__ import annotations

import logging
from pathlib import Path

from emusnap.models.candidate import TestCandidate

logger = logging.getLogger(__name__)


def list_files_with_extension(path: str | Path, extension: str) -> list[Path]:
    """All files under ``path`` (recursively) whose name ends in ``extension``, sorted.

    Returns an empty list when ``path`` is not a directory.
    """
    root = Path(path)
    if not root.is_dir():
        logger.warning("ROM directory not found: %s", root)
        return []
    return sorted(p for p in root.rglob("*") if p.is_file() and p.name.endswith(extension))


def candidate_id_from_path(path: Path) -> str:
    return path.stem


def find_all_in_directory(path: str | Path, extension: str) -> list[TestCandidate]:
    """Discover one candidate per matching file, identified by its file stem."""
    files = list_files_with_extension(path, extension)
    candidates = [TestCandidate(id=candidate_id_from_path(p), input_path=p) for p in files]
    logger.debug("Discovered %d test candidates in %s", len(candidates), path)
    return candidates
