"""Per-run output artifacts: the frames each run produced, plus failures and changes.

Layout under the output directory::

    new/       frames produced by this run
    old/       frames produced by the previous run
    changed/   frames without a baseline that differ from the previous run
    failures/  frames that failed comparison, with a ``.diff.png`` beside each
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from emusnap.comparator.comparator import render_diff_image
from emusnap.errors import ConfigurationError, SnapshotError
from emusnap.models.config import ToleranceConfig
from emusnap.models.frame import FrameBuffer
from emusnap.snapshots.store import snapshot_file_name

logger = logging.getLogger(__name__)


class OutputDirectory:
    """Manages the run's output artifact tree."""

    def __init__(self, root: Path):
        self.root = Path(root)

    @property
    def new_dir(self) -> Path:
        return self.root / "new"

    @property
    def old_dir(self) -> Path:
        return self.root / "old"

    @property
    def changed_dir(self) -> Path:
        return self.root / "changed"

    @property
    def failures_dir(self) -> Path:
        return self.root / "failures"

    def setup(self) -> None:
        """Rotate the previous run's ``new/`` into ``old/`` and start clean."""
        try:
            if self.old_dir.exists():
                shutil.rmtree(self.old_dir)
            if self.new_dir.exists():
                self.new_dir.rename(self.old_dir)
            for stale in (self.changed_dir, self.failures_dir):
                if stale.exists():
                    shutil.rmtree(stale)
            for d in (self.new_dir, self.changed_dir, self.failures_dir):
                d.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Cannot prepare output directory {self.root}: {e}") from e
        logger.debug("Output directory ready: %s", self.root)

    def write_new(self, candidate_id: str, frame: FrameBuffer) -> Path:
        path = self.new_dir / snapshot_file_name(candidate_id)
        try:
            frame.to_image().save(path, format="PNG")
        except (OSError, ValueError) as e:
            raise SnapshotError(candidate_id, f"Failed to write output frame {path}: {e}") from e
        return path

    def record_failure(
        self,
        candidate_id: str,
        new_path: Path,
        frame: FrameBuffer,
        baseline: FrameBuffer,
        tolerance: ToleranceConfig,
    ) -> dict[str, str]:
        """Copy a failing frame into ``failures/`` and render its diff when shapes allow."""
        name = snapshot_file_name(candidate_id)
        failure_path = self.failures_dir / name
        artifacts = {"failure": str(failure_path)}
        try:
            shutil.copyfile(new_path, failure_path)
            if frame.shape == baseline.shape:
                diff_path = failure_path.with_suffix(".diff.png")
                render_diff_image(frame, baseline, tolerance).save(diff_path, format="PNG")
                artifacts["diff"] = str(diff_path)
        except OSError as e:
            raise SnapshotError(candidate_id, f"Failed to record failure artifacts: {e}") from e
        return artifacts

    def check_changed(self, candidate_id: str, new_path: Path, frame: FrameBuffer) -> Path | None:
        """Compare against the previous run's frame; copy into ``changed/`` if it differs.

        Returns the ``changed/`` path, or None when unchanged or when there
        was no previous frame to compare with.
        """
        old_path = self.old_dir / snapshot_file_name(candidate_id)
        if not old_path.exists():
            return None
        try:
            with Image.open(old_path) as img:
                previous = img.tobytes()
                same = (img.mode == frame.pixel_format.pil_mode
                        and img.size == (frame.width, frame.height)
                        and previous == frame.data)
        except (OSError, UnidentifiedImageError) as e:
            logger.warning("Could not read previous output for %s: %s", candidate_id, e)
            same = False
        if same:
            return None

        changed_path = self.changed_dir / snapshot_file_name(candidate_id)
        try:
            shutil.copyfile(new_path, changed_path)
        except OSError as e:
            raise SnapshotError(candidate_id, f"Failed to record changed frame: {e}") from e
        return changed_path
