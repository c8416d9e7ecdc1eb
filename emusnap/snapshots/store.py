"""Snapshot store: one reference PNG per test candidate."""

from __future__ import annotations

import hashlib
import logging
import os
import re
import tempfile
import time
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from emusnap.errors import ConfigurationError, SnapshotError
from emusnap.models.frame import FrameBuffer
from emusnap.models.snapshot import BaselineEntry

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")

# Modes we can load but do not store ourselves
_CONVERTIBLE_MODES = {"1": "L", "LA": "RGBA", "P": "RGBA", "PA": "RGBA"}


def snapshot_file_name(candidate_id: str) -> str:
    """Deterministic file name for a candidate id.

    Ids that are already safe map to ``<id>.png``. Anything else is
    sanitised and suffixed with a short hash of the original id, so two
    ids never share a file.
    """
    safe = _UNSAFE_CHARS.sub("_", candidate_id)
    if safe == candidate_id and safe not in ("", ".", ".."):
        return f"{safe}.png"
    digest = hashlib.sha1(candidate_id.encode("utf-8")).hexdigest()[:8]
    return f"{safe.strip('.') or 'snapshot'}-{digest}.png"


class SnapshotStore:
    """Reads and writes baseline frames under ``directory``.

    Saves for different ids never touch the same file, and each save lands
    through an atomic rename, so concurrent workers need no locking.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def setup(self) -> None:
        """Create the snapshot directory, failing the run if it is unusable."""
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Cannot create snapshot directory {self.directory}: {e}") from e
        if not self.directory.is_dir():
            raise ConfigurationError(f"Snapshot path is not a directory: {self.directory}")
        if not os.access(self.directory, os.R_OK | os.X_OK):
            raise ConfigurationError(f"Snapshot directory is not readable: {self.directory}")
        logger.debug("Snapshot directory ready: %s", self.directory)

    def path_for(self, candidate_id: str) -> Path:
        return self.directory / snapshot_file_name(candidate_id)

    def exists(self, candidate_id: str) -> bool:
        return self.path_for(candidate_id).is_file()

    def load(self, candidate_id: str) -> FrameBuffer | None:
        """Load the baseline for ``candidate_id``, or None if there is none yet."""
        path = self.path_for(candidate_id)
        if not path.exists():
            return None
        try:
            with Image.open(path) as img:
                img.load()
                if img.mode in _CONVERTIBLE_MODES:
                    logger.debug("Converting %s baseline from mode %s", candidate_id, img.mode)
                    img = img.convert(_CONVERTIBLE_MODES[img.mode])
                return FrameBuffer.from_image(img)
        except (OSError, UnidentifiedImageError, ValueError) as e:
            raise SnapshotError(candidate_id, f"Failed to read baseline {path}: {e}") from e

    def save(self, candidate_id: str, frame: FrameBuffer) -> BaselineEntry:
        """Write ``frame`` as the baseline for ``candidate_id``, replacing any existing one."""
        dest = self.path_for(candidate_id)
        replaced = dest.exists()
        tmp_name = None
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", suffix=".png", dir=dest.parent)
            with os.fdopen(fd, "wb") as f:
                frame.to_image().save(f, format="PNG")
            os.replace(tmp_name, dest)
            tmp_name = None
        except (OSError, ValueError) as e:
            raise SnapshotError(candidate_id, f"Failed to write baseline {dest}: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        entry = BaselineEntry(
            candidate_id=candidate_id,
            image_path=str(dest.relative_to(self.directory)),
            width=frame.width,
            height=frame.height,
            pixel_format=frame.pixel_format,
            captured_at=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            image_hash=hashlib.sha256(frame.data).hexdigest(),
            replaced=replaced,
        )
        logger.info("%s baseline for %s (%dx%d)",
                    "Replaced" if replaced else "Stored", candidate_id, frame.width, frame.height)
        return entry
