"""Configuration models for the snapshot harness."""

from __future__ import annotations

import json
import os
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Region(BaseModel):
    """Axis-aligned rectangle of pixels excluded from comparison."""
    model_config = ConfigDict(frozen=True)

    x: int = Field(ge=0)
    y: int = Field(ge=0)
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    name: str = ""

    def contains(self, x: int, y: int) -> bool:
        return self.x <= x < self.x + self.width and self.y <= y < self.y + self.height


class ToleranceConfig(BaseModel):
    """How much divergence from the baseline still counts as a pass.

    The default is an exact match.
    """
    model_config = ConfigDict(frozen=True)

    per_channel_threshold: int = Field(default=0, ge=0, le=255)
    max_differing_pixel_fraction: float = Field(default=0.0, ge=0.0, le=1.0, allow_inf_nan=False)
    ignored_regions: tuple[Region, ...] = ()

    @field_validator("ignored_regions", mode="before")
    @classmethod
    def dedupe_regions(cls, v):
        if v is None:
            return ()
        if not isinstance(v, (list, tuple)):
            return v
        # set semantics, first occurrence wins
        seen = []
        for region in v:
            if region not in seen:
                seen.append(region)
        return tuple(seen)


class RunMode(str, Enum):
    COMPARE = "compare"
    UPDATE = "update"


def default_worker_count() -> int:
    return os.cpu_count() or 1


class RunnerOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Execution
    worker_count: int = Field(default_factory=default_worker_count, ge=1)
    per_test_timeout_seconds: Optional[float] = Field(default=None, gt=0)

    # Comparison
    tolerance: ToleranceConfig = Field(default_factory=ToleranceConfig)
    mode: RunMode = RunMode.COMPARE

    # Storage
    snapshot_directory: Path = Path("./test_roms/expected")
    output_directory: Optional[Path] = Path("./test_output")

    # Discovery
    rom_directory: Optional[Path] = None
    rom_extension: str = ".gb"

    # Emulator callback, as "package.module:function"
    emulator: Optional[str] = None

    # Reporting
    report_formats: list[str] = Field(default_factory=lambda: ["json"])
    report_output_dir: Path = Path("./emusnap-reports")
    treat_missing_baseline_as_failure: bool = True

    @field_validator("report_formats")
    @classmethod
    def known_formats(cls, v: list[str]) -> list[str]:
        unknown = sorted(set(v) - {"json"})
        if unknown:
            raise ValueError(f"Unknown report format(s): {', '.join(unknown)}")
        return v

    @field_validator("rom_extension")
    @classmethod
    def normalise_extension(cls, v: str) -> str:
        if v and not v.startswith("."):
            return f".{v}"
        return v

    @model_validator(mode="after")
    def check_emulator_reference(self) -> "RunnerOptions":
        if self.emulator is not None and ":" not in self.emulator:
            raise ValueError(
                f"emulator must look like 'module:function', got '{self.emulator}'"
            )
        return self

    @classmethod
    def load(cls, path: str | Path) -> "RunnerOptions":
        """Load options from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save options to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)
