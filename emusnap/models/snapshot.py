"""Reference snapshot metadata."""

from __future__ import annotations

from pydantic import BaseModel

from .frame import PixelFormat


class BaselineEntry(BaseModel):
    candidate_id: str
    image_path: str
    width: int
    height: int
    pixel_format: PixelFormat
    captured_at: str  # ISO timestamp
    image_hash: str  # SHA-256 hex digest of the pixel data
    replaced: bool = False
