"""Captured frame data structures."""

from __future__ import annotations

import numbers
from dataclasses import dataclass, field
from enum import Enum

import numpy as np
from PIL import Image
from pydantic import BaseModel, ConfigDict

from emusnap.errors import FrameConstructionError


class PixelFormat(str, Enum):
    RGB8 = "rgb8"
    RGBA8 = "rgba8"
    GRAYSCALE8 = "grayscale8"

    @property
    def bytes_per_pixel(self) -> int:
        return _BYTES_PER_PIXEL[self]

    @property
    def pil_mode(self) -> str:
        return _PIL_MODES[self]

    @classmethod
    def from_pil_mode(cls, mode: str) -> "PixelFormat":
        for fmt, pil_mode in _PIL_MODES.items():
            if pil_mode == mode:
                return fmt
        raise FrameConstructionError(f"Unsupported image mode: {mode}")


_BYTES_PER_PIXEL = {
    PixelFormat.RGB8: 3,
    PixelFormat.RGBA8: 4,
    PixelFormat.GRAYSCALE8: 1,
}

_PIL_MODES = {
    PixelFormat.RGB8: "RGB",
    PixelFormat.RGBA8: "RGBA",
    PixelFormat.GRAYSCALE8: "L",
}


class FrameShape(BaseModel):
    """Dimensions and format of a frame, without its pixels."""
    model_config = ConfigDict(frozen=True)

    width: int
    height: int
    pixel_format: PixelFormat

    def __str__(self) -> str:
        return f"{self.width}x{self.height} {self.pixel_format.value}"


@dataclass(frozen=True)
class FrameBuffer:
    """A single rendered frame.

    ``data`` holds the pixels row-major, ``bytes_per_pixel`` bytes per pixel.
    Its length must equal ``width * height * bytes_per_pixel``; anything else
    is rejected rather than truncated or padded.
    """
    width: int
    height: int
    pixel_format: PixelFormat
    data: bytes = field(repr=False)

    def __post_init__(self) -> None:
        for name in ("width", "height"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Integral):
                raise FrameConstructionError(
                    f"Frame {name} must be an integer, got {type(value).__name__} {value!r}"
                )
            object.__setattr__(self, name, int(value))
        if self.width < 0 or self.height < 0:
            raise FrameConstructionError(
                f"Frame dimensions must be non-negative, got {self.width}x{self.height}"
            )
        try:
            fmt = PixelFormat(self.pixel_format)
        except ValueError:
            raise FrameConstructionError(f"Unknown pixel format: {self.pixel_format!r}") from None
        object.__setattr__(self, "pixel_format", fmt)
        if not isinstance(self.data, bytes):
            object.__setattr__(self, "data", bytes(self.data))

        expected = self.width * self.height * fmt.bytes_per_pixel
        if len(self.data) != expected:
            raise FrameConstructionError(
                f"Frame data is {len(self.data)} bytes, expected {expected} "
                f"for {self.width}x{self.height} {fmt.value}"
            )

    @property
    def bytes_per_pixel(self) -> int:
        return self.pixel_format.bytes_per_pixel

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def shape(self) -> FrameShape:
        return FrameShape(width=self.width, height=self.height, pixel_format=self.pixel_format)

    def pixel(self, x: int, y: int) -> tuple[int, ...]:
        """Return the channel values of the pixel at (x, y)."""
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(f"Pixel ({x}, {y}) outside {self.width}x{self.height} frame")
        bpp = self.bytes_per_pixel
        offset = (y * self.width + x) * bpp
        return tuple(self.data[offset:offset + bpp])

    def to_array(self) -> np.ndarray:
        """View the pixels as a read-only ``(height, width, channels)`` uint8 array."""
        arr = np.frombuffer(self.data, dtype=np.uint8)
        return arr.reshape(self.height, self.width, self.bytes_per_pixel)

    @classmethod
    def from_array(cls, array: np.ndarray, pixel_format: PixelFormat | None = None) -> "FrameBuffer":
        """Build a frame from a ``(height, width[, channels])`` uint8 array."""
        arr = np.asarray(array)
        if arr.dtype != np.uint8:
            raise FrameConstructionError(f"Expected uint8 pixels, got {arr.dtype}")
        if arr.ndim == 2:
            arr = arr[:, :, np.newaxis]
        if arr.ndim != 3:
            raise FrameConstructionError(f"Expected a 2D or 3D array, got {arr.ndim} dimensions")

        channels = arr.shape[2]
        if pixel_format is None:
            by_channels = {fmt.bytes_per_pixel: fmt for fmt in PixelFormat}
            if channels not in by_channels:
                raise FrameConstructionError(f"No pixel format has {channels} channels")
            pixel_format = by_channels[channels]
        elif channels != pixel_format.bytes_per_pixel:
            raise FrameConstructionError(
                f"{pixel_format.value} needs {pixel_format.bytes_per_pixel} channels, array has {channels}"
            )
        return cls(
            width=arr.shape[1],
            height=arr.shape[0],
            pixel_format=pixel_format,
            data=np.ascontiguousarray(arr).tobytes(),
        )

    @classmethod
    def from_image(cls, image: Image.Image) -> "FrameBuffer":
        """Build a frame from a Pillow image in RGB, RGBA or L mode."""
        fmt = PixelFormat.from_pil_mode(image.mode)
        return cls(width=image.width, height=image.height, pixel_format=fmt, data=image.tobytes())

    def to_image(self) -> Image.Image:
        return Image.frombytes(self.pixel_format.pil_mode, (self.width, self.height), self.data)

    @classmethod
    def filled(cls, width: int, height: int, pixel_format: PixelFormat, value: tuple[int, ...] | int = 0) -> "FrameBuffer":
        """A frame with every pixel set to ``value``."""
        if isinstance(value, int):
            value = (value,) * pixel_format.bytes_per_pixel
        if len(value) != pixel_format.bytes_per_pixel:
            raise FrameConstructionError(
                f"{pixel_format.value} pixels have {pixel_format.bytes_per_pixel} channels, got {len(value)}"
            )
        return cls(width=width, height=height, pixel_format=pixel_format,
                   data=bytes(value) * (width * height))
