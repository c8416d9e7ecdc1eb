"""Tests for frame data structures."""

import numpy as np
import pytest
from PIL import Image

from emusnap.errors import FrameConstructionError
from emusnap.models.frame import FrameBuffer, FrameShape, PixelFormat


class TestPixelFormat:
    """Tests for PixelFormat."""

    @pytest.mark.parametrize(
        "fmt,bpp,mode",
        [
            (PixelFormat.RGB8, 3, "RGB"),
            (PixelFormat.RGBA8, 4, "RGBA"),
            (PixelFormat.GRAYSCALE8, 1, "L"),
        ],
    )
    def test_format_properties(self, fmt, bpp, mode):
        assert fmt.bytes_per_pixel == bpp
        assert fmt.pil_mode == mode
        assert PixelFormat.from_pil_mode(mode) is fmt

    def test_unsupported_pil_mode(self):
        with pytest.raises(FrameConstructionError, match="CMYK"):
            PixelFormat.from_pil_mode("CMYK")


class TestFrameBufferConstruction:
    """A frame's data must match its declared shape exactly."""

    def test_valid_frame(self):
        frame = FrameBuffer(2, 2, PixelFormat.RGBA8, bytes(16))
        assert frame.pixel_count == 4
        assert frame.bytes_per_pixel == 4

    def test_short_data_rejected(self):
        with pytest.raises(FrameConstructionError, match="expected 12"):
            FrameBuffer(2, 2, PixelFormat.RGB8, bytes(11))

    def test_long_data_rejected_not_truncated(self):
        with pytest.raises(FrameConstructionError, match="13 bytes"):
            FrameBuffer(2, 2, PixelFormat.RGB8, bytes(13))

    def test_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            FrameBuffer(1, 1, PixelFormat.GRAYSCALE8, b"")

    def test_negative_dimensions_rejected(self):
        with pytest.raises(FrameConstructionError, match="non-negative"):
            FrameBuffer(-1, 2, PixelFormat.GRAYSCALE8, b"")

    @pytest.mark.parametrize("width,height", [(2.0, 2), (2, "2"), (True, 2), (2, None)])
    def test_non_integer_dimensions_rejected(self, width, height):
        with pytest.raises(FrameConstructionError, match="must be an integer"):
            FrameBuffer(width, height, PixelFormat.RGB8, bytes(12))

    def test_numpy_integer_dimensions_accepted(self):
        frame = FrameBuffer(np.int64(2), np.uint16(2), PixelFormat.RGB8, bytes(12))
        assert type(frame.width) is int
        assert type(frame.height) is int
        assert frame.to_array().shape == (2, 2, 3)

    def test_pixel_format_from_string(self):
        frame = FrameBuffer(1, 1, "rgb8", bytes(3))
        assert frame.pixel_format is PixelFormat.RGB8

    def test_unknown_pixel_format(self):
        with pytest.raises(FrameConstructionError, match="Unknown pixel format"):
            FrameBuffer(1, 1, "bgr565", bytes(2))

    def test_bytearray_is_copied_to_bytes(self):
        buf = bytearray(3)
        frame = FrameBuffer(1, 1, PixelFormat.RGB8, buf)
        buf[0] = 255
        assert isinstance(frame.data, bytes)
        assert frame.data[0] == 0

    def test_frame_is_immutable(self):
        frame = FrameBuffer(1, 1, PixelFormat.RGB8, bytes(3))
        with pytest.raises(AttributeError):
            frame.width = 2

    def test_frames_compare_by_value(self):
        assert FrameBuffer(1, 1, PixelFormat.RGB8, b"\x01\x02\x03") == FrameBuffer(1, 1, PixelFormat.RGB8, b"\x01\x02\x03")

    def test_empty_frame(self):
        frame = FrameBuffer(0, 0, PixelFormat.RGB8, b"")
        assert frame.pixel_count == 0


class TestFrameBufferAccess:
    """Tests for pixel access and conversions."""

    def test_pixel_row_major(self):
        data = bytes(range(12))  # 2x2 RGB
        frame = FrameBuffer(2, 2, PixelFormat.RGB8, data)
        assert frame.pixel(0, 0) == (0, 1, 2)
        assert frame.pixel(1, 0) == (3, 4, 5)
        assert frame.pixel(0, 1) == (6, 7, 8)

    def test_pixel_out_of_bounds(self):
        frame = FrameBuffer.filled(2, 2, PixelFormat.GRAYSCALE8, 0)
        with pytest.raises(IndexError):
            frame.pixel(2, 0)

    def test_shape(self):
        frame = FrameBuffer.filled(160, 144, PixelFormat.RGBA8, 0)
        assert frame.shape == FrameShape(width=160, height=144, pixel_format=PixelFormat.RGBA8)
        assert str(frame.shape) == "160x144 rgba8"

    def test_to_array_shape(self):
        frame = FrameBuffer.filled(5, 3, PixelFormat.RGB8, (1, 2, 3))
        arr = frame.to_array()
        assert arr.shape == (3, 5, 3)
        assert arr[2, 4].tolist() == [1, 2, 3]

    def test_from_array_infers_format(self):
        arr = np.zeros((2, 3, 4), dtype=np.uint8)
        frame = FrameBuffer.from_array(arr)
        assert frame.pixel_format is PixelFormat.RGBA8
        assert (frame.width, frame.height) == (3, 2)

    def test_from_2d_array_is_grayscale(self):
        frame = FrameBuffer.from_array(np.full((2, 2), 7, dtype=np.uint8))
        assert frame.pixel_format is PixelFormat.GRAYSCALE8
        assert frame.pixel(1, 1) == (7,)

    def test_from_array_rejects_wrong_dtype(self):
        with pytest.raises(FrameConstructionError, match="uint8"):
            FrameBuffer.from_array(np.zeros((2, 2, 3), dtype=np.float32))

    def test_from_array_rejects_channel_mismatch(self):
        with pytest.raises(FrameConstructionError, match="needs 3 channels"):
            FrameBuffer.from_array(np.zeros((2, 2, 4), dtype=np.uint8), PixelFormat.RGB8)

    def test_image_conversion(self):
        frame = FrameBuffer(2, 1, PixelFormat.RGB8, b"\x10\x20\x30\x40\x50\x60")
        image = frame.to_image()
        assert image.mode == "RGB"
        assert image.getpixel((1, 0)) == (0x40, 0x50, 0x60)
        assert FrameBuffer.from_image(image) == frame

    def test_from_image_rejects_palette(self):
        with pytest.raises(FrameConstructionError):
            FrameBuffer.from_image(Image.new("P", (2, 2)))

    def test_filled_rejects_wrong_channel_count(self):
        with pytest.raises(FrameConstructionError, match="3 channels"):
            FrameBuffer.filled(1, 1, PixelFormat.RGB8, (1, 2))
