"""Permissive frame comparison: per-channel threshold, pixel-fraction budget, region masks.

Everything here is pure and safe to call from any number of threads at once.
"""

from __future__ import annotations

import logging

import numpy as np
from PIL import Image

from emusnap.models.config import Region, ToleranceConfig
from emusnap.models.frame import FrameBuffer
from emusnap.models.test_result import (
    ComparisonOutcome,
    DimensionMismatch,
    Failed,
    NoBaseline,
    Passed,
)

logger = logging.getLogger(__name__)

DIFF_COLOR = (255, 0, 0)
IGNORED_COLOR = (40, 40, 160)


def ignored_mask(width: int, height: int, regions: tuple[Region, ...] | list[Region]) -> np.ndarray:
    """Boolean ``(height, width)`` mask, True where a pixel is excluded from comparison.

    Regions are clipped to the frame; a region lying entirely outside it masks nothing.
    """
    mask = np.zeros((height, width), dtype=bool)
    for region in regions:
        x0, y0 = min(region.x, width), min(region.y, height)
        x1, y1 = min(region.x + region.width, width), min(region.y + region.height, height)
        mask[y0:y1, x0:x1] = True
    return mask


def _same_shape(a: FrameBuffer, b: FrameBuffer) -> bool:
    return a.width == b.width and a.height == b.height and a.pixel_format == b.pixel_format


def diff_mask(actual: FrameBuffer, expected: FrameBuffer, tolerance: ToleranceConfig) -> np.ndarray:
    """Boolean ``(height, width)`` mask of compared pixels that differ beyond the threshold.

    A pixel differs when any one of its channels differs by more than
    ``per_channel_threshold``. Ignored pixels are always False.
    """
    if not _same_shape(actual, expected):
        raise ValueError(f"Cannot diff {actual.shape} against {expected.shape}")

    # int16 so the subtraction cannot wrap
    delta = np.abs(actual.to_array().astype(np.int16) - expected.to_array().astype(np.int16))
    differing = (delta > tolerance.per_channel_threshold).any(axis=2)
    if tolerance.ignored_regions:
        differing &= ~ignored_mask(actual.width, actual.height, tolerance.ignored_regions)
    return differing


def compare(
    candidate_frame: FrameBuffer,
    baseline: FrameBuffer | None,
    tolerance: ToleranceConfig,
) -> ComparisonOutcome:
    """Compare a captured frame against its baseline.

    Returns ``NoBaseline`` when there is nothing to compare against and
    ``DimensionMismatch`` when width, height or pixel format differ, whatever
    the tolerance. Otherwise the frame passes when the fraction of compared
    pixels that differ is at most ``max_differing_pixel_fraction``. A frame
    whose every pixel is masked passes: there is nothing to disagree on.
    """
    if baseline is None:
        return NoBaseline()

    if not _same_shape(candidate_frame, baseline):
        return DimensionMismatch(expected=baseline.shape, actual=candidate_frame.shape)

    total = candidate_frame.pixel_count
    if tolerance.ignored_regions:
        compared = total - int(ignored_mask(
            candidate_frame.width, candidate_frame.height, tolerance.ignored_regions
        ).sum())
    else:
        compared = total

    if compared == 0:
        logger.debug("Every pixel is masked, nothing to compare")
        return Passed(compared_pixels=0)

    differing = diff_mask(candidate_frame, baseline, tolerance)
    count = int(differing.sum())
    fraction = count / compared

    if fraction <= tolerance.max_differing_pixel_fraction:
        return Passed(differing_pixel_count=count, differing_fraction=fraction, compared_pixels=compared)

    # argmax over the flattened (height, width) mask is the first True in row-major order
    first = int(np.argmax(differing.ravel()))
    y, x = divmod(first, candidate_frame.width)
    return Failed(
        differing_pixel_count=count,
        differing_fraction=fraction,
        first_diff_coordinate=(x, y),
        compared_pixels=compared,
    )


def render_diff_image(actual: FrameBuffer, expected: FrameBuffer, tolerance: ToleranceConfig) -> Image.Image:
    """Diagnostic RGB image: the baseline dimmed to grey, differing pixels red, masked pixels blue."""
    differing = diff_mask(actual, expected, tolerance)
    grey = np.asarray(expected.to_image().convert("L"), dtype=np.uint8) // 3
    canvas = np.repeat(grey[:, :, np.newaxis], 3, axis=2)
    if tolerance.ignored_regions:
        canvas[ignored_mask(actual.width, actual.height, tolerance.ignored_regions)] = IGNORED_COLOR
    canvas[differing] = DIFF_COLOR
    return Image.fromarray(canvas)
