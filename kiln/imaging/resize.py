"""
Resizer — fit a source inside a bounding box without upscaling.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Tuple

from .codec import ImageCodec

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    """Round .5 upwards, unlike Python's round() which rounds to even."""
    return int(math.floor(value + 0.5))


def fit_within(
    source_width: int,
    source_height: int,
    max_width: int,
    max_height: int,
) -> Tuple[int, int]:
    """
    Compute destination dimensions for a source image.

    Sources already inside the box keep their size. Larger sources are
    scaled by min(max_width/sw, max_height/sh), so the constraining edge
    lands on its bound and the aspect ratio is kept. Rounding may leave
    the other edge one pixel over its bound; that is accepted.

    Raises:
        ValueError: If any dimension is not positive.
    """
    if source_width <= 0 or source_height <= 0:
        raise ValueError(f"Invalid source size {source_width}x{source_height}")
    if max_width <= 0 or max_height <= 0:
        raise ValueError(f"Invalid bounds {max_width}x{max_height}")

    if source_width <= max_width and source_height <= max_height:
        return source_width, source_height

    scale = min(max_width / source_width, max_height / source_height)
    width = max(1, round_half_up(source_width * scale))
    height = max(1, round_half_up(source_height * scale))
    return width, height


def rasterize(
    codec: ImageCodec,
    source: Any,
    max_width: int,
    max_height: int,
) -> Any:
    """Draw the source onto a surface that fits the bounds."""
    size = fit_within(source.width, source.height, max_width, max_height)
    if size == (source.width, source.height):
        return source

    logger.debug(
        f"Resized: {source.width}x{source.height} → {size[0]}x{size[1]} "
        f"(max={max_width}x{max_height})"
    )
    return codec.resample(source, size)
