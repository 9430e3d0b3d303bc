"""
Image Pipeline — one photo in, one budgeted derivative out.

    decode (EXIF-aware) → fit inside max size → bisect quality under budget

Each call owns its decoded source and working surface; nothing is shared
between calls, so the main image and thumbnail of a submission can be
produced in parallel.

Either a valid encoded result is returned or an ImagingError is raised.
The caller decides where the bytes go.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Tuple

from ..observability.metrics import metrics
from .budget import encode_to_budget
from .codec import ImageCodec, PillowCodec
from .errors import ImagingError
from .models import CompressionRequest, CompressionResult
from .resize import rasterize

logger = logging.getLogger(__name__)


def resize_to_budget(
    data: bytes,
    request: CompressionRequest,
    *,
    codec: Optional[ImageCodec] = None,
) -> CompressionResult:
    """
    Produce one budgeted derivative of an image.

    Args:
        data: Raw image bytes as uploaded.
        request: Size bounds, byte budget, codecs and quality range.
        codec: Raster backend (default: PillowCodec).

    Returns:
        CompressionResult. Its size may exceed request.target_bytes when
        even quality_min is too large; that case is logged, not raised.

    Raises:
        DecodeError: The input is not a decodable image.
        EncodeUnavailable: Neither codec could encode.
    """
    codec = codec or PillowCodec()
    started = time.monotonic()

    try:
        source = codec.decode(data)
        surface = rasterize(codec, source, request.max_width, request.max_height)
        del source
        result = encode_to_budget(codec, surface, request)
    except ImagingError:
        metrics.increment("compression_errors_total")
        raise

    elapsed = time.monotonic() - started
    metrics.increment("compressions_total", labels={"codec": result.codec})
    metrics.timing("compression_duration_seconds", elapsed)

    pct = result.size / request.target_bytes * 100
    logger.info(
        f"Compressed: {len(data):,} bytes → {result.width}x{result.height} "
        f"{result.codec} q={result.quality:.3f}: {result.size:,} bytes "
        f"({pct:.0f}% of {request.target_bytes:,} budget) in {elapsed:.2f}s",
        extra={"codec": result.codec, "target_bytes": request.target_bytes},
    )
    return result


def compress_pair(
    data: bytes,
    main: CompressionRequest,
    thumb: CompressionRequest,
    *,
    codec: Optional[ImageCodec] = None,
    parallel: bool = True,
) -> Tuple[CompressionResult, CompressionResult]:
    """
    Produce the main image and thumbnail for one upload.

    The two invocations are independent; with parallel=True they run on
    a two-worker thread pool.

    Returns:
        (main_result, thumb_result)
    """
    codec = codec or PillowCodec()

    if not parallel:
        return (
            resize_to_budget(data, main, codec=codec),
            resize_to_budget(data, thumb, codec=codec),
        )

    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="kiln-compress") as pool:
        main_future = pool.submit(resize_to_budget, data, main, codec=codec)
        thumb_future = pool.submit(resize_to_budget, data, thumb, codec=codec)
        return main_future.result(), thumb_future.result()
