"""
Budgeted Encoder — find the highest quality that fits a byte budget.

For each codec, bisect the quality range a fixed number of times:

1. q = (lo + hi) / 2, encode
2. fits (size <= target) → keep it, lo = q
3. too big → hi = q

If nothing fit, encode once at quality_min and accept it even though it
is over budget. The preferred codec is tried first; the fallback codec
only runs when the preferred one cannot encode at all.

## Usage

    from kiln.imaging.budget import encode_to_budget

    result = encode_to_budget(codec, surface, request)
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..observability.metrics import metrics
from .codec import ImageCodec
from .errors import EncodeUnavailable
from .models import CompressionRequest, CompressionResult, EncodingAttempt

logger = logging.getLogger(__name__)

SEARCH_STEPS = 6  # fixed bisection budget, not a convergence check


def _encode(
    codec: ImageCodec, surface: Any, codec_id: str, quality: float
) -> Optional[bytes]:
    """Encode once, returning None when the codec can't produce output."""
    try:
        data = codec.encode(surface, codec_id, quality)
    except EncodeUnavailable as e:
        logger.warning(f"Encode failed: {e}")
        return None
    metrics.increment("encode_attempts_total", labels={"codec": codec_id})
    return data or None


def search_quality(
    codec: ImageCodec,
    surface: Any,
    codec_id: str,
    request: CompressionRequest,
) -> Optional[EncodingAttempt]:
    """
    Bisect quality for one codec.

    Returns:
        The highest-quality attempt that fits, or the quality_min attempt
        (fits=False) when nothing fit, or None if the codec failed.
    """
    lo, hi = request.quality_min, request.quality_max
    best: Optional[EncodingAttempt] = None

    for _ in range(SEARCH_STEPS):
        q = (lo + hi) / 2
        data = _encode(codec, surface, codec_id, q)
        if data is None:
            return None

        if len(data) <= request.target_bytes:
            best = EncodingAttempt(codec_id, q, data, fits=True)
            lo = q
        else:
            hi = q

    if best is not None:
        return best

    data = _encode(codec, surface, codec_id, request.quality_min)
    if data is None:
        return None
    fits = len(data) <= request.target_bytes
    return EncodingAttempt(codec_id, request.quality_min, data, fits=fits)


def encode_to_budget(
    codec: ImageCodec,
    surface: Any,
    request: CompressionRequest,
) -> CompressionResult:
    """
    Encode a surface under request.target_bytes, preferred codec first.

    Raises:
        EncodeUnavailable: If neither codec could encode the surface.
    """
    attempt: Optional[EncodingAttempt] = None
    for codec_id in request.codec_order:
        attempt = search_quality(codec, surface, codec_id, request)
        if attempt is not None:
            break
        logger.warning(f"Codec {codec_id} unavailable, trying next")

    if attempt is None:
        raise EncodeUnavailable(
            " / ".join(request.codec_order), "no codec produced output"
        )

    if attempt.codec != request.preferred_codec:
        metrics.increment("codec_fallback_total", labels={"codec": attempt.codec})

    if not attempt.fits:
        metrics.increment("budget_unmet_total", labels={"codec": attempt.codec})
        logger.warning(
            f"Budget unmet: {attempt.size:,} bytes > {request.target_bytes:,} "
            f"at minimum quality {attempt.quality:.2f} ({attempt.codec})",
            extra={"codec": attempt.codec, "target_bytes": request.target_bytes},
        )

    return CompressionResult(
        data=attempt.data,
        width=surface.width,
        height=surface.height,
        codec=attempt.codec,
        quality=attempt.quality,
        target_bytes=request.target_bytes,
    )
