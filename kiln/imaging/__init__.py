"""
Imaging — decode, resize and encode photos under a byte budget.
"""

from .errors import DecodeError, EncodeUnavailable, ImagingError
from .models import JPEG, WEBP, CompressionRequest, CompressionResult
from .pipeline import compress_pair, resize_to_budget

__all__ = [
    "resize_to_budget",
    "compress_pair",
    "CompressionRequest",
    "CompressionResult",
    "ImagingError",
    "DecodeError",
    "EncodeUnavailable",
    "WEBP",
    "JPEG",
]
