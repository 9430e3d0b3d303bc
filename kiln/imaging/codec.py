"""
Image Codec — decode, resample and encode through a raster backend.

The budget search only needs three capabilities from the host:

1. decode(bytes) → surface, honouring EXIF orientation
2. resample(surface, size) → surface, with high-quality filtering
3. encode(surface, codec, quality) → bytes

PillowCodec is the production backend. Tests substitute a fake with
deterministic size-vs-quality behaviour.
"""

from __future__ import annotations

import io
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import pillow_heif
from PIL import Image, ImageOps, UnidentifiedImageError, features

from .errors import DecodeError, EncodeUnavailable
from .models import JPEG, WEBP

logger = logging.getLogger(__name__)

pillow_heif.register_heif_opener()

# MIME codec → (Pillow format name, Pillow feature required)
PILLOW_FORMATS: Dict[str, Tuple[str, Optional[str]]] = {
    WEBP: ("WEBP", "webp"),
    JPEG: ("JPEG", "jpg"),
}

WEBP_METHOD = 4  # compression effort (0-6)


class ImageCodec(ABC):
    """Raster capability used by the pipeline."""

    @abstractmethod
    def decode(self, data: bytes) -> Any:
        """Decode a blob into a surface with .width and .height."""

    @abstractmethod
    def resample(self, surface: Any, size: Tuple[int, int]) -> Any:
        """Return a new surface of the given size."""

    @abstractmethod
    def encode(self, surface: Any, codec: str, quality: float) -> bytes:
        """Encode a surface. Raises EncodeUnavailable on failure."""


def quality_to_pillow(quality: float) -> int:
    """Map a 0-1 quality onto Pillow's 1-100 scale."""
    return max(1, min(100, int(round(quality * 100))))


class PillowCodec(ImageCodec):
    """Pillow-backed codec. HEIC/HEIF input is handled by pillow-heif."""

    def decode(self, data: bytes) -> Image.Image:
        if not data:
            raise DecodeError("Empty image data")
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
            fmt = img.format or "image"
            # Rotate/flip so dimensions match what a viewer shows
            img = ImageOps.exif_transpose(img)
        except (
            UnidentifiedImageError,
            Image.DecompressionBombError,
            OSError,
            ValueError,
            SyntaxError,
        ) as e:
            raise DecodeError(f"Cannot decode image: {e}") from e
        logger.debug(f"Decoded {fmt} {img.width}x{img.height} ({img.mode})")
        return img

    def resample(self, surface: Image.Image, size: Tuple[int, int]) -> Image.Image:
        img = surface
        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA" if _has_alpha(img) else "RGB")
        return img.resize(size, Image.LANCZOS)

    def encode(self, surface: Image.Image, codec: str, quality: float) -> bytes:
        if codec not in PILLOW_FORMATS:
            raise EncodeUnavailable(codec, "unknown codec")
        fmt, feature = PILLOW_FORMATS[codec]
        if feature and not features.check(feature):
            raise EncodeUnavailable(codec, f"Pillow built without {feature} support")

        img = _prepare_mode(surface, fmt)
        save_kwargs: Dict[str, Any] = {"quality": quality_to_pillow(quality)}
        if fmt == "WEBP":
            save_kwargs["method"] = WEBP_METHOD
        else:
            save_kwargs["optimize"] = True

        buf = io.BytesIO()
        try:
            img.save(buf, format=fmt, **save_kwargs)
        except (OSError, ValueError, KeyError) as e:
            raise EncodeUnavailable(codec, str(e)) from e
        return buf.getvalue()


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or (
        img.mode == "P" and "transparency" in img.info
    )


def _prepare_mode(img: Image.Image, fmt: str) -> Image.Image:
    """Convert colour mode to something the target format accepts."""
    if fmt == "JPEG":
        if _has_alpha(img):
            # JPEG has no alpha, flatten onto white
            rgba = img.convert("RGBA")
            bg = Image.new("RGB", rgba.size, (255, 255, 255))
            bg.paste(rgba, mask=rgba.split()[-1])
            return bg
        if img.mode != "RGB":
            return img.convert("RGB")
        return img
    if img.mode not in ("RGB", "RGBA"):
        return img.convert("RGBA" if _has_alpha(img) else "RGB")
    return img
