"""
Imaging Models — request and result types for the budget pipeline.

A CompressionRequest is immutable per call. EncodingAttempts are transient
candidates produced during the quality search; exactly one becomes the
CompressionResult handed back to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePath
from typing import Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

WEBP = "image/webp"
JPEG = "image/jpeg"


def extension_for(codec: str) -> str:
    """File extension for an output codec (without the dot)."""
    return "webp" if codec == WEBP else "jpg"


class CompressionRequest(BaseModel):
    """Size and byte budget for one derivative."""

    model_config = ConfigDict(frozen=True)

    max_width: int = Field(gt=0)
    max_height: int = Field(gt=0)
    target_bytes: int = Field(gt=0)
    preferred_codec: str = WEBP
    fallback_codec: str = JPEG
    quality_min: float = 0.55
    quality_max: float = 0.88

    @model_validator(mode="after")
    def _check_quality_range(self) -> "CompressionRequest":
        if not 0 < self.quality_min < self.quality_max <= 1:
            raise ValueError(
                f"quality range must satisfy 0 < min < max <= 1, "
                f"got [{self.quality_min}, {self.quality_max}]"
            )
        return self

    @property
    def codec_order(self) -> Tuple[str, str]:
        return (self.preferred_codec, self.fallback_codec)


@dataclass
class EncodingAttempt:
    """One encoded candidate for a (codec, quality) pair."""

    codec: str
    quality: float
    data: bytes
    fits: bool = False

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class CompressionResult:
    """The single artifact returned by the pipeline."""

    data: bytes
    width: int
    height: int
    codec: str
    quality: float
    target_bytes: int

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def within_budget(self) -> bool:
        return self.size <= self.target_bytes

    @property
    def extension(self) -> str:
        return extension_for(self.codec)

    @property
    def content_type(self) -> str:
        return self.codec

    def filename(self, base: str = "image") -> str:
        """Name the artifact after its source, with the codec's extension.

        ``"glaze test.HEIC"`` becomes ``"glaze test.webp"`` when encoded as
        WebP. An empty base falls back to ``"image"``.
        """
        stem = PurePath(base).stem if base else ""
        return f"{stem or 'image'}.{self.extension}"
