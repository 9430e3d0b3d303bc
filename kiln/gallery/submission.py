"""
Submission — turn an uploaded photo and its form fields into a gallery record.

Flow:
1. Validate form fields (identifier required, tags from CSV)
2. Compress main image + thumbnail under the capacity budgets
3. Upload both through an Uploader under images/<uid>/...
4. Return the record to store in the gallery collection

Storage and the document store are external; Uploader is the seam.
"""

from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator

from ..config.budget import CapacitySettings
from ..imaging.codec import ImageCodec
from ..imaging.models import CompressionResult
from ..imaging.pipeline import compress_pair

logger = logging.getLogger(__name__)

CACHE_CONTROL = "public, max-age=31536000, immutable"
DEFAULT_UID = "anon"


class SubmissionError(Exception):
    """A submission is missing required input."""


class PieceSubmission(BaseModel):
    """Form fields for a new pottery piece."""

    identifier: str
    glaze: str = ""
    clay_body: str = ""
    notes: str = ""
    tags: List[str] = Field(default_factory=list)

    @field_validator("identifier", "glaze", "clay_body", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("notes", mode="before")
    @classmethod
    def _notes_as_typed(cls, value: Any) -> str:
        return str(value or "")

    @field_validator("identifier")
    @classmethod
    def _require_identifier(cls, value: str) -> str:
        if not value:
            raise ValueError("identifier is required")
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [str(t).strip() for t in value if str(t).strip()]


def slugify(identifier: str) -> str:
    """'Celadon Bowl #3' → 'celadon-bowl-3'; 'piece' when nothing is left."""
    slug = re.sub(r"[^a-z0-9]+", "-", identifier.lower()).strip("-")
    return slug or "piece"


def storage_paths(
    uid: Optional[str],
    slug: str,
    stamp: int,
    main_ext: str,
    thumb_ext: str,
) -> Tuple[str, str]:
    """Return (main_path, thumb_path) in blob storage."""
    owner = uid or DEFAULT_UID
    return (
        f"images/{owner}/{slug}-{stamp}.{main_ext}",
        f"images/{owner}/thumbs/{slug}-{stamp}.{thumb_ext}",
    )


def upload_metadata(result: CompressionResult) -> Dict[str, str]:
    """Blob metadata for an uploaded derivative."""
    return {"contentType": result.content_type, "cacheControl": CACHE_CONTROL}


class Uploader(ABC):
    """Blob storage that returns a retrievable URL per upload."""

    @abstractmethod
    def upload(self, path: str, data: bytes, metadata: Dict[str, str]) -> str:
        """Store data at path and return its URL."""


class LocalUploader(Uploader):
    """
    Write uploads under a local directory.

    Each file gets a ``<name>.meta.json`` sidecar with its metadata. URLs
    are ``<base_url>/<path>`` when base_url is set, else ``file://`` URIs.
    """

    def __init__(self, root: Path, base_url: Optional[str] = None):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/") if base_url else None

    def upload(self, path: str, data: bytes, metadata: Dict[str, str]) -> str:
        target = self.root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        sidecar = target.with_name(target.name + ".meta.json")
        sidecar.write_text(json.dumps(metadata, indent=2), encoding="utf-8")
        logger.debug(f"Stored {len(data):,} bytes at {target}")

        if self.base_url:
            return f"{self.base_url}/{path}"
        return target.resolve().as_uri()


def submit_piece(
    submission: Union[PieceSubmission, Dict[str, Any]],
    image: Optional[bytes],
    uploader: Uploader,
    settings: Optional[CapacitySettings] = None,
    *,
    uid: Optional[str] = None,
    codec: Optional[ImageCodec] = None,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Compress, upload and build the gallery record for one piece.

    Returns:
        Record dict with image/thumb URLs and the main image's dimensions.

    Raises:
        SubmissionError: Identifier or image missing.
        DecodeError: The image can't be decoded. Nothing is uploaded.
    """
    if not isinstance(submission, PieceSubmission):
        try:
            submission = PieceSubmission(**submission)
        except ValueError as e:
            raise SubmissionError("Please provide an identifier and an image.") from e
    if not image:
        raise SubmissionError("Please provide an identifier and an image.")

    settings = settings or CapacitySettings()
    main, thumb = compress_pair(
        image, settings.main_request(), settings.thumb_request(), codec=codec
    )

    stamp = int(round((now if now is not None else time.time()) * 1000))
    slug = slugify(submission.identifier)
    main_path, thumb_path = storage_paths(uid, slug, stamp, main.extension, thumb.extension)

    image_url = uploader.upload(main_path, main.data, upload_metadata(main))
    thumb_url = uploader.upload(thumb_path, thumb.data, upload_metadata(thumb))

    logger.info(
        f"Submitted {submission.identifier!r}: main {main.size:,} B, thumb {thumb.size:,} B",
        extra={"identifier": submission.identifier},
    )

    return {
        "identifier": submission.identifier,
        "glaze": submission.glaze,
        "clay_body": submission.clay_body,
        "notes": submission.notes,
        "tags": submission.tags,
        "image_url": image_url,
        "thumb_url": thumb_url,
        "width": main.width,
        "height": main.height,
        "submitted_at": stamp,
    }
