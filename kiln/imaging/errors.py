"""
Imaging errors.

- DecodeError: the blob is not a raster image the host can read. Fatal
  for the invocation, never replaced with a placeholder.
- EncodeUnavailable: a codec cannot encode on this host. Absorbed by the
  codec fallback; raised to callers only once every codec has failed.

An over-budget result at minimum quality is not an error. It is logged
and counted, and the result is still returned.
"""

from __future__ import annotations

from typing import Optional


class ImagingError(Exception):
    """Base class for image pipeline failures."""


class DecodeError(ImagingError):
    """Input could not be decoded into a raster image."""


class EncodeUnavailable(ImagingError):
    """A codec is unsupported or failed to produce output."""

    def __init__(self, codec: str, reason: Optional[str] = None):
        self.codec = codec
        self.reason = reason
        message = f"Encoder unavailable for {codec}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
