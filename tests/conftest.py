"""
Shared fixtures for image pipeline tests.

FakeCodec stands in for Pillow where the search logic is under test:
encoded size is width * height * quality, so fits are predictable.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

import pytest

from kiln.imaging.codec import ImageCodec
from kiln.imaging.errors import DecodeError, EncodeUnavailable
from kiln.observability.metrics import metrics


@dataclass
class FakeSurface:
    width: int
    height: int


class FakeCodec(ImageCodec):
    """
    Deterministic codec.

    decode() reads "WxH" from the blob, e.g. b"4000x3000".
    encode() returns int(width * height * quality) bytes.

    Failures can be injected per codec (unavailable, empty output), at an
    exact (codec, quality) pair, or on the Nth encode call for a codec.
    """

    def __init__(
        self,
        unavailable: Set[str] = frozenset(),
        empty: Set[str] = frozenset(),
        fail_at: Set[Tuple[str, float]] = frozenset(),
        fail_on_call: Optional[Dict[str, int]] = None,
    ):
        self.unavailable = set(unavailable)
        self.empty = set(empty)
        self.fail_at = set(fail_at)
        self.fail_on_call = dict(fail_on_call or {})
        self.calls: List[Tuple[str, float]] = []
        self.resampled: List[Tuple[int, int]] = []

    def decode(self, data: bytes) -> FakeSurface:
        try:
            w, h = data.decode().split("x")
            return FakeSurface(int(w), int(h))
        except (UnicodeDecodeError, ValueError) as e:
            raise DecodeError(f"not an image: {data[:10]!r}") from e

    def resample(self, surface: FakeSurface, size: Tuple[int, int]) -> FakeSurface:
        self.resampled.append(size)
        return FakeSurface(*size)

    def encode(self, surface: FakeSurface, codec: str, quality: float) -> bytes:
        self.calls.append((codec, quality))
        nth = sum(1 for c, _ in self.calls if c == codec)
        if codec in self.unavailable:
            raise EncodeUnavailable(codec, "disabled in test")
        if (codec, quality) in self.fail_at or self.fail_on_call.get(codec) == nth:
            raise EncodeUnavailable(codec, f"injected failure at q={quality}")
        if codec in self.empty:
            return b""
        return b"\x00" * int(surface.width * surface.height * quality)

    def calls_for(self, codec: str) -> List[float]:
        return [q for c, q in self.calls if c == codec]


@pytest.fixture
def fake_codec() -> FakeCodec:
    return FakeCodec()


@pytest.fixture
def make_fake_codec():
    """Factory for FakeCodec with injected failures."""
    return FakeCodec


@pytest.fixture
def make_surface():
    return FakeSurface


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()
