"""
Tests for the Pillow codec — decode, resample, encode.
"""

import io

import pytest
from PIL import Image

from kiln.imaging.codec import PillowCodec, quality_to_pillow
from kiln.imaging.errors import DecodeError, EncodeUnavailable
from kiln.imaging.models import JPEG, WEBP


# ── Test Image Helpers ───────────────────────────────────────


def _make_image(width: int, height: int, fmt: str = "PNG", color=(180, 90, 40), mode="RGB") -> bytes:
    """Solid-colour image of the given size, encoded with Pillow."""
    if mode == "RGBA" and len(color) == 3:
        color = (*color, 128)
    img = Image.new(mode, (width, height), color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def _make_noise(width: int, height: int) -> bytes:
    """Gaussian-noise PNG; compresses badly."""
    img = Image.merge(
        "RGB",
        [Image.effect_noise((width, height), 64) for _ in range(3)],
    )
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _make_rotated_jpeg(width: int, height: int, orientation: int = 6) -> bytes:
    """JPEG stored as width x height with an EXIF orientation tag."""
    img = Image.new("RGB", (width, height), (10, 120, 200))
    exif = Image.Exif()
    exif[0x0112] = orientation
    buf = io.BytesIO()
    img.save(buf, format="JPEG", exif=exif.tobytes())
    return buf.getvalue()


@pytest.fixture
def codec() -> PillowCodec:
    return PillowCodec()


class TestDecode:

    @pytest.mark.parametrize("fmt", ["PNG", "JPEG", "WEBP"])
    def test_common_formats(self, codec, fmt):
        img = codec.decode(_make_image(64, 48, fmt=fmt))
        assert (img.width, img.height) == (64, 48)

    def test_heif_phone_photo(self, codec):
        # Opener registered when kiln.imaging.codec is imported
        img = codec.decode(_make_image(64, 48, fmt="HEIF"))
        assert (img.width, img.height) == (64, 48)
        assert img.mode in ("RGB", "RGBA")

    def test_heif_resized_and_reencoded(self, codec):
        img = codec.decode(_make_image(640, 480, fmt="HEIF"))
        out = codec.resample(img, (320, 240))
        data = codec.encode(out, JPEG, 0.8)
        assert Image.open(io.BytesIO(data)).size == (320, 240)

    def test_exif_orientation_swaps_dimensions(self, codec):
        # Stored landscape, tagged "rotate 90 CW" → displayed portrait
        img = codec.decode(_make_rotated_jpeg(40, 20, orientation=6))
        assert (img.width, img.height) == (20, 40)

    def test_exif_orientation_upright_untouched(self, codec):
        img = codec.decode(_make_rotated_jpeg(40, 20, orientation=1))
        assert (img.width, img.height) == (40, 20)

    def test_garbage_raises(self, codec):
        with pytest.raises(DecodeError):
            codec.decode(b"definitely not an image")

    def test_empty_raises(self, codec):
        with pytest.raises(DecodeError):
            codec.decode(b"")

    def test_truncated_raises(self, codec):
        data = _make_noise(200, 200)
        with pytest.raises(DecodeError):
            codec.decode(data[: len(data) // 2])


class TestResample:

    def test_target_size(self, codec):
        img = codec.decode(_make_image(400, 300))
        out = codec.resample(img, (200, 150))
        assert out.size == (200, 150)

    def test_palette_converted(self, codec):
        img = Image.new("P", (40, 40))
        out = codec.resample(img, (20, 20))
        assert out.mode == "RGB"


class TestEncode:

    def test_webp(self, codec):
        img = codec.decode(_make_image(120, 80))
        data = codec.encode(img, WEBP, 0.8)
        assert Image.open(io.BytesIO(data)).format == "WEBP"

    def test_jpeg(self, codec):
        img = codec.decode(_make_image(120, 80))
        data = codec.encode(img, JPEG, 0.8)
        out = Image.open(io.BytesIO(data))
        assert out.format == "JPEG"
        assert out.size == (120, 80)

    def test_jpeg_flattens_alpha(self, codec):
        img = codec.decode(_make_image(50, 50, mode="RGBA"))
        out = Image.open(io.BytesIO(codec.encode(img, JPEG, 0.7)))
        assert out.mode == "RGB"

    def test_webp_keeps_alpha(self, codec):
        img = codec.decode(_make_image(50, 50, mode="RGBA"))
        out = Image.open(io.BytesIO(codec.encode(img, WEBP, 0.7)))
        assert out.mode == "RGBA"

    def test_lower_quality_not_larger(self, codec):
        img = codec.decode(_make_noise(200, 200))
        assert len(codec.encode(img, JPEG, 0.3)) < len(codec.encode(img, JPEG, 0.9))

    def test_unknown_codec(self, codec):
        img = codec.decode(_make_image(10, 10))
        with pytest.raises(EncodeUnavailable):
            codec.encode(img, "image/avif-ish", 0.8)

    def test_missing_feature(self, codec, monkeypatch):
        monkeypatch.setattr("kiln.imaging.codec.features.check", lambda name: name != "webp")
        img = codec.decode(_make_image(10, 10))
        with pytest.raises(EncodeUnavailable) as exc:
            codec.encode(img, WEBP, 0.8)
        assert exc.value.codec == WEBP


class TestQualityMapping:

    @pytest.mark.parametrize(
        "q,expected", [(0.55, 55), (0.88, 88), (0.7, 70), (0.0, 1), (1.2, 100)]
    )
    def test_scale(self, q, expected):
        assert quality_to_pillow(q) == expected
