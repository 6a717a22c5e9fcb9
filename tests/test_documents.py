"""Certificate intake helpers."""

import os

import pytest
from PIL import Image

from card_cropper.codec import PillowCodec
from card_cropper.documents import (
    auto_crop_document,
    compress_image_to_max_size,
    ensure_supported_mime,
    normalize_orientation,
)
from card_cropper.errors import OversizedError, UnsupportedFormat
from conftest import FakeCodec


class TestEnsureSupportedMime:
    def test_accepts_jpeg_and_png(self):
        assert ensure_supported_mime("image/jpeg") == "image/jpeg"
        assert ensure_supported_mime("IMAGE/PNG") == "image/png"

    def test_missing_type_defaults_to_jpeg(self):
        assert ensure_supported_mime(None) == "image/jpeg"

    def test_rejects_other_types(self):
        with pytest.raises(UnsupportedFormat) as exc_info:
            ensure_supported_mime("image/heic", "scan.heic")
        assert exc_info.value.mime_type == "image/heic"
        assert exc_info.value.message_key == "unsupported_format"


def test_auto_crop_is_not_available():
    assert auto_crop_document("scan.jpg", 1000, 1400) is None


def test_normalize_orientation_reencodes_at_full_quality():
    codec = FakeCodec()
    normalize_orientation(codec, "scan.png", "image/png")
    _, ops, options = codec.calls[0]
    assert ops == {"rotate": 0}
    assert options.format == "png"
    assert options.quality == 1.0


def test_normalize_orientation_bakes_exif(rotated_jpeg):
    with PillowCodec() as codec:
        result = normalize_orientation(codec, rotated_jpeg, "image/jpeg")
        with Image.open(result.uri) as img:
            assert img.size == (300, 400)


class TestCompressImageToMaxSize:
    def test_jpeg_steps_quality_from_original(self):
        codec = FakeCodec(sizes=[1_500_000, 1_200_000, 900_000])
        compressed = compress_image_to_max_size(codec, "scan.jpg", "image/jpeg", call_timeout=None)

        assert [c[2].quality for c in codec.calls] == [0.92, 0.77, 0.62]
        assert all(c[0] == "scan.jpg" and c[1] == {} for c in codec.calls)
        assert compressed.size == 900_000
        assert compressed.mime_type == "image/jpeg"
        assert compressed.base64

    def test_png_falls_back_to_jpeg(self):
        codec = FakeCodec(sizes=[3_000_000, 800_000])
        compressed = compress_image_to_max_size(codec, "scan.png", "image/png", call_timeout=None)

        assert [c[2].format for c in codec.calls] == ["png", "jpeg"]
        assert codec.calls[1][2].quality == 0.85
        assert compressed.mime_type == "image/jpeg"

    def test_small_png_stays_png(self):
        codec = FakeCodec(sizes=[400_000])
        compressed = compress_image_to_max_size(codec, "scan.png", "image/png", call_timeout=None)
        assert compressed.mime_type == "image/png"

    def test_gives_up_after_six_reencodes(self):
        codec = FakeCodec(sizes=[2_000_000])
        with pytest.raises(OversizedError) as exc_info:
            compress_image_to_max_size(codec, "scan.jpg", "image/jpeg", call_timeout=None)
        assert len(codec.calls) == 7
        assert exc_info.value.message_key == "certificate_too_large"
        assert codec.live == set()

    def test_custom_limit(self):
        codec = FakeCodec(sizes=[600_000, 450_000])
        compressed = compress_image_to_max_size(codec, "scan.jpg", "image/jpeg", max_size_bytes=500_000,
                                                call_timeout=None)
        assert compressed.size == 450_000

    def test_initial_dimensions_fill_missing_values(self):
        class NoSizeCodec(FakeCodec):
            def manipulate(self, uri, ops, options):
                image = super().manipulate(uri, ops, options)
                return image.__class__(image.uri, 0, 0, image.base64, image.byte_size)

        compressed = compress_image_to_max_size(NoSizeCodec(), "scan.jpg", "image/jpeg",
                                                initial_width=1200, initial_height=1600, call_timeout=None)
        assert (compressed.width, compressed.height) == (1200, 1600)

    def test_real_image_fits_limit(self, noisy_jpeg):
        limit = os.path.getsize(noisy_jpeg) // 2
        with PillowCodec() as codec:
            compressed = compress_image_to_max_size(codec, noisy_jpeg, "image/jpeg", max_size_bytes=limit)
            assert compressed.size <= limit
            assert os.path.getsize(compressed.uri) == compressed.size
