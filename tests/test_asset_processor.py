"""Tests for image preparation under the payload budget

Run with pytest from project root:
    pytest tests/test_asset_processor.py -v
"""

import asyncio
import base64
import os
from io import BytesIO

import pytest
from PIL import Image

from asset_processor import (
    DATA_URI_PREFIX,
    MediaPreparer,
    decode_image,
    describe_payload,
    encode_tier,
    estimate_decoded_size,
    fit_within,
    load_source_bytes,
)
from conftest import make_image_bytes
from models.errors import MediaTooLarge, UnreadableFile


def gradient_jpeg(size=(2000, 1500)):
    width, height = size
    img = Image.linear_gradient("L").resize(size).convert("RGB")
    buf = BytesIO()
    img.save(buf, format="JPEG", quality=95)
    return buf.getvalue()


def noise_png(size=(1200, 900)):
    width, height = size
    img = Image.frombytes("RGB", size, os.urandom(width * height * 3))
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class TestHelpers:
    """Tests for size estimation and geometry helpers"""

    def test_estimate_decoded_size_matches_padding(self):
        """Estimate is len * 3/4 minus padding"""
        for raw in (b"a", b"ab", b"abc", b"abcd" * 100):
            b64 = base64.b64encode(raw).decode()
            assert estimate_decoded_size(b64) == len(raw)

    def test_estimate_accepts_data_uri(self):
        b64 = base64.b64encode(b"x" * 30).decode()
        assert estimate_decoded_size(DATA_URI_PREFIX + b64) == 30

    def test_fit_within_downscales_longest_edge(self):
        assert fit_within((2000, 1500), 800) == (800, 600)
        assert fit_within((1500, 2000), 800) == (600, 800)

    def test_fit_within_never_upscales(self):
        assert fit_within((320, 200), 800) == (320, 200)

    def test_decode_flattens_alpha(self):
        """RGBA input comes back as RGB over white"""
        data = make_image_bytes(size=(10, 10), color=(0, 0, 0, 0), fmt="PNG", mode="RGBA")
        img = decode_image(data)
        assert img.mode == "RGB"
        assert img.getpixel((5, 5)) == (255, 255, 255)

    def test_load_source_bytes_from_path_and_data_uri(self, tmp_path, image_bytes):
        path = tmp_path / "photo.jpg"
        path.write_bytes(image_bytes)
        assert load_source_bytes(str(path)) == image_bytes

        uri = "data:image/jpeg;base64," + base64.b64encode(image_bytes).decode()
        assert load_source_bytes(uri) == image_bytes

    def test_load_source_bytes_missing_file(self, tmp_path):
        with pytest.raises(UnreadableFile):
            load_source_bytes(str(tmp_path / "missing.jpg"))


class TestMediaPreparer:
    """Tests for the compression ladder"""

    def test_large_gradient_fits_budget(self):
        """A 2000x1500 photo-like image lands under 1MB as a JPEG data URI"""
        payload = MediaPreparer().prepare_sync(gradient_jpeg())

        assert payload.data_uri.startswith(DATA_URI_PREFIX)
        assert payload.mime_type == "image/jpeg"
        assert payload.estimated_bytes <= 1_000_000
        assert max(payload.size_px) <= 800
        assert payload.source_size_px == (2000, 1500)
        assert payload.tier == 1

        decoded = base64.b64decode(payload.data_uri[len(DATA_URI_PREFIX):])
        assert len(decoded) == payload.bytes_len
        with Image.open(BytesIO(decoded)) as img:
            assert img.format == "JPEG"

    def test_small_image_not_upscaled(self, image_bytes):
        payload = MediaPreparer().prepare_sync(image_bytes)
        assert payload.size_px == (64, 48)

    def test_falls_through_to_later_tier(self):
        """When the first tier is over budget a smaller tier is used"""
        data = noise_png()
        b64, _ = encode_tier(decode_image(data), 800, 70)
        budget = estimate_decoded_size(b64) - 1

        payload = MediaPreparer(budget_bytes=budget).prepare_sync(data)
        assert payload.tier >= 2
        assert payload.estimated_bytes <= budget
        assert max(payload.size_px) <= 600

    def test_noise_over_tiny_budget_raises(self):
        """Incompressible content is refused after every tier"""
        with pytest.raises(MediaTooLarge) as excinfo:
            MediaPreparer(budget_bytes=1_000).prepare_sync(noise_png(size=(900, 900)))

        assert excinfo.value.attempts == 3
        assert excinfo.value.budget_bytes == 1_000
        assert excinfo.value.estimated_bytes > 1_000

    def test_unreadable_bytes(self):
        with pytest.raises(UnreadableFile):
            MediaPreparer().prepare_sync(b"definitely not an image")

    def test_pixel_bomb_is_media_too_large(self, image_bytes, monkeypatch):
        """Images over Pillow's decompression limit are refused, not leaked as PIL errors"""
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1_000)

        with pytest.raises(MediaTooLarge):
            MediaPreparer().prepare_sync(image_bytes)

    def test_directory_path_is_unreadable(self, tmp_path):
        with pytest.raises(UnreadableFile):
            MediaPreparer().prepare_sync(str(tmp_path))

    def test_prepare_all_is_ordered(self):
        red = make_image_bytes(size=(30, 20), color=(255, 0, 0))
        blue = make_image_bytes(size=(20, 30), color=(0, 0, 255))

        payloads = asyncio.run(MediaPreparer().prepare_all([red, blue]))
        assert [p.size_px for p in payloads] == [(30, 20), (20, 30)]

    def test_invalid_budget(self):
        with pytest.raises(ValueError):
            MediaPreparer(budget_bytes=0)

    def test_describe_payload_omits_body(self, image_bytes):
        payload = MediaPreparer().prepare_sync(image_bytes)
        summary = describe_payload(payload, preview_chars=10)
        assert summary["width"] == 64
        assert summary["preview"].endswith("...")
        assert len(summary["preview"]) == 13
