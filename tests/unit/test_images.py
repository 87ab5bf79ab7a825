"""Unit tests for image preparation before analysis."""

import base64
import os
from io import BytesIO

import pytest
from PIL import Image

from crisper.images import images
from crisper.images.images import (
    compress_image,
    decode_image_base64,
    detect_mime_type,
    prepare_image,
    validate_image_format,
    validate_image_size,
)
from crisper.utils.errors import ValidationError


def make_image(fmt="PNG", size=(32, 32), mode="RGB", noise=False):
    if noise:
        img = Image.frombytes("RGB", size, os.urandom(size[0] * size[1] * 3))
    else:
        img = Image.new(mode, size, color=(200, 80, 40) if mode == "RGB" else None)
    output = BytesIO()
    img.save(output, format=fmt)
    return output.getvalue()


class TestDecodeImageBase64:
    def test_plain_base64(self):
        assert decode_image_base64(base64.b64encode(b"abc").decode()) == b"abc"

    def test_data_url(self):
        data_url = "data:image/png;base64," + base64.b64encode(b"abc").decode()
        assert decode_image_base64(data_url) == b"abc"

    @pytest.mark.parametrize("value", ["", "   ", "not base64!!"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            decode_image_base64(value)


class TestValidation:
    def test_supported_formats_detected(self):
        assert detect_mime_type(make_image("PNG")) == "image/png"
        assert detect_mime_type(make_image("JPEG")) == "image/jpeg"
        assert detect_mime_type(make_image("WEBP")) == "image/webp"

    def test_unsupported_format(self):
        assert detect_mime_type(make_image("GIF", mode="P")) is None
        assert validate_image_format(b"plain text") is False

    def test_size_limit(self, monkeypatch):
        monkeypatch.setattr(images.config, "MAX_IMAGE_SIZE_MB", 1)

        assert validate_image_size(b"x" * (1024 * 1024)) is True
        assert validate_image_size(b"x" * (1024 * 1024 + 1)) is False


class TestCompressImage:
    def test_small_image_untouched(self, monkeypatch):
        monkeypatch.setattr(images.config, "COMPRESS_IMG_THRESHOLD_KB", 300)
        data = make_image("PNG")

        assert compress_image(data) is data

    def test_large_image_resized_and_reencoded(self, monkeypatch):
        monkeypatch.setattr(images.config, "COMPRESS_IMG_THRESHOLD_KB", 1)
        data = make_image("PNG", size=(1600, 400), noise=True)

        compressed = compress_image(data, max_width=800)

        assert len(compressed) < len(data)
        result = Image.open(BytesIO(compressed))
        assert result.format == "JPEG"
        assert result.size == (800, 200)

    def test_unreadable_data_returned_as_is(self, monkeypatch):
        monkeypatch.setattr(images.config, "COMPRESS_IMG_THRESHOLD_KB", 0)
        data = b"\xff\xd8\xff" + b"garbage" * 10

        assert compress_image(data) is data


class TestPrepareImage:
    def test_prepare_png_without_compression(self, monkeypatch):
        monkeypatch.setattr(images.config, "COMPRESS_IMG", False)
        data = make_image("PNG")

        prepared = prepare_image(base64.b64encode(data).decode(), mime_type="image/jpeg")

        assert prepared.mime_type == "image/png"
        assert base64.b64decode(prepared.image_base64) == data
        assert prepared.size_bytes == len(data)

    def test_prepare_compresses_large_image(self, monkeypatch):
        monkeypatch.setattr(images.config, "COMPRESS_IMG", True)
        monkeypatch.setattr(images.config, "COMPRESS_IMG_THRESHOLD_KB", 1)
        data = make_image("PNG", size=(400, 400), noise=True)

        prepared = prepare_image("data:image/png;base64," + base64.b64encode(data).decode())

        assert prepared.mime_type == "image/jpeg"
        assert prepared.size_bytes < len(data)

    def test_unsupported_format_rejected(self):
        with pytest.raises(ValidationError) as exc:
            prepare_image(base64.b64encode(b"just some text").decode())
        assert "Invalid image format" in exc.value.message

    def test_oversized_image_rejected(self, monkeypatch):
        monkeypatch.setattr(images.config, "MAX_IMAGE_SIZE_MB", 0)

        with pytest.raises(ValidationError) as exc:
            prepare_image(base64.b64encode(make_image("PNG")).decode())
        assert "Image too large" in exc.value.message
