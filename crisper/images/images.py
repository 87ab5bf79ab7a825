"""Client-side preparation of fridge/pantry photos before analysis.

Pipeline used by the router's image path:
1. decode_image_base64(): accept plain base64 or a data: URL
2. validate_image_format(): magic-byte check (JPEG, PNG, WEBP)
3. validate_image_size(): MAX_IMAGE_SIZE_MB limit on decoded bytes
4. compress_image(): optional JPEG re-encode for large photos
"""

import base64
import binascii
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

import filetype
from PIL import Image, UnidentifiedImageError

from crisper.utils.config import config
from crisper.utils.errors import ValidationError
from crisper.utils.logger import logger


SUPPORTED_MIME_TYPES = {
    "jpg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
}


@dataclass
class PreparedImage:
    image_base64: str
    mime_type: str
    size_bytes: int


def decode_image_base64(image_data: str) -> bytes:
    """Decode plain base64 or a data:[<mediatype>];base64,<data> URL.

    Raises:
        ValidationError: If the payload is empty or not valid base64.
    """
    if not image_data or not image_data.strip():
        raise ValidationError("Image data is required")

    encoded = image_data.strip()
    if encoded.startswith("data:"):
        _, _, encoded = encoded.partition(",")

    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Image data is not valid base64")


def detect_mime_type(image_bytes: bytes) -> Optional[str]:
    """MIME type from magic bytes, or None for unsupported formats."""
    kind = filetype.guess(image_bytes)
    if kind is None:
        return None
    return SUPPORTED_MIME_TYPES.get(kind.extension)


def validate_image_format(image_bytes: bytes) -> bool:
    """Validate image format (JPEG, PNG or WEBP) from magic bytes.

    Returns:
        True if valid format, False otherwise.
    """
    if detect_mime_type(image_bytes) is None:
        logger.warning(f"Invalid image format: {filetype.guess(image_bytes)}. Only JPEG, PNG and WEBP supported.")
        return False
    return True


def validate_image_size(image_bytes: bytes) -> bool:
    """Validate decoded image size against MAX_IMAGE_SIZE_MB."""
    size_mb = len(image_bytes) / (1024 * 1024)
    if size_mb > config.MAX_IMAGE_SIZE_MB:
        logger.warning(f"Image size {size_mb:.2f}MB exceeds limit of {config.MAX_IMAGE_SIZE_MB}MB")
        return False
    return True


def compress_image(image_bytes: bytes, max_width: int = 1024) -> bytes:
    """Compress image for upload using Pillow.

    Uses JPEG quality=85 + optimize + progressive, resizes wide images and
    converts palette/alpha modes to RGB. Images below
    COMPRESS_IMG_THRESHOLD_KB are returned untouched, as is the original when
    Pillow cannot read the data.

    Args:
        image_bytes: Raw image bytes to compress
        max_width: Maximum image width in pixels

    Returns:
        JPEG bytes, or the original bytes when compression is skipped.
    """
    size_kb = len(image_bytes) / 1024
    if size_kb < config.COMPRESS_IMG_THRESHOLD_KB:
        logger.debug(
            f"Image size {size_kb:.1f}KB below compression threshold "
            f"({config.COMPRESS_IMG_THRESHOLD_KB}KB), skipping compression"
        )
        return image_bytes

    try:
        img = Image.open(BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Image compression skipped: {e}")
        return image_bytes

    if img.mode in ("RGBA", "LA", "P"):
        rgb_img = Image.new("RGB", img.size, (255, 255, 255))
        if img.mode == "P":
            img = img.convert("RGBA")
        rgb_img.paste(img, mask=img.split()[-1])
        img = rgb_img
    elif img.mode != "RGB":
        img = img.convert("RGB")

    if img.width > max_width:
        ratio = max_width / img.width
        img = img.resize((max_width, int(img.height * ratio)), Image.Resampling.LANCZOS)

    output = BytesIO()
    img.save(output, format="JPEG", quality=85, optimize=True, progressive=True)
    compressed = output.getvalue()

    if len(compressed) >= len(image_bytes):
        logger.debug("Compressed image is not smaller, keeping original")
        return image_bytes

    logger.debug(
        f"Image compressed: {len(image_bytes) / 1024:.1f}KB → {len(compressed) / 1024:.1f}KB "
        f"({(1 - len(compressed) / len(image_bytes)) * 100:.1f}% reduction)"
    )
    return compressed


def prepare_image(image_data: str, mime_type: Optional[str] = None) -> PreparedImage:
    """Validate and optionally compress an image for the analysis call.

    Args:
        image_data: Plain base64 or a data: URL.
        mime_type: Declared MIME type; the detected type wins when they differ.

    Returns:
        PreparedImage with plain base64 (no data: prefix) and its MIME type.

    Raises:
        ValidationError: Undecodable, unsupported or oversized image.
    """
    image_bytes = decode_image_base64(image_data)

    if not validate_image_format(image_bytes):
        raise ValidationError("Invalid image format. Only JPEG, PNG and WEBP are supported.")
    if not validate_image_size(image_bytes):
        raise ValidationError(f"Image too large. Maximum size is {config.MAX_IMAGE_SIZE_MB}MB")

    detected = detect_mime_type(image_bytes)
    if mime_type and mime_type != detected:
        logger.debug(f"Declared MIME type {mime_type} differs from detected {detected}; using detected")

    if config.COMPRESS_IMG:
        compressed = compress_image(image_bytes)
        if compressed is not image_bytes:
            image_bytes, detected = compressed, "image/jpeg"

    return PreparedImage(
        image_base64=base64.b64encode(image_bytes).decode("ascii"),
        mime_type=detected,
        size_bytes=len(image_bytes),
    )
