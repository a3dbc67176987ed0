"""Image payload helpers: data URLs and downscaling before generation."""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re
from typing import Tuple

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.*)$", re.DOTALL)


class InvalidImageError(ValueError):
    """The uploaded payload is not a readable image."""


def split_data_url(value: str) -> Tuple[str, str]:
    """Return (mime_type, base64_data); bare base64 is assumed to be JPEG."""
    match = _DATA_URL_RE.match(value.strip())
    if match:
        return match.group("mime"), match.group("data")
    return "image/jpeg", value.strip()


def to_data_url(data: bytes, mime_type: str = "image/jpeg") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('utf-8')}"


def decode_image_payload(value: str) -> Tuple[str, bytes]:
    mime_type, b64 = split_data_url(value)
    try:
        return mime_type, base64.b64decode(b64, validate=False)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageError(f"Invalid base64 image: {e}") from e


def resize_for_generation(data: bytes, max_dimension: int = 1024, quality: int = 85) -> Tuple[bytes, str, bool]:
    """
    Downscale an image so its longest side is at most ``max_dimension``.

    Returns (bytes, mime_type, resized). Images already small enough are
    returned unchanged.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            fmt = (img.format or "JPEG").upper()
            if max(width, height) <= max_dimension:
                return data, Image.MIME.get(fmt, "image/jpeg"), False

            img.thumbnail((max_dimension, max_dimension))
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            buffer = io.BytesIO()
            img.save(buffer, format="JPEG", quality=quality)
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidImageError("Uploaded file is not a readable image.") from e

    resized = buffer.getvalue()
    logger.info(
        f"Resized upload {width}x{height} ({len(data) // 1024}KB) -> "
        f"{max_dimension}px max ({len(resized) // 1024}KB)"
    )
    return resized, "image/jpeg", True
