"""
Image loading, validation and encoding.

Uploads are checked the same way for every entry point, decoded to an RGBA
numpy buffer, and the final cutout is encoded as a lossless PNG.
"""

from __future__ import annotations

from io import BytesIO
from typing import Optional

import numpy as np
from PIL import Image

from .errors import InvalidImage, PreconditionFailure

IMAGE_CONTENT_PREFIX = "image/"


def validate_upload(data: Optional[bytes], content_type: Optional[str], max_bytes: int) -> None:
    """Reject missing, oversized or non-image uploads before decoding."""
    if not data:
        raise PreconditionFailure("No source image supplied")
    if len(data) > max_bytes:
        limit_mb = max_bytes / (1024 * 1024)
        raise InvalidImage(f"Please select an image smaller than {limit_mb:g}MB")
    if content_type is not None and not content_type.lower().startswith(IMAGE_CONTENT_PREFIX):
        raise InvalidImage("Please select a valid image file")


def decode_image(image_bytes: bytes) -> np.ndarray:
    """Decode encoded image bytes into an (H, W, 4) uint8 RGBA array."""
    if not image_bytes:
        raise PreconditionFailure("No source image supplied")
    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except Exception as exc:  # noqa: BLE001
        raise InvalidImage("Invalid image data") from exc
    return np.asarray(image.convert("RGBA"), dtype=np.uint8).copy()


def ensure_rgba(image: np.ndarray) -> np.ndarray:
    """Return an RGBA view of `image`, adding an opaque alpha to RGB input."""
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise InvalidImage(f"Expected an (H, W, 3|4) image, got shape {image.shape}")
    if image.dtype != np.uint8:
        raise InvalidImage(f"Expected uint8 pixels, got {image.dtype}")
    if image.shape[2] == 4:
        return image
    alpha = np.full(image.shape[:2] + (1,), 255, dtype=np.uint8)
    return np.concatenate([image, alpha], axis=2)


def encode_png(rgba: np.ndarray) -> bytes:
    out = Image.fromarray(np.ascontiguousarray(rgba))
    buf = BytesIO()
    out.save(buf, format="PNG")
    return buf.getvalue()
