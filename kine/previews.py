"""Compressed session previews kept in the local cache."""
from __future__ import annotations

import base64
import io
import logging
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from kine.settings import DEFAULT_PREVIEW_WIDTH

logger = logging.getLogger(__name__)

PREVIEW_QUALITY = 70


def create_preview(content: bytes, max_width: int = DEFAULT_PREVIEW_WIDTH) -> str:
    """Return a JPEG data URL of ``content`` no wider than ``max_width`` pixels."""

    with Image.open(io.BytesIO(content)) as source:
        image = ImageOps.exif_transpose(source)
        scale = min(1.0, max_width / float(image.width))
        if scale < 1.0:
            size = (max(1, round(image.width * scale)), max(1, round(image.height * scale)))
            image = image.resize(size, Image.LANCZOS)
        if image.mode != "RGB":
            image = image.convert("RGB")
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=PREVIEW_QUALITY, optimize=True)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/jpeg;base64,{encoded}"


def try_create_preview(content: bytes, max_width: int = DEFAULT_PREVIEW_WIDTH) -> Optional[str]:
    """Like :func:`create_preview` but returns ``None`` for unreadable images."""

    try:
        return create_preview(content, max_width)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.warning("Preview could not be generated: %s", exc)
        return None


__all__ = ["create_preview", "try_create_preview"]
