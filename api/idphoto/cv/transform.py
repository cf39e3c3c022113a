from __future__ import annotations

import io
import logging
import math
from typing import Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from .attention import attention_offset, centre_offset

logger = logging.getLogger(__name__)

WHITE = (255, 255, 255)

POSITION_ATTENTION = "attention"
POSITION_CENTRE = "centre"
_POSITION_ALIASES = {"attention": POSITION_ATTENTION, "centre": POSITION_CENTRE, "center": POSITION_CENTRE}


def decode(data: bytes) -> Image.Image:
    """Fully decode ``data``; raises ``ValueError`` when it is not a readable image."""
    if not data:
        raise ValueError("Image data is empty.")
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, SyntaxError, EOFError, Image.DecompressionBombError) as exc:
        raise ValueError(f"Could not decode image: {exc}") from exc
    return image


def image_size(data: bytes) -> Tuple[int, int]:
    return decode(data).size


def flatten(image: Image.Image, background: Tuple[int, int, int] = WHITE) -> Image.Image:
    """RGB copy of ``image`` with any transparency composited over ``background``."""
    if image.mode == "P" and "transparency" in image.info:
        image = image.convert("RGBA")
    if image.mode in ("RGBA", "LA"):
        rgba = image.convert("RGBA")
        canvas = Image.new("RGB", rgba.size, background)
        canvas.paste(rgba, (0, 0), rgba)
        return canvas
    return image.convert("RGB")


def encode_jpeg(image: Image.Image, quality: int, dpi: Optional[int] = None) -> bytes:
    buffer = io.BytesIO()
    save_kwargs = {"format": "JPEG", "quality": quality}
    if dpi:
        save_kwargs["dpi"] = (dpi, dpi)
    flatten(image).save(buffer, **save_kwargs)
    return buffer.getvalue()


def normalize(data: bytes, *, max_side: int, quality: int) -> bytes:
    """Orient upright, shrink to fit ``max_side`` x ``max_side`` (never enlarge), re-encode as JPEG."""
    image = ImageOps.exif_transpose(decode(data))
    image = flatten(image)
    if max(image.size) > max_side:
        image.thumbnail((max_side, max_side), Image.LANCZOS)
    logger.debug("Normalized image to %dx%d", image.width, image.height)
    return encode_jpeg(image, quality)


def cover_crop(
    data: bytes,
    width: int,
    height: int,
    *,
    position: str = POSITION_ATTENTION,
    quality: int = 95,
    dpi: Optional[int] = None,
) -> bytes:
    """Scale to cover ``width`` x ``height`` then crop the overflow.

    ``position`` picks the crop window: ``attention`` keeps the detected face
    (or the most salient region), ``centre`` (or ``center``) keeps the geometric centre.
    """
    strategy = _POSITION_ALIASES.get(position.lower())
    if strategy is None:
        raise ValueError(f"Unsupported crop position: {position}")
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid target size {width}x{height}")

    image = flatten(decode(data))
    scale = max(width / image.width, height / image.height)
    scaled_size = (
        max(width, int(math.ceil(image.width * scale - 1e-6))),
        max(height, int(math.ceil(image.height * scale - 1e-6))),
    )
    if scaled_size != image.size:
        image = image.resize(scaled_size, Image.LANCZOS)

    if strategy == POSITION_ATTENTION:
        left, top = attention_offset(image, width, height)
    else:
        left, top = centre_offset(image, width, height)
    cropped = image.crop((left, top, left + width, top + height))
    return encode_jpeg(cropped, quality, dpi=dpi)


def white_composite(data: bytes, *, quality: int, size: Optional[Tuple[int, int]] = None) -> bytes:
    """Centre the image on a solid white canvas (its own size unless ``size`` is given)."""
    subject = decode(data).convert("RGBA")
    canvas_size = size or subject.size
    canvas = Image.new("RGB", canvas_size, WHITE)
    offset = ((canvas_size[0] - subject.width) // 2, (canvas_size[1] - subject.height) // 2)
    canvas.paste(subject, offset, subject)
    return encode_jpeg(canvas, quality)
