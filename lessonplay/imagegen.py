"""Slide imagery helpers: placeholder rendering and image inspection."""
from __future__ import annotations

import io
import logging
from functools import lru_cache

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from .config import PLACEHOLDER_HEIGHT, PLACEHOLDER_WIDTH

log = logging.getLogger(__name__)

PLACEHOLDER_TEXT = "Image generation failed"


def _load_font(size: int) -> ImageFont.ImageFont:
    try:
        return ImageFont.truetype("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf", size)
    except OSError:
        return ImageFont.load_default()


def _wrap(draw: ImageDraw.ImageDraw, text: str, font, max_width: int) -> list[str]:
    words = text.split()
    lines: list[str] = []
    current = ""
    for w in words:
        test = f"{current} {w}".strip()
        bbox = draw.textbbox((0, 0), test, font=font)
        if bbox[2] > max_width and current:
            lines.append(current)
            current = w
        else:
            current = test
    if current:
        lines.append(current)
    return lines


@lru_cache(maxsize=32)
def render_placeholder(
    caption: str = "",
    width: int = PLACEHOLDER_WIDTH,
    height: int = PLACEHOLDER_HEIGHT,
) -> bytes:
    """PNG shown in place of a slide whose illustration could not be generated.

    The headline is always :data:`PLACEHOLDER_TEXT`; *caption* (usually the
    scene's visual description) is wrapped underneath in a dimmer colour.
    """
    img = Image.new("RGB", (width, height), color=(30, 41, 59))
    draw = ImageDraw.Draw(img)

    title_font = _load_font(40)
    caption_font = _load_font(24)

    bbox = draw.textbbox((0, 0), PLACEHOLDER_TEXT, font=title_font)
    y = height // 2 - 60
    draw.text(((width - bbox[2]) // 2, y), PLACEHOLDER_TEXT, fill=(100, 116, 139), font=title_font)

    y += 70
    for line in _wrap(draw, caption, caption_font, width - 160)[:4]:
        bbox = draw.textbbox((0, 0), line, font=caption_font)
        draw.text(((width - bbox[2]) // 2, y), line, fill=(71, 85, 105), font=caption_font)
        y += 34

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def describe_image(data: bytes | None) -> str:
    """Human-readable summary such as ``"1024x576 PNG"``."""
    if not data:
        return PLACEHOLDER_TEXT
    try:
        with Image.open(io.BytesIO(data)) as img:
            return f"{img.width}x{img.height} {img.format or 'image'}"
    except (UnidentifiedImageError, OSError) as e:
        log.warning("Unreadable image payload (%d bytes): %s", len(data), e)
        return f"unreadable image ({len(data)} bytes)"
