"""Enhance pipeline.

``process_image`` turns an uploaded image plus a :class:`ProcessingOptions`
into encoded output bytes. Every request goes through the same steps:
auto-rotate and normalize, optional crop, the mode preset, then either the
requested compression settings or a high quality JPEG.

Named modes (``portrait``, ``landscape``, ``art``, ``blackAndWhite``,
``vintage``, ``sepia``) are fixed chains of :mod:`imaging.image_ops`
calls. Any other mode runs the adjustments chain driven by the UI sliders.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Tuple

from PIL import Image  # type: ignore[import]

from . import image_ops
from .models import Adjustments, ProcessingOptions

logger = logging.getLogger(__name__)

DEFAULT_QUALITY = 95
DEFAULT_FORMAT = "jpeg"

VINTAGE_TINT = (200, 180, 150)
SEPIA_TINT = (112, 66, 20)

Preset = Callable[[Image.Image, Adjustments], Image.Image]


def _portrait(img: Image.Image, _: Adjustments) -> Image.Image:
    img = image_ops.modulate(img, brightness=1.2, saturation=1.5, hue=5)
    img = image_ops.gamma(img, 1.1)
    img = image_ops.sharpen(img, sigma=1.5, m1=0.7, m2=0.7)
    img = image_ops.median(img, 3)
    return image_ops.blur(img, 0.5)


def _landscape(img: Image.Image, _: Adjustments) -> Image.Image:
    img = image_ops.modulate(img, brightness=1.3, saturation=1.6, hue=-5)
    img = image_ops.gamma(img, 1.2)
    img = image_ops.sharpen(img, sigma=1.8, m1=1.0, m2=0.7)
    return image_ops.linear(img, 1.1, -20)


def _art(img: Image.Image, _: Adjustments) -> Image.Image:
    img = image_ops.modulate(img, brightness=1.4, saturation=1.8, hue=15)
    img = image_ops.gamma(img, 1.3)
    img = image_ops.sharpen(img, sigma=2.0, m1=1.5, m2=0.8)
    return image_ops.linear(img, 1.2, -30)


def _black_and_white(img: Image.Image, _: Adjustments) -> Image.Image:
    img = image_ops.grayscale(img)
    img = image_ops.modulate(img, brightness=1.2)
    img = image_ops.gamma(img, 1.2)
    img = image_ops.sharpen(img, sigma=1.5, m1=1.0, m2=0.5)
    return image_ops.linear(img, 1.1, -10)


def _vintage(img: Image.Image, _: Adjustments) -> Image.Image:
    img = image_ops.modulate(img, brightness=1.1, saturation=0.8, hue=-10)
    img = image_ops.gamma(img, 1.1)
    img = image_ops.tint(img, VINTAGE_TINT)
    return image_ops.sharpen(img, sigma=1.2, m1=0.5, m2=0.5)


def _sepia(img: Image.Image, _: Adjustments) -> Image.Image:
    img = image_ops.modulate(img, brightness=1.1, saturation=0.7, hue=-20)
    img = image_ops.gamma(img, 1.1)
    img = image_ops.tint(img, SEPIA_TINT)
    return image_ops.sharpen(img, sigma=1.2, m1=0.5, m2=0.5)


def _adjusted(img: Image.Image, adjustments: Adjustments) -> Image.Image:
    """Slider-driven chain. Zero or missing values use the defaults below."""
    img = image_ops.modulate(
        img,
        brightness=adjustments.brightness or 1.15,
        saturation=adjustments.saturation or 1.3,
        hue=adjustments.temperature or 5,
    )
    # the contrast slider drives gamma
    img = image_ops.gamma(img, adjustments.contrast or 1.2)
    img = image_ops.sharpen(img, sigma=adjustments.sharpness or 1.5, m1=1.0, m2=0.5)
    img = image_ops.blur(img, adjustments.blur)
    return image_ops.linear(img, 1.1, -10)


MODE_PRESETS: Dict[str, Preset] = {
    "portrait": _portrait,
    "landscape": _landscape,
    "art": _art,
    "blackAndWhite": _black_and_white,
    "vintage": _vintage,
    "sepia": _sepia,
}


def apply_mode(img: Image.Image, mode: str, adjustments: Optional[Adjustments] = None) -> Image.Image:
    preset = MODE_PRESETS.get(mode, _adjusted)
    return preset(img, adjustments or Adjustments())


def process_image(data: bytes, options: ProcessingOptions) -> Tuple[bytes, str]:
    """Run the full enhance pipeline on raw image bytes.

    Args:
        data: Uploaded image bytes in any format Pillow can read.
        options: Parsed request options.

    Returns:
        The encoded result and its MIME type.

    Raises:
        InvalidImageError: If ``data`` cannot be decoded.
        UnsupportedFormatError: If the requested output format is unavailable.
    """
    img = image_ops.open_image(data)
    img = image_ops.normalize(img)

    if options.crop is not None:
        if options.crop.is_empty:
            logger.debug("Ignoring empty crop %s", options.crop)
        else:
            c = options.crop
            img = image_ops.crop(img, c.x, c.y, c.width, c.height)

    logger.info("Applying mode %r to %dx%d image", options.mode, img.width, img.height)
    img = apply_mode(img, options.mode, options.adjustments)

    if options.compression is not None:
        settings = options.compression
        img = image_ops.resize_to_width(img, settings.max_width)
        return image_ops.encode(img, settings.format, settings.quality)
    return image_ops.encode(img, DEFAULT_FORMAT, DEFAULT_QUALITY, subsampling=0)
