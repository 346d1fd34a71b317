"""Image manipulation utilities.

This module wraps the individual pixel operations of the editor using
Pillow: modulation, gamma, sharpening, blurring, tinting, cropping and
re-encoding. Every helper takes an RGB image and returns a new one so the
enhance pipeline can chain them freely. Data URL helpers used by the API
endpoints live here as well.
"""

from __future__ import annotations

import base64
import binascii
from io import BytesIO
from typing import Callable, List, Optional, Tuple

from PIL import Image, ImageEnhance, ImageFilter, ImageOps, UnidentifiedImageError  # type: ignore[import]

from .errors import InvalidImageError, UnsupportedFormatError

MIN_BLUR_SIGMA = 0.3
MAX_BLUR_SIGMA = 1000.0
MIN_GAMMA = 1.0
MAX_GAMMA = 3.0
MIN_SHARPEN_SIGMA = 0.01
MAX_SHARPEN_SIGMA = 10.0
SHARPEN_THRESHOLD = 2

# Output format name -> (Pillow format, MIME type)
FORMATS = {
    "jpeg": ("JPEG", "image/jpeg"),
    "jpg": ("JPEG", "image/jpeg"),
    "png": ("PNG", "image/png"),
    "webp": ("WEBP", "image/webp"),
    "avif": ("AVIF", "image/avif"),
}

MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/avif": "avif",
    "image/gif": "gif",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
}


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _apply_lut(img: Image.Image, fn: Callable[[int], float]) -> Image.Image:
    """Map every channel of ``img`` through ``fn``, clamped to 0..255."""
    lut: List[int] = [int(round(_clamp(fn(i), 0, 255))) for i in range(256)]
    return img.point(lut * len(img.getbands()))


def open_image(data: bytes) -> Image.Image:
    """Decode raw image bytes, honour EXIF orientation and convert to RGB.

    Raises:
        InvalidImageError: If ``data`` is empty or not a decodable image.
    """
    if not data:
        raise InvalidImageError("No image data provided.")
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise InvalidImageError("Unable to decode image.") from exc
    img = ImageOps.exif_transpose(img)
    if img.mode != "RGB":
        img = img.convert("RGB")
    return img


def detect_mime(data: bytes) -> str:
    """Return the MIME type of encoded image bytes, e.g. ``image/png``."""
    if not data:
        raise InvalidImageError("No image data provided.")
    try:
        with Image.open(BytesIO(data)) as img:
            mime = img.get_format_mimetype()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise InvalidImageError("Unable to decode image.") from exc
    return mime or "image/png"


def normalize(img: Image.Image, cutoff: float = 1) -> Image.Image:
    """Stretch each channel so ``cutoff`` percent of pixels clip at either end."""
    return ImageOps.autocontrast(img, cutoff=cutoff)


def crop(img: Image.Image, x: float, y: float, width: float, height: float) -> Image.Image:
    """Extract a rectangle, clamped to the image bounds.

    The image is returned unchanged when the clamped rectangle is empty.
    """
    left = max(0, int(round(x)))
    top = max(0, int(round(y)))
    right = min(img.width, int(round(x)) + int(round(width)))
    bottom = min(img.height, int(round(y)) + int(round(height)))
    if right <= left or bottom <= top:
        return img
    return img.crop((left, top, right, bottom))


def rotate_hue(img: Image.Image, degrees: float) -> Image.Image:
    shift = int(round(degrees / 360.0 * 256)) % 256
    if not shift:
        return img
    h, s, v = img.convert("HSV").split()
    h = h.point(lambda value: (value + shift) % 256)
    return Image.merge("HSV", (h, s, v)).convert("RGB")


def modulate(
    img: Image.Image,
    brightness: float = 1.0,
    saturation: float = 1.0,
    hue: float = 0.0,
) -> Image.Image:
    """Scale brightness and saturation, then rotate the hue by ``hue`` degrees."""
    if brightness != 1.0:
        img = ImageEnhance.Brightness(img).enhance(brightness)
    if saturation != 1.0:
        img = ImageEnhance.Color(img).enhance(saturation)
    if hue:
        img = rotate_hue(img, hue)
    return img


def gamma(img: Image.Image, value: float) -> Image.Image:
    """Gamma-correct with exponent ``1 / value``; ``value`` is kept in 1.0..3.0."""
    exponent = 1.0 / _clamp(value, MIN_GAMMA, MAX_GAMMA)
    return _apply_lut(img, lambda i: 255.0 * ((i / 255.0) ** exponent))


def sharpen(img: Image.Image, sigma: float = 1.0, m1: float = 1.0, m2: float = 2.0) -> Image.Image:
    """Unsharp-mask the image.

    ``sigma`` is the radius of the mask. ``m1`` weights flat areas and
    ``m2`` jagged ones; together they set the strength of the mask.
    """
    radius = _clamp(sigma, MIN_SHARPEN_SIGMA, MAX_SHARPEN_SIGMA)
    percent = max(0, int(round((m1 + m2) * 100)))
    return img.filter(ImageFilter.UnsharpMask(radius=radius, percent=percent, threshold=SHARPEN_THRESHOLD))


def median(img: Image.Image, size: int = 3) -> Image.Image:
    # MedianFilter only accepts odd window sizes
    if size % 2 == 0:
        size += 1
    return img.filter(ImageFilter.MedianFilter(size))


def blur(img: Image.Image, sigma: Optional[float] = None) -> Image.Image:
    """Gaussian blur. ``sigma`` is clamped to 0.3..1000 and defaults to 0.3."""
    radius = _clamp(MIN_BLUR_SIGMA if sigma is None else sigma, MIN_BLUR_SIGMA, MAX_BLUR_SIGMA)
    return img.filter(ImageFilter.GaussianBlur(radius=radius))


def linear(img: Image.Image, a: float, b: float) -> Image.Image:
    """Apply ``a * value + b`` to every channel."""
    return _apply_lut(img, lambda i: a * i + b)


def grayscale(img: Image.Image) -> Image.Image:
    return ImageOps.grayscale(img).convert("RGB")


def tint(img: Image.Image, color: Tuple[int, int, int]) -> Image.Image:
    """Keep the luminance of ``img`` and take the chroma from ``color``."""
    return ImageOps.colorize(ImageOps.grayscale(img), black=(0, 0, 0), white=(255, 255, 255), mid=color)


def resize_to_width(img: Image.Image, max_width: int) -> Image.Image:
    """Shrink ``img`` to at most ``max_width`` pixels wide, never enlarging it."""
    if max_width <= 0 or img.width <= max_width:
        return img
    height = max(1, int(round(img.height * max_width / img.width)))
    return img.resize((max_width, height), Image.LANCZOS)


def encode(
    img: Image.Image,
    fmt: str = "jpeg",
    quality: int = 95,
    subsampling: Optional[int] = None,
) -> Tuple[bytes, str]:
    """Encode ``img`` in the named output format.

    Args:
        img: RGB image to encode.
        fmt: One of ``jpeg``, ``jpg``, ``png``, ``webp`` or ``avif``.
        quality: Encoder quality for the lossy formats (1-100).
        subsampling: JPEG chroma subsampling (0 is 4:4:4). Pillow's
            default is used when omitted.

    Returns:
        The encoded bytes and their MIME type.

    Raises:
        UnsupportedFormatError: If the format is unknown or this Pillow
            build has no encoder for it.
    """
    key = (fmt or "jpeg").lower()
    if key not in FORMATS:
        raise UnsupportedFormatError(f"Unsupported output format '{fmt}'.")
    pil_format, mime = FORMATS[key]
    Image.init()
    if pil_format not in Image.SAVE:
        raise UnsupportedFormatError(f"Output format '{fmt}' is not available on this server.")

    params: dict = {}
    if pil_format == "JPEG":
        params["quality"] = quality
        if subsampling is not None:
            params["subsampling"] = subsampling
    elif pil_format == "PNG":
        params["optimize"] = True
    else:
        params["quality"] = quality

    buffer = BytesIO()
    try:
        img.save(buffer, format=pil_format, **params)
    except (KeyError, OSError) as exc:
        raise UnsupportedFormatError(f"Output format '{fmt}' is not available on this server.") from exc
    return buffer.getvalue(), mime


def to_data_url(data: bytes, mime: str) -> str:
    b64 = base64.b64encode(data).decode("utf-8")
    return f"data:{mime};base64,{b64}"


def from_data_url(data_url: str) -> Tuple[bytes, str]:
    """Split a ``data:<mime>;base64,<payload>`` URL into bytes and MIME type."""
    header, sep, payload = (data_url or "").partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise InvalidImageError("Malformed data URL.")
    mime = header[len("data:"):-len(";base64")].split(";")[0] or "application/octet-stream"
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageError("Malformed data URL.") from exc
    if not data:
        raise InvalidImageError("Data URL carries no data.")
    return data, mime


def extension_for(mime: str) -> str:
    return MIME_EXTENSIONS.get((mime or "").lower(), "bin")
