"""Shared fixtures: in-memory test images."""

import io

import pytest
from PIL import Image  # type: ignore


def encode_image(img, fmt="JPEG", **params):
    buf = io.BytesIO()
    img.save(buf, format=fmt, **params)
    return buf.getvalue()


@pytest.fixture
def make_image():
    """Return a factory building encoded test images.

    The image is a horizontal gradient so that tonal operations have
    something to work on; a flat colour would survive most filters
    unchanged.
    """

    def _make(size=(64, 48), fmt="JPEG", color=(200, 120, 60)):
        img = Image.new("RGB", size, color=color)
        width, height = size
        for x in range(width):
            shade = int(255 * x / max(1, width - 1))
            for y in range(height // 2):
                img.putpixel((x, y), (shade, shade // 2, 255 - shade))
        return encode_image(img, fmt)

    return _make
