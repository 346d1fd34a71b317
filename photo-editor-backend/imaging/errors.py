"""Exceptions raised while validating or processing an uploaded image."""

from __future__ import annotations


class ImageProcessingError(Exception):
    """Base class for errors caused by the client's input.

    ``status_code`` is the HTTP status the API layer answers with.
    """

    status_code = 400


class InvalidImageError(ImageProcessingError):
    """The uploaded bytes are empty or cannot be decoded as an image."""


class InvalidOptionsError(ImageProcessingError):
    """The ``options`` JSON is malformed or fails validation."""


class UnsupportedFormatError(ImageProcessingError):
    """The requested output format cannot be written by Pillow."""
