"""Pydantic models for the editor's request options and responses.

The browser posts an ``options`` JSON string next to the uploaded image.
Field names on the wire are camelCase (``maxWidth``, ``stylePreset``);
the models expose them as snake_case attributes and accept either form.
"""

from __future__ import annotations

from typing import Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidOptionsError

OutputFormat = Literal["jpeg", "jpg", "png", "webp", "avif"]

ModelT = TypeVar("ModelT", bound=BaseModel)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Adjustments(_WireModel):
    """Tonal adjustments used by the default enhance mode.

    A missing or zero value falls back to the mode default, mirroring the
    slider semantics of the UI where 0 means "untouched".
    """

    brightness: Optional[float] = None
    contrast: Optional[float] = None
    saturation: Optional[float] = None
    sharpness: Optional[float] = None
    blur: Optional[float] = None
    temperature: Optional[float] = None


class CropArea(_WireModel):
    """Crop rectangle in source-image pixels."""

    x: float = 0
    y: float = 0
    width: float
    height: float

    @property
    def is_empty(self) -> bool:
        return round(self.width) <= 0 or round(self.height) <= 0


class CompressionSettings(_WireModel):
    quality: int = Field(80, ge=1, le=100)
    format: OutputFormat = "jpeg"
    max_width: int = Field(1920, gt=0, alias="maxWidth")

    @field_validator("format", mode="before")
    @classmethod
    def _lower_format(cls, value):
        return value.lower() if isinstance(value, str) else value


class ProcessingOptions(_WireModel):
    mode: str = "enhance"
    adjustments: Optional[Adjustments] = None
    crop: Optional[CropArea] = None
    compression: Optional[CompressionSettings] = None


class AIOptions(_WireModel):
    """Options for a hosted AI effect.

    Attributes:
        mode: ``background``, ``retouch``, ``style`` or ``remove``.
        style_preset: Style name used to build the style-transfer prompt.
        retouch_strength: Strength forwarded to the retouch model (0-1).
        prompt: Optional prompt for object removal (inpainting).
    """

    mode: str = "background"
    style_preset: str = Field("vangogh", alias="stylePreset")
    retouch_strength: float = Field(0.5, ge=0.0, le=1.0, alias="retouchStrength")
    prompt: Optional[str] = None


class EnhanceResponse(_WireModel):
    """Successful response of both processing endpoints."""

    enhanced_image: str = Field(alias="enhancedImage")


class ErrorResponse(BaseModel):
    error: str


def parse_options(raw: Optional[str], model: Type[ModelT]) -> ModelT:
    """Parse the ``options`` form field into ``model``.

    A missing or blank field yields the model's defaults.

    Raises:
        InvalidOptionsError: If ``raw`` is not valid JSON for ``model``.
    """
    if raw is None or not raw.strip():
        return model()
    try:
        return model.model_validate_json(raw)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", "invalid value")
        detail = f"{location}: {message}" if location else message
        raise InvalidOptionsError(f"Invalid options: {detail}") from exc
