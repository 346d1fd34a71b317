"""AI effects backed by the Replicate inference API.

Each editor AI mode maps to one hosted model version. The uploaded image
is sent inline as a data URL, the model output (a URL, a file output
object or a list of those) is resolved to bytes, and the caller gets the
bytes back together with their MIME type.

Environment variables:
    REPLICATE_API_TOKEN: API token. Read on every call; AI endpoints
        answer 503 while it is unset.
    REPLICATE_TIMEOUT: Seconds to wait for a prediction or a download
        (default 120).
"""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, Optional, Tuple

import httpx
import replicate
from replicate.exceptions import ReplicateException

from imaging import image_ops
from imaging.errors import ImageProcessingError
from imaging.models import AIOptions

logger = logging.getLogger(__name__)

REPLICATE_TIMEOUT = float(os.getenv("REPLICATE_TIMEOUT", "120"))
DEFAULT_INPAINT_PROMPT = "clean empty background"

MODELS: Dict[str, str] = {
    "background": "ilkerc/rembg:7f5cc3cd27573ab522e05738a8b8a02c3208c0a4abc105522719e0cd142d102e",
    "retouch": "nightmareai/real-esrgan:42fed1c4974146d4d2414e2be2c5277c7fcf05fcc3a73abf41610695738c1d7b",
    "style": "stability-ai/stable-diffusion:db21e45d3f7023abc2a46ee38a23973f6dce16bb082a930b0c49861f96d1e5bf",
    "remove": "stability-ai/stable-diffusion-inpainting:c28b92a7ecd66eee4aefcd8a94eb9e7f6c3805d5f06038165407fb5cb355ba67",
}


class InferenceError(RuntimeError):
    """The hosted model failed or returned something unusable."""

    status_code = 502


class InferenceNotConfiguredError(InferenceError):
    status_code = 503


class UnsupportedModeError(InferenceError):
    status_code = 400


# --- Model inputs ---
def _background_input(image_url: str, options: AIOptions, mask_url: Optional[str]) -> dict:
    return {"image": image_url}


def _retouch_input(image_url: str, options: AIOptions, mask_url: Optional[str]) -> dict:
    return {"image": image_url, "face_enhance": True, "strength": options.retouch_strength}


def _style_input(image_url: str, options: AIOptions, mask_url: Optional[str]) -> dict:
    return {"image": image_url, "prompt": f"Style of {options.style_preset}"}


def _remove_input(image_url: str, options: AIOptions, mask_url: Optional[str]) -> dict:
    payload = {"image": image_url, "prompt": options.prompt or DEFAULT_INPAINT_PROMPT}
    if mask_url:
        payload["mask"] = mask_url
    return payload


INPUT_BUILDERS: Dict[str, Callable[[str, AIOptions, Optional[str]], dict]] = {
    "background": _background_input,
    "retouch": _retouch_input,
    "style": _style_input,
    "remove": _remove_input,
}


def is_enabled() -> bool:
    return bool(os.getenv("REPLICATE_API_TOKEN", "").strip())


def _get_client() -> replicate.Client:
    token = os.getenv("REPLICATE_API_TOKEN", "").strip()
    if not token:
        raise InferenceNotConfiguredError("AI features are not configured (REPLICATE_API_TOKEN not set).")
    return replicate.Client(api_token=token, timeout=REPLICATE_TIMEOUT)


def build_input(options: AIOptions, image_url: str, mask_url: Optional[str] = None) -> Tuple[str, dict]:
    """Return the model reference and input payload for ``options.mode``."""
    if options.mode not in MODELS:
        raise UnsupportedModeError(f"Unsupported AI mode '{options.mode}'.")
    return MODELS[options.mode], INPUT_BUILDERS[options.mode](image_url, options, mask_url)


# --- Output handling ---
async def _download(url: str) -> Tuple[bytes, str]:
    try:
        async with httpx.AsyncClient(timeout=REPLICATE_TIMEOUT, follow_redirects=True) as client:
            r = await client.get(url)
            r.raise_for_status()
    except httpx.HTTPError as e:
        raise InferenceError(f"Failed to fetch model output: {e}") from e
    if not r.content:
        raise InferenceError("Model returned an empty image.")
    content_type = r.headers.get("content-type", "").split(";")[0].strip()
    if not content_type.startswith("image/"):
        content_type = image_ops.detect_mime(r.content)
    return r.content, content_type


async def read_output(output: Any) -> Tuple[bytes, str]:
    """Resolve a model output to ``(bytes, mime)``.

    File outputs are read whole before anything is treated as iterable:
    a replicate ``FileOutput`` also iterates, but over byte chunks.
    """
    if isinstance(output, (list, tuple)):
        if not output:
            raise InferenceError("Model returned no output.")
        return await read_output(output[0])
    if output is None:
        raise InferenceError("Model returned no output.")
    if isinstance(output, str):
        if output.startswith("data:"):
            return image_ops.from_data_url(output)
        return await _download(output)

    try:
        if hasattr(output, "aread"):
            data = await output.aread()
        elif hasattr(output, "read"):
            data = output.read()
        elif hasattr(output, "__aiter__"):
            async for item in output:
                return await read_output(item)
            raise InferenceError("Model returned no output.")
        else:
            raise InferenceError(f"Unexpected model output type: {type(output).__name__}")
    except httpx.HTTPError as e:
        raise InferenceError(f"Failed to fetch model output: {e}") from e
    if not data:
        raise InferenceError("Model returned an empty image.")
    return data, image_ops.detect_mime(data)


async def run_ai_effect(
    data: bytes,
    mime: str,
    options: AIOptions,
    mask: Optional[Tuple[bytes, str]] = None,
) -> Tuple[bytes, str]:
    """Run the hosted model for ``options.mode`` on an uploaded image.

    Args:
        data: Raw image bytes.
        mime: MIME type of ``data``.
        options: Parsed AI options.
        mask: Optional ``(bytes, mime)`` mask for the ``remove`` mode.

    Returns:
        The model's result image and its MIME type.

    Raises:
        UnsupportedModeError: If the mode has no model.
        InferenceNotConfiguredError: If no API token is set.
        InferenceError: If the prediction or the result download fails.
    """
    image_url = image_ops.to_data_url(data, mime)
    mask_url = image_ops.to_data_url(*mask) if mask else None
    model_ref, payload = build_input(options, image_url, mask_url)
    client = _get_client()

    logger.info("Running %s for AI mode %r", model_ref.split(":", 1)[0], options.mode)
    try:
        output = await client.async_run(model_ref, input=payload)
    except (ReplicateException, httpx.HTTPError) as e:
        raise InferenceError(f"Model run failed: {e}") from e

    try:
        return await read_output(output)
    except ImageProcessingError as e:
        raise InferenceError(f"Model returned an unreadable image: {e}") from e
