import logging
import os
import re
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from starlette.datastructures import UploadFile as StarletteUploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from imaging import image_ops
from imaging.errors import ImageProcessingError
from imaging.models import AIOptions, EnhanceResponse, ErrorResponse, ProcessingOptions, parse_options
from imaging.pipeline import process_image
from inference import replicate_agent

# --- Environment & Config ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(50 * 1024 * 1024)))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
STATIC_DIR = os.getenv("STATIC_DIR", os.path.join(os.path.dirname(os.path.abspath(__file__)), "static"))

GENERIC_ERROR = "Failed to process image"
DEFAULT_DOWNLOAD_NAME = "processed-image"

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

if replicate_agent.is_enabled():
    logger.info("[startup] Replicate token found; AI features enabled.")
else:
    logger.info("[startup] REPLICATE_API_TOKEN not set; AI features disabled.")

# --- App Init ---
app = FastAPI(title="Photo Editor")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}

# --- Middleware ---
@app.middleware("http")
async def add_cache_control_header(request: Request, call_next):
    response = await call_next(request)
    # processed images are private to the requester
    if request.url.path.startswith("/api/"):
        response.headers["Cache-Control"] = "no-store"
    return response

# --- Error Rendering ---
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    field = ".".join(str(part) for part in errors[0].get("loc", ())) if errors else ""
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {field or 'body'}"})

# --- Helpers ---
async def _read_upload(upload: Optional[UploadFile], label: str = "image") -> bytes:
    """Read an uploaded file, rejecting missing, empty and oversize uploads."""
    if upload is None:
        raise HTTPException(status_code=400, detail=f"No {label} provided")
    data = await upload.read()
    if not data:
        raise HTTPException(status_code=400, detail=f"No {label} provided")
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"The {label} is larger than {MAX_UPLOAD_BYTES} bytes")
    return data

def _download_name(stem: Optional[str], mime: str) -> str:
    stem = re.sub(r"[^A-Za-z0-9._-]+", "_", (stem or "").strip()).strip("._") or DEFAULT_DOWNLOAD_NAME
    return f"{stem}.{image_ops.extension_for(mime)}"

# --- Health ---
@app.get("/health")
async def health_endpoint():
    return {"status": "ok", "ai_enabled": replicate_agent.is_enabled()}

# --- Enhance Endpoint ---
@app.post("/api/enhance", response_model=EnhanceResponse, responses=ERROR_RESPONSES)
async def enhance_endpoint(
    image: Optional[UploadFile] = File(None),
    options: Optional[str] = Form(None),
):
    """Apply crop, a mode preset or slider adjustments, and compression.

    ``options`` is a JSON string matching :class:`ProcessingOptions`. The
    result comes back as a base64 data URL in ``enhancedImage``.
    """
    raw = await _read_upload(image)
    try:
        parsed = parse_options(options, ProcessingOptions)
        data, mime = await run_in_threadpool(process_image, raw, parsed)
    except ImageProcessingError as e:
        logger.info("Rejected enhance request: %s", e)
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception:
        logger.exception("Image processing error")
        raise HTTPException(status_code=500, detail=GENERIC_ERROR)
    return EnhanceResponse(enhanced_image=image_ops.to_data_url(data, mime))

# --- AI Endpoint ---
@app.post("/api/ai", response_model=EnhanceResponse, responses={**ERROR_RESPONSES, 502: {"model": ErrorResponse}, 503: {"model": ErrorResponse}})
async def ai_endpoint(
    image: Optional[UploadFile] = File(None),
    options: Optional[str] = Form(None),
    mask: Optional[UploadFile] = File(None),
):
    """Run a hosted AI effect: ``background``, ``retouch``, ``style`` or ``remove``.

    ``mask`` is only used by ``remove``; white areas are repainted.
    """
    raw = await _read_upload(image)
    mask_bytes = await _read_upload(mask, label="mask") if mask is not None else None
    try:
        parsed = parse_options(options, AIOptions)
        mime = image_ops.detect_mime(raw)
        mask_part = (mask_bytes, image_ops.detect_mime(mask_bytes)) if mask_bytes else None
        data, out_mime = await replicate_agent.run_ai_effect(raw, mime, parsed, mask=mask_part)
    except ImageProcessingError as e:
        logger.info("Rejected AI request: %s", e)
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except replicate_agent.InferenceError as e:
        logger.warning("AI processing failed: %s", e)
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception:
        logger.exception("AI processing error")
        raise HTTPException(status_code=500, detail=GENERIC_ERROR)
    return EnhanceResponse(enhanced_image=image_ops.to_data_url(data, out_mime))

# --- Download ---
@app.post("/api/download", responses={400: {"model": ErrorResponse}})
async def download_endpoint(request: Request):
    """Turn a result data URL back into a file attachment.

    ``data_url`` may arrive as a text field or a file part. Text parts are
    allowed up to the base64 size of the largest accepted upload.
    """
    max_part_size = MAX_UPLOAD_BYTES * 4 // 3 + 1024
    async with request.form(max_part_size=max_part_size) as form:
        data_url = form.get("data_url")
        filename = form.get("filename")
        if isinstance(data_url, StarletteUploadFile):
            data_url = (await data_url.read()).decode("utf-8", errors="replace")
    if not data_url:
        raise HTTPException(status_code=400, detail="No data_url provided")
    if not isinstance(filename, str):
        filename = None
    try:
        data, mime = image_ops.from_data_url(data_url)
    except ImageProcessingError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return Response(
        content=data,
        media_type=mime,
        headers={"Content-Disposition": f'attachment; filename="{_download_name(filename, mime)}"'},
    )

# Mount the single-page editor last so the API routes above take precedence.
if os.path.isdir(STATIC_DIR):
    app.mount("/", StaticFiles(directory=STATIC_DIR, html=True), name="static")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
