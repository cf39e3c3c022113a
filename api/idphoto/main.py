from __future__ import annotations

import io
import logging
import time
from typing import Optional

from fastapi import Depends, FastAPI, File, Request, UploadFile, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool

from . import config as app_config
from .config import CORS_ALLOW_ORIGIN_REGEX, CORS_ALLOW_ORIGINS
from .engines.gemini_background import GeminiBackgroundRemover, build_background_remover
from .errors import ConfigurationError, InvalidInput, PhotoPipelineError
from .metrics import increment, observe_latency, snapshot
from .photo_pipeline import PhotoPipeline, PhotoResult
from .schemas import ErrorResponse, GenerateResponse, HealthResponse
from .validation import evaluate_upload


logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
}


def require_api_key() -> str:
    api_key = app_config.gemini_api_key()
    if not api_key:
        raise ConfigurationError(
            "GEMINI_API_KEY is not configured.",
            details="Set GEMINI_API_KEY (or GOOGLE_API_KEY) before generating photos.",
        )
    return api_key


def get_background_remover(api_key: str = Depends(require_api_key)) -> GeminiBackgroundRemover:
    return build_background_remover(api_key)


def get_photo_pipeline(
    _api_key: str = Depends(require_api_key),
    remover: GeminiBackgroundRemover = Depends(get_background_remover),
) -> PhotoPipeline:
    return PhotoPipeline(remover=remover)


app = FastAPI(
    title="ID Photo API",
    version="0.1.0",
    description="Turns an uploaded portrait into a 35x45 mm ID / passport photo.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_origin_regex=CORS_ALLOW_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PhotoPipelineError)
async def photo_pipeline_error_handler(request: Request, exc: PhotoPipelineError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.details)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def upload_field_error_handler(request: Request, exc: RequestValidationError):
    # A non-file value in the "image" form field is a bad upload, not a schema error.
    upload_errors = [
        error for error in exc.errors() if tuple(error.get("loc", ()))[:2] == ("body", "image")
    ]
    if not upload_errors:
        return await request_validation_exception_handler(request, exc)
    error = InvalidInput("No file", details=upload_errors[0].get("msg"))
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


@app.middleware("http")
async def log_and_measure_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start
    label = f"{request.method} {request.url.path}"
    increment("requests_total", label)
    observe_latency("http_request_seconds", label, duration)
    response.headers["X-Process-Time"] = f"{duration:.3f}s"
    logger.info("%s %s -> %s (%.3fs)", request.method, request.url.path, response.status_code, duration)
    return response


@app.get("/healthz")
async def healthz():
    payload = HealthResponse(background_removal=app_config.gemini_api_key() is not None)
    return payload.model_dump()


@app.get("/metrics")
async def metrics():
    return JSONResponse(status_code=status.HTTP_200_OK, content=snapshot())


async def _generate(image: Optional[UploadFile], pipeline: PhotoPipeline) -> PhotoResult:
    if image is None:
        raise InvalidInput("No file")
    if image.size is not None and image.size > app_config.MAX_UPLOAD_BYTES:
        raise InvalidInput(
            "Invalid image",
            details=f"Upload a smaller image (max {app_config.MAX_UPLOAD_BYTES // (1024 * 1024)} MB).",
        )
    photo_bytes = await image.read()

    issues = evaluate_upload(photo_bytes, image.content_type)
    if issues:
        error = "No file" if issues[0].code == "empty_file" else "Invalid image"
        raise InvalidInput(error, details="; ".join(issue.message for issue in issues))

    try:
        return await run_in_threadpool(pipeline.run, photo_bytes)
    except PhotoPipelineError:
        raise
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Photo generation failed unexpectedly")
        raise PhotoPipelineError("Failed", details=str(exc)) from exc


@app.post("/api/generate", response_model=GenerateResponse, responses=ERROR_RESPONSES)
async def generate_photo(
    image: Optional[UploadFile] = File(default=None),
    pipeline: PhotoPipeline = Depends(get_photo_pipeline),
):
    result = await _generate(image, pipeline)
    response = GenerateResponse(image=result.to_data_uri())
    return JSONResponse(status_code=status.HTTP_200_OK, content=response.model_dump())


@app.post("/api/generate/download", responses=ERROR_RESPONSES)
async def download_photo(
    image: Optional[UploadFile] = File(default=None),
    pipeline: PhotoPipeline = Depends(get_photo_pipeline),
):
    result = await _generate(image, pipeline)
    filename = f"photo-{int(time.time() * 1000)}.jpg"
    return StreamingResponse(
        io.BytesIO(result.image),
        media_type=result.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
