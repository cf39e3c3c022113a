from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Tuple

from . import config
from .cv import transform
from .errors import CropError, FallbackCompositeError, InvalidInput, PreprocessError
from .metrics import increment, observe_latency


logger = logging.getLogger(__name__)

JPEG_MIME = "image/jpeg"

BACKGROUND_REMOVED = "removed"
BACKGROUND_FALLBACK = "fallback"
BACKGROUND_ORIGINAL = "original"


class BackgroundRemover(Protocol):
    def remove_background(self, image: bytes, mime_type: str = JPEG_MIME) -> bytes:
        ...


@dataclass(frozen=True)
class PhotoSpec:
    """Target geometry of the finished photo."""

    width_px: int
    height_px: int
    dpi: int = config.PHOTO_DPI
    fit: str = "cover"
    position: str = transform.POSITION_ATTENTION
    quality: int = config.FINAL_QUALITY

    def __post_init__(self) -> None:
        if self.fit != "cover":
            raise ValueError(f"Unsupported fit: {self.fit}")

    @classmethod
    def from_physical(cls, width_mm: float, height_mm: float, dpi: int, **kwargs) -> "PhotoSpec":
        return cls(
            width_px=config.mm_to_px(width_mm, dpi),
            height_px=config.mm_to_px(height_mm, dpi),
            dpi=dpi,
            **kwargs,
        )


DEFAULT_PHOTO_SPEC = PhotoSpec.from_physical(
    config.PHOTO_WIDTH_MM,
    config.PHOTO_HEIGHT_MM,
    config.PHOTO_DPI,
    position=config.FOCAL_STRATEGY,
)


@dataclass
class PhotoResult:
    image: bytes
    mime_type: str
    width: int
    height: int
    attempts: int
    background: str

    def to_data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{base64.b64encode(self.image).decode('ascii')}"


class PhotoPipeline:
    """Upload -> normalized -> background replaced (or white composite) -> cropped ID photo.

    Only the background-removal step is retried. Normalization and the final
    crop are deterministic, so their failures are reported straight away.
    """

    def __init__(
        self,
        *,
        remover: BackgroundRemover,
        spec: PhotoSpec = DEFAULT_PHOTO_SPEC,
        max_attempts: int = config.MAX_ATTEMPTS,
        backoff_base: float = config.BACKOFF_BASE_SECONDS,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.remover = remover
        self.spec = spec
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._sleep = sleep or time.sleep

    def run(self, raw: bytes) -> PhotoResult:
        start_time = time.perf_counter()

        normalized = self._preprocess(raw)
        edited, attempts, background = self._replace_background(normalized)
        final = self.crop_to_target(edited)
        width, height = transform.image_size(final)

        increment("photo_background_total", background)
        observe_latency("photo_pipeline_seconds", f"background={background}", time.perf_counter() - start_time)
        logger.info(
            "Generated %dx%d photo (background=%s, attempts=%d)", width, height, background, attempts
        )
        return PhotoResult(
            image=final,
            mime_type=JPEG_MIME,
            width=width,
            height=height,
            attempts=attempts,
            background=background,
        )

    def crop_to_target(self, image: bytes) -> bytes:
        try:
            return transform.cover_crop(
                image,
                self.spec.width_px,
                self.spec.height_px,
                position=self.spec.position,
                quality=self.spec.quality,
                dpi=self.spec.dpi,
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Final crop failed: %s", exc)
            raise CropError("Failed to crop photo.", details=str(exc)) from exc

    def _preprocess(self, raw: bytes) -> bytes:
        if not raw:
            raise InvalidInput("No file", details="The uploaded image is empty.")
        try:
            transform.decode(raw)
        except ValueError as exc:
            raise InvalidInput("Invalid image", details=str(exc)) from exc
        try:
            return transform.normalize(
                raw,
                max_side=config.PRENORMALIZE_MAX_SIDE,
                quality=config.PRENORMALIZE_QUALITY,
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Pre-normalization failed: %s", exc)
            raise PreprocessError("Failed to prepare image.", details=str(exc)) from exc

    def _replace_background(self, normalized: bytes) -> Tuple[bytes, int, str]:
        for attempt in range(1, self.max_attempts + 1):
            logger.info("Background removal attempt %d/%d", attempt, self.max_attempts)
            increment("background_removal_attempts", "total")
            try:
                edited = self.remover.remove_background(normalized, JPEG_MIME)
                transform.decode(edited)
            except Exception as exc:  # pylint: disable=broad-except
                increment("background_removal_attempts", "failed")
                logger.warning(
                    "Background removal attempt %d/%d failed: %s", attempt, self.max_attempts, exc
                )
                if attempt < self.max_attempts:
                    self._sleep(attempt * self.backoff_base)
                continue
            return edited, attempt, BACKGROUND_REMOVED

        logger.warning(
            "Background removal failed %d times; falling back to white composite", self.max_attempts
        )
        try:
            return self._white_composite(normalized), self.max_attempts, BACKGROUND_FALLBACK
        except FallbackCompositeError as exc:
            logger.warning("%s (%s); keeping normalized image", exc.message, exc.details)
            return normalized, self.max_attempts, BACKGROUND_ORIGINAL

    @staticmethod
    def _white_composite(normalized: bytes) -> bytes:
        try:
            return transform.white_composite(normalized, quality=config.PRENORMALIZE_QUALITY)
        except Exception as exc:  # pylint: disable=broad-except
            raise FallbackCompositeError("White composite fallback failed.", details=str(exc)) from exc
