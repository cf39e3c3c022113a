from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from . import config
from .cv import transform

logger = logging.getLogger(__name__)

# Declared types that say nothing about the payload; the bytes are sniffed instead.
GENERIC_CONTENT_TYPES = {"application/octet-stream", "binary/octet-stream"}


@dataclass
class UploadIssue:
    code: str
    message: str


def evaluate_upload(photo_bytes: bytes, content_type: Optional[str] = None) -> List[UploadIssue]:
    """Cheap checks run before the pipeline; an empty list means the upload is usable."""
    if not photo_bytes:
        return [UploadIssue(code="empty_file", message="The uploaded file is empty.")]

    issues: List[UploadIssue] = []
    declared = (content_type or "").split(";")[0].strip().lower()
    if declared and declared not in GENERIC_CONTENT_TYPES and not declared.startswith("image/"):
        issues.append(
            UploadIssue(
                code="not_an_image",
                message=f"Expected an image upload, got {content_type}.",
            )
        )
    if len(photo_bytes) > config.MAX_UPLOAD_BYTES:
        issues.append(
            UploadIssue(
                code="too_large",
                message=f"Upload a smaller image (max {config.MAX_UPLOAD_BYTES // (1024 * 1024)} MB).",
            )
        )
        return issues
    try:
        transform.decode(photo_bytes)
    except ValueError as exc:
        logger.warning("Failed to parse uploaded photo: %s", exc)
        issues.append(UploadIssue(code="invalid_image", message="Could not read the uploaded image."))
    return issues
