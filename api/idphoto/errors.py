from __future__ import annotations

from typing import Optional

from fastapi import status

from .schemas import ErrorResponse


class PhotoPipelineError(Exception):
    """Base error carrying the HTTP status and payload the API surfaces."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict:
        return ErrorResponse(error=self.message, details=self.details or None).model_dump(exclude_none=True)


class InvalidInput(PhotoPipelineError):
    """Missing, empty or undecodable upload."""

    status_code = status.HTTP_400_BAD_REQUEST


class ConfigurationError(PhotoPipelineError):
    """Required configuration (the generative API key) is absent."""


class PreprocessError(PhotoPipelineError):
    pass


class CropError(PhotoPipelineError):
    pass


class BackgroundRemovalTransientError(PhotoPipelineError):
    """One background-removal attempt failed; the caller may retry."""

    status_code = status.HTTP_502_BAD_GATEWAY


class FallbackCompositeError(PhotoPipelineError):
    pass
