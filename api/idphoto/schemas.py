from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class GenerateResponse(BaseModel):
    image: str = Field(description="Final photo as a data URI, e.g. data:image/jpeg;base64,...")


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None


class HealthResponse(BaseModel):
    ok: bool = True
    background_removal: bool
