"""Pydantic models returned by the image endpoints."""

from __future__ import annotations

from pydantic import BaseModel


class UploadResult(BaseModel):
    """Response returned after storing an image.

    Attributes:
        id: Identifier generated for the image slot.
        filename: Canonical stored filename, always ``main.webp``.
        format: Canonical encoding name, always ``webp``.
        url: Path at which the stored image can be fetched.
    """

    id: str
    filename: str
    format: str
    url: str


class HealthResponse(BaseModel):
    status: str = "ok"
