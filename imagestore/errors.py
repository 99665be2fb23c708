"""Typed errors raised by the storage and transcoding layers.

Every failure leaves the core as a subclass of :class:`ImageStoreError`.
Each class carries the HTTP status the API layer answers with, so
``main.py`` can translate any of them with a single exception handler.
Underlying ``OSError``/Pillow exceptions are chained via ``raise ... from``.
"""

from __future__ import annotations

from typing import Optional


class ImageStoreError(Exception):
    """Base class for all image store errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        identifier: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.entity_type = entity_type
        self.identifier = identifier


class InvalidInput(ImageStoreError):
    """Missing or empty field, e.g. a blank entity type."""

    status_code = 400


class PathTraversalRejected(ImageStoreError):
    """A path segment would resolve outside the storage root.

    The message is always generic; the attempted path is never echoed.
    """

    status_code = 400

    def __init__(self, message: str = "invalid image path"):
        super().__init__(message)


class NotFound(ImageStoreError):
    status_code = 404


class UnsupportedOrCorruptImage(ImageStoreError):
    """The upload could not be decoded as an image."""

    status_code = 415

    def __init__(self, message: str, sniffed_format: str = "application/octet-stream"):
        super().__init__(message)
        self.sniffed_format = sniffed_format


class EncodingFailed(ImageStoreError):
    status_code = 500


class StorageWriteFailed(ImageStoreError):
    status_code = 500


class StorageReadFailed(ImageStoreError):
    status_code = 500


class SizeLimitExceeded(ImageStoreError):
    status_code = 413
