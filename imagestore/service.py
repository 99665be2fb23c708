"""Image service tying the transcoding pipeline to a storage backend.

The API layer generates identifiers and reads upload bytes; this module
normalizes them and persists the result. Retrieval and deletion are
forwarded to the storage backend untouched.
"""

from __future__ import annotations

import logging
import uuid
from typing import BinaryIO, Callable, Iterable, List, Optional

from . import image_ops
from .errors import InvalidInput
from .models import UploadResult
from .storage import ImageStorage, validate_segment

logger = logging.getLogger(__name__)


def image_url(entity_type: str, identifier: str, filename: str) -> str:
    return f"/images/{entity_type}/{identifier}/{filename}"


class ImageService:
    """Normalize uploads and store them under generated identifiers."""

    def __init__(
        self,
        storage: ImageStorage,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.storage = storage
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def save_image(
        self, entity_type: str, data: bytes, identifier: Optional[str] = None
    ) -> UploadResult:
        """Normalize ``data`` and store it.

        Args:
            entity_type: Namespace segment the image belongs to.
            data: Raw upload bytes.
            identifier: Slot to (over)write; a new UUID when omitted.

        Returns:
            The stored image's metadata.

        Raises:
            ImageStoreError: Any error from the pipeline or the storage
                backend, unchanged.
        """
        # Reject bad segments before spending CPU on the transcode.
        validate_segment(entity_type, "entity type")
        identifier = identifier or self.id_factory()
        validate_segment(identifier, "identifier")

        normalized = image_ops.normalize(data)
        filename = self.storage.save(entity_type, identifier, normalized.data)
        logger.info(
            "Stored %s upload as %s/%s/%s",
            normalized.source_format,
            entity_type,
            identifier,
            filename,
        )
        return UploadResult(
            id=identifier,
            filename=filename,
            format=normalized.format,
            url=image_url(entity_type, identifier, filename),
        )

    def save_images(self, entity_type: str, items: Iterable[bytes]) -> List[UploadResult]:
        """Store several uploads in order, stopping at the first failure.

        Items stored before the failing one stay stored; items after it are
        never attempted.
        """
        results = []
        for data in items:
            results.append(self.save_image(entity_type, data))
        if not results:
            raise InvalidInput("no images provided")
        return results

    def get_image(self, entity_type: str, identifier: str, filename: str) -> BinaryIO:
        return self.storage.open(entity_type, identifier, filename)

    def delete_image(self, entity_type: str, identifier: str) -> None:
        self.storage.delete(entity_type, identifier)
        logger.info("Deleted %s/%s", entity_type, identifier)
