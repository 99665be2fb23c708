"""Storage backend abstraction for normalized image bytes.

Images live on the local filesystem under a single storage root with the
layout ``<root>/<entity_type>/<identifier>/main.webp``. Callers address
an image by entity type (an opaque namespace such as ``products``) and
identifier (usually a UUID string); the canonical filename is fixed, so
one identifier owns exactly one artifact and a save always overwrites it.

Every path built from caller-supplied segments is checked for containment
before the filesystem is touched: each segment is validated on its own,
the joined path and the storage root are both resolved with
``os.path.realpath`` and the former must sit strictly below the latter.
Symlinks that point outside the root are therefore rejected as well.

Writes go to a temporary file in the target directory which is then
renamed onto the canonical path, so readers observe either the previous
content or the complete new payload.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from contextlib import suppress
from typing import BinaryIO, Union

from .errors import (
    InvalidInput,
    NotFound,
    PathTraversalRejected,
    StorageReadFailed,
    StorageWriteFailed,
)

logger = logging.getLogger(__name__)

CANONICAL_FILENAME = "main.webp"

# Temp files are hidden and never served by ``open``.
TEMP_PREFIX = ".main-"

# Extensions tried by ``delete`` for images written with the flat
# ``<entity_type>/<identifier>.<ext>`` layout.
LEGACY_EXTENSIONS = ("jpg", "jpeg", "png", "webp")

ImageData = Union[bytes, BinaryIO]


class ImageStorage(ABC):
    """Contract for persisting images keyed by entity type and identifier.

    Implementations must raise the errors from :mod:`imagestore.errors`
    and must return seekable binary streams from :meth:`open`.
    """

    @abstractmethod
    def save(self, entity_type: str, identifier: str, data: ImageData) -> str:
        """Store ``data`` as the canonical artifact and return its filename."""

    @abstractmethod
    def open(self, entity_type: str, identifier: str, filename: str) -> BinaryIO:
        """Open a stored file for reading. The caller closes it."""

    @abstractmethod
    def delete(self, entity_type: str, identifier: str) -> None:
        """Remove the artifact, raising ``NotFound`` if there is none."""

    @abstractmethod
    def exists(self, entity_type: str, identifier: str) -> bool:
        """Return True if the identifier currently owns an artifact."""


def _ensure_dir(path: str) -> None:
    """Create the directory and its parents if they do not exist."""
    os.makedirs(path, exist_ok=True)


def _read_umask() -> int:
    # os.umask can only be read by setting it; done once at import time.
    mask = os.umask(0)
    os.umask(mask)
    return mask


_UMASK = _read_umask()


def _file_mode() -> int:
    """Mode for stored files: ``0o644`` filtered by the process umask."""
    return 0o644 & ~_UMASK


def validate_segment(value: str, field: str) -> str:
    """Check a single caller-supplied path segment.

    Args:
        value: The raw segment, e.g. an entity type or identifier.
        field: Field name used in the error message.

    Returns:
        The segment unchanged.

    Raises:
        InvalidInput: If the segment is empty or blank.
        PathTraversalRejected: If the segment contains a separator or NUL
            byte, is absolute, or normalizes to ``.`` or ``..``.
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{field} must not be empty")
    separators = {"/", "\\", os.sep}
    if os.altsep:
        separators.add(os.altsep)
    if "\x00" in value or any(sep in value for sep in separators):
        raise PathTraversalRejected()
    if os.path.isabs(value) or os.path.normpath(value) in (os.curdir, os.pardir):
        raise PathTraversalRejected()
    return value


class FileStorage(ImageStorage):
    """Local filesystem implementation of :class:`ImageStorage`."""

    def __init__(self, base_path: str):
        self.base_path = str(base_path)
        try:
            _ensure_dir(self.base_path)
        except OSError as exc:
            raise StorageWriteFailed(f"failed to create storage directory: {exc}") from exc

    def _resolve(self, *segments: str) -> str:
        """Join validated segments onto the root and enforce containment.

        Both the root and the target are resolved independently on every
        call. A target equal to the root is accepted only when no segment
        was given.
        """
        root = os.path.realpath(self.base_path)
        target = os.path.realpath(os.path.join(root, *segments))
        if target == root and not segments:
            return target
        prefix = root if root.endswith(os.sep) else root + os.sep
        if not target.startswith(prefix):
            logger.warning("Rejected storage path outside of the storage root")
            raise PathTraversalRejected()
        return target

    def _image_dir(self, entity_type: str, identifier: str) -> str:
        validate_segment(entity_type, "entity type")
        validate_segment(identifier, "identifier")
        return self._resolve(entity_type, identifier)

    def save(self, entity_type: str, identifier: str, data: ImageData) -> str:
        """Persist image bytes under the canonical filename.

        Args:
            entity_type: Namespace segment, e.g. ``products``.
            identifier: Image slot identifier.
            data: Encoded bytes or a readable binary stream.

        Returns:
            The canonical filename (``main.webp``).

        Raises:
            InvalidInput: If a segment is empty.
            PathTraversalRejected: If the target would leave the root.
            StorageWriteFailed: On any directory, write or stream read
                failure. The temp file is removed.
        """
        dir_path = self._image_dir(entity_type, identifier)
        dest_path = self._resolve(entity_type, identifier, CANONICAL_FILENAME)
        try:
            _ensure_dir(dir_path)
        except OSError as exc:
            raise StorageWriteFailed(
                f"failed to create image directory: {exc}", entity_type, identifier
            ) from exc

        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=".tmp", dir=dir_path)
            with os.fdopen(fd, "wb") as f:
                if isinstance(data, (bytes, bytearray, memoryview)):
                    f.write(data)
                else:
                    shutil.copyfileobj(data, f)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, _file_mode())
            os.replace(tmp_path, dest_path)
        except BaseException as exc:
            if tmp_path is not None:
                with suppress(FileNotFoundError):
                    os.remove(tmp_path)
            if isinstance(exc, (OSError, ValueError, TypeError)):
                raise StorageWriteFailed(
                    f"failed to save image: {exc}", entity_type, identifier
                ) from exc
            raise

        logger.info("Saved image %s/%s", entity_type, identifier)
        return CANONICAL_FILENAME

    def open(self, entity_type: str, identifier: str, filename: str) -> BinaryIO:
        """Open a stored file for streaming.

        The returned file object is seekable so the API layer can sniff the
        content type and serve byte ranges.

        Raises:
            PathTraversalRejected: If the resolved path leaves the root.
            NotFound: If the image directory or file does not exist, or the
                filename is hidden (starts with a dot).
            StorageReadFailed: On any other I/O error.
        """
        validate_segment(entity_type, "entity type")
        validate_segment(identifier, "identifier")
        validate_segment(filename, "filename")
        full_path = self._resolve(entity_type, identifier, filename)
        if filename.startswith("."):
            # in-flight temp files and other hidden entries
            raise NotFound("image not found", entity_type, identifier)

        if not os.path.isdir(os.path.dirname(full_path)):
            raise NotFound("image not found", entity_type, identifier)
        try:
            return open(full_path, "rb")
        except FileNotFoundError as exc:
            raise NotFound("image not found", entity_type, identifier) from exc
        except OSError as exc:
            raise StorageReadFailed(
                f"failed to open image: {exc}", entity_type, identifier
            ) from exc

    def delete(self, entity_type: str, identifier: str) -> None:
        """Remove the canonical artifact for an identifier.

        When the canonical file is missing, flat legacy files named
        ``<identifier>.<ext>`` directly under the entity directory are
        removed instead. Removing at least one file counts as success.

        Raises:
            NotFound: If nothing was stored for the identifier.
            StorageWriteFailed: If a file exists but cannot be removed.
        """
        dir_path = self._image_dir(entity_type, identifier)
        canonical = self._resolve(entity_type, identifier, CANONICAL_FILENAME)

        if self._remove(canonical, entity_type, identifier):
            with suppress(OSError):
                os.rmdir(dir_path)
            logger.info("Deleted image %s/%s", entity_type, identifier)
            return

        deleted = False
        for ext in LEGACY_EXTENSIONS:
            legacy = self._resolve(entity_type, f"{identifier}.{ext}")
            if self._remove(legacy, entity_type, identifier):
                deleted = True
        if not deleted:
            raise NotFound("image not found", entity_type, identifier)
        logger.info("Deleted legacy image %s/%s", entity_type, identifier)

    @staticmethod
    def _remove(path: str, entity_type: str, identifier: str) -> bool:
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageWriteFailed(
                f"failed to delete image: {exc}", entity_type, identifier
            ) from exc
        return True

    def exists(self, entity_type: str, identifier: str) -> bool:
        self._image_dir(entity_type, identifier)
        return os.path.isfile(self._resolve(entity_type, identifier, CANONICAL_FILENAME))
