"""Tests for the image service against an in-memory storage backend."""

import io
import itertools

import pytest

from imagestore.errors import (
    InvalidInput,
    NotFound,
    PathTraversalRejected,
    StorageWriteFailed,
    UnsupportedOrCorruptImage,
)
from imagestore.service import ImageService
from imagestore.storage import CANONICAL_FILENAME, ImageStorage, validate_segment


class MemoryStorage(ImageStorage):
    """Dictionary-backed storage used to exercise the service in isolation."""

    def __init__(self, fail_on=None):
        self.files = {}
        self.fail_on = fail_on

    def save(self, entity_type, identifier, data):
        validate_segment(entity_type, "entity type")
        validate_segment(identifier, "identifier")
        if identifier == self.fail_on:
            raise StorageWriteFailed("disk full", entity_type, identifier)
        self.files[(entity_type, identifier)] = bytes(data)
        return CANONICAL_FILENAME

    def open(self, entity_type, identifier, filename):
        try:
            return io.BytesIO(self.files[(entity_type, identifier)])
        except KeyError:
            raise NotFound("image not found", entity_type, identifier) from None

    def delete(self, entity_type, identifier):
        if self.files.pop((entity_type, identifier), None) is None:
            raise NotFound("image not found", entity_type, identifier)

    def exists(self, entity_type, identifier):
        return (entity_type, identifier) in self.files


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def service(storage):
    counter = itertools.count(1)
    return ImageService(storage, id_factory=lambda: f"id-{next(counter)}")


def test_save_image_returns_metadata(service, storage, make_image):
    result = service.save_image("t", make_image("PNG"))
    assert result.id == "id-1"
    assert result.filename == "main.webp"
    assert result.format == "webp"
    assert result.url == "/images/t/id-1/main.webp"
    assert storage.files[("t", "id-1")][:4] == b"RIFF"


def test_save_image_with_explicit_identifier(service, storage, make_image):
    service.save_image("t", make_image("PNG"), identifier="fixed")
    assert storage.exists("t", "fixed")


def test_bad_entity_type_rejected_before_decode(service, storage):
    with pytest.raises(PathTraversalRejected):
        service.save_image("../x", b"not even an image")
    with pytest.raises(InvalidInput):
        service.save_image("", b"not even an image")
    assert storage.files == {}


def test_corrupt_upload_not_stored(service, storage):
    with pytest.raises(UnsupportedOrCorruptImage):
        service.save_image("t", b"\x89PNG\r\n\x1a\ngarbage")
    assert storage.files == {}


def test_batch_stops_at_first_failure(service, storage, make_image):
    items = [make_image("PNG"), make_image("JPEG"), b"corrupt", make_image("GIF")]
    attempted = []

    def tracked():
        for item in items:
            attempted.append(item)
            yield item

    with pytest.raises(UnsupportedOrCorruptImage):
        service.save_images("t", tracked())
    assert sorted(storage.files) == [("t", "id-1"), ("t", "id-2")]
    assert len(attempted) == 3


def test_batch_storage_failure_propagates(make_image):
    storage = MemoryStorage(fail_on="id-2")
    counter = itertools.count(1)
    service = ImageService(storage, id_factory=lambda: f"id-{next(counter)}")
    with pytest.raises(StorageWriteFailed):
        service.save_images("t", [make_image("PNG")] * 3)
    assert list(storage.files) == [("t", "id-1")]


def test_batch_empty_is_invalid(service):
    with pytest.raises(InvalidInput):
        service.save_images("t", [])


def test_get_and_delete_forward_to_storage(service, make_image):
    result = service.save_image("t", make_image("PNG"))
    with service.get_image("t", result.id, result.filename) as f:
        assert f.read(4) == b"RIFF"
    service.delete_image("t", result.id)
    with pytest.raises(NotFound):
        service.delete_image("t", result.id)
