"""Shared fixtures.

``main`` builds a module-level app on import, so the storage root is
pointed at a throwaway directory before any test module imports it.
"""

import io
import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))
os.environ.setdefault("STORAGE_PATH", tempfile.mkdtemp(prefix="imagestore-tests-"))


def encode_image(fmt="PNG", size=(1, 1), color=(255, 0, 0), mode="RGB"):
    """Return an in-memory image of a single colour encoded as ``fmt``."""
    from PIL import Image  # type: ignore

    img = Image.new(mode, size, color=color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def make_image():
    return encode_image


@pytest.fixture
def storage_root(tmp_path):
    root = tmp_path / "storage"
    root.mkdir()
    return root
