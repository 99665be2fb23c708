"""Image storage and normalization package.

This package contains the storage backend that lays normalized images
out on disk under ``<root>/<entity_type>/<identifier>/main.webp``, the
Pillow-based pipeline that re-encodes uploads to WebP, and the service
and helpers used by the API in ``main.py``. See individual modules for
details.
"""
