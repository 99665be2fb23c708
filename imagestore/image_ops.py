"""Image normalization utilities.

This module wraps Pillow to turn an uploaded image in any supported
raster format (JPEG, PNG, GIF, WebP, BMP, TIFF, ICO) into the single
canonical encoding the service stores: lossy WebP at a fixed quality.
The API layer never chooses the output format or quality, and the
original filename or extension of an upload is never consulted.

Animated inputs are reduced to their first frame.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Tuple

from PIL import Image  # type: ignore[import]

from .errors import EncodingFailed, UnsupportedOrCorruptImage
from .storage import CANONICAL_FILENAME

CANONICAL_FORMAT = "webp"
WEBP_QUALITY = 85

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# What Pillow raises for unidentifiable, truncated or oversized inputs.
_DECODE_ERRORS = (
    OSError,
    SyntaxError,
    ValueError,
    EOFError,
    struct.error,
    Image.DecompressionBombError,
)

# Byte signatures checked in order. WebP is matched separately because
# its RIFF header has a length field between the two markers.
_SIGNATURES: Tuple[Tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"BM", "image/bmp"),
    (b"II*\x00", "image/tiff"),
    (b"MM\x00*", "image/tiff"),
    (b"\x00\x00\x01\x00", "image/x-icon"),
    (b"\x00\x00\x02\x00", "image/x-icon"),
)


@dataclass(frozen=True)
class NormalizedImage:
    """Result of :func:`normalize`."""

    data: bytes
    source_format: str
    filename: str = CANONICAL_FILENAME
    format: str = CANONICAL_FORMAT


def sniff_content_type(data: bytes) -> str:
    """Guess a MIME type from the leading bytes of ``data``.

    Only used for diagnostics and response headers; never trusted for
    any security decision.
    """
    head = data[:16]
    if head[:4] == b"RIFF" and head[8:14] == b"WEBPVP":
        return "image/webp"
    for signature, content_type in _SIGNATURES:
        if head.startswith(signature):
            return content_type
    return DEFAULT_CONTENT_TYPE


def _open_image(data: bytes) -> Image.Image:
    """Decode raw bytes fully and return an RGB or RGBA image."""
    img = Image.open(BytesIO(data))
    img.load()
    has_alpha = img.mode in ("RGBA", "LA", "PA") or (
        img.mode == "P" and "transparency" in img.info
    )
    target = "RGBA" if has_alpha else "RGB"
    if img.mode != target:
        img = img.convert(target)
    return img


def decode_image(data: bytes, sniffed: Optional[str] = None) -> Image.Image:
    """Decode an upload into pixels.

    ``sniffed`` is the content type already detected by the caller; it is
    sniffed here when omitted.

    Raises:
        UnsupportedOrCorruptImage: If Pillow cannot identify or fully
            decode the bytes. The message names the sniffed format.
    """
    if sniffed is None:
        sniffed = sniff_content_type(data)
    if not data:
        raise UnsupportedOrCorruptImage("empty image payload", sniffed)
    try:
        return _open_image(data)
    except _DECODE_ERRORS as exc:
        raise UnsupportedOrCorruptImage(
            f"failed to decode image (format: {sniffed}): {exc}", sniffed
        ) from exc


def encode_webp(img: Image.Image) -> bytes:
    """Encode pixels as lossy WebP at ``WEBP_QUALITY``.

    Raises:
        EncodingFailed: If the encoder rejects the image.
    """
    buffer = BytesIO()
    try:
        img.save(buffer, format="WEBP", quality=WEBP_QUALITY, lossless=False)
    except (OSError, ValueError, KeyError) as exc:
        raise EncodingFailed(f"failed to encode to WebP: {exc}") from exc
    return buffer.getvalue()


def normalize(data: bytes) -> NormalizedImage:
    """Convert an uploaded image to the canonical stored representation.

    Args:
        data: Raw upload bytes in any format Pillow can decode.

    Returns:
        A :class:`NormalizedImage` holding WebP bytes, the sniffed source
        content type and the fixed canonical filename.

    Raises:
        UnsupportedOrCorruptImage: If decoding fails.
        EncodingFailed: If WebP encoding fails.
    """
    sniffed = sniff_content_type(data)
    img = decode_image(data, sniffed)
    return NormalizedImage(data=encode_webp(img), source_format=sniffed)
