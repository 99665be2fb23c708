"""Streaming responses for stored images with single-range support."""

from __future__ import annotations

import os
import re
from typing import BinaryIO, Iterator, Optional, Tuple

from starlette.background import BackgroundTask
from starlette.responses import Response, StreamingResponse

from .image_ops import sniff_content_type

CHUNK_SIZE = 64 * 1024
SNIFF_BYTES = 512

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


def parse_range(header: Optional[str], size: int) -> Optional[Tuple[int, int]]:
    """Parse a single ``bytes=`` range into inclusive (start, end) offsets.

    Returns None when the header is absent, malformed or lists several
    ranges; the full body is served in that case.

    Raises:
        ValueError: If the range is well formed but unsatisfiable.
    """
    if not header:
        return None
    match = _RANGE_RE.match(header.strip())
    if not match:
        return None
    first, last = match.groups()
    if not first and not last:
        return None
    if not first:
        # suffix range: the last N bytes
        length = int(last)
        if length == 0 or size == 0:
            raise ValueError("unsatisfiable range")
        return max(0, size - length), size - 1
    start = int(first)
    end = int(last) if last else size - 1
    if start >= size or end < start:
        raise ValueError("unsatisfiable range")
    return start, min(end, size - 1)


def _iter_file(f: BinaryIO, start: int, length: int) -> Iterator[bytes]:
    """Yield ``length`` bytes from ``start``, closing ``f`` when done or abandoned."""
    try:
        f.seek(start)
        remaining = length
        while remaining > 0:
            chunk = f.read(min(CHUNK_SIZE, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk
    finally:
        f.close()


def serve_stream(f: BinaryIO, range_header: Optional[str] = None) -> Response:
    """Build a response streaming ``f``, closing it once sent or abandoned.

    The content type is sniffed from the first bytes of the file. A
    single byte range is honoured with ``206 Partial Content``.
    """
    content_type = sniff_content_type(f.read(SNIFF_BYTES))
    size = f.seek(0, os.SEEK_END)
    f.seek(0)
    headers = {"Accept-Ranges": "bytes"}
    # covers a body that is never iterated; close() is idempotent
    close = BackgroundTask(f.close)

    try:
        byte_range = parse_range(range_header, size)
    except ValueError:
        f.close()
        headers["Content-Range"] = f"bytes */{size}"
        return Response(status_code=416, headers=headers)

    if byte_range is None:
        headers["Content-Length"] = str(size)
        return StreamingResponse(
            _iter_file(f, 0, size), media_type=content_type, headers=headers, background=close
        )

    start, end = byte_range
    length = end - start + 1
    headers["Content-Range"] = f"bytes {start}-{end}/{size}"
    headers["Content-Length"] = str(length)
    return StreamingResponse(
        _iter_file(f, start, length),
        status_code=206,
        media_type=content_type,
        headers=headers,
        background=close,
    )
