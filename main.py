"""HTTP API for uploading, serving and deleting normalized images.

Routes:
    POST   /images/{entity_type}                       single upload (field ``image``)
    POST   /images/{entity_type}/batch                 batch upload (field ``images``)
    GET    /images/{entity_type}/{id}/{filename}       fetch a stored image
    DELETE /images/{entity_type}/{id}                  delete a stored image
    GET    /health                                     liveness check

Upload, fetch and delete handlers are plain ``def`` functions so the
blocking decode/encode and filesystem work runs on FastAPI's threadpool.
"""

import logging
import uuid
from typing import Iterable, Iterator, List, Optional

from fastapi import FastAPI, File, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from imagestore.config import Settings, format_size, load_settings
from imagestore.errors import (
    ImageStoreError,
    InvalidInput,
    SizeLimitExceeded,
    StorageReadFailed,
)
from imagestore.log import setup_logging
from imagestore.models import HealthResponse, UploadResult
from imagestore.ratelimit import TokenBucket
from imagestore.responses import serve_stream
from imagestore.service import ImageService
from imagestore.storage import FileStorage

logger = logging.getLogger("imagestore.api")

# Allowance for multipart boundaries and part headers on top of the file
# bytes when checking Content-Length.
FORM_OVERHEAD = 64 * 1024


def _read_upload(upload: UploadFile, max_size: int) -> bytes:
    """Read one uploaded file, never buffering more than ``max_size + 1`` bytes."""
    data = upload.file.read(max_size + 1)
    if len(data) > max_size:
        name = upload.filename or "image"
        raise SizeLimitExceeded(f"file {name} exceeds maximum limit of {format_size(max_size)}")
    return data


def _iter_uploads(uploads: Iterable[UploadFile], max_size: int) -> Iterator[bytes]:
    for upload in uploads:
        yield _read_upload(upload, max_size)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application and its storage root."""
    settings = settings or load_settings()
    setup_logging(settings.log_level)

    # --- Storage & Service Init ---
    storage = FileStorage(settings.storage_root)
    service = ImageService(storage)
    limiter = TokenBucket(settings.rate_limit_burst, settings.rate_limit_per_second)
    logger.info("[startup] Storage root: %s", settings.storage_root)
    logger.info(
        "[startup] Max upload size: %s, rate limiting %s",
        format_size(settings.max_file_size),
        "enabled" if settings.rate_limit_enabled else "disabled",
    )

    # --- App Init ---
    app = FastAPI(title="imagestore")

    single_limit = settings.max_file_size + FORM_OVERHEAD
    batch_limit = settings.max_file_size * settings.max_batch_files + FORM_OVERHEAD
    size_label = format_size(settings.max_file_size)

    # --- Middleware ---
    @app.middleware("http")
    async def limit_upload_size(request: Request, call_next):
        if request.method == "POST" and request.url.path.startswith("/images/"):
            limit = batch_limit if request.url.path.endswith("/batch") else single_limit
            length = request.headers.get("content-length", "")
            if length.isdigit() and int(length) > limit:
                return JSONResponse(
                    status_code=413,
                    content={"detail": f"upload size exceeds maximum limit of {size_label}"},
                )
        return await call_next(request)

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if settings.rate_limit_enabled:
            allowed, retry_after = limiter.consume()
            if not allowed:
                logger.warning("Rate limit exceeded for %s %s", request.method, request.url.path)
                return JSONResponse(
                    status_code=429,
                    content={"detail": "rate limit exceeded"},
                    headers={"Retry-After": str(max(1, int(retry_after + 0.999)))},
                )
        return await call_next(request)

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Content-Range", "Accept-Ranges"],
    )

    @app.exception_handler(ImageStoreError)
    async def image_store_error_handler(request: Request, exc: ImageStoreError):
        if exc.status_code >= 500:
            logger.error(
                "%s on %s %s: %s",
                type(exc).__name__,
                request.method,
                request.url.path,
                exc.message,
                exc_info=exc,
            )
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    # --- Image Endpoints ---
    @app.post("/images/{entity_type}/batch", status_code=201, response_model=List[UploadResult])
    def upload_images(entity_type: str, images: Optional[List[UploadFile]] = File(None)):
        """Normalize and store several images in order.

        Processing stops at the first failing item and that item's error is
        returned. Images stored before it are kept; later ones are never
        read.
        """
        if not images:
            raise InvalidInput("no images provided")
        if len(images) > settings.max_batch_files:
            raise InvalidInput(f"at most {settings.max_batch_files} images per batch")
        return service.save_images(entity_type, _iter_uploads(images, settings.max_file_size))

    @app.post("/images/{entity_type}", status_code=201, response_model=UploadResult)
    def upload_image(entity_type: str, image: Optional[UploadFile] = File(None)):
        if image is None:
            raise InvalidInput("failed to get image file")
        data = _read_upload(image, settings.max_file_size)
        return service.save_image(entity_type, data)

    @app.get("/images/{entity_type}/{identifier}/{filename}")
    def get_image(entity_type: str, identifier: str, filename: str, request: Request):
        f = service.get_image(entity_type, identifier, filename)
        try:
            return serve_stream(f, request.headers.get("range"))
        except OSError as exc:
            f.close()
            raise StorageReadFailed(
                f"failed to read image: {exc}", entity_type, identifier
            ) from exc
        except Exception:
            f.close()
            raise

    @app.delete("/images/{entity_type}/{identifier}", status_code=204)
    def delete_image(entity_type: str, identifier: str):
        service.delete_image(entity_type, identifier)
        return Response(status_code=204)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=settings.shutdown_timeout,
    )
