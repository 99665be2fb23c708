"""Environment-driven settings for the image server.

Environment variables:
    ENVIRONMENT: 'production' (default), 'development' or 'test'.
    SERVER_PORT: Port used when running ``main.py`` directly (default 8080).
    MAX_FILE_SIZE: Maximum accepted size of a single upload in bytes
        (default 10485760, i.e. 10 MB).
    MAX_BATCH_FILES: Maximum number of images in one batch upload
        (default 20).
    SHUTDOWN_TIMEOUT: Seconds to wait for in-flight requests on shutdown
        (default 10).
    STORAGE_PATH: Storage root (default './data').
    DEV_STORAGE_PATH: Storage root used in development (default './dev-data').
    RATE_LIMIT_ENABLED: 'true' (default) or 'false'.
    RATE_LIMIT_PER_SECOND: Tokens added to the shared bucket per second
        (default 1).
    RATE_LIMIT_BURST: Bucket capacity (default 10).
    CORS_ALLOWED_ORIGINS: Comma-separated origins (default '*').
    LOG_LEVEL: Root log level (default 'INFO').
"""

from __future__ import annotations

import os
from typing import List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator


class Settings(BaseModel):
    """Validated server configuration."""

    environment: str = "production"
    port: int = Field(default=8080, gt=0, lt=65536)
    max_file_size: int = Field(default=10 * 1024 * 1024, gt=0)
    max_batch_files: int = Field(default=20, gt=0)
    shutdown_timeout: int = Field(default=10, ge=0)
    storage_path: str = "./data"
    dev_storage_path: str = "./dev-data"
    rate_limit_enabled: bool = True
    rate_limit_per_second: float = Field(default=1.0, gt=0)
    rate_limit_burst: int = Field(default=10, gt=0)
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("production", "development", "test"):
            raise ValueError(f"unknown environment '{v}'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return v.strip().upper()

    @property
    def storage_root(self) -> str:
        if self.environment == "development":
            return self.dev_storage_path
        return self.storage_path


def format_size(size: int) -> str:
    """Render a byte count as whole MB, or KB below one megabyte."""
    if size >= 1024 * 1024:
        return f"{size // 1024 // 1024} MB"
    return f"{size // 1024} KB"


_ENV_FIELDS = {
    "ENVIRONMENT": "environment",
    "SERVER_PORT": "port",
    "MAX_FILE_SIZE": "max_file_size",
    "MAX_BATCH_FILES": "max_batch_files",
    "SHUTDOWN_TIMEOUT": "shutdown_timeout",
    "STORAGE_PATH": "storage_path",
    "DEV_STORAGE_PATH": "dev_storage_path",
    "RATE_LIMIT_ENABLED": "rate_limit_enabled",
    "RATE_LIMIT_PER_SECOND": "rate_limit_per_second",
    "RATE_LIMIT_BURST": "rate_limit_burst",
    "LOG_LEVEL": "log_level",
}


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from environment variables.

    Unset variables fall back to the model defaults. Invalid values raise
    ``pydantic.ValidationError``.
    """
    env = os.environ if environ is None else environ
    values = {field: env[name] for name, field in _ENV_FIELDS.items() if env.get(name)}
    origins = env.get("CORS_ALLOWED_ORIGINS")
    if origins:
        values["allowed_origins"] = [o.strip() for o in origins.split(",") if o.strip()]
    return Settings(**values)
