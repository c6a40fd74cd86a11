from enum import Enum
from typing import Any, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ──────────────────────────────────────────────
# Storage providers
# ──────────────────────────────────────────────
class StorageType(str, Enum):
    """Object-storage provider the gateway delegates uploads to."""

    BLOB = "blob"
    MEDIA_CDN = "media-cdn"
    OBJECT_STORE = "object-store"


# Provider names used by older deployments
STORAGE_TYPE_ALIASES: dict[str, StorageType] = {
    "vercel-blob": StorageType.BLOB,
    "cloudinary": StorageType.MEDIA_CDN,
    "aws-s3": StorageType.OBJECT_STORE,
    "s3": StorageType.OBJECT_STORE,
}


# ──────────────────────────────────────────────
# Settings (from environment variables / .env)
# ──────────────────────────────────────────────
class Settings(BaseSettings):
    """Application settings loaded from environment variables or .env file."""

    # CORS settings
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000"
    cors_allow_credentials: bool = True
    cors_allow_methods: str = "GET,POST,OPTIONS"
    cors_allow_headers: str = "*"

    # Upload settings
    storage_type: StorageType = StorageType.BLOB
    max_body_size: int = 15 * 1024 * 1024    # base64 adds ~33 %
    storage_timeout_seconds: float | None = 30.0

    # Blob storage
    blob_read_write_token: str | None = None
    blob_api_url: str = "https://blob.vercel-storage.com"

    # Media CDN
    cloudinary_cloud_name: str | None = None
    cloudinary_api_key: str | None = None
    cloudinary_api_secret: str | None = None
    cloudinary_folder: str = "photo-hosting"
    cloudinary_api_url: str = "https://api.cloudinary.com"

    # S3-compatible object store
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_region: str = "us-east-1"
    aws_bucket_name: str | None = None
    aws_endpoint_url: str | None = None
    aws_public_base_url: str | None = None

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("storage_type", mode="before")
    @classmethod
    def _coerce_storage_type(cls, value: Any) -> StorageType:
        """Map aliases onto ``StorageType``; anything unknown falls back to blob."""
        if isinstance(value, StorageType):
            return value
        name = str(value or "").strip().lower()
        if name in STORAGE_TYPE_ALIASES:
            return STORAGE_TYPE_ALIASES[name]
        try:
            return StorageType(name)
        except ValueError:
            return StorageType.BLOB

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def cors_methods_list(self) -> list[str]:
        """Parse CORS methods from comma-separated string."""
        if self.cors_allow_methods == "*":
            return ["*"]
        return [method.strip() for method in self.cors_allow_methods.split(",")]

    @property
    def cors_headers_list(self) -> list[str]:
        """Parse CORS headers from comma-separated string."""
        if self.cors_allow_headers == "*":
            return ["*"]
        return [header.strip() for header in self.cors_allow_headers.split(",")]


# Global settings instance
settings = Settings()

# ──────────────────────────────────────────────
# Accepted image types
#   key   → MIME type sent in the data URI
#   value → extension used for the stored object
# ──────────────────────────────────────────────
MIME_EXTENSIONS: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}

ALLOWED_MIME_TYPES: frozenset[str] = frozenset(MIME_EXTENSIONS)

# Decoded image ceiling, inclusive
MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024
