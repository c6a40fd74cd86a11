"""Service layer – validation and dispatch of image uploads.

``UploadGateway.handle`` runs a fixed pipeline::

    parse data URI → check MIME type → decode base64 → check size
        → generate storage filename → delegate to the storage backend

Validation always completes before the backend is touched, so a rejected
request never leaves anything behind in storage.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
import secrets
import string
import time
from dataclasses import dataclass

from src.app.config import ALLOWED_MIME_TYPES, MAX_UPLOAD_BYTES, MIME_EXTENSIONS
from src.app.services.storage_service import StorageBackend, StorageResult

logger = logging.getLogger(__name__)

DATA_URI_PATTERN = re.compile(r"data:([A-Za-z+/-]+);base64,(.+)")

BASE36_ALPHABET = string.digits + string.ascii_lowercase
TOKEN_SEGMENT_LENGTH = 13


# ──────────────────────────────────────────────
# Errors
# ──────────────────────────────────────────────
class UploadError(Exception):
    """Base class for every reason an upload is rejected."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MalformedPayload(UploadError):
    status_code = 400


class UnsupportedMediaType(UploadError):
    status_code = 400


class PayloadTooLarge(UploadError):
    status_code = 400


class StorageUnavailable(UploadError):
    status_code = 500


# ──────────────────────────────────────────────
# Data
# ──────────────────────────────────────────────
@dataclass(frozen=True)
class DecodedImage:
    mime_type: str
    data: bytes


@dataclass(frozen=True)
class UploadResult:
    url: str
    filename: str
    storage: StorageResult


# ──────────────────────────────────────────────
# Pure helpers
# ──────────────────────────────────────────────
def parse_data_uri(image: str | None) -> tuple[str, str]:
    """Split a ``data:<mime>;base64,<payload>`` string into (mime, payload)."""
    if not image:
        raise MalformedPayload("No image data provided")

    match = DATA_URI_PATTERN.fullmatch(image)
    if match is None:
        raise MalformedPayload("Invalid image format. Expected a data:<mime>;base64,<data> URI.")
    return match.group(1), match.group(2)


def is_allowed_mime_type(mime_type: str) -> bool:
    return mime_type in ALLOWED_MIME_TYPES


def decode_image(mime_type: str, payload: str) -> DecodedImage:
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedPayload(f"Invalid image format: payload is not valid base64 ({exc})") from exc
    return DecodedImage(mime_type=mime_type, data=data)


def extension_for(mime_type: str) -> str:
    """Storage extension for an allow-listed MIME type."""
    return MIME_EXTENSIONS[mime_type]


def describe_size(size: int) -> str:
    """``10MB`` for whole mebibytes, ``<n> bytes`` otherwise."""
    mebibyte = 1024 * 1024
    if size >= mebibyte and size % mebibyte == 0:
        return f"{size // mebibyte}MB"
    return f"{size} bytes"


def _random_segment(length: int = TOKEN_SEGMENT_LENGTH) -> str:
    return "".join(secrets.choice(BASE36_ALPHABET) for _ in range(length))


def generate_filename(mime_type: str, now_ms: int | None = None) -> str:
    """
    Build ``{epoch-millis}-{token}.{ext}`` for a validated MIME type.

    The token is two independent base36 segments (~134 bits together), so
    collisions within a process are not a practical concern.  The extension
    comes from the MIME type alone; whatever name the client sent is ignored.
    """
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    token = _random_segment() + _random_segment()
    return f"{now_ms}-{token}.{extension_for(mime_type)}"


# ──────────────────────────────────────────────
# Gateway
# ──────────────────────────────────────────────
class UploadGateway:
    """Validates an uploaded data URI and hands the bytes to storage."""

    def __init__(
        self,
        backend: StorageBackend,
        max_bytes: int = MAX_UPLOAD_BYTES,
        timeout: float | None = None,
    ) -> None:
        self._backend = backend
        self._max_bytes = max_bytes
        self._timeout = timeout

    def validate(self, image: str | None) -> DecodedImage:
        """Run every check that must pass before anything is stored."""
        mime_type, payload = parse_data_uri(image)

        if not is_allowed_mime_type(mime_type):
            raise UnsupportedMediaType(
                "Invalid image type. Only JPG, PNG, GIF, and WebP are allowed."
            )

        decoded = decode_image(mime_type, payload)

        if len(decoded.data) > self._max_bytes:
            raise PayloadTooLarge(
                f"File size too large ({len(decoded.data)} bytes). "
                f"Maximum size is {describe_size(self._max_bytes)}."
            )
        return decoded

    async def handle(self, image: str | None, original_filename: str | None = None) -> UploadResult:
        """
        Validate *image* and upload it.

        ``original_filename`` is accepted for logging only; the stored name is
        always generated.

        Raises
        ------
        MalformedPayload, UnsupportedMediaType, PayloadTooLarge
            The request was rejected; the backend was not called.
        StorageUnavailable
            The backend failed or timed out.
        """
        try:
            decoded = self.validate(image)
        except UploadError as exc:
            logger.warning("Rejected upload (%s): %s", type(exc).__name__, exc.message)
            raise

        filename = generate_filename(decoded.mime_type)
        logger.info(
            "📤 Uploading %s (%d bytes, %s, client name %r) via %s",
            filename, len(decoded.data), decoded.mime_type, original_filename, self._backend.name,
        )

        deadline = asyncio.timeout(self._timeout)
        try:
            async with deadline:
                stored = await self._backend.upload(decoded.data, filename, decoded.mime_type)
        except Exception as exc:
            # a TimeoutError raised by the backend itself is an ordinary failure
            if isinstance(exc, TimeoutError) and deadline.expired():
                logger.error("Storage upload of %s timed out after %ss", filename, self._timeout)
                raise StorageUnavailable(
                    f"Failed to upload image: storage did not respond within {self._timeout}s"
                ) from exc
            logger.exception("Storage upload of %s failed", filename)
            raise StorageUnavailable(f"Failed to upload image: {exc}") from exc

        logger.info("✅ Uploaded %s → %s", filename, stored.url)
        return UploadResult(url=stored.url, filename=filename, storage=stored)
