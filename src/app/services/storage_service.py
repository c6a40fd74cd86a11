"""Service layer – object-storage providers for uploaded images.

Every provider implements :class:`StorageBackend`.  Which one is used is a
pure configuration switch (``STORAGE_TYPE``) resolved once by
:func:`build_storage_backend`; credentials are read from ``Settings`` here
and nowhere else.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, assert_never

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from src.app.config import Settings, StorageType

logger = logging.getLogger(__name__)


class StorageBackendError(Exception):
    """Raised by a provider when an upload cannot be completed."""


@dataclass(frozen=True)
class StorageResult:
    """What a provider hands back after a successful upload."""

    url: str
    download_url: str | None = None
    key: str | None = None


class StorageBackend(ABC):
    """Interface every storage provider implements."""

    name: str = "storage"

    @abstractmethod
    async def upload(self, data: bytes, filename: str, content_type: str) -> StorageResult:
        """Store *data* under *filename* and return its public URL."""


# ──────────────────────────────────────────────
# Blob storage (Vercel Blob REST API)
# ──────────────────────────────────────────────
class BlobStorageBackend(StorageBackend):
    name = "blob"

    def __init__(
        self,
        token: str | None,
        api_url: str = "https://blob.vercel-storage.com",
        timeout: float | None = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def upload(self, data: bytes, filename: str, content_type: str) -> StorageResult:
        if not self._token:
            raise StorageBackendError("Blob storage is not configured (BLOB_READ_WRITE_TOKEN missing)")

        headers = {
            "authorization": f"Bearer {self._token}",
            "x-api-version": "7",
            "x-content-type": content_type,
            "x-add-random-suffix": "0",
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.put(
                    f"{self._api_url}/",
                    params={"pathname": filename},
                    content=data,
                    headers=headers,
                )
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise StorageBackendError(f"Blob upload failed: {exc}") from exc

        body = response.json()
        logger.info("☁️  Stored %s in blob storage", body.get("pathname", filename))
        return StorageResult(
            url=body["url"],
            download_url=body.get("downloadUrl"),
            key=body.get("pathname"),
        )


# ──────────────────────────────────────────────
# Media CDN (Cloudinary signed upload)
# ──────────────────────────────────────────────
def sign_params(params: dict[str, Any], api_secret: str) -> str:
    """SHA-1 signature over the sorted ``key=value`` pairs plus the secret."""
    payload = "&".join(f"{key}={params[key]}" for key in sorted(params))
    return hashlib.sha1(f"{payload}{api_secret}".encode()).hexdigest()


class MediaCdnStorageBackend(StorageBackend):
    name = "media-cdn"

    def __init__(
        self,
        cloud_name: str | None,
        api_key: str | None,
        api_secret: str | None,
        folder: str = "photo-hosting",
        api_url: str = "https://api.cloudinary.com",
        timeout: float | None = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cloud_name = cloud_name
        self._api_key = api_key
        self._api_secret = api_secret
        self._folder = folder
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def upload(self, data: bytes, filename: str, content_type: str) -> StorageResult:
        if not (self._cloud_name and self._api_key and self._api_secret):
            raise StorageBackendError(
                "Media CDN is not configured "
                "(CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET are required)"
            )

        params: dict[str, Any] = {
            "folder": self._folder,
            "public_id": PurePosixPath(filename).stem,
            "timestamp": int(time.time()),
        }
        form = {
            **{key: str(value) for key, value in params.items()},
            "api_key": self._api_key,
            "signature": sign_params(params, self._api_secret),
        }
        endpoint = f"{self._api_url}/v1_1/{self._cloud_name}/image/upload"

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.post(
                    endpoint,
                    data=form,
                    files={"file": (filename, data, content_type)},
                )
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise StorageBackendError(f"Media CDN upload failed: {exc}") from exc

        body = response.json()
        logger.info("☁️  Stored %s on media CDN", body.get("public_id"))
        return StorageResult(url=body["secure_url"], key=body.get("public_id"))


# ──────────────────────────────────────────────
# S3-compatible object store
# ──────────────────────────────────────────────
class ObjectStoreStorageBackend(StorageBackend):
    name = "object-store"

    key_prefix = "images"

    def __init__(
        self,
        bucket: str | None,
        region: str = "us-east-1",
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        endpoint_url: str | None = None,
        public_base_url: str | None = None,
        timeout: float | None = 30.0,
        client: Any = None,
    ) -> None:
        self._bucket = bucket
        self._region = region
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._endpoint_url = endpoint_url
        self._public_base_url = public_base_url
        self._timeout = timeout
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self._endpoint_url,
                aws_access_key_id=self._access_key_id,
                aws_secret_access_key=self._secret_access_key,
                region_name=self._region,
                config=Config(
                    signature_version="s3v4",
                    connect_timeout=self._timeout or 60,
                    read_timeout=self._timeout or 60,
                ),
            )
        return self._client

    def public_url(self, key: str) -> str:
        if self._public_base_url:
            return f"{self._public_base_url.rstrip('/')}/{key}"
        if self._endpoint_url:
            return f"{self._endpoint_url.rstrip('/')}/{self._bucket}/{key}"
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{key}"

    def _put(self, key: str, data: bytes, content_type: str) -> None:
        self._get_client().put_object(
            Bucket=self._bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
            ACL="public-read",
        )

    async def upload(self, data: bytes, filename: str, content_type: str) -> StorageResult:
        if not self._bucket:
            raise StorageBackendError("Object store is not configured (AWS_BUCKET_NAME missing)")

        key = f"{self.key_prefix}/{filename}"
        try:
            # boto3 is blocking
            await asyncio.to_thread(self._put, key, data, content_type)
        except (BotoCoreError, ClientError) as exc:
            raise StorageBackendError(f"Object store upload failed: {exc}") from exc

        logger.info("☁️  Stored s3://%s/%s", self._bucket, key)
        return StorageResult(url=self.public_url(key), key=key)


# ──────────────────────────────────────────────
# In-memory (tests / local development)
# ──────────────────────────────────────────────
class InMemoryStorageBackend(StorageBackend):
    name = "memory"

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.calls: list[str] = []

    async def upload(self, data: bytes, filename: str, content_type: str) -> StorageResult:
        self.calls.append(filename)
        self.objects[filename] = (data, content_type)
        return StorageResult(url=f"memory://images/{filename}", key=filename)


# ──────────────────────────────────────────────
# Factory
# ──────────────────────────────────────────────
def build_storage_backend(settings: Settings) -> StorageBackend:
    """Instantiate the provider selected by ``settings.storage_type``."""
    storage_type = settings.storage_type
    timeout = settings.storage_timeout_seconds

    match storage_type:
        case StorageType.BLOB:
            backend: StorageBackend = BlobStorageBackend(
                token=settings.blob_read_write_token,
                api_url=settings.blob_api_url,
                timeout=timeout,
            )
        case StorageType.MEDIA_CDN:
            backend = MediaCdnStorageBackend(
                cloud_name=settings.cloudinary_cloud_name,
                api_key=settings.cloudinary_api_key,
                api_secret=settings.cloudinary_api_secret,
                folder=settings.cloudinary_folder,
                api_url=settings.cloudinary_api_url,
                timeout=timeout,
            )
        case StorageType.OBJECT_STORE:
            backend = ObjectStoreStorageBackend(
                bucket=settings.aws_bucket_name,
                region=settings.aws_region,
                access_key_id=settings.aws_access_key_id,
                secret_access_key=settings.aws_secret_access_key,
                endpoint_url=settings.aws_endpoint_url,
                public_base_url=settings.aws_public_base_url,
                timeout=timeout,
            )
        case _:
            assert_never(storage_type)

    logger.info("Storage backend: %s", backend.name)
    return backend
