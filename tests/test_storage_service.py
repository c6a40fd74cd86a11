"""Tests for the storage providers and provider selection."""

import asyncio
import hashlib
from unittest.mock import MagicMock, patch

import httpx
import pytest
from botocore.exceptions import ClientError

from src.app.config import Settings, StorageType
from src.app.services.storage_service import (
    BlobStorageBackend,
    InMemoryStorageBackend,
    MediaCdnStorageBackend,
    ObjectStoreStorageBackend,
    StorageBackendError,
    build_storage_backend,
    sign_params,
)


# ──────────────────────────────────────────────
# Settings / provider selection
# ──────────────────────────────────────────────
@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("blob", StorageType.BLOB),
        ("media-cdn", StorageType.MEDIA_CDN),
        ("object-store", StorageType.OBJECT_STORE),
        ("OBJECT-STORE", StorageType.OBJECT_STORE),
        ("vercel-blob", StorageType.BLOB),
        ("cloudinary", StorageType.MEDIA_CDN),
        ("aws-s3", StorageType.OBJECT_STORE),
        ("ftp", StorageType.BLOB),
        ("", StorageType.BLOB),
    ],
)
def test_storage_type_setting(value: str, expected: StorageType) -> None:
    assert Settings(storage_type=value).storage_type is expected


def test_storage_type_read_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORAGE_TYPE", "media-cdn")
    assert Settings().storage_type is StorageType.MEDIA_CDN


@pytest.mark.parametrize(
    ("storage_type", "backend_class"),
    [
        (StorageType.BLOB, BlobStorageBackend),
        (StorageType.MEDIA_CDN, MediaCdnStorageBackend),
        (StorageType.OBJECT_STORE, ObjectStoreStorageBackend),
    ],
)
def test_build_storage_backend(storage_type: StorageType, backend_class: type) -> None:
    backend = build_storage_backend(Settings(storage_type=storage_type))
    assert isinstance(backend, backend_class)
    assert backend.name == storage_type.value


# ──────────────────────────────────────────────
# Blob storage
# ──────────────────────────────────────────────
def test_blob_upload() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["pathname"] = request.url.params["pathname"]
        seen["auth"] = request.headers["authorization"]
        seen["content_type"] = request.headers["x-content-type"]
        seen["body"] = request.content
        return httpx.Response(200, json={
            "url": "https://store.public.blob.vercel-storage.com/1-abc.png",
            "downloadUrl": "https://store.public.blob.vercel-storage.com/1-abc.png?download=1",
            "pathname": "1-abc.png",
        })

    backend = BlobStorageBackend(token="tok", transport=httpx.MockTransport(handler))
    result = asyncio.run(backend.upload(b"png-bytes", "1-abc.png", "image/png"))

    assert seen == {
        "method": "PUT",
        "pathname": "1-abc.png",
        "auth": "Bearer tok",
        "content_type": "image/png",
        "body": b"png-bytes",
    }
    assert result.url == "https://store.public.blob.vercel-storage.com/1-abc.png"
    assert result.download_url.endswith("?download=1")
    assert result.key == "1-abc.png"


def test_blob_upload_http_error() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(403, json={"error": "forbidden"}))
    backend = BlobStorageBackend(token="tok", transport=transport)

    with pytest.raises(StorageBackendError, match="Blob upload failed"):
        asyncio.run(backend.upload(b"x", "a.png", "image/png"))


def test_blob_requires_token() -> None:
    with pytest.raises(StorageBackendError, match="BLOB_READ_WRITE_TOKEN"):
        asyncio.run(BlobStorageBackend(token=None).upload(b"x", "a.png", "image/png"))


# ──────────────────────────────────────────────
# Media CDN
# ──────────────────────────────────────────────
def test_sign_params_sorts_keys() -> None:
    expected = hashlib.sha1(b"folder=f&public_id=p&timestamp=1s3cret").hexdigest()
    assert sign_params({"timestamp": 1, "public_id": "p", "folder": "f"}, "s3cret") == expected


@patch("src.app.services.storage_service.time.time", return_value=1700000000)
def test_media_cdn_upload(_mock_time: MagicMock) -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = request.content
        return httpx.Response(200, json={
            "secure_url": "https://res.cloudinary.com/demo/image/upload/photo-hosting/1-abc.jpg",
            "public_id": "photo-hosting/1-abc",
        })

    backend = MediaCdnStorageBackend(
        cloud_name="demo",
        api_key="key",
        api_secret="secret",
        transport=httpx.MockTransport(handler),
    )
    result = asyncio.run(backend.upload(b"jpeg-bytes", "1-abc.jpg", "image/jpeg"))

    signature = sign_params(
        {"folder": "photo-hosting", "public_id": "1-abc", "timestamp": 1700000000}, "secret"
    )
    assert seen["url"] == "https://api.cloudinary.com/v1_1/demo/image/upload"
    assert signature.encode() in seen["body"]
    assert b"jpeg-bytes" in seen["body"]
    assert result.url.startswith("https://res.cloudinary.com/")
    assert result.key == "photo-hosting/1-abc"
    assert result.download_url is None


def test_media_cdn_requires_credentials() -> None:
    backend = MediaCdnStorageBackend(cloud_name="demo", api_key=None, api_secret=None)
    with pytest.raises(StorageBackendError, match="not configured"):
        asyncio.run(backend.upload(b"x", "a.png", "image/png"))


# ──────────────────────────────────────────────
# Object store
# ──────────────────────────────────────────────
def test_object_store_upload() -> None:
    s3 = MagicMock()
    backend = ObjectStoreStorageBackend(bucket="photos", region="eu-west-1", client=s3)

    result = asyncio.run(backend.upload(b"gif-bytes", "1-abc.gif", "image/gif"))

    s3.put_object.assert_called_once_with(
        Bucket="photos",
        Key="images/1-abc.gif",
        Body=b"gif-bytes",
        ContentType="image/gif",
        ACL="public-read",
    )
    assert result.url == "https://photos.s3.eu-west-1.amazonaws.com/images/1-abc.gif"
    assert result.key == "images/1-abc.gif"


def test_object_store_public_urls() -> None:
    custom = ObjectStoreStorageBackend(bucket="b", endpoint_url="https://minio.local:9000/", client=MagicMock())
    cdn = ObjectStoreStorageBackend(bucket="b", public_base_url="https://cdn.example.com/", client=MagicMock())

    assert custom.public_url("images/x.png") == "https://minio.local:9000/b/images/x.png"
    assert cdn.public_url("images/x.png") == "https://cdn.example.com/images/x.png"


def test_object_store_client_error() -> None:
    s3 = MagicMock()
    s3.put_object.side_effect = ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"
    )
    backend = ObjectStoreStorageBackend(bucket="photos", client=s3)

    with pytest.raises(StorageBackendError, match="AccessDenied"):
        asyncio.run(backend.upload(b"x", "a.png", "image/png"))


def test_object_store_requires_bucket() -> None:
    with pytest.raises(StorageBackendError, match="AWS_BUCKET_NAME"):
        asyncio.run(ObjectStoreStorageBackend(bucket=None).upload(b"x", "a.png", "image/png"))


# ──────────────────────────────────────────────
# In-memory
# ──────────────────────────────────────────────
def test_in_memory_backend_records_uploads() -> None:
    backend = InMemoryStorageBackend()
    result = asyncio.run(backend.upload(b"x", "a.webp", "image/webp"))

    assert result.url == "memory://images/a.webp"
    assert backend.objects == {"a.webp": (b"x", "image/webp")}
    assert backend.calls == ["a.webp"]
