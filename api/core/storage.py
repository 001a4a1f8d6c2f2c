"""Object storage for rendered artifacts.

Artifacts (certificate PDFs, thumbnails, ZIP archives) live in a MinIO /
S3-compatible bucket and are addressed by key. Services depend on the
``ObjectStorage`` protocol; ``MinioStorage`` is the production implementation.

The ``minio`` client is synchronous, so every call is pushed to a worker
thread with ``asyncio.to_thread`` to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import io
import logging
from datetime import timedelta
from typing import Protocol

from minio import Minio
from minio.error import S3Error
from urllib3.exceptions import HTTPError

from core.config import get_settings

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchObject", "NoSuchBucket"}


def _error_code(error: Exception) -> str:
    return getattr(error, "code", None) or type(error).__name__


class StorageError(Exception):
    """Raised when an upload, download, delete, list or presign call fails."""


class ObjectNotFoundError(StorageError):
    """Raised when a requested key does not exist."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Object not found: {key}")


class ObjectStorage(Protocol):
    async def put(self, key: str, data: bytes, content_type: str) -> str: ...

    async def get(self, key: str) -> bytes: ...

    async def delete(self, key: str) -> None: ...

    async def list(self, prefix: str) -> list[str]: ...

    async def presign(self, key: str, ttl_seconds: int) -> str: ...


class MinioStorage:
    """``ObjectStorage`` backed by a single MinIO bucket.

    The bucket is created lazily on the first ``put`` if it does not exist.
    """

    def __init__(self, client: Minio, bucket: str, region: str = "us-east-1"):
        self._client = client
        self._bucket = bucket
        self._region = region
        self._bucket_ready = False
        self._bucket_lock = asyncio.Lock()

    @property
    def bucket(self) -> str:
        return self._bucket

    async def _ensure_bucket(self) -> None:
        if self._bucket_ready:
            return

        async with self._bucket_lock:
            if self._bucket_ready:
                return
            exists = await asyncio.to_thread(self._client.bucket_exists, self._bucket)
            if not exists:
                await asyncio.to_thread(
                    self._client.make_bucket, self._bucket, self._region
                )
                logger.info(
                    "storage.bucket.created",
                    extra={"bucket": self._bucket, "region": self._region},
                )
            self._bucket_ready = True

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        try:
            await self._ensure_bucket()
            await asyncio.to_thread(
                self._client.put_object,
                self._bucket,
                key,
                io.BytesIO(data),
                len(data),
                content_type=content_type,
            )
        except (S3Error, HTTPError) as e:
            logger.error(
                "storage.put.failed",
                extra={"key": key, "bucket": self._bucket, "code": _error_code(e)},
            )
            raise StorageError(f"Upload of {key} failed: {_error_code(e)}") from e

        logger.info(
            "storage.put.complete",
            extra={"key": key, "bytes": len(data), "content_type": content_type},
        )
        return key

    def _read_object(self, key: str) -> bytes:
        response = self._client.get_object(self._bucket, key)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    async def get(self, key: str) -> bytes:
        try:
            return await asyncio.to_thread(self._read_object, key)
        except (S3Error, HTTPError) as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise ObjectNotFoundError(key) from e
            raise StorageError(f"Download of {key} failed: {_error_code(e)}") from e

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._client.remove_object, self._bucket, key)
        except (S3Error, HTTPError) as e:
            raise StorageError(f"Delete of {key} failed: {_error_code(e)}") from e
        logger.info("storage.delete.complete", extra={"key": key})

    async def list(self, prefix: str) -> list[str]:
        def _list() -> list[str]:
            return [
                obj.object_name
                for obj in self._client.list_objects(
                    self._bucket, prefix=prefix, recursive=True
                )
                if obj.object_name
            ]

        try:
            return await asyncio.to_thread(_list)
        except (S3Error, HTTPError) as e:
            raise StorageError(f"Listing {prefix!r} failed: {_error_code(e)}") from e

    def _presign_existing(self, key: str, ttl_seconds: int) -> str:
        # Presigning is offline; stat first so a missing key is reported
        self._client.stat_object(self._bucket, key)
        return self._client.presigned_get_object(
            self._bucket, key, expires=timedelta(seconds=ttl_seconds)
        )

    async def presign(self, key: str, ttl_seconds: int) -> str:
        try:
            return await asyncio.to_thread(self._presign_existing, key, ttl_seconds)
        except (S3Error, HTTPError) as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise ObjectNotFoundError(key) from e
            raise StorageError(f"Presigning {key} failed: {_error_code(e)}") from e


_storage: MinioStorage | None = None


def get_storage() -> ObjectStorage:
    """Get or create the process-wide storage (FastAPI dependency)."""
    global _storage

    if _storage is None:
        settings = get_settings()
        client = Minio(
            settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=settings.minio_secure,
            region=settings.minio_region,
        )
        _storage = MinioStorage(client, settings.minio_bucket, settings.minio_region)
    return _storage


def reset_storage() -> None:
    """Drop the cached storage (called on shutdown and in tests)."""
    global _storage
    _storage = None
