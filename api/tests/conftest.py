"""Pytest configuration and shared fixtures.

This module provides:
- Debug settings so no MinIO credentials are needed
- An in-memory ObjectStorage verified fake
- FastAPI test client with the storage dependency overridden
"""

# Set environment variables BEFORE any imports that trigger Settings validation
import os

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ENVIRONMENT", "development")

from collections.abc import AsyncGenerator, Generator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from core.storage import ObjectNotFoundError, StorageError, get_storage

# =============================================================================
# Storage fake
# =============================================================================


class InMemoryStorage:
    """ObjectStorage keeping objects in a dict.

    ``fail_get`` / ``fail_put`` hold keys (or "*" for every key) whose calls
    raise StorageError, to exercise partial-failure paths.
    """

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.fail_get: set[str] = set()
        self.fail_put: set[str] = set()
        self.get_calls: list[str] = []
        self.put_calls: list[str] = []

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        self.put_calls.append(key)
        if "*" in self.fail_put or key in self.fail_put:
            raise StorageError(f"Upload of {key} failed: simulated")
        self.objects[key] = (data, content_type)
        return key

    async def get(self, key: str) -> bytes:
        self.get_calls.append(key)
        if "*" in self.fail_get or key in self.fail_get:
            raise StorageError(f"Download of {key} failed: simulated")
        if key not in self.objects:
            raise ObjectNotFoundError(key)
        return self.objects[key][0]

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)

    async def list(self, prefix: str) -> list[str]:
        return sorted(k for k in self.objects if k.startswith(prefix))

    async def presign(self, key: str, ttl_seconds: int) -> str:
        if key not in self.objects:
            raise ObjectNotFoundError(key)
        return f"https://storage.test/{key}?expires={ttl_seconds}"


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


# =============================================================================
# App fixtures
# =============================================================================


@pytest.fixture
def app(storage: InMemoryStorage) -> Generator[FastAPI]:
    """The FastAPI app wired to the in-memory storage, rate limiting off."""
    from core.ratelimit import limiter
    from main import app as fastapi_app

    fastapi_app.dependency_overrides[get_storage] = lambda: storage
    limiter.enabled = False
    yield fastapi_app
    limiter.enabled = True
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
