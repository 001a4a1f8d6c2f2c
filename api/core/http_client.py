"""Shared HTTP client for fetching images embedded in designs.

Provides a connection-pooled ``httpx.AsyncClient`` reused across renders,
so a batch of participants sharing the same background image does not open
a new connection per participant.
"""

from __future__ import annotations

import asyncio

import httpx

from core.config import get_settings

_image_http_client: httpx.AsyncClient | None = None
_image_client_lock = asyncio.Lock()


async def get_image_client() -> httpx.AsyncClient:
    """Get or create the shared HTTP client for image downloads.

    Uses asyncio.Lock to prevent two coroutines creating separate clients.
    """
    global _image_http_client

    if _image_http_client is not None and not _image_http_client.is_closed:
        return _image_http_client

    async with _image_client_lock:
        if _image_http_client is not None and not _image_http_client.is_closed:
            return _image_http_client

        settings = get_settings()
        _image_http_client = httpx.AsyncClient(
            timeout=settings.http_timeout,
            follow_redirects=True,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
        return _image_http_client


async def close_image_client() -> None:
    """Close the shared image HTTP client (called on application shutdown)."""
    global _image_http_client
    if _image_http_client is not None and not _image_http_client.is_closed:
        await _image_http_client.aclose()
    _image_http_client = None
