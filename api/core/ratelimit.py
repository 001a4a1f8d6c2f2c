"""Per-client rate limits for the render endpoints (slowapi).

A batch render rasterizes one full canvas per participant, so a single
client can saturate the worker pool quickly. Limits are keyed per client
address; behind a reverse proxy set TRUST_FORWARDED_FOR=true so the first
``X-Forwarded-For`` hop is used instead of the proxy's address.

Counters live in RATELIMIT_STORAGE_URI. ``memory://`` keeps them per
process, so N replicas allow N times the configured rate.
"""

import logging

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from core.config import get_settings

logger = logging.getLogger(__name__)

RENDER_LIMIT = "10/minute"
THUMBNAIL_LIMIT = "30/minute"
DEFAULT_LIMIT = "100/minute"


def _client_key(request: Request) -> str:
    """Rate-limit key for the calling client."""
    if get_settings().trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return get_remote_address(request)


def _build_limiter() -> Limiter:
    settings = get_settings()
    storage_uri = settings.ratelimit_storage_uri

    if settings.environment != "development" and storage_uri == "memory://":
        logger.warning(
            "ratelimit.storage.in_memory",
            extra={"environment": settings.environment},
        )

    return Limiter(
        key_func=_client_key,
        default_limits=[DEFAULT_LIMIT],
        storage_uri=storage_uri,
        # Fall back to local counters while Redis is unreachable
        in_memory_fallback_enabled=storage_uri.startswith("redis://"),
        key_prefix="certrender:",
    )


limiter = _build_limiter()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Answer 429 with the limit that was hit and a Retry-After header."""
    retry_after = getattr(exc, "retry_after", 60)
    logger.warning(
        "ratelimit.exceeded",
        extra={
            "client": _client_key(request),
            "path": request.url.path,
            "limit": exc.detail,
        },
    )
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Rate limit exceeded. Please slow down.",
            "retry_after": exc.detail,
        },
        headers={"Retry-After": str(retry_after)},
    )
