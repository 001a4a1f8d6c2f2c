"""ASGI entry point: ``uvicorn main:app``.

The app is assembled by ``create_app`` from settings; the module-level
``app`` is the instance servers and tests import.
"""

import logging
from contextlib import asynccontextmanager

import fastapi
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from core.config import Settings, get_settings
from core.http_client import close_image_client
from core.logger import configure_logging
from core.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from core.ratelimit import limiter, rate_limit_exceeded_handler
from core.storage import reset_storage
from routes import health_router, render_router

configure_logging()
logger = logging.getLogger(__name__)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 for anything a route let escape; the traceback goes to the log only."""
    logger.exception(
        "request.unhandled_error",
        extra={"exc_type": type(exc).__name__, "method": request.method},
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Failed to process request",
            "details": "An unexpected error occurred. Please try again.",
        },
    )


async def invalid_payload_handler(request: Request, exc: Exception) -> JSONResponse:
    """422 listing every problem pydantic found in the request."""
    if not isinstance(exc, RequestValidationError):
        return await unhandled_error_handler(request, exc)

    errors = exc.errors()
    logger.warning(
        "request.invalid_payload",
        extra={
            "method": request.method,
            "error_count": len(errors),
            "locations": [".".join(str(p) for p in e["loc"]) for e in errors],
        },
    )
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(errors)})


@asynccontextmanager
async def lifespan(app: fastapi.FastAPI):
    """Release the pooled image client and storage handle on shutdown."""
    logger.info("app.started", extra={"routes": len(app.routes)})
    try:
        yield
    finally:
        await close_image_client()
        reset_storage()
        logger.info("app.stopped")


def create_app(settings: Settings) -> fastapi.FastAPI:
    docs = settings.docs_enabled
    application = fastapi.FastAPI(
        title="Certificate Renderer API",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if docs else None,
        redoc_url="/redoc" if docs else None,
        openapi_url="/openapi.json" if docs else None,
    )

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    application.add_exception_handler(RequestValidationError, invalid_payload_handler)
    application.add_exception_handler(Exception, unhandled_error_handler)

    # Added first, so these wrap closest to the routes
    application.add_middleware(GZipMiddleware, minimum_size=500)
    application.add_middleware(SecurityHeadersMiddleware)
    if settings.allowed_origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type"],
            expose_headers=["X-Request-Id"],
            max_age=600,
        )
    # Outermost, so every log line of the request carries its id
    application.add_middleware(RequestContextMiddleware)

    application.include_router(health_router)
    application.include_router(render_router)
    return application


app = create_app(get_settings())
