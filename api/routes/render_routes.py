"""Certificate rendering endpoints.

The render endpoint always answers 200 for a well-formed request: individual
participant failures are reported in the ledger, not as an HTTP error.
Malformed payloads are rejected by request validation (422).
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.logger import bind_contextvars
from core.ratelimit import RENDER_LIMIT, THUMBNAIL_LIMIT, limiter
from core.storage import ObjectNotFoundError, ObjectStorage, StorageError, get_storage
from rendering.errors import MalformedDesignError, RenderFailureError
from rendering.scene import DEFAULT_THUMBNAIL_HEIGHT, DEFAULT_THUMBNAIL_WIDTH
from schemas import (
    ArtifactUrlResponse,
    BatchRenderResponse,
    RenderRequest,
    ThumbnailRequest,
    ThumbnailResponse,
)
from services.artifacts_service import artifact_url
from services.render_service import render_batch, render_design_thumbnail

router = APIRouter(prefix="/api", tags=["render"])

Storage = Annotated[ObjectStorage, Depends(get_storage)]


@router.post("/render", response_model=BatchRenderResponse)
@limiter.limit(RENDER_LIMIT)
async def render_certificates_endpoint(
    request: Request,
    body: RenderRequest,
    storage: Storage,
) -> BatchRenderResponse:
    """Render one certificate per non-revoked participant and zip them."""
    bind_contextvars(design_id=body.certificate.id)
    return await render_batch(storage, body.certificate, body.participants)


@router.post(
    "/thumbnail",
    response_model=ThumbnailResponse,
    responses={500: {"description": "Thumbnail rendering or upload failed"}},
)
@limiter.limit(THUMBNAIL_LIMIT)
async def generate_thumbnail_endpoint(
    request: Request,
    body: ThumbnailRequest,
    storage: Storage,
) -> ThumbnailResponse | JSONResponse:
    """Render and store a preview of the design (placeholders unfilled)."""
    bind_contextvars(design_id=body.certificate.id)
    try:
        key = await render_design_thumbnail(
            storage,
            body.certificate,
            body.width or DEFAULT_THUMBNAIL_WIDTH,
            body.height or DEFAULT_THUMBNAIL_HEIGHT,
        )
    except (MalformedDesignError, RenderFailureError, StorageError) as e:
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to generate thumbnail", "details": str(e)},
        )

    return ThumbnailResponse(thumbnail_path=key)


@router.get(
    "/artifacts/url",
    response_model=ArtifactUrlResponse,
    responses={404: {"description": "Artifact not found"}},
)
async def get_artifact_url_endpoint(
    storage: Storage,
    key: str = Query(min_length=1, max_length=512),
    expires_in: int | None = Query(default=None, ge=60, le=7 * 24 * 60 * 60),
) -> ArtifactUrlResponse:
    """Get a presigned download URL for a rendered artifact."""
    ttl = expires_in or get_settings().presign_ttl_seconds
    try:
        url = await artifact_url(storage, key, ttl)
    except ObjectNotFoundError:
        raise HTTPException(status_code=404, detail="Artifact not found")

    return ArtifactUrlResponse(key=key, url=url, expires_in=ttl)
