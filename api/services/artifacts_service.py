"""Artifact persistence for rendered certificates.

This module handles everything between a rendered bitmap and object storage:
- Artifact key generation
- Wrapping certificate bitmaps into PDFs before upload
- Thumbnail upload (raw PNG)
- Downloading artifacts for re-bundling
- Presigned download URLs

Storage errors propagate unchanged; retry policy belongs to the storage layer.
"""

import asyncio
import logging
import secrets
from datetime import UTC, datetime

from core.storage import ObjectStorage
from rendering.documents import png_to_pdf

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
PNG_CONTENT_TYPE = "image/png"
ZIP_CONTENT_TYPE = "application/zip"


def generate_artifact_key(design_id: str, kind: str, subject_id: str, ext: str) -> str:
    """Build a storage key for an artifact.

    Format: ``<design_id>/<kind>_<subject_id>_<epoch_ms>_<random>.<ext>``
    The random suffix keeps two renders of the same participant within the
    same millisecond from overwriting each other.
    """
    timestamp_ms = int(datetime.now(UTC).timestamp() * 1000)
    suffix = secrets.token_hex(3)
    return f"{design_id}/{kind}_{subject_id}_{timestamp_ms}_{suffix}.{ext}"


async def persist_certificate(
    storage: ObjectStorage,
    design_id: str,
    participant_id: str,
    png: bytes,
) -> str:
    """Wrap a rendered certificate into a PDF and upload it.

    PDF conversion is CPU-bound and runs in a thread pool.

    Returns:
        The artifact key
    """
    loop = asyncio.get_running_loop()
    pdf = await loop.run_in_executor(None, png_to_pdf, png)

    key = generate_artifact_key(design_id, "certificate", participant_id, "pdf")
    logger.info(
        "artifact.certificate.upload",
        extra={"key": key, "participant_id": participant_id, "bytes": len(pdf)},
    )
    return await storage.put(key, pdf, PDF_CONTENT_TYPE)


async def persist_thumbnail(storage: ObjectStorage, design_id: str, png: bytes) -> str:
    """Upload a thumbnail bitmap as-is.

    Returns:
        The artifact key
    """
    key = generate_artifact_key(design_id, "thumbnail", design_id, "png")
    logger.info("artifact.thumbnail.upload", extra={"key": key, "bytes": len(png)})
    return await storage.put(key, png, PNG_CONTENT_TYPE)


async def download_artifact(storage: ObjectStorage, key: str) -> bytes:
    return await storage.get(key)


async def artifact_url(storage: ObjectStorage, key: str, ttl_seconds: int) -> str:
    """Presigned download URL for an artifact."""
    return await storage.presign(key, ttl_seconds)
