"""ZIP archive assembly for a batch of rendered certificates.

Artifacts are downloaded one at a time and written straight into the archive,
so only the compressed output is held in memory. The finished archive is
uploaded with a single put once the writer has been closed.
"""

import io
import logging
import zipfile

from core.storage import ObjectStorage, StorageError
from services.artifacts_service import (
    ZIP_CONTENT_TYPE,
    download_artifact,
    generate_artifact_key,
)

logger = logging.getLogger(__name__)

ZIP_COMPRESSION_LEVEL = 9


async def create_archive(
    storage: ObjectStorage,
    design_id: str,
    artifact_keys: list[str],
) -> str:
    """Bundle previously persisted artifacts into one ZIP and upload it.

    Each member is stored under its artifact key. A member that fails to
    download is logged and left out; the rest are still archived.

    Args:
        storage: Object storage holding the artifacts
        design_id: Design the archive belongs to (used for its key)
        artifact_keys: Keys of the artifacts to bundle, in archive order

    Returns:
        The archive's artifact key

    Raises:
        StorageError: If uploading the finished archive fails
    """
    key = generate_artifact_key(design_id, "certificates", design_id, "zip")
    buffer = io.BytesIO()
    archived = 0

    with zipfile.ZipFile(
        buffer,
        mode="w",
        compression=zipfile.ZIP_DEFLATED,
        compresslevel=ZIP_COMPRESSION_LEVEL,
    ) as archive:
        for artifact_key in artifact_keys:
            try:
                content = await download_artifact(storage, artifact_key)
            except StorageError as e:
                logger.error(
                    "archive.member.skipped",
                    extra={"key": artifact_key, "archive": key, "error": str(e)},
                )
                continue

            archive.writestr(artifact_key, content)
            archived += 1

    archive_bytes = buffer.getvalue()
    logger.info(
        "archive.built",
        extra={
            "archive": key,
            "members": archived,
            "requested": len(artifact_keys),
            "bytes": len(archive_bytes),
        },
    )

    return await storage.put(key, archive_bytes, ZIP_CONTENT_TYPE)
