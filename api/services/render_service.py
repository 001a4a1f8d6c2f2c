"""Batch certificate rendering.

This module drives a render request end to end:
- Revocation policy (revoked participants are skipped, never rendered)
- Per-participant substitution -> render -> persist, one participant at a time
- Ledger bookkeeping: every participant gets exactly one outcome, in order
- Archive assembly over the participants that succeeded
- Design thumbnails

Per-participant and archive failures never escape ``render_batch``; they are
recorded in the ledger or degrade to "no archive".

Routes should delegate all rendering work to this module.
"""

import logging
from collections import Counter

from core.storage import ObjectStorage, StorageError
from rendering.errors import MalformedDesignError, RenderFailureError
from rendering.placeholders import replace_placeholders
from rendering.scene import (
    DEFAULT_THUMBNAIL_HEIGHT,
    DEFAULT_THUMBNAIL_WIDTH,
    render_png,
    render_thumbnail,
)
from schemas import (
    BatchRenderResponse,
    DesignData,
    ParticipantData,
    RenderOutcome,
    RenderStatus,
)
from services.archive_service import create_archive
from services.artifacts_service import persist_certificate, persist_thumbnail

logger = logging.getLogger(__name__)


async def render_participant(
    storage: ObjectStorage,
    design: DesignData,
    participant: ParticipantData,
) -> RenderOutcome:
    """Render and persist one participant's certificate.

    Returns a tagged outcome instead of raising, so one participant's failure
    can never abort the batch.
    """
    if participant.is_revoked:
        return RenderOutcome.skipped_revoked(participant.id)

    try:
        scene_json = replace_placeholders(design.design, participant.data)
        png = await render_png(scene_json)
        key = await persist_certificate(storage, design.id, participant.id, png)
    except (MalformedDesignError, RenderFailureError, StorageError) as e:
        logger.warning(
            "render.participant.failed",
            extra={
                "design_id": design.id,
                "participant_id": participant.id,
                "exc_type": type(e).__name__,
                "error": str(e),
            },
        )
        return RenderOutcome.failed(participant.id, str(e))
    except Exception as e:
        logger.exception(
            "render.participant.unexpected_error",
            extra={"design_id": design.id, "participant_id": participant.id},
        )
        return RenderOutcome.failed(participant.id, str(e) or type(e).__name__)

    return RenderOutcome.success(participant.id, key)


async def render_batch(
    storage: ObjectStorage,
    design: DesignData,
    participants: list[ParticipantData],
) -> BatchRenderResponse:
    """Render certificates for every participant and bundle the results.

    Participants are processed strictly in input order so the ledger matches
    the request. When at least one certificate rendered, the successful
    artifacts are archived; an archive failure is logged and leaves
    ``zip_file_path`` unset.

    Args:
        storage: Object storage for artifacts
        design: The certificate design
        participants: Recipients, in the order the ledger should follow

    Returns:
        BatchRenderResponse with one outcome per participant
    """
    logger.info(
        "render.batch.started",
        extra={"design_id": design.id, "participants": len(participants)},
    )

    results = []
    for participant in participants:
        results.append(await render_participant(storage, design, participant))

    response = BatchRenderResponse(results=results)
    succeeded = response.succeeded_paths

    if succeeded:
        try:
            response.zip_file_path = await create_archive(storage, design.id, succeeded)
        except Exception:
            logger.exception(
                "render.batch.archive_failed",
                extra={"design_id": design.id, "artifacts": len(succeeded)},
            )

    statuses = Counter(r.status for r in results)
    logger.info(
        "render.batch.completed",
        extra={
            "design_id": design.id,
            "succeeded": len(succeeded),
            "skipped": statuses[RenderStatus.SKIPPED_REVOKED],
            "failed": statuses[RenderStatus.ERROR],
            "archived": response.zip_file_path is not None,
        },
    )
    return response


async def render_design_thumbnail(
    storage: ObjectStorage,
    design: DesignData,
    width: int = DEFAULT_THUMBNAIL_WIDTH,
    height: int = DEFAULT_THUMBNAIL_HEIGHT,
) -> str:
    """Render a preview of the unmodified design and persist it.

    Placeholders keep their design-time text. Errors propagate to the caller.

    Returns:
        The thumbnail's artifact key
    """
    png = await render_thumbnail(design.design, width, height)
    key = await persist_thumbnail(storage, design.id, png)
    logger.info(
        "render.thumbnail.completed",
        extra={"design_id": design.id, "key": key, "width": width, "height": height},
    )
    return key
