"""Pydantic schemas for API request/response validation."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class DesignData(BaseModel):
    """A reusable certificate design.

    ``design`` is the serialized canvas scene graph. It is kept as an opaque
    string here and parsed by the rendering package, so a malformed design
    fails one render instead of the whole request.
    """

    id: str = Field(min_length=1, max_length=200)
    name: str = ""
    design: str
    user_id: str | None = None


class ParticipantData(BaseModel):
    """A certificate recipient; ``data`` keys match placeholder field names."""

    id: str = Field(min_length=1, max_length=200)
    certificate_id: str | None = None
    is_revoked: bool = False
    data: dict[str, Any] = Field(default_factory=dict)


class RenderRequest(BaseModel):
    """Request to render certificates for a batch of participants."""

    certificate: DesignData
    participants: list[ParticipantData]


class ThumbnailRequest(BaseModel):
    """Request to render a preview of a design."""

    certificate: DesignData
    width: int | None = Field(default=None, ge=1, le=4000)
    height: int | None = Field(default=None, ge=1, le=4000)


class RenderStatus(StrEnum):
    SUCCESS = "success"
    SKIPPED_REVOKED = "skipped_revoked"
    ERROR = "error"


class RenderOutcome(BaseModel):
    """Ledger entry for one participant of a batch."""

    participant_id: str
    status: RenderStatus
    file_path: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, participant_id: str, file_path: str) -> "RenderOutcome":
        return cls(
            participant_id=participant_id,
            status=RenderStatus.SUCCESS,
            file_path=file_path,
        )

    @classmethod
    def skipped_revoked(cls, participant_id: str) -> "RenderOutcome":
        return cls(participant_id=participant_id, status=RenderStatus.SKIPPED_REVOKED)

    @classmethod
    def failed(cls, participant_id: str, error: str) -> "RenderOutcome":
        return cls(participant_id=participant_id, status=RenderStatus.ERROR, error=error)


class BatchRenderResponse(BaseModel):
    """Result of a batch render: the participant ledger plus optional archive."""

    message: str = "Certificate generation completed"
    results: list[RenderOutcome]
    zip_file_path: str | None = None

    @property
    def succeeded_paths(self) -> list[str]:
        return [
            r.file_path
            for r in self.results
            if r.status == RenderStatus.SUCCESS and r.file_path
        ]


class ThumbnailResponse(BaseModel):
    message: str = "Thumbnail generated successfully"
    thumbnail_path: str


class ArtifactUrlResponse(BaseModel):
    """Presigned download URL for a persisted artifact."""

    key: str
    url: str
    expires_in: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
