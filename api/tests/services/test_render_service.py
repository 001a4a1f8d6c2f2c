"""Tests for batch certificate rendering.

Rasterizing and PDF conversion are mocked; storage is the in-memory fake, so
the ledger, revocation policy and archive bookkeeping run for real.
"""

import io
import zipfile
from collections.abc import Iterator
from unittest.mock import AsyncMock, patch

import pytest

from core.storage import StorageError
from rendering.errors import RenderFailureError
from schemas import RenderStatus
from services.render_service import (
    render_batch,
    render_design_thumbnail,
    render_participant,
)
from tests.factories import (
    DesignFactory,
    ParticipantFactory,
    make_scene,
    placeholder_node,
    png_bytes,
)

pytestmark = pytest.mark.unit


@pytest.fixture
def mock_render_png() -> Iterator[AsyncMock]:
    with patch(
        "services.render_service.render_png", AsyncMock(return_value=png_bytes())
    ) as mock:
        yield mock


@pytest.fixture(autouse=True)
def mock_png_to_pdf() -> Iterator:
    with patch(
        "services.artifacts_service.png_to_pdf", return_value=b"%PDF-1.4 doc"
    ) as mock:
        yield mock


def _archive_members(storage, key: str) -> list[str]:
    data, _ = storage.objects[key]
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        return archive.namelist()


class TestRenderParticipant:
    async def test_substitutes_then_renders_and_persists(
        self, storage, mock_render_png
    ):
        design = DesignFactory.build(id="d1")
        participant = ParticipantFactory.build(id="p1", data={"name": "Alice"})

        outcome = await render_participant(storage, design, participant)

        assert outcome.status == RenderStatus.SUCCESS
        assert outcome.file_path in storage.objects
        assert outcome.file_path.startswith("d1/certificate_p1_")
        rendered_scene = mock_render_png.await_args.args[0]
        assert "Alice" in rendered_scene

    async def test_revoked_participant_is_not_rendered(self, storage, mock_render_png):
        participant = ParticipantFactory.build(is_revoked=True)

        outcome = await render_participant(storage, DesignFactory.build(), participant)

        assert outcome.status == RenderStatus.SKIPPED_REVOKED
        assert outcome.file_path is None
        mock_render_png.assert_not_awaited()
        assert storage.put_calls == []

    async def test_render_failure_is_recorded(self, storage, mock_render_png):
        mock_render_png.side_effect = RenderFailureError("cairo exploded")

        outcome = await render_participant(
            storage, DesignFactory.build(), ParticipantFactory.build(id="p1")
        )

        assert outcome.status == RenderStatus.ERROR
        assert outcome.error == "cairo exploded"
        assert outcome.file_path is None

    async def test_malformed_design_is_recorded(self, storage, mock_render_png):
        design = DesignFactory.build(design="{not json")

        outcome = await render_participant(storage, design, ParticipantFactory.build())

        assert outcome.status == RenderStatus.ERROR
        mock_render_png.assert_not_awaited()

    async def test_upload_failure_is_recorded(self, storage, mock_render_png):
        storage.fail_put.add("*")

        outcome = await render_participant(
            storage, DesignFactory.build(), ParticipantFactory.build()
        )

        assert outcome.status == RenderStatus.ERROR
        assert "simulated" in outcome.error

    async def test_unexpected_error_is_recorded(self, storage, mock_render_png):
        mock_render_png.side_effect = RuntimeError()

        outcome = await render_participant(
            storage, DesignFactory.build(), ParticipantFactory.build()
        )

        assert outcome.status == RenderStatus.ERROR
        assert outcome.error == "RuntimeError"


class TestRenderBatch:
    async def test_one_outcome_per_participant_in_order(self, storage, mock_render_png):
        participants = [
            ParticipantFactory.build(id="p1"),
            ParticipantFactory.build(id="p2", is_revoked=True),
            ParticipantFactory.build(id="p3"),
        ]

        response = await render_batch(storage, DesignFactory.build(), participants)

        assert [r.participant_id for r in response.results] == ["p1", "p2", "p3"]
        assert [r.status for r in response.results] == [
            RenderStatus.SUCCESS,
            RenderStatus.SKIPPED_REVOKED,
            RenderStatus.SUCCESS,
        ]
        assert response.message == "Certificate generation completed"

    async def test_alice_rendered_and_revoked_participant_skipped(
        self, storage, mock_render_png
    ):
        design = DesignFactory.build(
            id="d1", design=make_scene(placeholder_node("name", "Recipient"))
        )
        participants = [
            ParticipantFactory.build(id="p1", data={"name": "Alice"}),
            ParticipantFactory.build(id="p2", data={"name": "Bob"}, is_revoked=True),
        ]

        response = await render_batch(storage, design, participants)

        first, second = response.results
        assert first.status == RenderStatus.SUCCESS
        assert second.status == RenderStatus.SKIPPED_REVOKED
        assert mock_render_png.await_count == 1
        assert "Alice" in mock_render_png.await_args.args[0]
        assert response.zip_file_path is not None
        assert _archive_members(storage, response.zip_file_path) == [first.file_path]

    async def test_one_failure_does_not_stop_the_batch(self, storage, mock_render_png):
        mock_render_png.side_effect = [
            png_bytes(),
            RenderFailureError("bad font"),
            png_bytes(),
        ]
        participants = ParticipantFactory.build_batch(3)

        response = await render_batch(storage, DesignFactory.build(), participants)

        assert [r.status for r in response.results] == [
            RenderStatus.SUCCESS,
            RenderStatus.ERROR,
            RenderStatus.SUCCESS,
        ]
        assert response.results[1].error == "bad font"
        assert _archive_members(storage, response.zip_file_path) == [
            response.results[0].file_path,
            response.results[2].file_path,
        ]

    async def test_no_archive_when_nothing_succeeded(self, storage, mock_render_png):
        mock_render_png.side_effect = RenderFailureError("bad font")
        participants = [
            ParticipantFactory.build(),
            ParticipantFactory.build(is_revoked=True),
        ]

        response = await render_batch(storage, DesignFactory.build(), participants)

        assert response.zip_file_path is None
        assert storage.objects == {}

    async def test_empty_batch(self, storage, mock_render_png):
        response = await render_batch(storage, DesignFactory.build(), [])

        assert response.results == []
        assert response.zip_file_path is None

    async def test_archive_failure_leaves_no_archive(self, storage, mock_render_png):
        with patch(
            "services.render_service.create_archive",
            AsyncMock(side_effect=StorageError("bucket full")),
        ):
            response = await render_batch(
                storage, DesignFactory.build(), ParticipantFactory.build_batch(2)
            )

        assert response.zip_file_path is None
        assert all(r.status == RenderStatus.SUCCESS for r in response.results)

    async def test_archive_skips_member_that_cannot_be_downloaded(
        self, storage, mock_render_png
    ):
        storage.fail_get.add("*")

        response = await render_batch(
            storage, DesignFactory.build(), ParticipantFactory.build_batch(2)
        )

        assert response.zip_file_path is not None
        assert _archive_members(storage, response.zip_file_path) == []


class TestRenderDesignThumbnail:
    async def test_renders_unmodified_design(self, storage):
        design = DesignFactory.build(id="d1")
        thumbnail = png_bytes(150, 112)

        with patch(
            "services.render_service.render_thumbnail",
            AsyncMock(return_value=thumbnail),
        ) as mock_thumbnail:
            key = await render_design_thumbnail(storage, design, 150, 100)

        mock_thumbnail.assert_awaited_once_with(design.design, 150, 100)
        assert key.startswith("d1/thumbnail_d1_")
        assert storage.objects[key] == (thumbnail, "image/png")

    async def test_errors_propagate(self, storage):
        with patch(
            "services.render_service.render_thumbnail",
            AsyncMock(side_effect=RenderFailureError("no cairo")),
        ):
            with pytest.raises(RenderFailureError):
                await render_design_thumbnail(storage, DesignFactory.build())

        assert storage.objects == {}
