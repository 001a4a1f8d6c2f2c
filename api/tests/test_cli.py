"""Tests for the renderer CLI commands."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from cli import cmd_fields, cmd_list, cmd_render, cmd_thumbnail
from schemas import BatchRenderResponse, RenderOutcome
from tests.factories import (
    DesignFactory,
    ParticipantFactory,
    make_scene,
    placeholder_node,
)

pytestmark = pytest.mark.unit


@pytest.fixture
def payload_file(tmp_path):
    def _write(payload: dict) -> str:
        path = tmp_path / "payload.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return str(path)

    return _write


class TestRenderCommand:
    def test_prints_ledger(self, payload_file, storage, capsys):
        design = DesignFactory.build(id="d1")
        participant = ParticipantFactory.build(id="p1")
        path = payload_file(
            {
                "certificate": design.model_dump(),
                "participants": [participant.model_dump()],
            }
        )
        ledger = BatchRenderResponse(
            results=[RenderOutcome.success("p1", "d1/certificate_p1.pdf")]
        )

        with (
            patch("core.storage.get_storage", return_value=storage),
            patch(
                "services.render_service.render_batch",
                AsyncMock(return_value=ledger),
            ) as mock_render,
        ):
            exit_code = cmd_render(path)

        assert exit_code == 0
        assert mock_render.await_args.args[1].id == "d1"
        output = json.loads(capsys.readouterr().out)
        assert output["results"][0]["file_path"] == "d1/certificate_p1.pdf"

    def test_invalid_payload_returns_2(self, payload_file):
        assert cmd_render(payload_file({"participants": []})) == 2


class TestThumbnailCommand:
    def test_prints_key_with_default_size(self, payload_file, storage, capsys):
        path = payload_file({"certificate": DesignFactory.build().model_dump()})

        with (
            patch("core.storage.get_storage", return_value=storage),
            patch(
                "services.render_service.render_design_thumbnail",
                AsyncMock(return_value="d1/thumbnail_d1.png"),
            ) as mock_thumbnail,
        ):
            exit_code = cmd_thumbnail(path)

        assert exit_code == 0
        assert mock_thumbnail.await_args.args[2:] == (300, 225)
        assert capsys.readouterr().out.strip() == "d1/thumbnail_d1.png"


class TestListCommand:
    def test_prints_keys_under_prefix(self, storage, capsys):
        storage.objects["d1/a.pdf"] = (b"a", "application/pdf")
        storage.objects["d2/b.pdf"] = (b"b", "application/pdf")

        with patch("core.storage.get_storage", return_value=storage):
            exit_code = cmd_list("d1/")

        assert exit_code == 0
        assert json.loads(capsys.readouterr().out) == ["d1/a.pdf"]


class TestFieldsCommand:
    def test_prints_fields_in_document_order(self, payload_file, capsys):
        design = DesignFactory.build(
            design=make_scene(
                placeholder_node("name"),
                {"type": "rect", "id": "border"},
                placeholder_node("course"),
            )
        )
        path = payload_file({"certificate": design.model_dump()})

        assert cmd_fields(path) == 0
        assert json.loads(capsys.readouterr().out) == ["name", "course"]

    def test_malformed_design_returns_2(self, payload_file):
        design = DesignFactory.build(design="{broken")

        assert cmd_fields(payload_file({"certificate": design.model_dump()})) == 2
