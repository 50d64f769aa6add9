"""Tests for nanostudio.core.generation — the generation orchestrator.

Tests cover:
- Dimension resolution from width/height or a ``WxH`` resolution.
- Validation order, with no upstream call or disk write on failure.
- The happy path: artifact written, history recorded, upstream body returned.
- Failure mapping and clean-up of an orphaned artifact.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import httpx
import pytest

from nanostudio.core.artifact_store import ArtifactStore
from nanostudio.core.errors import (
    ConfigurationError,
    GenerationFailedError,
    InvalidRequestError,
    NotFoundError,
    StorageError,
)
from nanostudio.core.generation import (
    GenerationCommand,
    GenerationService,
    parse_resolution,
    resolve_dimensions,
)
from nanostudio.core.history_db import HistoryDB

USER_ID = 1
OTHER_USER_ID = 2


def _command(project_uuid: str, **overrides) -> GenerationCommand:
    values = dict(prompt="a lighthouse", model="flux-dev", project_uuid=project_uuid, width=1024, height=1024)
    values.update(overrides)
    return GenerationCommand(**values)


def _stored_files(store: ArtifactStore) -> list:
    return [p for p in store.root.rglob("*") if p.is_file()]


class TestResolveDimensions:
    def test_explicit_dimensions_win(self):
        assert resolve_dimensions(640, 480, "1024x1024") == (640, 480)

    def test_resolution_fallback(self):
        assert resolve_dimensions(None, None, "1024x768") == (1024, 768)

    def test_resolution_case_insensitive(self):
        assert parse_resolution("512X256") == (512, 256)

    @pytest.mark.parametrize("resolution", ["square", "x", "1024x", "10.5x20", None])
    def test_unusable(self, resolution):
        with pytest.raises(InvalidRequestError, match="width and height"):
            resolve_dimensions(None, None, resolution)

    def test_non_positive(self):
        with pytest.raises(InvalidRequestError):
            resolve_dimensions(0, 512, None)


class TestValidation:
    """Invalid requests fail before any network or disk activity."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"prompt": ""}, "prompt is required"),
            ({"prompt": "   "}, "prompt is required"),
            ({"model": None}, "model is required"),
            ({"width": None, "height": None}, "width and height"),
            ({"width": None, "height": None, "resolution": "big"}, "width and height"),
            ({"provider": "api3"}, "provider must be one of"),
        ],
    )
    async def test_rejected_without_side_effects(
        self, generation_service: GenerationService, project, upstream, artifact_store, overrides, message
    ):
        with pytest.raises(InvalidRequestError, match=message):
            await generation_service.generate(USER_ID, _command(project.uuid, **overrides))
        assert upstream.requests == []
        assert _stored_files(artifact_store) == []

    @pytest.mark.asyncio
    async def test_missing_project_uuid(self, generation_service: GenerationService, upstream):
        with pytest.raises(InvalidRequestError, match="project_uuid is required"):
            await generation_service.generate(USER_ID, _command(""))
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_missing_api_key(self, generation_service: GenerationService, project, upstream):
        generation_service.config.api_key = None
        with pytest.raises(ConfigurationError, match="Missing API key"):
            await generation_service.generate(USER_ID, _command(project.uuid))
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_foreign_project_is_not_found(self, generation_service: GenerationService, project, upstream):
        with pytest.raises(NotFoundError, match="Project not found"):
            await generation_service.generate(OTHER_USER_ID, _command(project.uuid))
        assert upstream.requests == []


class TestGenerate:
    """Successful generation stores the image and records history."""

    @pytest.mark.asyncio
    async def test_openai_b64_response(
        self, generation_service: GenerationService, project, upstream, history_db: HistoryDB, artifact_store
    ):
        api_data = await generation_service.generate(USER_ID, _command(project.uuid, provider="api2"))
        assert api_data == upstream.generate_response

        entries = history_db.list_entries(project.uuid, USER_ID)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.image_name.startswith("image-") and entry.image_name.endswith(".png")
        assert entry.provider == "api2"
        assert entry.response_format == "b64_json"
        assert len(_stored_files(artifact_store)) == 1
        assert artifact_store.path_for(project.uuid, entry.image_name).read_bytes() == upstream.png

    @pytest.mark.asyncio
    async def test_resolution_fills_dimensions(
        self, generation_service: GenerationService, project, upstream, history_db: HistoryDB
    ):
        await generation_service.generate(
            USER_ID, _command(project.uuid, width=None, height=None, resolution="768x512")
        )
        assert upstream.posted_payloads[0]["width"] == 768
        assert upstream.posted_payloads[0]["height"] == 512

        entry = history_db.list_entries(project.uuid, USER_ID)[0]
        assert (entry.width, entry.height, entry.resolution) == (768, 512, "768x512")

    @pytest.mark.asyncio
    async def test_legacy_is_default_provider(
        self, generation_service: GenerationService, project, upstream, history_db: HistoryDB
    ):
        upstream.generate_response = {"image": "data:image/jpeg;base64,/9j/AA=="}
        await generation_service.generate(USER_ID, _command(project.uuid))

        entry = history_db.list_entries(project.uuid, USER_ID)[0]
        assert entry.provider == "api1"
        assert entry.response_format is None
        assert entry.image_name.endswith(".jpg")
        assert str(upstream.requests[0].url).endswith("/api/generate-image")


class TestFailures:
    """Failures after validation surface as a generic generation error."""

    @pytest.mark.asyncio
    async def test_upstream_failure(
        self, generation_service: GenerationService, project, upstream, history_db: HistoryDB, artifact_store
    ):
        upstream.generate_response = httpx.Response(503, text="overloaded")
        with pytest.raises(GenerationFailedError, match="Image generation failed"):
            await generation_service.generate(USER_ID, _command(project.uuid))
        assert history_db.count(project.uuid, USER_ID) == 0
        assert _stored_files(artifact_store) == []

    @pytest.mark.asyncio
    async def test_write_failure(self, generation_service: GenerationService, project, history_db: HistoryDB):
        generation_service.store = MagicMock(wraps=generation_service.store)
        generation_service.store.write.side_effect = StorageError("Failed to store image")
        with pytest.raises(GenerationFailedError):
            await generation_service.generate(USER_ID, _command(project.uuid))
        assert history_db.count(project.uuid, USER_ID) == 0

    @pytest.mark.asyncio
    async def test_history_failure_removes_artifact(
        self, generation_service: GenerationService, project, artifact_store
    ):
        generation_service.history = MagicMock()
        generation_service.history.insert.side_effect = StorageError("disk I/O error")
        with pytest.raises(GenerationFailedError):
            await generation_service.generate(USER_ID, _command(project.uuid))
        assert _stored_files(artifact_store) == []


class TestMalformedUpstream:
    """Malformed upstream payloads become the generic generation failure."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"data": [{"b64_json": 123}]},
            {"data": [{"b64_json": None}]},
            {"image": "http://[::1"},
        ],
    )
    async def test_no_entry_recorded(
        self, generation_service: GenerationService, project, upstream, history_db: HistoryDB, artifact_store, body
    ):
        upstream.generate_response = body
        with pytest.raises(GenerationFailedError, match="Image generation failed"):
            await generation_service.generate(USER_ID, _command(project.uuid, provider="api2"))
        assert history_db.count(project.uuid, USER_ID) == 0
        assert _stored_files(artifact_store) == []
