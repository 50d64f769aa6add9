"""Shared pytest fixtures for Nano Studio tests."""

from __future__ import annotations

import base64
import io
import json
import shutil
import tempfile
from pathlib import Path
from typing import Any, Callable, Generator

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from nanostudio.api.main import create_app
from nanostudio.core.artifact_store import ArtifactStore
from nanostudio.core.config import StudioConfig
from nanostudio.core.database import Database
from nanostudio.core.generation import GenerationService
from nanostudio.core.history_db import HistoryDB, HistoryEntry
from nanostudio.core.history_service import HistoryService
from nanostudio.core.project_service import ProjectService
from nanostudio.core.projects_db import Project, ProjectsDB
from nanostudio.core.providers import ProviderClient
from nanostudio.core.snippets import SnippetsDB, SnippetService

USER_ID = 1
OTHER_USER_ID = 2
UPSTREAM_URL = "https://upstream.test"


def make_png(width: int = 8, height: int = 8, color: str = "red") -> bytes:
    """Encode a small solid-colour PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


class UpstreamStub:
    """Programmable stand-in for the upstream image API.

    Every request is recorded in ``requests``.  POSTs are answered with
    ``generate_response`` (a dict becomes a JSON body), GETs with the entry
    of ``downloads`` matching the URL.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.png = make_png()
        self.generate_response: httpx.Response | dict[str, Any] = {
            "data": [{"b64_json": base64.b64encode(self.png).decode()}],
            "cost": 0.01,
            "remainingBalance": 4.2,
        }
        self.downloads: dict[str, httpx.Response] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET":
            return self.downloads.get(str(request.url), httpx.Response(404))
        if isinstance(self.generate_response, httpx.Response):
            return self.generate_response
        return httpx.Response(200, json=self.generate_response)

    @property
    def posted_payloads(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.method == "POST"]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> StudioConfig:
    """Create a test configuration with temporary storage locations.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        StudioConfig instance for testing
    """
    return StudioConfig(
        api_key="test-key",
        upstream_base_url=UPSTREAM_URL,
        generated_dir=temp_dir / "generated",
        database_path=temp_dir / "data" / "studio.db",
        _env_file=None,
    )


@pytest.fixture
def database(test_config: StudioConfig) -> Database:
    return Database(test_config.database_path)


@pytest.fixture
def history_db(database: Database) -> HistoryDB:
    return HistoryDB(database)


@pytest.fixture
def projects_db(database: Database) -> ProjectsDB:
    return ProjectsDB(database)


@pytest.fixture
def snippets_db(database: Database) -> SnippetsDB:
    return SnippetsDB(database)


@pytest.fixture
def snippet_service(snippets_db: SnippetsDB) -> SnippetService:
    return SnippetService(snippets_db)


@pytest.fixture
def artifact_store(test_config: StudioConfig) -> ArtifactStore:
    return ArtifactStore(test_config.generated_dir)


@pytest.fixture
def project_service(
    projects_db: ProjectsDB, history_db: HistoryDB, artifact_store: ArtifactStore
) -> ProjectService:
    return ProjectService(projects_db, history_db, artifact_store)


@pytest.fixture
def history_service(
    history_db: HistoryDB, project_service: ProjectService, artifact_store: ArtifactStore
) -> HistoryService:
    return HistoryService(history_db, project_service, artifact_store)


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def upstream() -> UpstreamStub:
    return UpstreamStub()


@pytest.fixture
def http_client(upstream: UpstreamStub) -> httpx.AsyncClient:
    """Async HTTP client whose every request is answered by ``upstream``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))


@pytest.fixture
def provider_client(test_config: StudioConfig, http_client: httpx.AsyncClient) -> ProviderClient:
    return ProviderClient(test_config, http_client)


@pytest.fixture
def generation_service(
    test_config: StudioConfig,
    provider_client: ProviderClient,
    project_service: ProjectService,
    history_db: HistoryDB,
    artifact_store: ArtifactStore,
) -> GenerationService:
    return GenerationService(test_config, provider_client, project_service, history_db, artifact_store)


@pytest.fixture
def make_project(project_service: ProjectService) -> Callable[..., Project]:
    """Factory creating a project (in the owner's default group)."""

    def factory(name: str = "Sketches", user_id: int = USER_ID) -> Project:
        group = project_service.ensure_default_group(user_id)
        return project_service.create_project(user_id, name, group.uuid)

    return factory


@pytest.fixture
def project(make_project: Callable[..., Project]) -> Project:
    return make_project()


@pytest.fixture
def make_entry(
    history_db: HistoryDB, artifact_store: ArtifactStore
) -> Callable[..., HistoryEntry]:
    """Factory inserting a history row, and by default its image file."""
    counter = {"value": 0}

    def factory(
        project_uuid: str,
        *,
        user_id: int = USER_ID,
        image_name: str | None = None,
        write_file: bool = True,
        favorite: bool = False,
        create_date: int | None = None,
    ) -> HistoryEntry:
        counter["value"] += 1
        n = counter["value"]
        entry = HistoryEntry(
            uuid=f"entry-{n:04d}",
            user_id=user_id,
            project_uuid=project_uuid,
            model="flux-dev",
            prompt=f"prompt {n}",
            width=512,
            height=512,
            image_name=image_name or f"image-{n:04d}.png",
            create_date=create_date if create_date is not None else 1_700_000_000_000 + n,
            favorite=favorite,
        )
        if write_file:
            artifact_store.write(project_uuid, entry.image_name, make_png())
        return history_db.insert(entry)

    return factory


@pytest.fixture
def test_client(
    test_config: StudioConfig, http_client: httpx.AsyncClient
) -> Generator[TestClient, None, None]:
    """API client authenticated as ``USER_ID`` with upstream calls stubbed."""
    app = create_app(test_config, http_client=http_client)
    with TestClient(app) as client:
        client.headers.update({test_config.user_id_header: str(USER_ID)})
        yield client
