"""Nano Studio — FastAPI Application.

This module is the single entry point for the web application.  It defines
the application factory, all REST API routes, the error-to-response
mapping, and the ``main()`` CLI function that launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :data:`~nanostudio.core.config.config`
  (``NANOSTUDIO_*`` environment variables) unless ``create_app()`` is given
  another :class:`~nanostudio.core.config.StudioConfig`.
- **Services** (generation, history, projects, snippets) are built once in the
  lifespan handler and stored on ``app.state``; route handlers stay thin and
  only translate HTTP to service calls.
- **Upstream calls** share one ``httpx.AsyncClient`` for the application's
  lifetime.
- **Identity** is resolved per request by
  :func:`~nanostudio.api.auth.get_current_user_id`.
- **Errors** raised by services are :class:`~nanostudio.core.errors.StudioError`
  subclasses and are rendered as ``{"error": message}`` with the matching
  status code.

Endpoints
---------
======  ================================  ======================================
Method  Path                              Purpose
======  ================================  ======================================
GET     ``/api/health``                   Liveness and version
POST    ``/api/generate-image``           Generate an image into a project
GET     ``/api/history``                  Paginated project history
GET     ``/api/history/meta``             Total count for the same filter
PATCH   ``/api/history/{uuid}/favorite``  Set favorite flag
POST    ``/api/history/move``             Move entries to another project
DELETE  ``/api/history/{uuid}``           Delete entry and its image
GET     ``/api/generated/{file}``         Stream an owned image
GET     ``/api/project-groups``           List groups (optionally with projects)
POST    ``/api/project-groups``           Create group
PUT     ``/api/project-groups/{uuid}``    Rename / reorder group
DELETE  ``/api/project-groups/{uuid}``    Delete empty group
GET     ``/api/projects``                 List projects
GET     ``/api/projects/summary``         Groups, projects and latest images
GET     ``/api/projects/{uuid}``          Single project
POST    ``/api/projects``                 Create project
PUT     ``/api/projects/{uuid}``          Rename / regroup project
DELETE  ``/api/projects/{uuid}``          Delete project, history and images
GET     ``/api/snippets``                 List snippets (optional ``q`` search)
POST    ``/api/snippets``                 Create snippet
DELETE  ``/api/snippets/{uuid}``          Delete snippet
======  ================================  ======================================

Usage
-----
CLI (installed entry point)::

    nanostudio

Direct invocation::

    python -m nanostudio.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from nanostudio import __version__
from nanostudio.api.auth import IdentityResolver, get_current_user_id, header_identity_resolver
from nanostudio.api.models import (
    FavoriteRequest,
    GenerateRequest,
    GroupRequest,
    MoveRequest,
    ProjectCreateRequest,
    ProjectUpdateRequest,
    SnippetRequest,
)
from nanostudio.core.artifact_store import ArtifactStore
from nanostudio.core.config import StudioConfig, config
from nanostudio.core.database import Database
from nanostudio.core.errors import StudioError
from nanostudio.core.generation import GenerationService
from nanostudio.core.history_db import HistoryDB
from nanostudio.core.history_service import HistoryService
from nanostudio.core.pagination import parse_flag
from nanostudio.core.project_service import ProjectService
from nanostudio.core.projects_db import ProjectsDB
from nanostudio.core.providers import ProviderClient
from nanostudio.core.snippets import SnippetsDB, SnippetService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Application lifecycle: database, HTTP client and service wiring.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    On startup:
        Opens the SQLite database (creating the schema if needed), creates
        the shared upstream HTTP client unless one was injected, and builds
        the services stored on ``app.state``.

    On shutdown:
        Closes the HTTP client if this lifespan created it.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    # --- Startup -----------------------------------------------------------
    settings: StudioConfig = app.state.config

    http_client: httpx.AsyncClient | None = app.state.http_client
    owns_client = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=settings.upstream_timeout, follow_redirects=True)

    database = Database(settings.database_path)
    history_db = HistoryDB(database)
    store = ArtifactStore(settings.generated_dir)

    app.state.project_service = ProjectService(
        ProjectsDB(database), history_db, store, default_group_name=settings.default_group_name
    )
    app.state.history_service = HistoryService(history_db, app.state.project_service, store)
    app.state.generation_service = GenerationService(
        settings,
        ProviderClient(settings, http_client),
        app.state.project_service,
        history_db,
        store,
    )
    app.state.snippet_service = SnippetService(SnippetsDB(database))
    logger.info(f"Nano Studio {__version__} ready (artifacts in {settings.generated_dir}).")

    yield  # Application runs here.

    # --- Shutdown ----------------------------------------------------------
    if owns_client:
        await http_client.aclose()
        logger.info("Upstream HTTP client closed on shutdown.")


# ---------------------------------------------------------------------------
# Service dependencies.
# ---------------------------------------------------------------------------


def get_generation_service(request: Request) -> GenerationService:
    return request.app.state.generation_service


def get_history_service(request: Request) -> HistoryService:
    return request.app.state.history_service


def get_project_service(request: Request) -> ProjectService:
    return request.app.state.project_service


def get_snippet_service(request: Request) -> SnippetService:
    return request.app.state.snippet_service


# ---------------------------------------------------------------------------
# Error mapping.
# ---------------------------------------------------------------------------


async def handle_studio_error(request: Request, exc: StudioError) -> JSONResponse:
    """Render an expected failure as ``{"error": message}``."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render a request parsing failure as a 400 naming the offending field."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg", "")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """Hide unexpected failures behind a generic 500."""
    logger.exception(f"Unhandled error in {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api")


@router.get("/health")
async def health() -> dict:
    """Return liveness status and the API version."""
    return {"status": "ok", "version": __version__}


@router.post("/generate-image")
async def generate_image(
    req: GenerateRequest,
    user_id: int = Depends(get_current_user_id),
    service: GenerationService = Depends(get_generation_service),
) -> JSONResponse:
    """Generate an image into one of the caller's projects.

    The image is stored under the project's artifact directory and recorded
    in history; the upstream response body is returned unmodified (it carries
    cost and balance fields the frontend displays).

    Raises:
        InvalidRequestError: 400 for a missing prompt, model, project or
            dimensions.
        NotFoundError: 404 if the project is not the caller's.
        GenerationFailedError: 500 for any upstream or storage failure.
    """
    api_data = await service.generate(user_id, req.to_command())
    return JSONResponse(content=api_data)


@router.get("/history")
async def list_history(
    project_uuid: str | None = None,
    page: str | None = None,
    page_size: str | None = Query(default=None, alias="pageSize"),
    favorite: str | None = None,
    user_id: int = Depends(get_current_user_id),
    service: HistoryService = Depends(get_history_service),
) -> list[dict]:
    """Return one page of a project's history, newest first.

    Args:
        project_uuid: Project to list (required).
        page: One-based page number (default 1, floored to 1).
        page_size: Items per page (default 50, clamped to 1-100).
        favorite: ``true`` or ``1`` to list favorites only.
    """
    entries = service.list_entries(
        user_id, project_uuid, page, page_size, favorites_only=parse_flag(favorite)
    )
    return [entry.to_dict() for entry in entries]


@router.get("/history/meta")
async def history_meta(
    project_uuid: str | None = None,
    page: str | None = None,
    page_size: str | None = Query(default=None, alias="pageSize"),
    favorite: str | None = None,
    user_id: int = Depends(get_current_user_id),
    service: HistoryService = Depends(get_history_service),
) -> dict:
    """Return ``{total, page, pageSize}`` for the same filter as ``/api/history``."""
    return service.count_entries(
        user_id, project_uuid, page, page_size, favorites_only=parse_flag(favorite)
    )


@router.patch("/history/{entry_uuid}/favorite")
async def set_favorite(
    entry_uuid: str,
    req: FavoriteRequest,
    user_id: int = Depends(get_current_user_id),
    service: HistoryService = Depends(get_history_service),
) -> dict:
    """Mark or unmark a history entry as favorite."""
    favorite = service.set_favorite(user_id, entry_uuid, req.favorite)
    return {"ok": True, "favorite": favorite}


@router.post("/history/move")
async def move_history(
    req: MoveRequest,
    user_id: int = Depends(get_current_user_id),
    service: HistoryService = Depends(get_history_service),
) -> dict:
    """Move history entries, and their images, into another project.

    Raises:
        InvalidRequestError: 400 for an empty id list or missing target.
        NotFoundError: 404 for an unknown target or any unknown entry (the
            message lists the missing ids).
    """
    moved = await service.move_entries(user_id, req.entry_uuids, req.target_project_uuid)
    return {"ok": True, "moved": moved}


@router.delete("/history/{entry_uuid}")
async def delete_history(
    entry_uuid: str,
    user_id: int = Depends(get_current_user_id),
    service: HistoryService = Depends(get_history_service),
) -> dict:
    """Delete a history entry and, best-effort, its image file."""
    await service.delete_entry(user_id, entry_uuid)
    return {"ok": True}


@router.get("/generated/{filename}")
async def get_generated_file(
    filename: str,
    user_id: int = Depends(get_current_user_id),
    service: HistoryService = Depends(get_history_service),
) -> FileResponse:
    """Stream a generated image owned by the caller."""
    artifact = service.resolve_artifact(user_id, filename)
    return FileResponse(artifact.path, media_type=artifact.content_type)


@router.get("/project-groups")
async def list_project_groups(
    with_projects: str | None = Query(default=None, alias="withProjects"),
    user_id: int = Depends(get_current_user_id),
    service: ProjectService = Depends(get_project_service),
) -> list[dict]:
    """List the caller's groups; the default group is created if none exist."""
    return service.list_groups(user_id, with_projects=parse_flag(with_projects))


@router.post("/project-groups", status_code=201)
async def create_project_group(
    req: GroupRequest,
    user_id: int = Depends(get_current_user_id),
    service: ProjectService = Depends(get_project_service),
) -> dict:
    group = service.create_group(user_id, req.name, req.sort_order)
    return group.to_dict()


@router.put("/project-groups/{group_uuid}")
async def update_project_group(
    group_uuid: str,
    req: GroupRequest,
    user_id: int = Depends(get_current_user_id),
    service: ProjectService = Depends(get_project_service),
) -> dict:
    group = service.update_group(user_id, group_uuid, name=req.name, sort_order=req.sort_order)
    return group.to_dict()


@router.delete("/project-groups/{group_uuid}")
async def delete_project_group(
    group_uuid: str,
    user_id: int = Depends(get_current_user_id),
    service: ProjectService = Depends(get_project_service),
) -> dict:
    """Delete a group.  Groups that still contain projects are refused (400)."""
    service.delete_group(user_id, group_uuid)
    return {"ok": True}


@router.get("/projects")
async def list_projects(
    user_id: int = Depends(get_current_user_id),
    service: ProjectService = Depends(get_project_service),
) -> list[dict]:
    return [project.to_dict() for project in service.list_projects(user_id)]


@router.get("/projects/summary")
async def project_summary(
    user_id: int = Depends(get_current_user_id),
    service: ProjectService = Depends(get_project_service),
) -> list[dict]:
    """Groups with their projects and each project's most recent image."""
    return service.summary(user_id)


@router.get("/projects/{project_uuid}")
async def get_project(
    project_uuid: str,
    user_id: int = Depends(get_current_user_id),
    service: ProjectService = Depends(get_project_service),
) -> dict:
    return service.get_owned_project(project_uuid, user_id).to_dict()


@router.post("/projects", status_code=201)
async def create_project(
    req: ProjectCreateRequest,
    user_id: int = Depends(get_current_user_id),
    service: ProjectService = Depends(get_project_service),
) -> dict:
    project = service.create_project(user_id, req.name, req.group_uuid, req.uuid)
    return project.to_dict()


@router.put("/projects/{project_uuid}")
async def update_project(
    project_uuid: str,
    req: ProjectUpdateRequest,
    user_id: int = Depends(get_current_user_id),
    service: ProjectService = Depends(get_project_service),
) -> dict:
    project = service.update_project(user_id, project_uuid, req.name, req.group_uuid)
    return project.to_dict()


@router.delete("/projects/{project_uuid}")
async def delete_project(
    project_uuid: str,
    user_id: int = Depends(get_current_user_id),
    service: ProjectService = Depends(get_project_service),
) -> dict:
    """Delete a project together with its history entries and images."""
    service.delete_project(user_id, project_uuid)
    return {"ok": True}


@router.get("/snippets")
async def list_snippets(
    q: str | None = None,
    user_id: int = Depends(get_current_user_id),
    service: SnippetService = Depends(get_snippet_service),
) -> list[dict]:
    """List the caller's snippets, newest first, optionally filtered by ``q``."""
    return [snippet.to_dict() for snippet in service.list_snippets(user_id, q)]


@router.post("/snippets", status_code=201)
async def create_snippet(
    req: SnippetRequest,
    user_id: int = Depends(get_current_user_id),
    service: SnippetService = Depends(get_snippet_service),
) -> dict:
    return service.create(user_id, req.snippet, req.title).to_dict()


@router.delete("/snippets/{snippet_uuid}")
async def delete_snippet(
    snippet_uuid: str,
    user_id: int = Depends(get_current_user_id),
    service: SnippetService = Depends(get_snippet_service),
) -> dict:
    service.delete(user_id, snippet_uuid)
    return {"ok": True}


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(
    settings: StudioConfig | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    identity_resolver: IdentityResolver | None = None,
) -> FastAPI:
    """Build a configured FastAPI application.

    Args:
        settings: Configuration to use (defaults to the global ``config``).
        http_client: Upstream HTTP client to use instead of creating one;
            the caller stays responsible for closing it.
        identity_resolver: Replacement for the trusted-header resolver.

    Returns:
        The FastAPI application.  Services are created when its lifespan
        starts.
    """
    settings = settings or config

    app = FastAPI(
        title="Nano Studio",
        description="Multi-tenant AI image generation with project history.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = settings
    app.state.http_client = http_client
    app.state.identity_resolver = identity_resolver or header_identity_resolver(
        settings.user_id_header
    )

    # Allow cross-origin requests so the frontend can be served from a
    # different port during development.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StudioError, handle_studio_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(router)
    return app


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~nanostudio.core.config.config`
    (``NANOSTUDIO_SERVER_HOST``, ``NANOSTUDIO_SERVER_PORT``,
    ``NANOSTUDIO_LOG_LEVEL``).  Defaults to ``0.0.0.0:3000``.

    This function is registered as the ``nanostudio`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "nanostudio.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
