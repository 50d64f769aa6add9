"""Generation orchestrator: validate, generate, store, record.

One call to :meth:`GenerationService.generate` runs the whole pipeline:

1. Validate the request (prompt, model, project, dimensions, credential)
   before any network or disk activity.
2. Resolve the target project against the caller's ownership.
3. Ask the provider client for an image.
4. Write the image into the project's artifact directory under a fresh name.
5. Insert the history row.
6. Return the unmodified upstream response body.

If step 5 fails after step 4 succeeded, the freshly written artifact is
removed again so the artifact store never holds files with no history row.
"""

import logging
import math
import sqlite3
import uuid
from dataclasses import dataclass
from typing import Any

from .artifact_store import ArtifactStore
from .config import StudioConfig
from .errors import (
    ConfigurationError,
    GenerationFailedError,
    InvalidRequestError,
    StorageError,
    StudioError,
    UpstreamError,
)
from .history_db import HistoryDB, HistoryEntry, now_ms
from .project_service import ProjectService
from .providers import DEFAULT_PROVIDER, DEFAULT_RESPONSE_FORMAT, ImageRequest, ProviderClient

logger = logging.getLogger(__name__)


@dataclass
class GenerationCommand:
    """Everything a caller may send to the generate operation.

    Required fields are typed optional here because their absence is a
    validation error reported by the orchestrator, not a parse error.
    """

    prompt: str | None = None
    model: str | None = None
    project_uuid: str | None = None
    width: int | None = None
    height: int | None = None
    resolution: str | None = None
    negative_prompt: str | None = None
    n_images: int | None = None
    num_steps: int | None = None
    sampler_name: str | None = None
    scale: float | None = None
    image_data_url: str | None = None
    image_data_urls: list[str] | None = None
    mask_data_url: str | None = None
    kontext_max_mode: bool | None = None
    seed: int | None = None
    response_format: str | None = None
    provider: str | None = None


def _parse_dimension(value: str) -> int | None:
    try:
        number = float(value)
    except ValueError:
        return None
    if not math.isfinite(number) or not number.is_integer():
        return None
    return int(number)


def parse_resolution(resolution: str) -> tuple[int, int] | None:
    """Parse a ``"WxH"`` string.

    Returns:
        ``(width, height)`` or ``None`` if either half is not numeric.
    """
    parts = resolution.strip().lower().split("x")
    if len(parts) < 2:
        return None
    width, height = _parse_dimension(parts[0]), _parse_dimension(parts[1])
    if width is None or height is None:
        return None
    return width, height


def resolve_dimensions(
    width: int | None, height: int | None, resolution: str | None
) -> tuple[int, int]:
    """Pick explicit width/height, or fall back to the resolution string.

    Raises:
        InvalidRequestError: If neither path yields two positive integers.
    """
    if not (width and height) and resolution:
        parsed = parse_resolution(resolution)
        if parsed is not None:
            width, height = parsed

    if not width or not height or width <= 0 or height <= 0:
        raise InvalidRequestError("width and height (or resolution) are required")
    return width, height


class GenerationService:
    """Coordinate validation, generation, artifact persistence and history."""

    def __init__(
        self,
        config: StudioConfig,
        provider_client: ProviderClient,
        projects: ProjectService,
        history: HistoryDB,
        store: ArtifactStore,
    ) -> None:
        self.config = config
        self.provider_client = provider_client
        self.projects = projects
        self.history = history
        self.store = store

    def _validate(self, command: GenerationCommand) -> tuple[int, int]:
        if not command.prompt or not command.prompt.strip():
            raise InvalidRequestError("prompt is required")
        if not command.model or not command.model.strip():
            raise InvalidRequestError("model is required")
        if not command.project_uuid or not command.project_uuid.strip():
            raise InvalidRequestError("project_uuid is required")

        width, height = resolve_dimensions(command.width, command.height, command.resolution)

        if not self.config.upstream_configured:
            raise ConfigurationError("Missing API key in environment")

        # Unknown providers are rejected here, before any network activity.
        self.provider_client.registry.get(command.provider or DEFAULT_PROVIDER)
        return width, height

    async def generate(self, user_id: int, command: GenerationCommand) -> dict[str, Any]:
        """Run the full generation pipeline for *user_id*.

        Returns:
            The upstream response body, unmodified.

        Raises:
            InvalidRequestError: On missing prompt, model, project or
                dimensions, or an unknown provider.
            ConfigurationError: If no upstream credential is configured.
            NotFoundError: If the project is not the caller's.
            GenerationFailedError: If the upstream call, the file write or
                the history insert fails.
        """
        width, height = self._validate(command)
        provider = command.provider or DEFAULT_PROVIDER
        project = self.projects.get_owned_project(command.project_uuid.strip(), user_id)

        request = ImageRequest(
            prompt=command.prompt,
            model=command.model,
            width=width,
            height=height,
            negative_prompt=command.negative_prompt,
            n_images=command.n_images,
            num_steps=command.num_steps,
            resolution=command.resolution,
            sampler_name=command.sampler_name,
            scale=command.scale,
            image_data_url=command.image_data_url,
            image_data_urls=command.image_data_urls,
            mask_data_url=command.mask_data_url,
            kontext_max_mode=command.kontext_max_mode,
            seed=command.seed,
            response_format=command.response_format,
        )

        try:
            result = await self.provider_client.generate(request, provider)
        except UpstreamError as e:
            logger.error(f"Image generation via {provider} failed for project {project.uuid}: {e.message}")
            raise GenerationFailedError() from e

        filename = self.store.new_filename(result.extension)
        try:
            self.store.write(project.uuid, filename, result.image_data)
        except StorageError as e:
            logger.error(f"Failed to store generated image for project {project.uuid}: {e.__cause__}")
            raise GenerationFailedError() from e

        entry = HistoryEntry(
            uuid=str(uuid.uuid4()),
            user_id=user_id,
            project_uuid=project.uuid,
            model=command.model,
            prompt=command.prompt,
            width=width,
            height=height,
            image_name=filename,
            create_date=now_ms(),
            negative_prompt=command.negative_prompt,
            n_images=command.n_images,
            num_steps=command.num_steps,
            resolution=command.resolution,
            sampler_name=command.sampler_name,
            scale=command.scale,
            image_data_url=command.image_data_url,
            provider=provider,
            response_format=command.response_format
            or (DEFAULT_RESPONSE_FORMAT if provider == "api2" else None),
            seed=command.seed,
            kontext_max_mode=bool(command.kontext_max_mode),
        )
        try:
            self.history.insert(entry)
        except (sqlite3.Error, StudioError) as e:
            logger.error(f"Failed to record history for {filename}, removing artifact: {e}")
            self.store.remove(project.uuid, filename)
            raise GenerationFailedError() from e

        return result.api_data
