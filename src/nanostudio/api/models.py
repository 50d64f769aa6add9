"""Pydantic request models for the Nano Studio API.

These models define the JSON schema for every API endpoint that accepts a
body.  FastAPI uses them for request parsing, serialisation, and OpenAPI
documentation generation.

Required business fields (prompt, model, project, names) are declared
optional: their absence is reported by the service layer with a
message naming the field, in the same ``{"error": ...}`` shape as every
other failure.  Type errors (e.g. ``width: "wide"``) are still rejected
here and surface as 400 responses.

Wire names follow the frontend's conventions (``nImages``, ``imageDataUrl``,
``entryUuids``, ``groupUuid``...).  Every aliased field can also be populated
by its Python name.

Models
------
GenerateRequest
    Payload for ``POST /api/generate-image``.
FavoriteRequest
    Payload for ``PATCH /api/history/{uuid}/favorite``.
MoveRequest
    Payload for ``POST /api/history/move``.
GroupRequest
    Payload for creating or updating a project group.
ProjectCreateRequest / ProjectUpdateRequest
    Payloads for creating or updating a project.
SnippetRequest
    Payload for ``POST /api/snippets``.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictBool

from nanostudio.core.generation import GenerationCommand


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class GenerateRequest(_WireModel):
    """Request body for the ``POST /api/generate-image`` endpoint.

    Attributes:
        prompt: Text prompt (required, non-blank).
        model: Upstream model identifier (required, non-blank).
        project_uuid: Project that will own the image (required, must be
            owned by the caller).
        width: Image width in pixels.
        height: Image height in pixels.
        resolution: ``"WxH"`` alternative to width/height; also forwarded
            to the provider.
        negative_prompt: Text describing what to avoid.
        n_images: Number of images requested from the provider.
        num_steps: Inference steps.
        sampler_name: Sampler name (legacy provider only).
        scale: Guidance scale.
        image_data_url: Reference / base image as a data URL.
        image_data_urls: Several reference images (OpenAI-compatible provider).
        mask_data_url: Inpainting mask (OpenAI-compatible provider).
        kontext_max_mode: Provider "max context" mode flag.
        seed: Random seed.
        response_format: ``"b64_json"`` or ``"url"``.
        provider: ``"api1"`` (default, legacy) or ``"api2"`` (OpenAI-compatible).
    """

    prompt: str | None = Field(default=None, description="Text prompt.")
    model: str | None = Field(default=None, description="Upstream model identifier.")
    project_uuid: str | None = Field(default=None, description="Owning project uuid.")
    width: int | None = Field(default=None, description="Image width in pixels.")
    height: int | None = Field(default=None, description="Image height in pixels.")
    resolution: str | None = Field(default=None, description="Size as 'WxH', e.g. '1024x1024'.")
    negative_prompt: str | None = Field(default=None, description="What to avoid.")
    n_images: int | None = Field(default=None, alias="nImages", description="Images to request.")
    num_steps: int | None = Field(default=None, description="Inference steps.")
    sampler_name: str | None = Field(default=None, description="Sampler (legacy provider).")
    scale: float | None = Field(default=None, description="Guidance scale.")
    image_data_url: str | None = Field(
        default=None, alias="imageDataUrl", description="Reference image as a data URL."
    )
    image_data_urls: list[str] | None = Field(
        default=None, alias="imageDataUrls", description="Reference images as data URLs."
    )
    mask_data_url: str | None = Field(
        default=None, alias="maskDataUrl", description="Mask image as a data URL."
    )
    kontext_max_mode: bool | None = Field(default=None, description="Max context mode.")
    seed: int | None = Field(default=None, description="Random seed.")
    response_format: Literal["b64_json", "url"] | None = Field(
        default=None, description="Inline base64 or URL reference."
    )
    provider: Literal["api1", "api2"] | None = Field(
        default=None, description="Upstream API shape (default 'api1')."
    )

    def to_command(self) -> GenerationCommand:
        """Convert to the orchestrator's input type."""
        return GenerationCommand(**self.model_dump())


class FavoriteRequest(_WireModel):
    """Request body for ``PATCH /api/history/{uuid}/favorite``.

    Attributes:
        favorite: ``True`` to mark as favorite, ``False`` to unmark.  Must be
            a JSON boolean.
    """

    favorite: StrictBool = Field(..., description="Desired favorite state.")


class MoveRequest(_WireModel):
    """Request body for ``POST /api/history/move``.

    Attributes:
        entry_uuids: History entry uuids to move.  Blank and non-string
            items are ignored; duplicates collapse.
        target_project_uuid: Destination project uuid.
    """

    entry_uuids: list[Any] | None = Field(default=None, alias="entryUuids")
    target_project_uuid: str | None = Field(default=None, alias="targetProjectUuid")


class GroupRequest(_WireModel):
    """Request body for creating or updating a project group."""

    name: str | None = None
    sort_order: int | None = Field(default=None, alias="sortOrder")


class ProjectCreateRequest(_WireModel):
    """Request body for ``POST /api/projects``.

    Attributes:
        name: Project name (required).
        group_uuid: Group to create the project in (required).
        uuid: Optional explicit project uuid.
    """

    name: str | None = None
    group_uuid: str | None = Field(default=None, alias="groupUuid")
    uuid: str | None = None


class ProjectUpdateRequest(_WireModel):
    """Request body for ``PUT /api/projects/{uuid}``."""

    name: str | None = None
    group_uuid: str | None = Field(default=None, alias="groupUuid")


class SnippetRequest(_WireModel):
    """Request body for ``POST /api/snippets``.

    Attributes:
        title: Optional label; blank titles are stored as null.
        snippet: Prompt text (required, non-blank).
    """

    title: str | None = None
    snippet: str | None = None
