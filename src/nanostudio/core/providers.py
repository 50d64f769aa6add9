"""Upstream provider adapters for image generation.

Nano Studio talks to one upstream service that exposes two API shapes.  Each
shape is described by a :class:`ProviderSpec` and registered in the global
:data:`provider_registry`:

- **api1** (default): the legacy ``/api/generate-image`` endpoint,
  authenticated with an ``x-api-key`` header.
- **api2**: the OpenAI-compatible ``/v1/images/generations`` endpoint,
  authenticated with a bearer token.

Request Mapping
---------------
Every provider carries an ordered table of :class:`FieldMapping` rows
(internal field -> wire field, plus a transform).  :meth:`ProviderSpec.build_payload`
applies the table generically; a transform returning ``None`` drops the
field from the payload.

Response Decoding
-----------------
Both endpoints may answer in either of two shapes, each with a base64 or URL
variant::

    {"image": "data:image/jpeg;base64,..."}        legacy, inline
    {"image": "https://cdn/.../x.webp"}             legacy, by reference
    {"data": [{"b64_json": "..."}], "cost": 0.01}   versioned, inline
    {"data": [{"url": "https://..."}]}              versioned, by reference

The response is matched against an ordered chain of shape matchers (legacy
field first, then the versioned array).  Each matcher returns a decoded
:class:`GenerationResult` or ``None`` for "not this shape"; if no matcher
claims the payload the call fails with :class:`UpstreamError`.

Usage Example
-------------
    >>> client = ProviderClient(config, httpx.AsyncClient())
    >>> result = await client.generate(
    ...     ImageRequest(prompt="a lighthouse", model="flux", width=1024, height=1024),
    ...     provider="api2",
    ... )
    >>> result.extension
    'png'
"""

import base64
import binascii
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Literal
from urllib.parse import urlparse

import httpx

from .config import StudioConfig
from .errors import ConfigurationError, InvalidRequestError, UpstreamError

logger = logging.getLogger(__name__)

ProviderName = Literal["api1", "api2"]
DEFAULT_PROVIDER: ProviderName = "api1"
DEFAULT_RESPONSE_FORMAT = "b64_json"

_DATA_URI_META = re.compile(r"^data:(.*?);base64$", re.IGNORECASE)
_SUBTYPE = re.compile(r"^[a-z0-9]+$")


@dataclass
class ImageRequest:
    """Provider-neutral generation request.

    ``width`` and ``height`` are always resolved before a request is built;
    every other field is optional and only forwarded when set.
    """

    prompt: str
    model: str
    width: int
    height: int
    negative_prompt: str | None = None
    n_images: int | None = None
    num_steps: int | None = None
    resolution: str | None = None
    sampler_name: str | None = None
    scale: float | None = None
    image_data_url: str | None = None
    image_data_urls: list[str] | None = None
    mask_data_url: str | None = None
    kontext_max_mode: bool | None = None
    seed: int | None = None
    response_format: str | None = None


@dataclass
class GenerationResult:
    """Decoded upstream answer.

    Attributes:
        image_data: Raw image bytes.
        content_type: MIME type declared (or implied) for the image.
        extension: Lowercase file extension without the leading dot.
        api_data: The unmodified upstream response body.
    """

    image_data: bytes
    content_type: str
    extension: str
    api_data: dict[str, Any]


# ---------------------------------------------------------------------------
# Request mapping tables.
# ---------------------------------------------------------------------------


def _passthrough(value: Any, request: ImageRequest) -> Any:
    return value


def _non_empty(value: Any, request: ImageRequest) -> Any:
    return value or None


def _size(value: Any, request: ImageRequest) -> str | None:
    if value:
        return value
    return f"{request.width}x{request.height}"


def _default_response_format(value: Any, request: ImageRequest) -> str:
    return value or DEFAULT_RESPONSE_FORMAT


@dataclass(frozen=True)
class FieldMapping:
    """One row of a provider's request mapping table."""

    source: str
    target: str
    transform: Callable[[Any, ImageRequest], Any] = _passthrough


@dataclass(frozen=True)
class ProviderSpec:
    """Wire description of one upstream API shape.

    Attributes:
        name: Selector clients use (``"api1"`` or ``"api2"``).
        path: Endpoint path appended to the configured base URL.
        auth_header: Header carrying the credential.
        auth_scheme: Prefix placed before the credential (e.g. ``"Bearer "``).
        fields: Ordered mapping table applied after ``prompt`` and ``model``.
    """

    name: str
    path: str
    auth_header: str
    auth_scheme: str = ""
    fields: tuple[FieldMapping, ...] = field(default_factory=tuple)

    def headers(self, api_key: str) -> dict[str, str]:
        return {
            self.auth_header: f"{self.auth_scheme}{api_key}",
            "Content-Type": "application/json",
        }

    def endpoint(self, base_url: str) -> str:
        return f"{base_url.rstrip('/')}{self.path}"

    def build_payload(self, request: ImageRequest) -> dict[str, Any]:
        """Translate *request* into this provider's JSON body."""
        payload: dict[str, Any] = {"prompt": request.prompt, "model": request.model}
        for mapping in self.fields:
            value = mapping.transform(getattr(request, mapping.source), request)
            if value is not None:
                payload[mapping.target] = value
        return payload


LEGACY_PROVIDER = ProviderSpec(
    name="api1",
    path="/api/generate-image",
    auth_header="x-api-key",
    fields=(
        FieldMapping("width", "width"),
        FieldMapping("height", "height"),
        FieldMapping("negative_prompt", "negative_prompt", _non_empty),
        FieldMapping("n_images", "nImages"),
        FieldMapping("num_steps", "num_steps"),
        FieldMapping("resolution", "resolution", _non_empty),
        FieldMapping("sampler_name", "sampler_name", _non_empty),
        FieldMapping("scale", "scale"),
        FieldMapping("image_data_url", "imageDataUrl", _non_empty),
        FieldMapping("kontext_max_mode", "kontext_max_mode"),
        FieldMapping("seed", "seed"),
    ),
)

OPENAI_PROVIDER = ProviderSpec(
    name="api2",
    path="/v1/images/generations",
    auth_header="Authorization",
    auth_scheme="Bearer ",
    fields=(
        FieldMapping("resolution", "size", _size),
        FieldMapping("n_images", "n"),
        FieldMapping("num_steps", "num_inference_steps"),
        FieldMapping("scale", "guidance_scale"),
        FieldMapping("response_format", "response_format", _default_response_format),
        FieldMapping("seed", "seed"),
        FieldMapping("image_data_url", "imageDataUrl", _non_empty),
        FieldMapping("image_data_urls", "imageDataUrls", _non_empty),
        FieldMapping("mask_data_url", "maskDataUrl", _non_empty),
        FieldMapping("kontext_max_mode", "kontext_max_mode"),
    ),
)


class ProviderRegistry:
    """Registry of the upstream API shapes a request may select."""

    def __init__(self) -> None:
        self._providers: dict[str, ProviderSpec] = {}

    def register(self, spec: ProviderSpec) -> None:
        if spec.name in self._providers:
            logger.warning(f"Provider '{spec.name}' is already registered, overwriting")
        self._providers[spec.name] = spec
        logger.debug(f"Registered provider: {spec.name}")

    def get(self, name: str) -> ProviderSpec:
        """Look up a provider.

        Raises:
            InvalidRequestError: If *name* is not registered.
        """
        try:
            return self._providers[name]
        except KeyError:
            available = ", ".join(self.list_available())
            raise InvalidRequestError(
                f"provider must be one of: {available}"
            ) from None

    def list_available(self) -> list[str]:
        return list(self._providers.keys())


provider_registry = ProviderRegistry()
provider_registry.register(LEGACY_PROVIDER)
provider_registry.register(OPENAI_PROVIDER)


# ---------------------------------------------------------------------------
# Response decoding.
# ---------------------------------------------------------------------------


def extension_for_mime(content_type: str) -> str:
    """Extension declared by a data-URI mime type (``jpeg`` becomes ``jpg``)."""
    content_type = content_type.lower()
    if "jpeg" in content_type:
        return "jpg"
    subtype = content_type.split("/", 1)[1] if "/" in content_type else ""
    subtype = subtype.split(";", 1)[0].strip()
    return subtype if _SUBTYPE.match(subtype) else "png"


def extension_for_download(content_type: str, url: str) -> str:
    """Extension for a downloaded image.

    The declared content type wins for jpeg, png and webp; otherwise the URL
    path's extension is used when it is alphanumeric, and ``png`` otherwise.
    """
    if "jpeg" in content_type:
        return "jpg"
    if "png" in content_type:
        return "png"
    if "webp" in content_type:
        return "webp"
    suffix = PurePosixPath(urlparse(url).path).suffix.lstrip(".").lower()
    return suffix if _SUBTYPE.match(suffix) else "png"


def _b64decode(payload: Any) -> bytes:
    if not isinstance(payload, str) or not payload.strip():
        raise UpstreamError("Upstream API returned no image data")
    try:
        data = base64.b64decode(payload)
    except (binascii.Error, ValueError) as e:
        raise UpstreamError("Upstream API returned malformed base64 image data") from e
    if not data:
        raise UpstreamError("Upstream API returned no image data")
    return data


def decode_data_uri(data_uri: str) -> tuple[bytes, str, str]:
    """Decode ``data:<mime>;base64,<payload>``.

    Returns:
        Tuple of ``(bytes, content_type, extension)``.
    """
    meta, _, payload = data_uri.partition(",")
    match = _DATA_URI_META.match(meta)
    content_type = (match.group(1) if match else "") or "image/png"
    return _b64decode(payload), content_type, extension_for_mime(content_type)


async def download_image(http_client: httpx.AsyncClient, url: str) -> tuple[bytes, str, str]:
    """Fetch an image returned by reference.

    Returns:
        Tuple of ``(bytes, content_type, extension)``.

    Raises:
        UpstreamError: On an invalid URL, any network error or a non-2xx
            status.
    """
    try:
        response = await http_client.get(url)
        response.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.error(f"Failed to download generated image from {url}: {e}")
        raise UpstreamError("Failed to download generated image") from e

    if not response.content:
        raise UpstreamError("Downloaded generated image is empty")

    content_type = response.headers.get("content-type", "").lower() or "image/png"
    return response.content, content_type, extension_for_download(content_type, url)


ShapeMatcher = Callable[[Any, httpx.AsyncClient], Awaitable[GenerationResult | None]]


async def match_legacy_image(api_data: Any, http_client: httpx.AsyncClient) -> GenerationResult | None:
    """Legacy shape: a non-empty ``image`` string (data URI or URL)."""
    image = api_data.get("image")
    if not isinstance(image, str) or not image:
        return None

    if image.startswith("data:"):
        data, content_type, extension = decode_data_uri(image)
    else:
        data, content_type, extension = await download_image(http_client, image)
    return GenerationResult(data, content_type, extension, api_data)


async def match_versioned_data(api_data: Any, http_client: httpx.AsyncClient) -> GenerationResult | None:
    """Versioned shape: ``data`` array whose first entry has ``b64_json`` or ``url``."""
    if "data" not in api_data:
        return None

    items = api_data.get("data")
    if not isinstance(items, list):
        return None
    if not items:
        raise UpstreamError("Upstream API returned no data")

    first = items[0]
    if isinstance(first, dict) and "b64_json" in first:
        return GenerationResult(_b64decode(first["b64_json"]), "image/png", "png", api_data)
    if isinstance(first, dict) and isinstance(first.get("url"), str):
        data, content_type, extension = await download_image(http_client, first["url"])
        return GenerationResult(data, content_type, extension, api_data)
    return None


RESPONSE_MATCHERS: tuple[ShapeMatcher, ...] = (match_legacy_image, match_versioned_data)


async def decode_response(api_data: Any, http_client: httpx.AsyncClient) -> GenerationResult:
    """Run the matcher chain over an upstream response body.

    Raises:
        UpstreamError: If no matcher recognizes the payload.
    """
    if isinstance(api_data, dict):
        for matcher in RESPONSE_MATCHERS:
            result = await matcher(api_data, http_client)
            if result is not None:
                return result
    raise UpstreamError("Unsupported upstream response format")


# ---------------------------------------------------------------------------
# Client.
# ---------------------------------------------------------------------------


class ProviderClient:
    """Call the upstream API and decode its answer into image bytes.

    The client performs one POST to the selected provider and, when the
    image is returned by reference, one follow-up GET.  No retries are made;
    every failure surfaces as :class:`UpstreamError`.
    """

    def __init__(
        self,
        config: StudioConfig,
        http_client: httpx.AsyncClient,
        registry: ProviderRegistry = provider_registry,
    ) -> None:
        self.config = config
        self.http_client = http_client
        self.registry = registry

    def build_payload(self, request: ImageRequest, provider: str = DEFAULT_PROVIDER) -> dict[str, Any]:
        return self.registry.get(provider).build_payload(request)

    async def generate(self, request: ImageRequest, provider: str = DEFAULT_PROVIDER) -> GenerationResult:
        """Generate one image.

        Args:
            request: Provider-neutral request with resolved dimensions.
            provider: ``"api1"`` or ``"api2"``.

        Returns:
            The decoded :class:`GenerationResult`.

        Raises:
            ConfigurationError: If no API key is configured.
            UpstreamError: On network failure, non-2xx status, non-JSON body
                or an unrecognized response shape.
        """
        if not self.config.upstream_configured:
            raise ConfigurationError("Missing API key in environment")

        spec = self.registry.get(provider)
        payload = spec.build_payload(request)
        url = spec.endpoint(self.config.upstream_base_url)

        logger.info(f"Requesting image from {spec.name} (model={request.model}, {request.width}x{request.height})")
        try:
            response = await self.http_client.post(
                url,
                json=payload,
                headers=spec.headers(self.config.api_key or ""),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Upstream {spec.name} returned {e.response.status_code}: {e.response.text[:500]}"
            )
            raise UpstreamError("Upstream API request failed") from e
        except httpx.HTTPError as e:
            logger.error(f"Upstream {spec.name} request failed: {e}")
            raise UpstreamError("Upstream API request failed") from e

        try:
            api_data = response.json()
        except ValueError as e:
            logger.error(f"Upstream {spec.name} returned a non-JSON body")
            raise UpstreamError("Upstream API returned an invalid response") from e

        return await decode_response(api_data, self.http_client)
