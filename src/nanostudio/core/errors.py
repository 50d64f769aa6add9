"""Error taxonomy for Nano Studio.

Service code raises these exceptions; the API layer maps each class to an
HTTP status and a short ``{"error": message}`` body.  Messages are written to
be shown to the caller directly, so they never contain upstream response
bodies or file system paths.
"""

from typing import Optional


class StudioError(Exception):
    """Base error for all expected failure paths."""

    status_code: int = 500

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class InvalidRequestError(StudioError):
    """Missing or malformed required input."""

    status_code = 400


class AuthenticationError(StudioError):
    """The caller could not be identified."""

    status_code = 401


class NotFoundError(StudioError):
    """Entity does not exist or is not owned by the caller.

    Both cases produce the same error.
    """

    status_code = 404


class ConflictError(StudioError):
    """A unique constraint would be violated."""

    status_code = 409


class ConfigurationError(StudioError):
    """The server is missing required configuration."""

    status_code = 500


class UpstreamError(StudioError):
    """The generation provider, or a follow-up download, failed.

    Also raised when the provider answers with a payload in none of the
    recognized shapes.
    """

    status_code = 502


class StorageError(StudioError):
    """Writing, renaming or removing an artifact failed."""

    status_code = 500


class GenerationFailedError(StudioError):
    """Generic failure surfaced to callers of the generate operation."""

    status_code = 500

    def __init__(self, message: str = "Image generation failed", code: Optional[str] = None):
        super().__init__(message, code)
