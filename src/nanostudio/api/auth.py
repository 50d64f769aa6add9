"""Caller identity for API requests.

Authentication itself happens in front of the application (an
authenticating reverse proxy or gateway).  The proxy forwards the numeric
user id in a trusted header, named by ``NANOSTUDIO_USER_ID_HEADER``.

Deployments that authenticate differently can replace the resolver stored
on ``app.state.identity_resolver`` with any callable taking the request and
returning a user id or ``None``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Request

from nanostudio.core.errors import AuthenticationError

logger = logging.getLogger(__name__)

IdentityResolver = Callable[[Request], "int | None"]


def header_identity_resolver(header_name: str) -> IdentityResolver:
    """Build a resolver reading a positive integer user id from *header_name*."""

    def resolve(request: Request) -> int | None:
        raw = request.headers.get(header_name, "").strip()
        if not raw.isdigit():
            return None
        user_id = int(raw)
        return user_id if user_id > 0 else None

    return resolve


async def get_current_user_id(request: Request) -> int:
    """FastAPI dependency returning the caller's numeric owner id.

    Raises:
        AuthenticationError: If the caller cannot be identified.
    """
    resolver: IdentityResolver | None = getattr(request.app.state, "identity_resolver", None)
    user_id = resolver(request) if resolver else None
    if not user_id:
        logger.warning(f"Unauthenticated request to {request.url.path}")
        raise AuthenticationError("unauthorized")
    return user_id
