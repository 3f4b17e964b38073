"""Shared API key authentication."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING

from fastapi import Depends, Header, Request

from nous_grade.errors import AuthenticationError

if TYPE_CHECKING:
    from nous_grade.containers import AppContainer

_BEARER_PREFIX = "bearer "


def _get_api_key(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.api_key


async def require_api_key(
    x_api_key: str | None = Header(default=None),
    authorization: str | None = Header(default=None),
    api_key: str = Depends(_get_api_key),
) -> None:
    """Ensure requests carry the shared key in X-API-Key or a bearer token."""
    provided = x_api_key
    if not provided and authorization:
        if authorization.lower().startswith(_BEARER_PREFIX):
            provided = authorization[len(_BEARER_PREFIX) :].strip()
    if not provided:
        raise AuthenticationError(
            "API key required. Provide it in X-API-Key header or "
            "Authorization: Bearer <key>",
            code="MISSING_API_KEY",
        )
    if not secrets.compare_digest(provided.encode(), api_key.encode()):
        raise AuthenticationError("Invalid API key")
