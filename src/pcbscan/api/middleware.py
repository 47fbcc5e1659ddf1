"""Bearer API key guard for the /api/v1 routes."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from pcbscan.config import Settings

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


def _token_matches(credentials: HTTPAuthorizationCredentials | None, expected: str) -> bool:
    if credentials is None:
        return False
    return secrets.compare_digest(credentials.credentials.encode(), expected.encode())


async def require_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
) -> None:
    """Reject the request unless it carries the configured PCBSCAN_API_KEY.

    Authentication is disabled when no key is configured.
    """
    settings: Settings = request.app.state.settings
    if settings.api_key is None or _token_matches(credentials, settings.api_key):
        return

    logger.warning("Rejected unauthenticated request to %s", request.url.path)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key",
        headers={"WWW-Authenticate": "Bearer"},
    )
