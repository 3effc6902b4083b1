"""FastAPI dependencies for auth."""

import logging
import secrets
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from clipshare.auth.jwt import is_access_token
from clipshare.config import get_settings

security = HTTPBearer(auto_error=False)
log = logging.getLogger(__name__)

AUTH_COOKIE = "auth"


def check_password(given: Optional[str]) -> bool:
    """Constant-time comparison with the configured shared password."""
    expected = get_settings().password
    if not expected or not given:
        return False
    return secrets.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


def _accepts(value: Optional[str]) -> bool:
    return check_password(value) or is_access_token(value)


async def require_auth(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> None:
    """
    Accept Bearer <password or access token>, an `auth` cookie holding an access
    token, or (when enabled) ?auth=. Raise 401 otherwise.
    """
    settings = get_settings()
    if not settings.password:
        log.error("Request rejected: CLIPSHARE_PASSWORD is not set")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication not configured on server",
        )
    if credentials and _accepts(credentials.credentials):
        return
    if is_access_token(request.cookies.get(AUTH_COOKIE)):
        return
    if settings.allow_query_auth and _accepts(request.query_params.get("auth")):
        return
    log.debug("Unauthenticated request to %s", request.url.path)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )
