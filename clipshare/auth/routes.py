"""Auth routes: verify shared password, logout."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from clipshare.auth.dependencies import AUTH_COOKIE, check_password
from clipshare.auth.jwt import create_access_token
from clipshare.config import get_settings
from clipshare.limiter import limiter

router = APIRouter(prefix="/api/auth", tags=["auth"])
log = logging.getLogger(__name__)


class VerifyRequest(BaseModel):
    """Password check body."""

    password: Optional[str] = None


def is_secure_request(request: Request) -> bool:
    """True when the client reached us over https (honours X-Forwarded-Proto)."""
    scheme = request.headers.get("x-forwarded-proto") or request.url.scheme
    return scheme.lower() == "https"


def cookie_secure(request: Request) -> bool:
    """SameSite=None cookies must be Secure."""
    return is_secure_request(request) or get_settings().auth_cookie_samesite == "none"


@router.post("/verify")
@limiter.limit("10/minute")
async def verify(request: Request, body: VerifyRequest) -> JSONResponse:
    """Check the shared password; on success set the auth cookie and return an access token."""
    settings = get_settings()
    if not settings.password:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication not configured on server",
        )
    if not check_password(body.password):
        log.warning("Password verification failed from %s", request.client.host if request.client else "?")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid password")
    token = create_access_token()
    response = JSONResponse(
        content={
            "success": True,
            "access_token": token,
            "token_type": "bearer",
            "expires_in": settings.auth_max_age_seconds,
        }
    )
    response.set_cookie(
        AUTH_COOKIE,
        token,
        max_age=settings.auth_max_age_seconds,
        path="/",
        samesite=settings.auth_cookie_samesite,
        httponly=True,
        secure=cookie_secure(request),
    )
    log.info("Password verified, session cookie issued")
    return response


@router.post("/logout")
async def logout(request: Request) -> JSONResponse:
    """Expire the auth cookie."""
    settings = get_settings()
    response = JSONResponse(content={"success": True})
    response.delete_cookie(
        AUTH_COOKIE,
        path="/",
        samesite=settings.auth_cookie_samesite,
        httponly=True,
        secure=cookie_secure(request),
    )
    return response
