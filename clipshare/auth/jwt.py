"""JWT creation and validation for the main session and per-share credentials."""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt

from clipshare.config import get_settings

log = logging.getLogger(__name__)

ACCESS_TYPE = "access"
SHARE_TYPE = "share"

# Used when no CLIPSHARE_JWT_SECRET is configured; credentials end with the process.
_process_secret = secrets.token_urlsafe(32)


def _secret() -> str:
    return get_settings().jwt_secret or _process_secret


def _encode(subject: str, token_type: str, expires_delta: timedelta) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode: dict[str, Any] = {"sub": subject, "exp": expire, "type": token_type}
    return jwt.encode(to_encode, _secret(), algorithm=settings.jwt_algorithm)


def create_access_token(expires_delta: Optional[timedelta] = None) -> str:
    """Create the main-application JWT handed out after the shared password is verified."""
    settings = get_settings()
    return _encode(
        "owner",
        ACCESS_TYPE,
        expires_delta or timedelta(seconds=settings.auth_max_age_seconds),
    )


def create_share_credential(share_token: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create a credential that unlocks exactly one password-protected share link."""
    settings = get_settings()
    return _encode(
        share_token,
        SHARE_TYPE,
        expires_delta or timedelta(seconds=settings.share_auth_max_age_seconds),
    )


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """Decode and validate a JWT; return payload or None."""
    settings = get_settings()
    try:
        return jwt.decode(token, _secret(), algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def is_access_token(token: Optional[str]) -> bool:
    """True if token is a valid main-application access token."""
    if not token:
        return False
    payload = decode_token(token)
    return bool(payload) and payload.get("type") == ACCESS_TYPE


def get_share_from_credential(credential: Optional[str]) -> Optional[str]:
    """Return the share token a credential was issued for, or None if invalid."""
    if not credential:
        return None
    payload = decode_token(credential)
    if not payload or payload.get("type") != SHARE_TYPE:
        return None
    return payload.get("sub")
