"""Tests for access tokens and share credentials."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from clipshare.auth.jwt import (
    create_access_token,
    create_share_credential,
    decode_token,
    get_share_from_credential,
    is_access_token,
)


@pytest.fixture(autouse=True)
def _mock_settings(monkeypatch):
    """Provide test settings for JWT (secret, algorithm, lifetimes)."""
    from clipshare.auth import jwt as jwt_mod
    mock = MagicMock()
    mock.jwt_secret = "test-secret-at-least-32-characters-long"
    mock.jwt_algorithm = "HS256"
    mock.auth_max_age_seconds = 3600
    mock.share_auth_max_age_seconds = 3600
    monkeypatch.setattr(jwt_mod, "get_settings", lambda: mock)
    return mock


def test_create_access_token_decode() -> None:
    """Access token has type 'access' and the owner subject."""
    token = create_access_token()
    payload = decode_token(token)
    assert payload is not None
    assert payload.get("sub") == "owner"
    assert payload.get("type") == "access"
    assert "exp" in payload
    assert is_access_token(token) is True


def test_share_credential_decode() -> None:
    """Share credential carries the share token as subject."""
    cred = create_share_credential("tok123")
    payload = decode_token(cred)
    assert payload.get("type") == "share"
    assert get_share_from_credential(cred) == "tok123"


def test_share_credential_is_not_access_token() -> None:
    assert is_access_token(create_share_credential("tok")) is False


def test_access_token_is_not_share_credential() -> None:
    assert get_share_from_credential(create_access_token()) is None


def test_expired_token_rejected() -> None:
    token = create_access_token(expires_delta=timedelta(seconds=-10))
    assert decode_token(token) is None
    assert is_access_token(token) is False
    assert get_share_from_credential(create_share_credential("t", timedelta(seconds=-10))) is None


def test_token_from_other_secret_rejected(_mock_settings) -> None:
    token = create_access_token()
    _mock_settings.jwt_secret = "another-secret-at-least-32-characters-long"
    assert decode_token(token) is None


def test_empty_secret_uses_process_secret(_mock_settings) -> None:
    """Without a configured secret tokens still round-trip within the process."""
    _mock_settings.jwt_secret = ""
    token = create_access_token()
    assert is_access_token(token) is True


def test_decode_token_invalid_returns_none() -> None:
    """Invalid or tampered token decodes to None."""
    assert decode_token("not-a-jwt") is None
    assert decode_token("") is None
    assert is_access_token(None) is False
    assert get_share_from_credential(None) is None
