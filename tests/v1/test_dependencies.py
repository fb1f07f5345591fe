# tests/v1/test_dependencies.py
"""Tests for API dependencies module."""

from datetime import UTC, datetime, timedelta

import pytest
from fastapi import HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from blogx_chat.api.v1.dependencies import get_current_user
from blogx_chat.core.security import create_access_token, decode_token_subject
from blogx_chat.core.settings import settings


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestDecodeTokenSubject:
    """Test the token subject helper."""

    def test_round_trips_user_id(self):
        assert decode_token_subject(create_access_token(42)) == 42

    def test_rejects_garbage(self):
        assert decode_token_subject("not.a.token") is None

    def test_rejects_expired_token(self):
        expired = jwt.encode(
            {"sub": "42", "exp": datetime.now(UTC) - timedelta(minutes=1)},
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )
        assert decode_token_subject(expired) is None

    def test_rejects_non_numeric_subject(self):
        token = jwt.encode({"sub": "alice"}, settings.secret_key, algorithm=settings.jwt_algorithm)
        assert decode_token_subject(token) is None


class TestGetCurrentUser:
    """Test the get_current_user dependency function."""

    def test_get_current_user_success(self, db_session, test_user):
        """Test successful user retrieval with valid JWT."""
        token = create_access_token(test_user.id)

        result = get_current_user(_credentials(token), db_session)

        assert result.id == test_user.id

    def test_get_current_user_invalid_jwt(self, db_session):
        """Test get_current_user with invalid JWT token."""
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(_credentials("invalid_token"), db_session)

        assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED
        assert "Could not validate credentials" in exc_info.value.detail

    def test_get_current_user_missing_user(self, db_session):
        """Test a well-formed token whose user no longer exists."""
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(_credentials(create_access_token(987654)), db_session)

        assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED
        assert exc_info.value.detail == "User not found"
