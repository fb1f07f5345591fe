"""JWT helpers for the bearer tokens issued by the platform's auth service."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from blogx_chat.core.settings import settings


def create_access_token(user_id: int, extra_claims: dict[str, str] | None = None) -> str:
    """Create a JWT access token whose subject is the user's identifier."""
    to_encode: dict[str, object] = {"sub": str(user_id)}
    if extra_claims:
        to_encode.update(extra_claims)
    expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode["exp"] = expire
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def decode_token_subject(token: str) -> int | None:
    """Return the user id carried by ``token`` or None when it does not validate.

    Args:
        token: Encoded JWT as presented by the client.

    Returns:
        The integer subject, or None for an invalid, expired or malformed token.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    subject = payload.get("sub")
    if subject is None:
        return None
    try:
        return int(subject)
    except (TypeError, ValueError):
        return None
