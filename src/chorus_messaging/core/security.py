"""JWT helpers for identifying the calling user.

Tokens are minted by the identity subsystem; this service only verifies them
and reads the ``sub`` claim as the opaque user id.
"""
from __future__ import annotations

from datetime import timedelta

from jose import JWTError, jwt

from chorus_messaging.core.settings import settings
from chorus_messaging.db.time import utcnow


def create_access_token(user_id: str, expires_minutes: int | None = None) -> str:
    """Return a signed access token for ``user_id``.

    Used by tooling and tests; production tokens come from the identity service.
    """
    minutes = settings.access_token_expire_minutes if expires_minutes is None else expires_minutes
    payload = {"sub": user_id, "exp": utcnow() + timedelta(minutes=minutes)}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> str:
    """Return the user id carried by ``token``.

    Raises:
        JWTError: If the token is malformed, expired or has no subject.
    """
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    subject = payload.get("sub")
    if not subject or not isinstance(subject, str):
        raise JWTError("Token has no subject")
    return subject
