"""Shared API dependencies for authentication and service wiring."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from chorus_messaging.core.security import decode_access_token
from chorus_messaging.db.session import get_db
from chorus_messaging.services.attachments import LocalAttachmentStore
from chorus_messaging.services.identity import SqlIdentityProvider
from chorus_messaging.services.messaging import MessagingService
from chorus_messaging.services.notifications import get_notification_dispatcher
from chorus_messaging.services.presence import TypingChannel, get_redis_client
from chorus_messaging.services.rate_limit import SendRateLimiter

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> str:
    """Return the user id carried by the bearer token.

    Raises:
        HTTPException: If the token is missing, malformed or expired.
    """
    try:
        return decode_access_token(credentials.credentials)
    except JWTError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from err


@lru_cache(maxsize=1)
def get_messaging_service() -> MessagingService:
    """Return the process-wide messaging service."""
    client = get_redis_client()
    return MessagingService(
        SqlIdentityProvider(),
        get_notification_dispatcher(),
        typing=TypingChannel(client),
        rate_limiter=SendRateLimiter(client),
    )


@lru_cache(maxsize=1)
def get_attachment_store() -> LocalAttachmentStore:
    """Return the configured attachment store."""
    return LocalAttachmentStore()


CurrentUserDep = Annotated[str, Depends(get_current_user_id)]
MessagingServiceDep = Annotated[MessagingService, Depends(get_messaging_service)]
AttachmentStoreDep = Annotated[LocalAttachmentStore, Depends(get_attachment_store)]
