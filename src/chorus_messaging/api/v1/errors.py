"""Translation of messaging errors into HTTP responses."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException, status

from chorus_messaging.core.errors import (
    ConversationNotAccepted,
    InvalidTransition,
    MessagingError,
    NotFound,
    NotParticipant,
    PermissionDenied,
    RateLimited,
    TransientStoreFailure,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Checked in order; subclasses must precede their bases.
_STATUS_BY_ERROR: tuple[tuple[type[MessagingError], int], ...] = (
    (PermissionDenied, status.HTTP_403_FORBIDDEN),
    (NotParticipant, status.HTTP_403_FORBIDDEN),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (ConversationNotAccepted, status.HTTP_409_CONFLICT),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (RateLimited, status.HTTP_429_TOO_MANY_REQUESTS),
    (TransientStoreFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for(exc: MessagingError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@contextmanager
def translate_errors() -> Iterator[None]:
    """Re-raise messaging errors as ``HTTPException`` with a stable error code."""
    try:
        yield
    except MessagingError as exc:
        status_code = status_for(exc)
        detail: dict[str, object] = {"code": exc.code, "message": exc.detail}
        if isinstance(exc, TransientStoreFailure) and exc.unsent is not None:
            detail["message_id"] = exc.unsent.id
            detail["delivery_status"] = exc.unsent.status.value
        if isinstance(exc, NotParticipant):
            logger.warning("Rejected request from non-participant: %s", exc.detail)
        raise HTTPException(status_code=status_code, detail=detail) from exc
