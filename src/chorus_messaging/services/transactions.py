# src/chorus_messaging/services/transactions.py
"""Transaction runner shared by every messaging operation."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from chorus_messaging.core.errors import TransientStoreFailure
from chorus_messaging.core.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: DBAPIError) -> bool:
    """Return True if ``exc`` signals an unavailable store rather than bad data."""
    return isinstance(exc, OperationalError) or bool(exc.connection_invalidated)


def run_atomic(
    db: Session,
    work: Callable[[Session], T],
    *,
    max_retries: int | None = None,
    backoff_seconds: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``work`` inside one transaction and commit it.

    Every mutation made by ``work`` commits together or not at all. Transient
    store errors roll the transaction back and re-run ``work`` from scratch
    with exponential backoff, so ``work`` must build its objects afresh on
    each call. Any other exception rolls back and propagates unchanged.

    Args:
        db: Session whose transaction is owned by this call.
        work: Callable performing reads and writes; its result is returned.
        max_retries: Retries after the first attempt. Defaults to settings.
        backoff_seconds: Initial backoff delay. Defaults to settings.
        sleep: Sleep function, replaceable in tests.

    Returns:
        Whatever ``work`` returned.

    Raises:
        TransientStoreFailure: If every attempt failed with a transient error.
    """
    retries = settings.store_max_retries if max_retries is None else max_retries
    delay = settings.store_retry_backoff_seconds if backoff_seconds is None else backoff_seconds

    attempt = 0
    while True:
        try:
            result = work(db)
            db.commit()
            return result
        except DBAPIError as exc:
            db.rollback()
            if not is_transient(exc):
                raise
            if attempt >= retries:
                logger.warning("Store unavailable after %d attempts: %s", attempt + 1, exc)
                raise TransientStoreFailure() from exc
            logger.warning(
                "Transient store failure (attempt %d/%d), retrying: %s",
                attempt + 1,
                retries + 1,
                exc,
            )
            sleep(delay * (2**attempt))
            attempt += 1
        except Exception:
            db.rollback()
            raise
