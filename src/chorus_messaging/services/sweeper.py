# src/chorus_messaging/services/sweeper.py
"""Background deletion of messages whose disappearing timer has elapsed.

Each expired message is removed through the same counter-decrement path as an
explicit delete. Failures for individual messages are logged and left for the
next tick, so a message may vanish late but never early.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chorus_messaging.core.errors import MessagingError
from chorus_messaging.core.settings import settings
from chorus_messaging.db.session import SessionLocal

from .messaging import MessagingService

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Outcome of a single sweep pass."""

    scanned: int = 0
    deleted: int = 0
    failed: int = 0
    counters_decremented: int = 0


class EphemeralSweeper:
    """Periodically deletes expired messages.

    Mirrors the other background workers: ``start`` schedules ``_run`` on the
    running loop, ``stop`` signals it and waits for the current pass to end.
    """

    def __init__(
        self,
        service: MessagingService,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        db_session: Session | None = None,
        interval_seconds: float | None = None,
        batch_size: int | None = None,
        clock: Callable[[], datetime] | None = None,
        enabled: bool | None = None,
    ) -> None:
        """Initialize the sweeper.

        Args:
            service: Messaging facade performing the deletions.
            session_factory: Creates a session per pass when ``db_session`` is None.
            db_session: Optional session to reuse for every pass.
            interval_seconds: Delay between passes. Defaults to settings.
            batch_size: Maximum messages examined per pass. Defaults to settings.
            clock: Source of "now". Defaults to the service clock.
            enabled: Whether ``start`` launches the loop. Defaults to settings.
        """
        self.service = service
        self._session_factory = session_factory
        self._db_session = db_session
        self.interval_seconds = (
            settings.sweeper_interval_seconds if interval_seconds is None else interval_seconds
        )
        self.batch_size = settings.sweeper_batch_size if batch_size is None else batch_size
        self.clock = clock or service.clock
        self.enabled = settings.sweeper_enabled if enabled is None else enabled
        self.last_report: SweepReport | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        """Start the background sweep loop."""

        if not self.enabled:
            return

        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background sweep loop."""

        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        interval = max(0.01, float(self.interval_seconds))

        while not self._stopping.is_set():
            try:
                self.last_report = await asyncio.to_thread(self.sweep_once)
            except (SQLAlchemyError, MessagingError, OSError) as e:
                logger.warning("EphemeralSweeper pass failed, retrying next tick: %s", e)
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.error(
                    "EphemeralSweeper encountered data processing error: %s", e, exc_info=True
                )

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except TimeoutError:
                continue

    def sweep_once(self) -> SweepReport:
        """Run one pass and return what it did."""
        if self._db_session is not None:
            return self._sweep(self._db_session)
        with self._session_factory() as db:
            return self._sweep(db)

    def _sweep(self, db: Session) -> SweepReport:
        now = self.clock()
        report = SweepReport()
        expired = self.service.expired_message_ids(db, now, self.batch_size)
        report.scanned = len(expired)

        for message_id in expired:
            try:
                decremented = self.service.expire_message(db, message_id, now)
            except Exception as e:
                report.failed += 1
                logger.error("Failed to expire message %s: %s", message_id, e, exc_info=True)
                continue
            if decremented is None:
                continue
            report.deleted += 1
            report.counters_decremented += decremented

        if report.scanned:
            logger.info(
                "Sweep removed %d of %d expired messages (%d failed, %d counters decremented)",
                report.deleted,
                report.scanned,
                report.failed,
                report.counters_decremented,
            )
        return report
