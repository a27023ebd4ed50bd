# src/chorus_messaging/scripts/sweep.py
"""Run the ephemeral message sweeper from cron or a shell.

Usage:
  python -m chorus_messaging.scripts.sweep --once
  python -m chorus_messaging.scripts.sweep --interval 60
"""

from __future__ import annotations

import argparse
import logging
import time

from sqlalchemy.exc import SQLAlchemyError

from chorus_messaging.core.errors import MessagingError
from chorus_messaging.core.settings import settings
from chorus_messaging.services.messaging import MessagingService
from chorus_messaging.services.sweeper import EphemeralSweeper

logger = logging.getLogger("chorus_messaging.sweep")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Delete messages whose timer has elapsed.")
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.sweeper_interval_seconds,
        help="Seconds between passes when running continuously",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.sweeper_batch_size,
        help="Maximum messages examined per pass",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sweeper = EphemeralSweeper(
        MessagingService(),
        interval_seconds=args.interval,
        batch_size=args.batch_size,
        enabled=True,
    )

    if args.once:
        report = sweeper.sweep_once()
        logger.info(
            "Scanned %d, deleted %d, failed %d", report.scanned, report.deleted, report.failed
        )
        return 1 if report.failed else 0

    try:
        while True:
            try:
                sweeper.sweep_once()
            except (SQLAlchemyError, MessagingError) as exc:
                logger.warning("Sweep pass failed, retrying next interval: %s", exc)
            time.sleep(args.interval)
    except KeyboardInterrupt:
        logger.info("Sweeper interrupted; exiting")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
