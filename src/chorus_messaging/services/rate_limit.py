# src/chorus_messaging/services/rate_limit.py
"""Per-sender send throttling using fixed one-minute Redis windows."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

import redis

from chorus_messaging.core.errors import RateLimited
from chorus_messaging.core.settings import settings

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60


class SendRateLimiter:
    """Count sends per sender per window with ``INCR`` + ``EXPIRE``.

    If Redis is unreachable the limiter lets the send through.
    """

    def __init__(
        self,
        client: redis.Redis | None,
        limit: int | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = client
        self.limit = settings.send_rate_limit_per_minute if limit is None else limit
        self.clock = clock

    def check(self, sender_id: str) -> None:
        """Count one send for ``sender_id``.

        Raises:
            RateLimited: If the sender exceeded the allowance for this window.
        """
        if self._redis is None or self.limit <= 0:
            return
        window = int(self.clock() // WINDOW_SECONDS)
        key = f"send_rate:{sender_id}:{window}"
        try:
            pipe = self._redis.pipeline()
            pipe.incr(key)
            pipe.expire(key, WINDOW_SECONDS * 2)
            count, _ = pipe.execute()
        except redis.RedisError as exc:
            logger.warning("Send rate limiter unavailable, allowing send: %s", exc)
            return
        if int(count) > self.limit:
            logger.info("Sender %s hit the send rate limit", sender_id)
            raise RateLimited()
