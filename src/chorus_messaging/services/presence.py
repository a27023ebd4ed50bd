# src/chorus_messaging/services/presence.py
"""Best-effort typing indicators over Redis. Nothing here is persisted."""

from __future__ import annotations

import json
import logging

import redis

from chorus_messaging.core.settings import settings

logger = logging.getLogger(__name__)


def typing_key(conversation_id: str, user_id: str) -> str:
    return f"typing:{conversation_id}:{user_id}"


def typing_channel(conversation_id: str) -> str:
    return f"typing:{conversation_id}"


class TypingChannel:
    """Publishes typing state with a short TTL so stale indicators expire on their own."""

    def __init__(self, client: redis.Redis | None, ttl_seconds: int | None = None) -> None:
        self._redis = client
        self.ttl_seconds = settings.typing_ttl_seconds if ttl_seconds is None else ttl_seconds

    def set_typing(self, conversation_id: str, user_id: str, is_typing: bool) -> None:
        if self._redis is None:
            return
        key = typing_key(conversation_id, user_id)
        payload = json.dumps(
            {"conversation_id": conversation_id, "user_id": user_id, "is_typing": is_typing}
        )
        try:
            if is_typing:
                self._redis.setex(key, self.ttl_seconds, "1")
            else:
                self._redis.delete(key)
            self._redis.publish(typing_channel(conversation_id), payload)
        except redis.RedisError as exc:
            logger.warning("Typing signal for %s dropped: %s", conversation_id, exc)

    def typing_users(self, conversation_id: str) -> list[str]:
        if self._redis is None:
            return []
        prefix = typing_key(conversation_id, "")
        try:
            keys = list(self._redis.scan_iter(match=f"{prefix}*"))
        except redis.RedisError as exc:
            logger.warning("Could not read typing state for %s: %s", conversation_id, exc)
            return []
        users = []
        for key in keys:
            text = key.decode() if isinstance(key, bytes) else str(key)
            users.append(text[len(prefix):])
        return sorted(users)


def get_redis_client() -> redis.Redis:
    """Return a Redis client for the configured URL; connections open lazily."""
    return redis.Redis.from_url(settings.redis_url, decode_responses=True)
