# tests/services/test_presence.py
"""Tests for typing indicators and the send rate limiter."""

from __future__ import annotations

import json

import pytest
import redis

from chorus_messaging.core.errors import NotParticipant, RateLimited
from chorus_messaging.services.presence import TypingChannel, typing_channel, typing_key
from chorus_messaging.services.rate_limit import SendRateLimiter
from tests.conftest import ALICE, BOB, CAROL


@pytest.fixture()
def fake_redis(mocker):
    return mocker.MagicMock(spec=redis.Redis)


def test_set_typing_sets_ttl_key_and_publishes(fake_redis) -> None:
    channel = TypingChannel(fake_redis, ttl_seconds=5)

    channel.set_typing("dm_1", ALICE, True)

    fake_redis.setex.assert_called_once_with(typing_key("dm_1", ALICE), 5, "1")
    name, payload = fake_redis.publish.call_args.args
    assert name == typing_channel("dm_1")
    assert json.loads(payload) == {"conversation_id": "dm_1", "user_id": ALICE, "is_typing": True}


def test_stop_typing_deletes_key(fake_redis) -> None:
    TypingChannel(fake_redis).set_typing("dm_1", ALICE, False)

    fake_redis.delete.assert_called_once_with(typing_key("dm_1", ALICE))
    fake_redis.setex.assert_not_called()


def test_typing_errors_are_swallowed(fake_redis) -> None:
    fake_redis.setex.side_effect = redis.ConnectionError("down")
    fake_redis.scan_iter.side_effect = redis.ConnectionError("down")
    channel = TypingChannel(fake_redis)

    channel.set_typing("dm_1", ALICE, True)

    assert channel.typing_users("dm_1") == []


def test_typing_users_strips_prefix(fake_redis) -> None:
    fake_redis.scan_iter.return_value = iter(
        [typing_key("dm_1", BOB), typing_key("dm_1", ALICE).encode()]
    )

    assert TypingChannel(fake_redis).typing_users("dm_1") == [ALICE, BOB]


def test_service_typing_requires_participant_and_hides_caller(
    db_session, service, fake_redis
) -> None:
    conversation = service.open_direct(db_session, ALICE, BOB)
    service.typing = TypingChannel(fake_redis)
    fake_redis.scan_iter.return_value = iter(
        [typing_key(conversation.id, ALICE), typing_key(conversation.id, BOB)]
    )

    service.set_typing(db_session, conversation.id, ALICE, True)
    assert service.typing_users(db_session, conversation.id, BOB) == [ALICE]
    with pytest.raises(NotParticipant):
        service.set_typing(db_session, conversation.id, CAROL, True)


def test_rate_limiter_counts_per_window(fake_redis) -> None:
    pipe = fake_redis.pipeline.return_value
    pipe.execute.side_effect = [[1, True], [2, True], [3, True]]
    limiter = SendRateLimiter(fake_redis, limit=2, clock=lambda: 125.0)

    limiter.check(ALICE)
    limiter.check(ALICE)
    with pytest.raises(RateLimited):
        limiter.check(ALICE)

    pipe.incr.assert_called_with(f"send_rate:{ALICE}:2")
    pipe.expire.assert_called_with(f"send_rate:{ALICE}:2", 120)


def test_rate_limiter_fails_open(fake_redis) -> None:
    fake_redis.pipeline.return_value.execute.side_effect = redis.ConnectionError("down")

    SendRateLimiter(fake_redis, limit=1).check(ALICE)


def test_rate_limiter_disabled_without_client() -> None:
    limiter = SendRateLimiter(None, limit=1)
    for _ in range(5):
        limiter.check(ALICE)


def test_rate_limited_send_writes_nothing(db_session, service, fake_redis) -> None:
    conversation = service.open_direct(db_session, ALICE, BOB)
    fake_redis.pipeline.return_value.execute.return_value = [99, True]
    service.rate_limiter = SendRateLimiter(fake_redis, limit=5)

    with pytest.raises(RateLimited):
        service.send_message(db_session, ALICE, conversation_id=conversation.id, body="flood")

    assert service.stream_messages(db_session, conversation.id, BOB).messages == []
