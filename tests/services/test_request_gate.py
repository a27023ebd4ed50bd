# tests/services/test_request_gate.py
"""Tests for message requests between users who do not allow each other outright."""

from __future__ import annotations

import pytest

from chorus_messaging.core.errors import (
    Blocked,
    ConversationNotFound,
    InvalidTransition,
    PermissionDenied,
    RequestLimitExceeded,
    ValidationError,
)
from chorus_messaging.models import ConversationStatus, PrivacySetting
from chorus_messaging.services.notifications import NotificationKind
from chorus_messaging.services.request_gate import RequestDecision
from tests.conftest import ALICE, BOB, CAROL


@pytest.fixture()
def request_from_bob(db_session, service, set_privacy):
    """Alice only accepts followers; Bob sends her a first message."""
    set_privacy(ALICE, PrivacySetting.FOLLOWERS)
    return service.send_message(db_session, BOB, recipient_id=ALICE, body="hi")


def test_requester_gets_exactly_one_message(db_session, service, request_from_bob) -> None:
    conversation_id = request_from_bob.conversation_id
    entry = service.get_conversation(db_session, conversation_id, BOB)
    assert entry.conversation.status is ConversationStatus.PENDING
    assert entry.conversation.request_messages_sent == 1

    with pytest.raises(RequestLimitExceeded):
        service.send_message(db_session, BOB, conversation_id=conversation_id, body="hello??")
    with pytest.raises(RequestLimitExceeded):
        service.send_message(db_session, BOB, recipient_id=ALICE, body="anyone?")

    page = service.stream_messages(db_session, conversation_id, ALICE)
    assert [m.body for m in page.messages] == ["hi"]


def test_recipient_reply_accepts_and_lifts_limit(
    db_session, service, notifier, request_from_bob
) -> None:
    conversation_id = request_from_bob.conversation_id

    reply = service.send_message(db_session, ALICE, conversation_id=conversation_id, body="hello")

    entry = service.get_conversation(db_session, conversation_id, ALICE)
    assert entry.conversation.status is ConversationStatus.ACCEPTED
    assert entry.conversation.accepted_at is not None
    accepted = [e for e in notifier.events if e.kind is NotificationKind.REQUEST_ACCEPTED]
    assert [(e.recipient_id, e.message_id) for e in accepted] == [(BOB, reply.id)]

    for body in ("great", "talk soon"):
        service.send_message(db_session, BOB, conversation_id=conversation_id, body=body)
    page = service.stream_messages(db_session, conversation_id, ALICE)
    assert [m.body for m in page.messages] == ["hi", "hello", "great", "talk soon"]


def test_pending_request_is_listed_for_recipient(
    db_session, service, clock, request_from_bob
) -> None:
    requests = service.list_requests(db_session, ALICE)

    assert len(requests) == 1
    view = requests[0]
    assert view.conversation_id == request_from_bob.conversation_id
    assert view.requester_id == BOB
    assert view.recipient_id == ALICE
    assert view.first_message_preview == "hi"
    assert not view.acknowledged_by_recipient
    assert service.list_requests(db_session, BOB) == []

    service.mark_request_seen(db_session, view.conversation_id, ALICE)
    assert service.list_requests(db_session, ALICE)[0].acknowledged_by_recipient


def test_requester_cannot_acknowledge_or_respond(db_session, service, request_from_bob) -> None:
    conversation_id = request_from_bob.conversation_id

    with pytest.raises(PermissionDenied):
        service.mark_request_seen(db_session, conversation_id, BOB)
    with pytest.raises(PermissionDenied):
        service.respond_to_request(db_session, conversation_id, BOB, RequestDecision.ACCEPT)


def test_accept_request(db_session, service, request_from_bob) -> None:
    conversation_id = request_from_bob.conversation_id

    accepted = service.respond_to_request(
        db_session, conversation_id, ALICE, RequestDecision.ACCEPT
    )

    assert accepted is not None
    assert accepted.status is ConversationStatus.ACCEPTED
    assert service.list_requests(db_session, ALICE) == []
    assert [e.conversation.id for e in service.list_conversations(db_session, ALICE)] == [
        conversation_id
    ]
    service.send_message(db_session, BOB, conversation_id=conversation_id, body="thanks!")

    again = service.respond_to_request(db_session, conversation_id, ALICE, RequestDecision.ACCEPT)
    assert again is not None
    with pytest.raises(InvalidTransition):
        service.respond_to_request(db_session, conversation_id, ALICE, RequestDecision.DECLINE)


def test_decline_deletes_conversation_and_messages(db_session, service, request_from_bob) -> None:
    conversation_id = request_from_bob.conversation_id
    message_id = request_from_bob.id

    result = service.respond_to_request(
        db_session, conversation_id, ALICE, RequestDecision.DECLINE
    )

    assert result is None
    with pytest.raises(ConversationNotFound):
        service.get_conversation(db_session, conversation_id, BOB)
    assert service.log.find(db_session, message_id) is None
    db_session.commit()

    # A decline is not a block: Bob may request again.
    fresh = service.send_message(db_session, BOB, recipient_id=ALICE, body="sorry, me again")
    assert fresh.conversation_id == conversation_id
    assert fresh.order_index == 1


def test_block_deletes_conversation_and_blocks_requester(
    db_session, service, identity, request_from_bob
) -> None:
    conversation_id = request_from_bob.conversation_id

    assert (
        service.respond_to_request(db_session, conversation_id, ALICE, RequestDecision.BLOCK)
        is None
    )

    assert identity.is_blocked(db_session, ALICE, BOB)
    with pytest.raises(Blocked):
        service.send_message(db_session, BOB, recipient_id=ALICE, body="let me in")


def test_blocking_a_requester_removes_their_pending_request(
    db_session, service, identity, request_from_bob
) -> None:
    conversation_id = request_from_bob.conversation_id
    message_id = request_from_bob.id
    assert [view.requester_id for view in service.list_requests(db_session, ALICE)] == [BOB]

    service.block_user(db_session, ALICE, BOB)

    assert identity.is_blocked(db_session, ALICE, BOB)
    assert service.list_requests(db_session, ALICE) == []
    with pytest.raises(ConversationNotFound):
        service.get_conversation(db_session, conversation_id, ALICE)
    assert service.log.find(db_session, message_id) is None
    db_session.commit()


def test_blocking_keeps_a_request_the_blocker_sent(db_session, service, set_privacy) -> None:
    set_privacy(BOB, PrivacySetting.FOLLOWERS)
    sent = service.send_message(db_session, ALICE, recipient_id=BOB, body="hello bob")

    service.block_user(db_session, ALICE, BOB)

    entry = service.get_conversation(db_session, sent.conversation_id, ALICE)
    assert entry.conversation.status is ConversationStatus.PENDING


def test_unblock_lets_the_requester_ask_again(
    db_session, service, identity, request_from_bob
) -> None:
    service.block_user(db_session, ALICE, BOB)
    with pytest.raises(Blocked):
        service.send_message(db_session, BOB, recipient_id=ALICE, body="hello?")

    service.unblock_user(db_session, ALICE, BOB)

    assert not identity.is_blocked(db_session, ALICE, BOB)
    again = service.send_message(db_session, BOB, recipient_id=ALICE, body="sorry")
    assert again.order_index == 1
    assert [view.requester_id for view in service.list_requests(db_session, ALICE)] == [BOB]
    with pytest.raises(ValidationError):
        service.unblock_user(db_session, ALICE, ALICE)


def test_groups_are_never_requests(db_session, service) -> None:
    group = service.create_group(db_session, ALICE, [BOB, CAROL], "Team")

    with pytest.raises(InvalidTransition):
        service.respond_to_request(db_session, group.id, BOB, RequestDecision.ACCEPT)
    for sender in (BOB, BOB, CAROL):
        service.send_message(db_session, sender, conversation_id=group.id, body="free to talk")


def test_empty_pending_conversation_is_not_listed(db_session, service, set_privacy) -> None:
    set_privacy(ALICE, PrivacySetting.FOLLOWERS)
    service.open_direct(db_session, BOB, ALICE)

    assert service.list_requests(db_session, ALICE) == []
