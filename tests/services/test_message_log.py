# tests/services/test_message_log.py
"""Tests for sending, streaming and mutating messages."""

from __future__ import annotations

import pytest

from chorus_messaging.core.errors import (
    Blocked,
    MessageNotFound,
    NotParticipant,
    PermissionDenied,
    ValidationError,
)
from chorus_messaging.models import AttachmentKind, DeliveryStatus
from chorus_messaging.services.notifications import NotificationKind
from chorus_messaging.services.validation import AttachmentInput
from tests.conftest import ALICE, BOB, CAROL, DAVE


@pytest.fixture()
def direct(db_session, service):
    return service.open_direct(db_session, ALICE, BOB)


@pytest.fixture()
def group(db_session, service):
    return service.create_group(db_session, ALICE, [BOB, CAROL], "Team")


def test_send_to_recipient_creates_conversation(db_session, service) -> None:
    message = service.send_message(db_session, ALICE, recipient_id=BOB, body="  hello  ")

    assert message.body == "hello"
    assert message.delivery_status is DeliveryStatus.SENT
    assert message.order_index == 1
    entry = service.get_conversation(db_session, message.conversation_id, BOB)
    assert entry.conversation.last_message_preview == "hello"
    assert entry.conversation.last_message_id == message.id


def test_send_requires_exactly_one_target(db_session, service, direct) -> None:
    with pytest.raises(ValidationError):
        service.send_message(db_session, ALICE, body="where?")
    with pytest.raises(ValidationError):
        service.send_message(
            db_session, ALICE, conversation_id=direct.id, recipient_id=BOB, body="both"
        )


def test_empty_message_is_rejected_before_any_write(db_session, service, direct) -> None:
    with pytest.raises(ValidationError):
        service.send_message(db_session, ALICE, conversation_id=direct.id, body="   ")

    page = service.stream_messages(db_session, direct.id, ALICE)
    assert page.messages == []


def test_non_participant_cannot_send(db_session, service, direct) -> None:
    with pytest.raises(NotParticipant):
        service.send_message(db_session, CAROL, conversation_id=direct.id, body="hi")


def test_order_index_is_strictly_increasing(db_session, service, direct) -> None:
    sent = [
        service.send_message(db_session, sender, conversation_id=direct.id, body=f"m{i}")
        for i, sender in enumerate([ALICE, BOB, ALICE, BOB])
    ]

    assert [message.order_index for message in sent] == [1, 2, 3, 4]
    page = service.stream_messages(db_session, direct.id, BOB)
    assert [message.body for message in page.messages] == ["m0", "m1", "m2", "m3"]


def test_stream_pages_with_cursor(db_session, service, direct) -> None:
    for i in range(5):
        service.send_message(db_session, ALICE, conversation_id=direct.id, body=f"m{i}")

    first = service.stream_messages(db_session, direct.id, BOB, limit=2)
    second = service.stream_messages(db_session, direct.id, BOB, after=first.next_cursor, limit=2)
    third = service.stream_messages(db_session, direct.id, BOB, after=second.next_cursor, limit=2)

    assert [m.body for m in first.messages] == ["m0", "m1"]
    assert [m.body for m in second.messages] == ["m2", "m3"]
    assert [m.body for m in third.messages] == ["m4"]
    assert third.next_cursor is None


def test_stream_requires_participant(db_session, service, direct) -> None:
    with pytest.raises(NotParticipant):
        service.stream_messages(db_session, direct.id, CAROL)


def test_client_message_id_makes_send_idempotent(db_session, service, direct, notifier) -> None:
    first = service.send_message(
        db_session, ALICE, conversation_id=direct.id, body="once", client_message_id="c-1"
    )
    again = service.send_message(
        db_session, ALICE, conversation_id=direct.id, body="once", client_message_id="c-1"
    )

    assert first.id == again.id == "c-1"
    assert len(service.stream_messages(db_session, direct.id, BOB).messages) == 1
    assert service.get_conversation(db_session, direct.id, BOB).state.unread_count == 1
    assert len(notifier.for_recipient(BOB)) == 1


def test_client_message_id_cannot_be_reused_by_another_sender(
    db_session, service, direct
) -> None:
    service.send_message(
        db_session, ALICE, conversation_id=direct.id, body="mine", client_message_id="c-2"
    )

    with pytest.raises(ValidationError):
        service.send_message(
            db_session, BOB, conversation_id=direct.id, body="mine too", client_message_id="c-2"
        )


def test_attachment_only_message_preview(db_session, service, direct) -> None:
    attachment = AttachmentInput(kind=AttachmentKind.IMAGE, url="/files/abc", size_bytes=10)

    message = service.send_message(
        db_session, ALICE, conversation_id=direct.id, attachments=[attachment]
    )

    assert message.body is None
    assert [a.url for a in message.attachments] == ["/files/abc"]
    entry = service.get_conversation(db_session, direct.id, BOB)
    assert entry.conversation.last_message_preview == "[image]"


def test_reply_must_target_same_conversation(db_session, service, direct, group) -> None:
    original = service.send_message(db_session, ALICE, conversation_id=direct.id, body="q")
    reply = service.send_message(
        db_session, BOB, conversation_id=direct.id, body="a", reply_to_message_id=original.id
    )
    assert reply.reply_to_message_id == original.id

    with pytest.raises(ValidationError):
        service.send_message(
            db_session,
            ALICE,
            conversation_id=group.id,
            body="cross",
            reply_to_message_id=original.id,
        )


def test_mentions_keep_participants_only(db_session, service, group, notifier) -> None:
    service.set_muted(db_session, group.id, CAROL, True)
    service.set_muted(db_session, group.id, BOB, True)

    message = service.send_message(
        db_session,
        ALICE,
        conversation_id=group.id,
        body="@carol look",
        mentioned_user_ids=[CAROL, DAVE, ALICE],
    )

    assert message.mentioned_user_ids == {CAROL}
    kinds = {event.recipient_id: event.kind for event in notifier.events}
    assert kinds == {CAROL: NotificationKind.MENTION}


def test_link_previews_are_extracted_and_refreshed_on_edit(db_session, service, direct) -> None:
    message = service.send_message(
        db_session,
        ALICE,
        conversation_id=direct.id,
        body="see https://example.com/a and https://example.com/b.",
    )
    assert [p.url for p in message.link_previews] == [
        "https://example.com/a",
        "https://example.com/b",
    ]

    edited = service.edit_message(db_session, message.id, ALICE, "now https://example.org")
    assert [p.url for p in edited.link_previews] == ["https://example.org"]
    assert edited.edited_at is not None


def test_only_sender_can_edit(db_session, service, direct) -> None:
    message = service.send_message(db_session, ALICE, conversation_id=direct.id, body="draft")

    with pytest.raises(PermissionDenied):
        service.edit_message(db_session, message.id, BOB, "hijacked")
    with pytest.raises(ValidationError):
        service.edit_message(db_session, message.id, ALICE, "  ")


def test_edit_of_latest_message_refreshes_preview(db_session, service, direct) -> None:
    message = service.send_message(db_session, ALICE, conversation_id=direct.id, body="tpyo")

    service.edit_message(db_session, message.id, ALICE, "typo")

    entry = service.get_conversation(db_session, direct.id, BOB)
    assert entry.conversation.last_message_preview == "typo"


def test_reactions_are_sets_per_emoji(db_session, service, group) -> None:
    message = service.send_message(db_session, ALICE, conversation_id=group.id, body="lunch?")

    service.react_to_message(db_session, message.id, BOB, "👍")
    service.react_to_message(db_session, message.id, BOB, "👍")
    service.react_to_message(db_session, message.id, CAROL, "👍")
    reacted = service.react_to_message(db_session, message.id, CAROL, "🎉")
    assert reacted.reaction_map == {"👍": {BOB, CAROL}, "🎉": {CAROL}}

    removed = service.unreact(db_session, message.id, CAROL, "👍")
    assert removed.reaction_map == {"👍": {BOB}, "🎉": {CAROL}}


def test_reaction_requires_participant(db_session, service, direct) -> None:
    message = service.send_message(db_session, ALICE, conversation_id=direct.id, body="hi")

    with pytest.raises(NotParticipant):
        service.react_to_message(db_session, message.id, CAROL, "👍")
    with pytest.raises(MessageNotFound):
        service.react_to_message(db_session, "missing", ALICE, "👍")


def test_any_participant_can_toggle_pin(db_session, service, group) -> None:
    message = service.send_message(db_session, ALICE, conversation_id=group.id, body="rules")

    assert service.pin_message(db_session, message.id, CAROL).is_pinned
    assert [m.id for m in service.list_pinned_messages(db_session, group.id, BOB)] == [message.id]
    assert not service.pin_message(db_session, message.id, BOB).is_pinned
    assert service.list_pinned_messages(db_session, group.id, BOB) == []


def test_schedule_disappearance_is_sender_only(db_session, service, direct, clock) -> None:
    message = service.send_message(db_session, ALICE, conversation_id=direct.id, body="soon")

    with pytest.raises(PermissionDenied):
        service.schedule_disappearance(db_session, message.id, BOB, 10)
    with pytest.raises(ValidationError):
        service.schedule_disappearance(db_session, message.id, ALICE, 0)

    scheduled = service.schedule_disappearance(db_session, message.id, ALICE, 10)
    assert (scheduled.disappear_at - clock()).total_seconds() == 10


def test_delete_is_sender_only_and_fixes_preview(db_session, service, direct) -> None:
    first = service.send_message(db_session, ALICE, conversation_id=direct.id, body="first")
    second = service.send_message(db_session, ALICE, conversation_id=direct.id, body="second")

    with pytest.raises(PermissionDenied):
        service.delete_message(db_session, second.id, BOB)

    service.delete_message(db_session, second.id, ALICE)

    entry = service.get_conversation(db_session, direct.id, BOB)
    assert entry.conversation.last_message_id == first.id
    assert entry.conversation.last_message_preview == "first"
    assert entry.state.unread_count == 1
    assert [m.id for m in service.stream_messages(db_session, direct.id, BOB).messages] == [
        first.id
    ]


def test_deleting_only_message_clears_preview(db_session, service, direct) -> None:
    message = service.send_message(db_session, ALICE, conversation_id=direct.id, body="oops")

    service.delete_message(db_session, message.id, ALICE)

    entry = service.get_conversation(db_session, direct.id, ALICE)
    assert entry.conversation.last_message_id is None
    assert entry.conversation.last_message_preview is None
    with pytest.raises(MessageNotFound):
        service.delete_message(db_session, message.id, ALICE)


def test_message_notifications_skip_sender_and_muted(db_session, service, group, notifier) -> None:
    service.set_muted(db_session, group.id, CAROL, True)

    message = service.send_message(db_session, ALICE, conversation_id=group.id, body="ping")

    assert [(e.recipient_id, e.kind) for e in notifier.events] == [
        (BOB, NotificationKind.MESSAGE)
    ]
    assert notifier.events[0].message_id == message.id
    assert notifier.events[0].preview_text == "ping"


def test_notification_failure_does_not_roll_back_send(db_session, service, direct, mocker) -> None:
    mocker.patch.object(service.notifier, "dispatch", side_effect=RuntimeError("push down"))

    message = service.send_message(db_session, ALICE, conversation_id=direct.id, body="still here")

    page = service.stream_messages(db_session, direct.id, BOB)
    assert [m.id for m in page.messages] == [message.id]


def test_forward_copies_body_and_attachments(db_session, service, direct, group) -> None:
    attachment = AttachmentInput(
        kind=AttachmentKind.IMAGE, url="/files/cat", content_type="image/png", size_bytes=42
    )
    original = service.send_message(
        db_session, BOB, conversation_id=direct.id, body="look at this", attachments=[attachment]
    )
    service.react_to_message(db_session, original.id, ALICE, "👍")

    forwarded = service.forward_message(db_session, ALICE, original.id, conversation_id=group.id)

    assert forwarded.id != original.id
    assert forwarded.conversation_id == group.id
    assert forwarded.sender_id == ALICE
    assert forwarded.body == "look at this"
    assert [(a.kind, a.url, a.size_bytes) for a in forwarded.attachments] == [
        (AttachmentKind.IMAGE, "/files/cat", 42)
    ]
    assert forwarded.reaction_map == {}
    assert service.recount_unread(db_session, group.id) == {ALICE: 0, BOB: 1, CAROL: 1}
    assert service.get_conversation(db_session, group.id, CAROL).state.unread_count == 1


def test_forward_to_recipient_goes_through_block_check(db_session, service, direct, block) -> None:
    original = service.send_message(db_session, BOB, conversation_id=direct.id, body="pass it on")
    block(DAVE, ALICE)

    with pytest.raises(Blocked):
        service.forward_message(db_session, ALICE, original.id, recipient_id=DAVE)

    forwarded = service.forward_message(db_session, ALICE, original.id, recipient_id=CAROL)
    assert forwarded.body == "pass it on"
    assert service.get_conversation(db_session, forwarded.conversation_id, CAROL)


def test_forward_requires_access_to_the_source(db_session, service, direct, group, clock) -> None:
    original = service.send_message(db_session, ALICE, conversation_id=direct.id, body="private")

    with pytest.raises(NotParticipant):
        service.forward_message(db_session, CAROL, original.id, conversation_id=group.id)
    with pytest.raises(MessageNotFound):
        service.forward_message(db_session, ALICE, "missing", conversation_id=group.id)

    fleeting = service.send_message(db_session, ALICE, conversation_id=direct.id, body="soon gone")
    service.schedule_disappearance(db_session, fleeting.id, ALICE, 5)
    clock.advance(5)
    with pytest.raises(MessageNotFound):
        service.forward_message(db_session, ALICE, fleeting.id, conversation_id=group.id)


def test_forward_is_idempotent_on_client_message_id(db_session, service, direct, group) -> None:
    original = service.send_message(db_session, BOB, conversation_id=direct.id, body="once")

    first = service.forward_message(
        db_session, ALICE, original.id, conversation_id=group.id, client_message_id="fwd-1"
    )
    again = service.forward_message(
        db_session, ALICE, original.id, conversation_id=group.id, client_message_id="fwd-1"
    )

    assert first.id == again.id == "fwd-1"
    assert service.recount_unread(db_session, group.id)[BOB] == 1
