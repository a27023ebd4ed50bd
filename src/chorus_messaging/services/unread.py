# src/chorus_messaging/services/unread.py
"""Incremental unread counters and delivery status transitions.

Counters are only ever changed with SQL-side ``unread_count = unread_count +/- 1``
updates or reset under the participant's row lock, never by writing back a
value computed in Python. ``recount`` exists to verify the incremental path.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from chorus_messaging.core.errors import NotParticipant
from chorus_messaging.db.time import utcnow
from chorus_messaging.models import (
    Conversation,
    ConversationParticipant,
    DeliveryStatus,
    Message,
    MessageDelivery,
    MessageRead,
)

logger = logging.getLogger(__name__)


class UnreadSynchronizer:
    """Keeps ``unread_count`` equal to the messages a participant has not read."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self.clock = clock

    def record_append(self, db: Session, conversation: Conversation, message: Message) -> int:
        """Increment the counter of every participant other than the sender."""
        stmt = (
            update(ConversationParticipant)
            .where(
                ConversationParticipant.conversation_id == conversation.id,
                ConversationParticipant.user_id != message.sender_id,
            )
            .values(unread_count=ConversationParticipant.unread_count + 1)
            .execution_options(synchronize_session=False)
        )
        count = db.execute(stmt).rowcount
        self._expire_counters(db, conversation)
        return count

    def _expire_counters(self, db: Session, conversation: Conversation) -> None:
        for participant in conversation.participants:
            db.expire(participant, ["unread_count"])

    def _lock_participant(
        self, db: Session, conversation_id: str, user_id: str
    ) -> ConversationParticipant:
        stmt = (
            select(ConversationParticipant)
            .where(
                ConversationParticipant.conversation_id == conversation_id,
                ConversationParticipant.user_id == user_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        participant = db.execute(stmt).scalar_one_or_none()
        if participant is None:
            raise NotParticipant()
        return participant

    def mark_read(self, db: Session, conversation: Conversation, user_id: str) -> list[Message]:
        """Add ``user_id`` to ``readBy`` of every unread message and reset the counter.

        The participant row stays locked from the scan until commit, so a
        concurrent append either lands before the scan and is marked read, or
        waits and increments the freshly reset counter.

        Returns:
            Messages that were newly marked read.
        """
        self._lock_participant(db, conversation.id, user_id)
        now = self.clock()

        stmt = (
            select(Message)
            .where(
                Message.conversation_id == conversation.id,
                Message.sender_id != user_id,
                ~Message.reads.any(MessageRead.user_id == user_id),
            )
            .order_by(Message.order_index)
            .execution_options(populate_existing=True)
        )
        unread = list(db.execute(stmt).scalars())
        for message in unread:
            message.reads.append(MessageRead(user_id=user_id, read_at=now))
            if user_id not in message.delivered_to:
                message.deliveries.append(MessageDelivery(user_id=user_id, delivered_at=now))
            self._advance_status(conversation, message)

        db.execute(
            update(ConversationParticipant)
            .where(
                ConversationParticipant.conversation_id == conversation.id,
                ConversationParticipant.user_id == user_id,
            )
            .values(unread_count=0)
            .execution_options(synchronize_session=False)
        )
        self._expire_counters(db, conversation)
        db.flush()
        if unread:
            logger.debug(
                "Marked %d messages read for %s in %s", len(unread), user_id, conversation.id
            )
        return unread

    def mark_delivered(
        self, db: Session, conversation: Conversation, user_id: str
    ) -> list[Message]:
        """Record delivery of every message ``user_id`` has not acknowledged yet.

        Returns:
            Messages whose scalar status advanced to ``delivered``.
        """
        self._lock_participant(db, conversation.id, user_id)
        now = self.clock()

        stmt = (
            select(Message)
            .where(
                Message.conversation_id == conversation.id,
                Message.sender_id != user_id,
                ~Message.deliveries.any(MessageDelivery.user_id == user_id),
            )
            .order_by(Message.order_index)
            .execution_options(populate_existing=True)
        )
        advanced: list[Message] = []
        for message in db.execute(stmt).scalars():
            message.deliveries.append(MessageDelivery(user_id=user_id, delivered_at=now))
            before = message.delivery_status
            self._advance_status(conversation, message)
            if before is not message.delivery_status:
                advanced.append(message)
        db.flush()
        return advanced

    def record_removal(self, db: Session, conversation: Conversation, message: Message) -> int:
        """Decrement the counter of every participant who had not read ``message``.

        Must run before the message row is deleted. Participant rows are locked
        in user id order so that concurrent removals cannot deadlock.

        Returns:
            Number of counters decremented.
        """
        db.execute(
            select(ConversationParticipant.user_id)
            .where(ConversationParticipant.conversation_id == conversation.id)
            .order_by(ConversationParticipant.user_id)
            .with_for_update()
        ).all()
        readers = set(
            db.execute(
                select(MessageRead.user_id).where(MessageRead.message_id == message.id)
            ).scalars()
        )
        stmt = (
            update(ConversationParticipant)
            .where(
                ConversationParticipant.conversation_id == conversation.id,
                ConversationParticipant.user_id != message.sender_id,
                ConversationParticipant.unread_count > 0,
            )
            .values(unread_count=ConversationParticipant.unread_count - 1)
            .execution_options(synchronize_session=False)
        )
        if readers:
            stmt = stmt.where(ConversationParticipant.user_id.not_in(readers))
        count = db.execute(stmt).rowcount
        self._expire_counters(db, conversation)
        return count

    def recount(self, db: Session, conversation: Conversation) -> dict[str, int]:
        """Return the full-scan unread count for every current participant."""
        counts: dict[str, int] = {}
        for user_id in conversation.participant_ids:
            stmt = select(func.count(Message.id)).where(
                Message.conversation_id == conversation.id,
                Message.sender_id != user_id,
                ~Message.reads.any(MessageRead.user_id == user_id),
            )
            counts[user_id] = int(db.execute(stmt).scalar_one())
        return counts

    def _advance_status(self, conversation: Conversation, message: Message) -> None:
        """Move the scalar status forward to the minimum across other participants."""
        current = message.delivery_status
        if current in (DeliveryStatus.SENDING, DeliveryStatus.FAILED):
            return
        others = [uid for uid in conversation.participant_ids if uid != message.sender_id]
        if not others:
            return

        read_by = message.read_by
        delivered_to = message.delivered_to | read_by
        if all(uid in read_by for uid in others):
            target = DeliveryStatus.READ
        elif all(uid in delivered_to for uid in others):
            target = DeliveryStatus.DELIVERED
        else:
            return
        if target.rank > current.rank:
            message.delivery_status = current.transition(target)
