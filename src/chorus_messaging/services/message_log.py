# src/chorus_messaging/services/message_log.py
"""Append-only, per-conversation ordered message log."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from chorus_messaging.core.errors import MessageNotFound, PermissionDenied, ValidationError
from chorus_messaging.db.time import utcnow
from chorus_messaging.models import (
    Conversation,
    DeliveryStatus,
    Message,
    MessageAttachment,
    MessageLinkPreview,
    MessageMention,
    MessageReaction,
)

from .validation import MessageContent, extract_links, validate_edit, validate_emoji

logger = logging.getLogger(__name__)


@dataclass
class MessageDraft:
    """A message the client authored but the log has not committed yet.

    The draft keeps its id across retries so a resend never duplicates an entry.
    """

    conversation_id: str
    sender_id: str
    content: MessageContent
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: DeliveryStatus = DeliveryStatus.SENDING
    attempts: int = 1
    error: str | None = None

    def mark_sent(self) -> None:
        if self.status is not DeliveryStatus.SENT:
            self.status = self.status.transition(DeliveryStatus.SENT)
        self.error = None

    def mark_failed(self, reason: str) -> None:
        self.status = self.status.transition(DeliveryStatus.FAILED)
        self.error = reason

    def retry(self) -> None:
        """Re-enter ``sending`` after a failure, keeping the same message id."""
        self.status = self.status.transition(DeliveryStatus.SENDING)
        self.attempts += 1
        self.error = None


class MessageLog:
    """Reads and writes message rows. Callers own the transaction."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self.clock = clock

    def find(self, db: Session, message_id: str) -> Message | None:
        stmt = (
            select(Message)
            .where(Message.id == message_id)
            .execution_options(populate_existing=True)
        )
        return db.execute(stmt).scalar_one_or_none()

    def get(self, db: Session, message_id: str) -> Message:
        message = self.find(db, message_id)
        if message is None:
            raise MessageNotFound()
        return message

    def append(self, db: Session, conversation: Conversation, draft: MessageDraft) -> Message:
        """Insert ``draft`` as the next entry of ``conversation``.

        The caller must hold the conversation row lock; the order index is
        taken from an in-database increment of ``last_order_index``.
        """
        content = draft.content
        if content.reply_to_message_id is not None:
            target = self.find(db, content.reply_to_message_id)
            if target is None or target.conversation_id != conversation.id:
                raise ValidationError("Reply target is not in this conversation")

        conversation.last_order_index = Conversation.last_order_index + 1
        db.flush()
        order_index = conversation.last_order_index

        now = self.clock()
        disappear_at = None
        if conversation.disappearing_seconds:
            disappear_at = now + timedelta(seconds=conversation.disappearing_seconds)

        participants = set(conversation.participant_ids)
        mentioned = sorted(
            user_id
            for user_id in content.mentioned_user_ids
            if user_id in participants and user_id != draft.sender_id
        )

        message = Message(
            id=draft.id,
            conversation_id=conversation.id,
            order_index=order_index,
            sender_id=draft.sender_id,
            body=content.body,
            reply_to_message_id=content.reply_to_message_id,
            delivery_status=draft.status.transition(DeliveryStatus.SENT),
            send_attempts=draft.attempts,
            created_at=now,
            disappear_at=disappear_at,
        )
        message.attachments = [
            MessageAttachment(
                position=position,
                kind=attachment.kind,
                url=attachment.url,
                content_type=attachment.content_type,
                size_bytes=attachment.size_bytes,
            )
            for position, attachment in enumerate(content.attachments)
        ]
        message.mentions = [MessageMention(user_id=user_id) for user_id in mentioned]
        message.link_previews = [
            MessageLinkPreview(position=position, url=url)
            for position, url in enumerate(extract_links(content.body))
        ]
        db.add(message)
        db.flush()
        logger.debug(
            "Appended message %s to %s at index %d", message.id, conversation.id, order_index
        )
        return message

    def add_reaction(self, db: Session, message: Message, user_id: str, emoji: str) -> Message:
        emoji = validate_emoji(emoji)
        if user_id not in message.reaction_map.get(emoji, set()):
            message.reactions.append(MessageReaction(user_id=user_id, emoji=emoji))
            db.flush()
        return message

    def remove_reaction(
        self, db: Session, message: Message, user_id: str, emoji: str
    ) -> Message:
        for reaction in list(message.reactions):
            if reaction.user_id == user_id and reaction.emoji == emoji:
                message.reactions.remove(reaction)
        db.flush()
        return message

    def edit(self, db: Session, message: Message, caller_id: str, body: str | None) -> Message:
        """Replace the body of the caller's own message and refresh its link previews."""
        if message.sender_id != caller_id:
            raise PermissionDenied("Only the sender can edit a message")
        message.body = validate_edit(body, has_attachments=bool(message.attachments))
        message.edited_at = self.clock()
        message.link_previews = [
            MessageLinkPreview(position=position, url=url)
            for position, url in enumerate(extract_links(message.body))
        ]
        db.flush()
        return message

    def toggle_pin(self, db: Session, message: Message) -> Message:
        message.is_pinned = not message.is_pinned
        db.flush()
        return message

    def schedule_disappearance(
        self, db: Session, message: Message, caller_id: str, after_seconds: int
    ) -> Message:
        if message.sender_id != caller_id:
            raise PermissionDenied("Only the sender can schedule a message to disappear")
        if after_seconds <= 0:
            raise ValidationError("Disappearing delay must be positive")
        message.disappear_at = self.clock() + timedelta(seconds=after_seconds)
        db.flush()
        return message

    def delete(self, db: Session, message: Message) -> None:
        db.delete(message)
        db.flush()

    def stream(
        self,
        db: Session,
        conversation_id: str,
        *,
        after: int | None,
        limit: int,
        now: datetime,
    ) -> list[Message]:
        """Return up to ``limit`` live messages with ``order_index > after``, oldest first."""
        stmt = select(Message).where(
            Message.conversation_id == conversation_id,
            or_(Message.disappear_at.is_(None), Message.disappear_at > now),
        )
        if after is not None:
            stmt = stmt.where(Message.order_index > after)
        stmt = (
            stmt.order_by(Message.order_index)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(db.execute(stmt).scalars())

    def pinned(self, db: Session, conversation_id: str, now: datetime) -> list[Message]:
        stmt = (
            select(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.is_pinned.is_(True),
                or_(Message.disappear_at.is_(None), Message.disappear_at > now),
            )
            .order_by(Message.order_index)
            .execution_options(populate_existing=True)
        )
        return list(db.execute(stmt).scalars())

    def expired_ids(self, db: Session, now: datetime, limit: int) -> list[str]:
        stmt = (
            select(Message.id)
            .where(Message.disappear_at.is_not(None), Message.disappear_at <= now)
            .order_by(Message.disappear_at)
            .limit(limit)
        )
        return list(db.execute(stmt).scalars())
