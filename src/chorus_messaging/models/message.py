# src/chorus_messaging/models/message.py
"""Models for the per-conversation message log."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import (
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chorus_messaging.core.errors import InvalidTransition
from chorus_messaging.db.session import Base
from chorus_messaging.db.time import UTCDateTime, utcnow

from .conversation import enum_column

if TYPE_CHECKING:
    from .conversation import Conversation


class DeliveryStatus(str, Enum):
    """Per-message lifecycle marker.

    ``sending -> sent -> delivered -> read``, plus ``sending -> failed`` and the
    retry edge ``failed -> sending``. ``sent`` may jump straight to ``read``.
    """

    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def can_transition_to(self, target: DeliveryStatus) -> bool:
        return target in _TRANSITIONS[self]

    def transition(self, target: DeliveryStatus) -> DeliveryStatus:
        """Return ``target`` if the move is legal, else raise InvalidTransition."""
        if not self.can_transition_to(target):
            raise InvalidTransition(f"Cannot move a message from {self.value} to {target.value}")
        return target


_RANKS = {
    DeliveryStatus.FAILED: 0,
    DeliveryStatus.SENDING: 0,
    DeliveryStatus.SENT: 1,
    DeliveryStatus.DELIVERED: 2,
    DeliveryStatus.READ: 3,
}

_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.SENDING: frozenset({DeliveryStatus.SENT, DeliveryStatus.FAILED}),
    DeliveryStatus.SENT: frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.READ}),
    DeliveryStatus.DELIVERED: frozenset({DeliveryStatus.READ}),
    DeliveryStatus.READ: frozenset(),
    DeliveryStatus.FAILED: frozenset({DeliveryStatus.SENDING}),
}


class AttachmentKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"


class Message(Base):
    """A single entry in a conversation's append-only log."""

    __tablename__ = "message"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    conversation_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("conversation.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Total order inside the conversation, consistent with commit order.
    order_index: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sender_id: Mapped[str] = mapped_column(String(64), nullable=False)

    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Replies keep pointing at the original even after it is deleted.
    reply_to_message_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    delivery_status: Mapped[DeliveryStatus] = mapped_column(
        enum_column(DeliveryStatus),
        nullable=False,
        default=DeliveryStatus.SENT,
    )
    send_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    edited_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    disappear_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    conversation: Mapped[Conversation] = relationship("Conversation", back_populates="messages")
    attachments: Mapped[list[MessageAttachment]] = relationship(
        "MessageAttachment",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="MessageAttachment.position",
        lazy="selectin",
    )
    reactions: Mapped[list[MessageReaction]] = relationship(
        "MessageReaction",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    reads: Mapped[list[MessageRead]] = relationship(
        "MessageRead",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    deliveries: Mapped[list[MessageDelivery]] = relationship(
        "MessageDelivery",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    mentions: Mapped[list[MessageMention]] = relationship(
        "MessageMention",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    link_previews: Mapped[list[MessageLinkPreview]] = relationship(
        "MessageLinkPreview",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="MessageLinkPreview.position",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("conversation_id", "order_index", name="uq_message_conversation_order"),
        Index("ix_message_conversation_created", "conversation_id", "created_at"),
        # Sweeper scan
        Index("ix_message_disappear_at", "disappear_at"),
    )

    @property
    def read_by(self) -> set[str]:
        return {read.user_id for read in self.reads}

    @property
    def delivered_to(self) -> set[str]:
        return {delivery.user_id for delivery in self.deliveries}

    @property
    def mentioned_user_ids(self) -> set[str]:
        return {mention.user_id for mention in self.mentions}

    @property
    def reaction_map(self) -> dict[str, set[str]]:
        """Return ``emoji -> user ids`` for the message's reactions."""
        grouped: dict[str, set[str]] = {}
        for reaction in self.reactions:
            grouped.setdefault(reaction.emoji, set()).add(reaction.user_id)
        return grouped


class MessageAttachment(Base):
    """Typed reference to a blob held by the attachment store."""

    __tablename__ = "message_attachment"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("message.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    kind: Mapped[AttachmentKind] = mapped_column(enum_column(AttachmentKind), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class MessageReaction(Base):
    __tablename__ = "message_reaction"

    message_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("message.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    emoji: Mapped[str] = mapped_column(String(32), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class MessageRead(Base):
    """Presence of a row means ``user_id`` is in the message's ``readBy`` set."""

    __tablename__ = "message_read"

    message_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("message.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    read_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("ix_message_read_user", "user_id"),)


class MessageDelivery(Base):
    """Presence of a row means the recipient's client has observed the message."""

    __tablename__ = "message_delivery"

    message_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("message.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    delivered_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class MessageMention(Base):
    __tablename__ = "message_mention"

    message_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("message.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)


class MessageLinkPreview(Base):
    __tablename__ = "message_link_preview"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("message.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
