# src/chorus_messaging/models/conversation.py
"""Models describing conversations and their per-participant state."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chorus_messaging.db.session import Base
from chorus_messaging.db.time import UTCDateTime, utcnow

if TYPE_CHECKING:
    from .message import Message


class ConversationKind(str, Enum):
    DIRECT = "direct"
    GROUP = "group"


class ConversationStatus(str, Enum):
    """Request lifecycle of a direct conversation. Groups are always accepted."""

    PENDING = "pending"
    ACCEPTED = "accepted"


def enum_column(enum_cls: type[Enum]) -> SAEnum:
    """Store an enum by value in a portable VARCHAR column."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=16,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class Conversation(Base):
    """A durable channel grouping participants and their shared message log.

    Direct conversations use a deterministic id derived from the sorted pair of
    user ids, so the primary key doubles as the one-conversation-per-pair
    uniqueness constraint.
    """

    __tablename__ = "conversation"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[ConversationKind] = mapped_column(enum_column(ConversationKind), nullable=False)
    status: Mapped[ConversationStatus] = mapped_column(
        enum_column(ConversationStatus),
        nullable=False,
        default=ConversationStatus.ACCEPTED,
    )
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)

    # Request gate bookkeeping (direct conversations only).
    requester_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    request_messages_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    request_seen: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    accepted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    disappearing_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Per-conversation total order for messages; bumped atomically on append.
    last_order_index: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_message_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_message_preview: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    participants: Mapped[list[ConversationParticipant]] = relationship(
        "ConversationParticipant",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ConversationParticipant.position",
        lazy="selectin",
    )
    messages: Mapped[list[Message]] = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )

    __table_args__ = (
        CheckConstraint("request_messages_sent >= 0", name="ck_conversation_request_sent"),
    )

    @property
    def participant_ids(self) -> list[str]:
        """Return participant ids in join order."""
        return [participant.user_id for participant in self.participants]

    @property
    def is_group(self) -> bool:
        return self.kind is ConversationKind.GROUP

    @property
    def is_pending(self) -> bool:
        return self.status is ConversationStatus.PENDING

    def participant(self, user_id: str) -> ConversationParticipant | None:
        """Return the participant row for ``user_id`` if they are a member."""
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None

    def other_participant_id(self, user_id: str) -> str | None:
        """Return the counterpart of ``user_id`` in a direct conversation."""
        for participant_id in self.participant_ids:
            if participant_id != user_id:
                return participant_id
        return None


class ConversationParticipant(Base):
    """Per-participant state: unread counter and archive/mute/pin flags."""

    __tablename__ = "conversation_participant"

    conversation_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("conversation.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Mutated only through SQL-level increments/decrements.
    unread_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    muted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    conversation: Mapped[Conversation] = relationship("Conversation", back_populates="participants")

    __table_args__ = (
        CheckConstraint("unread_count >= 0", name="ck_participant_unread_non_negative"),
        Index("ix_conversation_participant_user", "user_id", "archived"),
    )
