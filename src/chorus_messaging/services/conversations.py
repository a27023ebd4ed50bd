# src/chorus_messaging/services/conversations.py
"""Conversation metadata: participants, per-user flags and last-message preview."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import and_, func, insert, literal, or_, select
from sqlalchemy.orm import Session

from chorus_messaging.core.errors import (
    ConversationClosed,
    ConversationNotFound,
    NotParticipant,
    ValidationError,
)
from chorus_messaging.core.settings import settings
from chorus_messaging.db.time import UTCDateTime, utcnow
from chorus_messaging.models import (
    Conversation,
    ConversationKind,
    ConversationParticipant,
    ConversationStatus,
    Message,
    MessageRead,
)
from chorus_messaging.utils.hash import blake3_hexdigest

from .validation import build_preview, validate_group_name

logger = logging.getLogger(__name__)

DIRECT_ID_PREFIX = "dm_"
GROUP_ID_PREFIX = "grp_"


class ConversationFilter(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


@dataclass
class ConversationEntry:
    """A conversation together with the caller's participant row."""

    conversation: Conversation
    state: ConversationParticipant


def direct_conversation_id(user_a: str, user_b: str) -> str:
    """Return the deterministic id for the direct conversation of an unordered pair."""
    first, second = sorted((user_a, user_b))
    digest = blake3_hexdigest(f"{first}\x1f{second}".encode())
    return f"{DIRECT_ID_PREFIX}{digest[:32]}"


class ConversationStore:
    """Owns conversation rows and per-participant flags.

    Methods only mutate and flush; committing is left to the caller so several
    components can share one transaction.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self.clock = clock

    def get(self, db: Session, conversation_id: str, *, lock: bool = False) -> Conversation:
        """Load a conversation, optionally taking its row lock.

        Raises:
            ConversationNotFound: If no such conversation exists.
        """
        stmt = select(Conversation).where(Conversation.id == conversation_id)
        if lock:
            stmt = stmt.with_for_update()
        conversation = db.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if conversation is None:
            raise ConversationNotFound()
        return conversation

    def require_participant(
        self, conversation: Conversation, user_id: str
    ) -> ConversationParticipant:
        participant = conversation.participant(user_id)
        if participant is None:
            logger.warning(
                "User %s is not a participant of conversation %s", user_id, conversation.id
            )
            raise NotParticipant()
        return participant

    def get_for_participant(
        self, db: Session, conversation_id: str, user_id: str, *, lock: bool = False
    ) -> Conversation:
        conversation = self.get(db, conversation_id, lock=lock)
        self.require_participant(conversation, user_id)
        return conversation

    def find_direct(
        self, db: Session, user_a: str, user_b: str, *, lock: bool = False
    ) -> Conversation | None:
        try:
            return self.get(db, direct_conversation_id(user_a, user_b), lock=lock)
        except ConversationNotFound:
            return None

    def get_or_create_direct(
        self,
        db: Session,
        requester_id: str,
        recipient_id: str,
        status: ConversationStatus,
    ) -> tuple[Conversation, bool]:
        """Return the pair's direct conversation, creating it with ``status`` if absent.

        A concurrent creator racing on the same pair fails the primary key on
        flush with ``IntegrityError``; re-running the transaction then finds
        the winner's row.

        Returns:
            The conversation and whether it was created by this call.
        """
        existing = self.find_direct(db, requester_id, recipient_id, lock=True)
        if existing is not None:
            return existing, False

        now = self.clock()
        conversation = Conversation(
            id=direct_conversation_id(requester_id, recipient_id),
            kind=ConversationKind.DIRECT,
            status=status,
            created_by=requester_id,
            requester_id=requester_id if status is ConversationStatus.PENDING else None,
            request_messages_sent=0,
            accepted_at=now if status is ConversationStatus.ACCEPTED else None,
            created_at=now,
            updated_at=now,
        )
        conversation.participants = [
            ConversationParticipant(user_id=requester_id, position=0, joined_at=now),
            ConversationParticipant(user_id=recipient_id, position=1, joined_at=now),
        ]
        db.add(conversation)
        db.flush()
        logger.info(
            "Created %s direct conversation %s between %s and %s",
            status.value,
            conversation.id,
            requester_id,
            recipient_id,
        )
        return conversation, True

    def create_group(
        self, db: Session, creator_id: str, member_ids: Iterable[str], name: str | None
    ) -> Conversation:
        """Create a group with ``creator_id`` plus at least two other members."""
        display_name = validate_group_name(name)
        others: list[str] = []
        for member_id in member_ids:
            if member_id != creator_id and member_id not in others:
                others.append(member_id)
        if len(others) < 2:
            raise ValidationError("A group needs at least two members besides the creator")
        if len(others) + 1 > settings.max_group_size:
            raise ValidationError(f"Groups are limited to {settings.max_group_size} members")

        now = self.clock()
        conversation = Conversation(
            id=f"{GROUP_ID_PREFIX}{uuid.uuid4().hex}",
            kind=ConversationKind.GROUP,
            status=ConversationStatus.ACCEPTED,
            display_name=display_name,
            created_by=creator_id,
            accepted_at=now,
            created_at=now,
            updated_at=now,
        )
        conversation.participants = [
            ConversationParticipant(user_id=user_id, position=index, joined_at=now)
            for index, user_id in enumerate([creator_id, *others])
        ]
        db.add(conversation)
        db.flush()
        logger.info("Created group %s with %d members", conversation.id, len(others) + 1)
        return conversation

    def _set_flag(
        self, db: Session, conversation_id: str, user_id: str, flag: str, value: bool
    ) -> ConversationParticipant:
        conversation = self.get(db, conversation_id)
        participant = self.require_participant(conversation, user_id)
        setattr(participant, flag, value)
        db.flush()
        return participant

    def set_archived(
        self, db: Session, conversation_id: str, user_id: str, archived: bool
    ) -> ConversationParticipant:
        return self._set_flag(db, conversation_id, user_id, "archived", archived)

    def set_muted(
        self, db: Session, conversation_id: str, user_id: str, muted: bool
    ) -> ConversationParticipant:
        return self._set_flag(db, conversation_id, user_id, "muted", muted)

    def set_pinned(
        self, db: Session, conversation_id: str, user_id: str, pinned: bool
    ) -> ConversationParticipant:
        return self._set_flag(db, conversation_id, user_id, "pinned", pinned)

    def update_state(
        self,
        db: Session,
        conversation_id: str,
        user_id: str,
        *,
        archived: bool | None = None,
        muted: bool | None = None,
        pinned: bool | None = None,
    ) -> ConversationParticipant:
        """Apply every supplied per-participant flag; ``None`` leaves a flag as is."""
        conversation = self.get(db, conversation_id)
        participant = self.require_participant(conversation, user_id)
        for flag, value in (("archived", archived), ("muted", muted), ("pinned", pinned)):
            if value is not None:
                setattr(participant, flag, value)
        db.flush()
        return participant

    def set_disappearing_duration(
        self, db: Session, conversation_id: str, user_id: str, seconds: int | None
    ) -> Conversation:
        """Set the timer applied to messages sent from now on; ``None`` disables it."""
        if seconds is not None and seconds <= 0:
            raise ValidationError("Disappearing duration must be positive")
        conversation = self.get_for_participant(db, conversation_id, user_id)
        conversation.disappearing_seconds = seconds
        conversation.updated_at = self.clock()
        db.flush()
        return conversation

    def leave(self, db: Session, conversation_id: str, user_id: str) -> Conversation | None:
        """Remove ``user_id`` from a group.

        Returns:
            The conversation, or ``None`` if the last participant left and it
            was deleted. Fewer than two remaining participants closes it.
        """
        conversation = self.get(db, conversation_id, lock=True)
        participant = self.require_participant(conversation, user_id)
        if not conversation.is_group:
            raise ValidationError("Direct conversations cannot be left; archive them instead")
        return self._drop_participant(db, conversation, participant)

    def remove_participant(
        self, db: Session, conversation_id: str, actor_id: str, user_id: str
    ) -> Conversation:
        """Remove another member from a group the actor belongs to."""
        if actor_id == user_id:
            raise ValidationError("Use leave to remove yourself from a group")
        conversation = self.get(db, conversation_id, lock=True)
        self.require_participant(conversation, actor_id)
        if not conversation.is_group:
            raise ValidationError("Participants can only be removed from groups")
        participant = self.require_participant(conversation, user_id)
        self._drop_participant(db, conversation, participant)
        logger.info("User %s removed %s from group %s", actor_id, user_id, conversation_id)
        return conversation

    def _drop_participant(
        self, db: Session, conversation: Conversation, participant: ConversationParticipant
    ) -> Conversation | None:
        conversation.participants.remove(participant)
        db.flush()

        remaining = len(conversation.participants)
        if remaining == 0:
            self.delete(db, conversation)
            logger.info("Deleted group %s after its last participant left", conversation.id)
            return None
        if remaining < 2 and not conversation.is_closed:
            conversation.is_closed = True
            logger.info("Closed group %s: %d participant left", conversation.id, remaining)
        conversation.updated_at = self.clock()
        db.flush()
        return conversation

    def add_participants(
        self, db: Session, conversation_id: str, actor_id: str, user_ids: Iterable[str]
    ) -> list[str]:
        """Add members to a group; their unread count starts at zero.

        Existing history is recorded as read for each new member so the unread
        counter keeps matching the read receipts.

        Returns:
            Ids of the users actually added.
        """
        conversation = self.get(db, conversation_id, lock=True)
        self.require_participant(conversation, actor_id)
        if not conversation.is_group:
            raise ValidationError("Participants can only be added to groups")
        if conversation.is_closed:
            raise ConversationClosed()

        current = set(conversation.participant_ids)
        added = [user_id for user_id in dict.fromkeys(user_ids) if user_id not in current]
        if not added:
            return []
        if len(current) + len(added) > settings.max_group_size:
            raise ValidationError(f"Groups are limited to {settings.max_group_size} members")

        now = self.clock()
        position = max((p.position for p in conversation.participants), default=-1) + 1
        for offset, user_id in enumerate(added):
            conversation.participants.append(
                ConversationParticipant(user_id=user_id, position=position + offset, joined_at=now)
            )
            history = select(
                Message.id,
                literal(user_id),
                literal(now, UTCDateTime()),
            ).where(
                Message.conversation_id == conversation.id,
                ~Message.reads.any(MessageRead.user_id == user_id),
            )
            db.execute(
                insert(MessageRead).from_select(["message_id", "user_id", "read_at"], history)
            )
        conversation.updated_at = now
        db.flush()
        logger.info("Added %d participants to group %s", len(added), conversation.id)
        return added

    def rename_group(
        self, db: Session, conversation_id: str, actor_id: str, name: str | None
    ) -> Conversation:
        display_name = validate_group_name(name)
        conversation = self.get_for_participant(db, conversation_id, actor_id)
        if not conversation.is_group:
            raise ValidationError("Only groups can be renamed")
        conversation.display_name = display_name
        conversation.updated_at = self.clock()
        db.flush()
        return conversation

    def list_for_user(
        self,
        db: Session,
        user_id: str,
        conversation_filter: ConversationFilter = ConversationFilter.ACTIVE,
    ) -> list[ConversationEntry]:
        """Return the user's conversations ordered by most recent activity.

        Pending requests addressed to the user are listed separately by the
        request gate and are left out here.
        """
        activity = func.coalesce(Conversation.last_message_at, Conversation.created_at)
        stmt = (
            select(Conversation, ConversationParticipant)
            .join(
                ConversationParticipant,
                ConversationParticipant.conversation_id == Conversation.id,
            )
            .where(
                ConversationParticipant.user_id == user_id,
                ConversationParticipant.archived
                == (conversation_filter is ConversationFilter.ARCHIVED),
                or_(
                    Conversation.status == ConversationStatus.ACCEPTED,
                    and_(
                        Conversation.status == ConversationStatus.PENDING,
                        Conversation.requester_id == user_id,
                    ),
                ),
            )
            .order_by(activity.desc(), Conversation.id)
            .execution_options(populate_existing=True)
        )
        return [ConversationEntry(conversation, state) for conversation, state in db.execute(stmt)]

    def record_last_message(self, conversation: Conversation, message: Message) -> None:
        conversation.last_message_id = message.id
        conversation.last_message_preview = build_preview(message)
        conversation.last_message_at = message.created_at
        conversation.updated_at = message.created_at

    def refresh_last_message(self, db: Session, conversation: Conversation) -> None:
        """Recompute the preview from the newest remaining message."""
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation.id)
            .order_by(Message.order_index.desc())
            .limit(1)
        )
        latest = db.execute(stmt).scalar_one_or_none()
        if latest is None:
            conversation.last_message_id = None
            conversation.last_message_preview = None
            conversation.last_message_at = None
        else:
            self.record_last_message(conversation, latest)
        conversation.updated_at = self.clock()
        db.flush()

    def delete(self, db: Session, conversation: Conversation) -> None:
        """Physically delete a conversation; messages go with it via FK cascade."""
        db.delete(conversation)
        db.flush()
