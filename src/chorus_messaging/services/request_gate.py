# src/chorus_messaging/services/request_gate.py
"""Message requests: the one-message-until-accepted rule for direct conversations."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from chorus_messaging.core.errors import (
    InvalidTransition,
    PermissionDenied,
    RequestLimitExceeded,
)
from chorus_messaging.db.time import utcnow
from chorus_messaging.models import (
    Conversation,
    ConversationKind,
    ConversationParticipant,
    ConversationStatus,
    Message,
)

from .conversations import ConversationStore
from .identity import IdentityProvider
from .validation import build_preview

logger = logging.getLogger(__name__)

REQUEST_MESSAGE_ALLOWANCE = 1


class RequestDecision(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"
    BLOCK = "block"


@dataclass
class MessageRequestView:
    """Derived view of a pending direct conversation, as seen by its recipient."""

    conversation_id: str
    requester_id: str
    recipient_id: str
    first_message_preview: str | None
    acknowledged_by_recipient: bool
    created_at: datetime
    last_message_at: datetime | None


class RequestGate:
    """Enforces the pending-request rules on top of the conversation store.

    Counters on the conversation row are changed with conditional updates
    (compare-and-swap on ``status`` and ``request_messages_sent``), so the
    allowance cannot be overspent even by writers that skipped the row lock.
    """

    def __init__(
        self,
        identity: IdentityProvider,
        store: ConversationStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.identity = identity
        self.store = store
        self.clock = clock

    def admit(self, db: Session, conversation: Conversation, sender_id: str) -> bool:
        """Admit one send into ``conversation`` or raise.

        Returns:
            True if this send was the recipient's reply and accepted the request.

        Raises:
            RequestLimitExceeded: If the requester already used their allowance.
        """
        if conversation.kind is ConversationKind.GROUP:
            return False
        if conversation.status is ConversationStatus.ACCEPTED:
            return False

        now = self.clock()
        if sender_id == conversation.requester_id:
            result = db.execute(
                update(Conversation)
                .where(
                    Conversation.id == conversation.id,
                    Conversation.status == ConversationStatus.PENDING,
                    Conversation.request_messages_sent < REQUEST_MESSAGE_ALLOWANCE,
                )
                .values(
                    request_messages_sent=Conversation.request_messages_sent + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            db.refresh(conversation)
            if result.rowcount == 1 or conversation.status is ConversationStatus.ACCEPTED:
                return False
            logger.info(
                "Requester %s exceeded the request allowance in %s", sender_id, conversation.id
            )
            raise RequestLimitExceeded()

        result = db.execute(
            update(Conversation)
            .where(
                Conversation.id == conversation.id,
                Conversation.status == ConversationStatus.PENDING,
            )
            .values(
                status=ConversationStatus.ACCEPTED,
                accepted_at=now,
                request_seen=True,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        db.refresh(conversation)
        if result.rowcount == 1:
            logger.info("Request %s accepted by reply from %s", conversation.id, sender_id)
            return True
        return False

    def upgrade(self, db: Session, conversation: Conversation) -> None:
        """Accept a pending request whose requester is now allowed outright."""
        if conversation.status is not ConversationStatus.PENDING:
            return
        conversation.status = ConversationStatus.ACCEPTED
        conversation.accepted_at = self.clock()
        conversation.updated_at = conversation.accepted_at
        db.flush()
        logger.info("Request %s upgraded to accepted after a permission change", conversation.id)

    def respond(
        self,
        db: Session,
        conversation: Conversation,
        user_id: str,
        decision: RequestDecision,
    ) -> Conversation | None:
        """Apply the recipient's decision on a pending request.

        Returns:
            The accepted conversation, or ``None`` when it was declined or
            blocked and therefore deleted together with its messages.
        """
        self.store.require_participant(conversation, user_id)
        if conversation.kind is not ConversationKind.DIRECT:
            raise InvalidTransition("Only direct conversations can be message requests")
        if user_id == conversation.requester_id:
            raise PermissionDenied("Only the recipient can respond to a message request")
        if conversation.status is ConversationStatus.ACCEPTED:
            if decision is RequestDecision.ACCEPT:
                return conversation
            raise InvalidTransition("This conversation is not a pending request")

        requester_id = conversation.requester_id
        if decision is RequestDecision.ACCEPT:
            now = self.clock()
            conversation.status = ConversationStatus.ACCEPTED
            conversation.accepted_at = now
            conversation.request_seen = True
            conversation.updated_at = now
            db.flush()
            logger.info("Request %s accepted by %s", conversation.id, user_id)
            return conversation

        if decision is RequestDecision.BLOCK and requester_id is not None:
            self.identity.block(db, user_id, requester_id)
        self.store.delete(db, conversation)
        logger.info("Request %s resolved with %s by %s", conversation.id, decision.value, user_id)
        return None

    def mark_seen(self, db: Session, conversation: Conversation, user_id: str) -> Conversation:
        self.store.require_participant(conversation, user_id)
        if conversation.status is not ConversationStatus.PENDING:
            raise InvalidTransition("This conversation is not a pending request")
        if user_id == conversation.requester_id:
            raise PermissionDenied("Only the recipient can acknowledge a message request")
        conversation.request_seen = True
        db.flush()
        return conversation

    def list_requests(self, db: Session, user_id: str) -> list[MessageRequestView]:
        """Return pending requests addressed to ``user_id``, newest activity first."""
        activity = func.coalesce(Conversation.last_message_at, Conversation.created_at)
        stmt = (
            select(Conversation)
            .join(
                ConversationParticipant,
                ConversationParticipant.conversation_id == Conversation.id,
            )
            .where(
                ConversationParticipant.user_id == user_id,
                Conversation.kind == ConversationKind.DIRECT,
                Conversation.status == ConversationStatus.PENDING,
                Conversation.requester_id != user_id,
                Conversation.request_messages_sent > 0,
            )
            .order_by(activity.desc(), Conversation.id)
            .execution_options(populate_existing=True)
        )
        views: list[MessageRequestView] = []
        for conversation in db.execute(stmt).scalars():
            first = db.execute(
                select(Message)
                .where(
                    Message.conversation_id == conversation.id,
                    Message.sender_id == conversation.requester_id,
                )
                .order_by(Message.order_index)
                .limit(1)
            ).scalar_one_or_none()
            views.append(
                MessageRequestView(
                    conversation_id=conversation.id,
                    requester_id=conversation.requester_id or "",
                    recipient_id=user_id,
                    first_message_preview=build_preview(first) if first is not None else None,
                    acknowledged_by_recipient=conversation.request_seen,
                    created_at=conversation.created_at,
                    last_message_at=conversation.last_message_at,
                )
            )
        return views
