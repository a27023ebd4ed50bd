# src/chorus_messaging/services/messaging.py
"""Messaging facade: the operations exposed to the HTTP layer and workers.

Each public method runs as one atomic transaction through
:func:`run_atomic`. Validation, permission and rate checks happen before the
transaction starts; notifications go out only after it commits.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chorus_messaging.core.errors import (
    Blocked,
    ConversationClosed,
    MessageNotFound,
    PermissionDenied,
    TransientStoreFailure,
    ValidationError,
)
from chorus_messaging.core.settings import settings
from chorus_messaging.db.time import as_utc, utcnow
from chorus_messaging.models import (
    Conversation,
    ConversationParticipant,
    ConversationStatus,
    Message,
)

from .conversations import ConversationEntry, ConversationFilter, ConversationStore
from .identity import IdentityProvider, SqlIdentityProvider
from .message_log import MessageDraft, MessageLog
from .notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    NotificationEvent,
    NotificationKind,
)
from .permissions import Permission, PermissionEvaluator
from .presence import TypingChannel
from .rate_limit import SendRateLimiter
from .request_gate import MessageRequestView, RequestDecision, RequestGate
from .transactions import run_atomic
from .unread import UnreadSynchronizer
from .validation import AttachmentInput, build_preview, validate_content

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 50


@dataclass
class MessagePage:
    messages: list[Message]
    next_cursor: int | None


class MessagingService:
    """Composes the messaging components around one store session per call."""

    def __init__(
        self,
        identity: IdentityProvider | None = None,
        notifier: NotificationDispatcher | None = None,
        *,
        typing: TypingChannel | None = None,
        rate_limiter: SendRateLimiter | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_retries: int | None = None,
        retry_backoff_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Wire the components together.

        Args:
            identity: Privacy/block/follow provider. Defaults to the SQL tables.
            notifier: Receives events after commit. Defaults to logging only.
            typing: Optional typing indicator channel.
            rate_limiter: Optional per-sender send throttle.
            clock: Source of "now" for every component.
            max_retries: Transient failure retries per operation.
            retry_backoff_seconds: Initial retry backoff.
            sleep: Sleep function used between retries.
        """
        self.identity = identity or SqlIdentityProvider()
        self.notifier = notifier or LoggingNotificationDispatcher()
        self.typing = typing
        self.rate_limiter = rate_limiter
        self.clock = clock
        self.permissions = PermissionEvaluator(self.identity)
        self.store = ConversationStore(clock)
        self.log = MessageLog(clock)
        self.gate = RequestGate(self.identity, self.store, clock)
        self.unread = UnreadSynchronizer(clock)
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff_seconds
        self._sleep = sleep

    def _atomic(self, db: Session, work: Callable[[Session], T]) -> T:
        return run_atomic(
            db,
            work,
            max_retries=self._max_retries,
            backoff_seconds=self._retry_backoff,
            sleep=self._sleep,
        )

    def _dispatch(self, events: Iterable[NotificationEvent]) -> None:
        for event in events:
            try:
                self.notifier.dispatch(event)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Notification %s for %s failed: %s",
                    event.kind.value,
                    event.recipient_id,
                    exc,
                )

    # -- conversations -------------------------------------------------------

    def open_direct(self, db: Session, sender_id: str, recipient_id: str) -> Conversation:
        """Return the direct conversation with ``recipient_id``, creating it if permitted.

        An existing conversation is subject to block checks only. A pending one
        is upgraded to accepted when the requester is now allowed outright.

        Raises:
            Blocked: If either side blocked the other, or the recipient's
                privacy setting forbids a new conversation.
        """
        if sender_id == recipient_id:
            raise ValidationError("You cannot message yourself")

        def work(session: Session) -> Conversation:
            conversation = self.store.find_direct(session, sender_id, recipient_id, lock=True)
            if conversation is not None:
                if self.permissions.is_blocked_either_way(session, sender_id, recipient_id):
                    raise Blocked()
                if (
                    conversation.is_pending
                    and conversation.requester_id == sender_id
                    and self.permissions.evaluate(session, sender_id, recipient_id)
                    is Permission.ALLOWED
                ):
                    self.gate.upgrade(session, conversation)
                return conversation

            permission = self.permissions.evaluate(session, sender_id, recipient_id)
            if permission is Permission.BLOCKED:
                raise Blocked()
            status = (
                ConversationStatus.ACCEPTED
                if permission is Permission.ALLOWED
                else ConversationStatus.PENDING
            )
            conversation, _ = self.store.get_or_create_direct(
                session, sender_id, recipient_id, status
            )
            return conversation

        try:
            return self._atomic(db, work)
        except IntegrityError:
            logger.info("Concurrent creation of %s/%s; reloading", sender_id, recipient_id)
            return self._atomic(db, work)

    def create_group(
        self, db: Session, creator_id: str, member_ids: Sequence[str], name: str | None
    ) -> Conversation:
        return self._atomic(
            db, lambda session: self.store.create_group(session, creator_id, member_ids, name)
        )

    def get_conversation(self, db: Session, conversation_id: str, user_id: str) -> ConversationEntry:
        def work(session: Session) -> ConversationEntry:
            conversation = self.store.get(session, conversation_id)
            state = self.store.require_participant(conversation, user_id)
            return ConversationEntry(conversation, state)

        return self._atomic(db, work)

    def list_conversations(
        self,
        db: Session,
        user_id: str,
        conversation_filter: ConversationFilter = ConversationFilter.ACTIVE,
    ) -> list[ConversationEntry]:
        return self._atomic(
            db, lambda session: self.store.list_for_user(session, user_id, conversation_filter)
        )

    def set_archived(
        self, db: Session, conversation_id: str, user_id: str, archived: bool
    ) -> ConversationParticipant:
        return self._atomic(
            db, lambda session: self.store.set_archived(session, conversation_id, user_id, archived)
        )

    def set_muted(
        self, db: Session, conversation_id: str, user_id: str, muted: bool
    ) -> ConversationParticipant:
        return self._atomic(
            db, lambda session: self.store.set_muted(session, conversation_id, user_id, muted)
        )

    def set_pinned(
        self, db: Session, conversation_id: str, user_id: str, pinned: bool
    ) -> ConversationParticipant:
        return self._atomic(
            db, lambda session: self.store.set_pinned(session, conversation_id, user_id, pinned)
        )

    def update_conversation_state(
        self,
        db: Session,
        conversation_id: str,
        user_id: str,
        *,
        archived: bool | None = None,
        muted: bool | None = None,
        pinned: bool | None = None,
    ) -> ConversationEntry:
        """Apply the supplied archive, mute and pin flags in one transaction."""

        def work(session: Session) -> ConversationEntry:
            state = self.store.update_state(
                session,
                conversation_id,
                user_id,
                archived=archived,
                muted=muted,
                pinned=pinned,
            )
            return ConversationEntry(self.store.get(session, conversation_id), state)

        return self._atomic(db, work)

    def set_disappearing_duration(
        self, db: Session, conversation_id: str, user_id: str, seconds: int | None
    ) -> Conversation:
        return self._atomic(
            db,
            lambda session: self.store.set_disappearing_duration(
                session, conversation_id, user_id, seconds
            ),
        )

    def leave_conversation(
        self, db: Session, conversation_id: str, user_id: str
    ) -> Conversation | None:
        return self._atomic(db, lambda session: self.store.leave(session, conversation_id, user_id))

    def remove_participant(
        self, db: Session, conversation_id: str, actor_id: str, user_id: str
    ) -> Conversation:
        return self._atomic(
            db,
            lambda session: self.store.remove_participant(
                session, conversation_id, actor_id, user_id
            ),
        )

    def add_participants(
        self, db: Session, conversation_id: str, actor_id: str, user_ids: Sequence[str]
    ) -> list[str]:
        return self._atomic(
            db,
            lambda session: self.store.add_participants(
                session, conversation_id, actor_id, user_ids
            ),
        )

    def rename_group(
        self, db: Session, conversation_id: str, actor_id: str, name: str | None
    ) -> Conversation:
        return self._atomic(
            db, lambda session: self.store.rename_group(session, conversation_id, actor_id, name)
        )

    def block_user(self, db: Session, blocker_id: str, blocked_id: str) -> None:
        """Block ``blocked_id`` for ``blocker_id``.

        The pair's conversation row is locked first, so the block commits either
        after an in-flight send into it or before that send's re-check. A pending
        request from the blocked user is deleted in the same transaction.
        """
        if blocker_id == blocked_id:
            raise ValidationError("You cannot block yourself")

        def work(session: Session) -> None:
            conversation = self.store.find_direct(session, blocker_id, blocked_id, lock=True)
            self.identity.block(session, blocker_id, blocked_id)
            if (
                conversation is not None
                and conversation.is_pending
                and conversation.requester_id == blocked_id
            ):
                self.store.delete(session, conversation)
                logger.info("Deleted pending request %s on block", conversation.id)

        self._atomic(db, work)
        logger.info("User %s blocked %s", blocker_id, blocked_id)

    def unblock_user(self, db: Session, blocker_id: str, blocked_id: str) -> None:
        """Lift a block; privacy rules apply again to new conversations."""
        if blocker_id == blocked_id:
            raise ValidationError("You cannot unblock yourself")
        self._atomic(db, lambda session: self.identity.unblock(session, blocker_id, blocked_id))
        logger.info("User %s unblocked %s", blocker_id, blocked_id)

    # -- sending -------------------------------------------------------------

    def send_message(
        self,
        db: Session,
        sender_id: str,
        *,
        conversation_id: str | None = None,
        recipient_id: str | None = None,
        body: str | None = None,
        attachments: Sequence[AttachmentInput] = (),
        reply_to_message_id: str | None = None,
        mentioned_user_ids: Sequence[str] = (),
        client_message_id: str | None = None,
    ) -> Message:
        """Send a message into a conversation or to a user.

        Args:
            db: Session whose transactions this call owns.
            sender_id: Authenticated sender.
            conversation_id: Target conversation; exclusive with ``recipient_id``.
            recipient_id: Target user for a direct message.
            body: Message text.
            attachments: References returned by the attachment store.
            reply_to_message_id: Message in the same conversation being replied to.
            mentioned_user_ids: Users to mention; non-participants are dropped.
            client_message_id: Client-chosen id making resends idempotent.

        Returns:
            The committed message, in ``sent`` status.

        Raises:
            ValidationError: Bad content or target; nothing was written.
            Blocked: Either side of a direct conversation blocked the other.
            RequestLimitExceeded: The requester already used their one message.
            NotParticipant: The sender is not in the conversation.
            TransientStoreFailure: The store stayed unavailable; ``exc.unsent``
                holds the draft in ``failed`` state for :meth:`retry_send`.
        """
        content = validate_content(
            body,
            attachments,
            reply_to_message_id=reply_to_message_id,
            mentioned_user_ids=mentioned_user_ids,
        )
        if (conversation_id is None) == (recipient_id is None):
            raise ValidationError("Provide exactly one of conversation_id or recipient_id")
        if self.rate_limiter is not None:
            self.rate_limiter.check(sender_id)

        if recipient_id is not None:
            conversation_id = self.open_direct(db, sender_id, recipient_id).id

        draft = MessageDraft(conversation_id=conversation_id, sender_id=sender_id, content=content)
        if client_message_id:
            draft.id = client_message_id
        return self._deliver(db, draft)

    def forward_message(
        self,
        db: Session,
        sender_id: str,
        message_id: str,
        *,
        conversation_id: str | None = None,
        recipient_id: str | None = None,
        client_message_id: str | None = None,
    ) -> Message:
        """Send a copy of a visible message's body and attachments to another target.

        The copy is a new message from ``sender_id``: reactions, reply and
        mentions are not carried over, and it passes the same gate, block and
        unread path as :meth:`send_message`.
        """

        def work(session: Session) -> tuple[str | None, list[AttachmentInput]]:
            message = self._participant_message(session, message_id, sender_id)
            if message.disappear_at is not None and as_utc(message.disappear_at) <= self.clock():
                raise MessageNotFound()
            attachments = [
                AttachmentInput(
                    kind=attachment.kind,
                    url=attachment.url,
                    content_type=attachment.content_type,
                    size_bytes=attachment.size_bytes,
                )
                for attachment in message.attachments
            ]
            return message.body, attachments

        body, attachments = self._atomic(db, work)
        return self.send_message(
            db,
            sender_id,
            conversation_id=conversation_id,
            recipient_id=recipient_id,
            body=body,
            attachments=attachments,
            client_message_id=client_message_id,
        )

    def retry_send(self, db: Session, draft: MessageDraft) -> Message:
        """Resend a ``failed`` draft under the same message id."""
        draft.retry()
        return self._deliver(db, draft)

    def _deliver(self, db: Session, draft: MessageDraft) -> Message:
        try:
            message, events = self._atomic(db, partial(self._append_work, draft=draft))
        except TransientStoreFailure as exc:
            draft.mark_failed(exc.detail)
            exc.unsent = draft
            logger.warning("Message %s failed after retries", draft.id)
            raise
        draft.mark_sent()
        self._dispatch(events)
        return message

    def _append_work(
        self, session: Session, draft: MessageDraft
    ) -> tuple[Message, list[NotificationEvent]]:
        conversation = self.store.get(session, draft.conversation_id, lock=True)
        self.store.require_participant(conversation, draft.sender_id)

        existing = self.log.find(session, draft.id)
        if existing is not None:
            if (
                existing.conversation_id != conversation.id
                or existing.sender_id != draft.sender_id
            ):
                raise ValidationError("Message id is already in use")
            logger.debug("Message %s already stored; returning it", draft.id)
            return existing, []

        if conversation.is_closed:
            raise ConversationClosed()
        if not conversation.is_group:
            other_id = conversation.other_participant_id(draft.sender_id)
            if other_id is not None and self.permissions.is_blocked_either_way(
                session, draft.sender_id, other_id
            ):
                raise Blocked()

        accepted_now = self.gate.admit(session, conversation, draft.sender_id)
        message = self.log.append(session, conversation, draft)
        self.store.record_last_message(conversation, message)
        self.unread.record_append(session, conversation, message)
        return message, self._message_events(conversation, message, accepted_now)

    def _message_events(
        self, conversation: Conversation, message: Message, accepted_now: bool
    ) -> list[NotificationEvent]:
        preview = build_preview(message)
        mentioned = message.mentioned_user_ids
        events: list[NotificationEvent] = []
        for participant in conversation.participants:
            if participant.user_id == message.sender_id:
                continue
            if participant.user_id in mentioned:
                kind = NotificationKind.MENTION
            elif participant.muted:
                continue
            else:
                kind = NotificationKind.MESSAGE
            events.append(
                NotificationEvent(kind, participant.user_id, conversation.id, message.id, preview)
            )
        if accepted_now and conversation.requester_id:
            events.append(
                NotificationEvent(
                    NotificationKind.REQUEST_ACCEPTED,
                    conversation.requester_id,
                    conversation.id,
                    message.id,
                    preview,
                )
            )
        return events

    # -- reading -------------------------------------------------------------

    def stream_messages(
        self,
        db: Session,
        conversation_id: str,
        user_id: str,
        *,
        after: int | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> MessagePage:
        """Return the next page of live messages after the ``after`` cursor."""
        limit = max(1, min(limit, settings.page_size_max))

        def work(session: Session) -> MessagePage:
            self.store.get_for_participant(session, conversation_id, user_id)
            messages = self.log.stream(
                session, conversation_id, after=after, limit=limit, now=self.clock()
            )
            next_cursor = messages[-1].order_index if len(messages) == limit else None
            return MessagePage(messages, next_cursor)

        return self._atomic(db, work)

    def list_pinned_messages(
        self, db: Session, conversation_id: str, user_id: str
    ) -> list[Message]:
        def work(session: Session) -> list[Message]:
            self.store.get_for_participant(session, conversation_id, user_id)
            return self.log.pinned(session, conversation_id, self.clock())

        return self._atomic(db, work)

    def mark_conversation_read(self, db: Session, conversation_id: str, user_id: str) -> int:
        """Mark everything in the conversation read for ``user_id``.

        Returns:
            Number of messages newly marked read.
        """

        def work(session: Session) -> int:
            conversation = self.store.get_for_participant(session, conversation_id, user_id)
            return len(self.unread.mark_read(session, conversation, user_id))

        return self._atomic(db, work)

    def mark_conversation_delivered(
        self, db: Session, conversation_id: str, user_id: str
    ) -> int:
        """Acknowledge delivery of every message ``user_id`` has fetched.

        Returns:
            Number of messages whose status advanced to ``delivered``.
        """

        def work(session: Session) -> list[NotificationEvent]:
            conversation = self.store.get_for_participant(session, conversation_id, user_id)
            advanced = self.unread.mark_delivered(session, conversation, user_id)
            return [
                NotificationEvent(
                    NotificationKind.DELIVERED,
                    message.sender_id,
                    conversation.id,
                    message.id,
                    None,
                )
                for message in advanced
            ]

        events = self._atomic(db, work)
        self._dispatch(events)
        return len(events)

    def unread_total(self, db: Session, user_id: str) -> int:
        """Sum of unread counters across the user's active conversations."""
        entries = self.list_conversations(db, user_id, ConversationFilter.ACTIVE)
        return sum(entry.state.unread_count for entry in entries)

    def recount_unread(self, db: Session, conversation_id: str) -> dict[str, int]:
        """Return the full-scan unread counts, for verification only."""

        def work(session: Session) -> dict[str, int]:
            conversation = self.store.get(session, conversation_id)
            return self.unread.recount(session, conversation)

        return self._atomic(db, work)

    # -- message requests ----------------------------------------------------

    def respond_to_request(
        self, db: Session, conversation_id: str, user_id: str, decision: RequestDecision
    ) -> Conversation | None:
        def work(session: Session) -> Conversation | None:
            conversation = self.store.get(session, conversation_id, lock=True)
            return self.gate.respond(session, conversation, user_id, decision)

        return self._atomic(db, work)

    def list_requests(self, db: Session, user_id: str) -> list[MessageRequestView]:
        return self._atomic(db, lambda session: self.gate.list_requests(session, user_id))

    def mark_request_seen(self, db: Session, conversation_id: str, user_id: str) -> Conversation:
        def work(session: Session) -> Conversation:
            conversation = self.store.get(session, conversation_id)
            return self.gate.mark_seen(session, conversation, user_id)

        return self._atomic(db, work)

    # -- message mutations ---------------------------------------------------

    def _participant_message(self, session: Session, message_id: str, user_id: str) -> Message:
        message = self.log.get(session, message_id)
        self.store.get_for_participant(session, message.conversation_id, user_id)
        return message

    def react_to_message(self, db: Session, message_id: str, user_id: str, emoji: str) -> Message:
        def work(session: Session) -> Message:
            message = self._participant_message(session, message_id, user_id)
            return self.log.add_reaction(session, message, user_id, emoji)

        return self._atomic(db, work)

    def unreact(self, db: Session, message_id: str, user_id: str, emoji: str) -> Message:
        def work(session: Session) -> Message:
            message = self._participant_message(session, message_id, user_id)
            return self.log.remove_reaction(session, message, user_id, emoji)

        return self._atomic(db, work)

    def edit_message(
        self, db: Session, message_id: str, user_id: str, body: str | None
    ) -> Message:
        def work(session: Session) -> Message:
            message = self._participant_message(session, message_id, user_id)
            self.log.edit(session, message, user_id, body)
            conversation = self.store.get(session, message.conversation_id)
            if conversation.last_message_id == message.id:
                self.store.record_last_message(conversation, message)
                session.flush()
            return message

        return self._atomic(db, work)

    def pin_message(self, db: Session, message_id: str, user_id: str) -> Message:
        """Toggle the pin flag of a message; any participant may do this."""

        def work(session: Session) -> Message:
            message = self._participant_message(session, message_id, user_id)
            return self.log.toggle_pin(session, message)

        return self._atomic(db, work)

    def schedule_disappearance(
        self, db: Session, message_id: str, user_id: str, after_seconds: int
    ) -> Message:
        def work(session: Session) -> Message:
            message = self._participant_message(session, message_id, user_id)
            return self.log.schedule_disappearance(session, message, user_id, after_seconds)

        return self._atomic(db, work)

    def delete_message(self, db: Session, message_id: str, user_id: str) -> None:
        """Hard-delete the caller's own message, adjusting unread counters."""

        def work(session: Session) -> None:
            message = self.log.get(session, message_id)
            if message.sender_id != user_id:
                raise PermissionDenied("Only the sender can delete a message")
            self._remove(session, message)

        self._atomic(db, work)

    def expire_message(
        self, db: Session, message_id: str, now: datetime | None = None
    ) -> int | None:
        """Delete a message whose ``disappear_at`` has passed.

        Returns:
            Number of unread counters decremented, or ``None`` when the message
            is already gone or not yet due.
        """
        now = now or self.clock()

        def work(session: Session) -> int | None:
            message = self.log.find(session, message_id)
            if message is None or message.disappear_at is None:
                return None
            if as_utc(message.disappear_at) > now:
                return None
            return self._remove(session, message)

        return self._atomic(db, work)

    def expired_message_ids(self, db: Session, now: datetime, limit: int) -> list[str]:
        return self._atomic(db, lambda session: self.log.expired_ids(session, now, limit))

    def _remove(self, session: Session, message: Message) -> int:
        conversation = self.store.get(session, message.conversation_id, lock=True)
        decremented = self.unread.record_removal(session, conversation, message)
        was_latest = conversation.last_message_id == message.id
        self.log.delete(session, message)
        if was_latest:
            self.store.refresh_last_message(session, conversation)
        logger.debug(
            "Removed message %s from %s; %d counters decremented",
            message.id,
            conversation.id,
            decremented,
        )
        return decremented

    # -- presence ------------------------------------------------------------

    def set_typing(self, db: Session, conversation_id: str, user_id: str, is_typing: bool) -> None:
        """Broadcast a best-effort typing signal; nothing is stored."""
        self._atomic(
            db, lambda session: self.store.get_for_participant(session, conversation_id, user_id)
        )
        if self.typing is not None:
            self.typing.set_typing(conversation_id, user_id, is_typing)

    def typing_users(self, db: Session, conversation_id: str, user_id: str) -> list[str]:
        self._atomic(
            db, lambda session: self.store.get_for_participant(session, conversation_id, user_id)
        )
        if self.typing is None:
            return []
        return [uid for uid in self.typing.typing_users(conversation_id) if uid != user_id]

