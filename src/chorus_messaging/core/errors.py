"""Exception taxonomy for the messaging core.

Validation and permission errors are raised before any mutation begins.
Transient store failures are raised only after the bounded retry loop in
:func:`chorus_messaging.services.transactions.run_atomic` gives up.
"""

from __future__ import annotations

from typing import Any


class MessagingError(RuntimeError):
    """Base exception for all messaging failures."""

    code = "messaging_error"
    default_detail = "Messaging operation failed"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class PermissionDenied(MessagingError):
    """The caller may not perform this action (blocked, privacy, ownership)."""

    code = "permission_denied"
    default_detail = "You don't have permission to perform this action"


class Blocked(PermissionDenied):
    """One side of a direct conversation has blocked the other."""

    code = "blocked"
    default_detail = "You cannot message this user"


class ConversationClosed(PermissionDenied):
    """The group fell below two participants and no longer accepts messages."""

    code = "conversation_closed"
    default_detail = "This conversation has been closed"


class ConversationNotAccepted(MessagingError):
    """The conversation is still a pending message request."""

    code = "conversation_not_accepted"
    default_detail = "This conversation has not been accepted yet"


class RequestLimitExceeded(ConversationNotAccepted):
    """The requester already used their one message before a reply."""

    code = "request_limit_exceeded"
    default_detail = "Wait for a reply before sending another message"


class NotParticipant(MessagingError):
    """The caller is not in the conversation's participant set."""

    code = "not_participant"
    default_detail = "You are not a participant in this conversation"


class NotFound(MessagingError):
    """Base class for missing records."""

    code = "not_found"
    default_detail = "Not found"


class ConversationNotFound(NotFound):
    code = "conversation_not_found"
    default_detail = "Conversation not found"


class MessageNotFound(NotFound):
    code = "message_not_found"
    default_detail = "Message not found"


class ValidationError(MessagingError):
    """Input rejected before any write (empty body, oversized attachment...)."""

    code = "validation_error"
    default_detail = "Invalid input"


class RateLimited(MessagingError):
    """The sender exceeded the per-minute send allowance."""

    code = "rate_limited"
    default_detail = "You're sending messages too quickly"


class InvalidTransition(MessagingError):
    """A delivery status change that the state machine does not allow."""

    code = "invalid_transition"
    default_detail = "Invalid delivery status transition"


class TransientStoreFailure(MessagingError):
    """The backing store stayed unavailable for every retry attempt.

    When raised by a send, ``unsent`` holds the draft in ``failed`` state so
    the caller can offer a retry with the same message id.
    """

    code = "store_unavailable"
    default_detail = "The message store is temporarily unavailable"

    def __init__(self, detail: str | None = None, *, unsent: Any | None = None) -> None:
        super().__init__(detail)
        self.unsent = unsent
