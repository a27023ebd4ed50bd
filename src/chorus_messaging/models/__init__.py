# src/chorus_messaging/models/__init__.py
"""SQLAlchemy models for the Chorus messaging service."""

from .conversation import (
    Conversation,
    ConversationKind,
    ConversationParticipant,
    ConversationStatus,
)
from .identity import PrivacySetting, UserBlock, UserFollow, UserPrivacy
from .message import (
    AttachmentKind,
    DeliveryStatus,
    Message,
    MessageAttachment,
    MessageDelivery,
    MessageLinkPreview,
    MessageMention,
    MessageReaction,
    MessageRead,
)

__all__ = [
    "Conversation", "ConversationKind", "ConversationParticipant", "ConversationStatus",
    "PrivacySetting", "UserBlock", "UserFollow", "UserPrivacy",
    "AttachmentKind", "DeliveryStatus",
    "Message", "MessageAttachment", "MessageDelivery", "MessageLinkPreview",
    "MessageMention", "MessageReaction", "MessageRead",
]
