# src/chorus_messaging/services/__init__.py
"""Business logic services for the Chorus messaging core."""

from .conversations import ConversationFilter, ConversationStore
from .message_log import MessageDraft, MessageLog
from .messaging import MessagePage, MessagingService
from .permissions import Permission, PermissionEvaluator
from .request_gate import RequestDecision, RequestGate
from .unread import UnreadSynchronizer

__all__ = [
    "ConversationFilter", "ConversationStore",
    "MessageDraft", "MessageLog",
    "MessagePage", "MessagingService",
    "Permission", "PermissionEvaluator",
    "RequestDecision", "RequestGate",
    "UnreadSynchronizer",
]
