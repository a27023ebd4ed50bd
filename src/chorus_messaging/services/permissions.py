# src/chorus_messaging/services/permissions.py
"""Decide whether one user may message another, and in which mode."""

from __future__ import annotations

import logging
from enum import Enum

from sqlalchemy.orm import Session

from chorus_messaging.models import PrivacySetting

from .identity import IdentityProvider

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    ALLOWED = "allowed"
    ALLOWED_AS_REQUEST = "allowed_as_request"
    BLOCKED = "blocked"


class PermissionEvaluator:
    """Evaluate first-contact permission between a sender and a recipient.

    The result is advisory: writes re-check blocks inside their own transaction.
    """

    def __init__(self, identity: IdentityProvider) -> None:
        self.identity = identity

    def is_blocked_either_way(self, db: Session, user_a: str, user_b: str) -> bool:
        return self.identity.is_blocked(db, user_a, user_b) or self.identity.is_blocked(
            db, user_b, user_a
        )

    def evaluate(self, db: Session, sender_id: str, recipient_id: str) -> Permission:
        """Return the permission for ``sender_id`` writing to ``recipient_id``.

        Args:
            db: Active database session.
            sender_id: User attempting to send.
            recipient_id: User receiving the message.

        Returns:
            ``BLOCKED`` if either side blocked the other or the recipient accepts
            no messages, ``ALLOWED`` when the recipient's privacy setting admits
            the sender, otherwise ``ALLOWED_AS_REQUEST``.
        """
        if self.is_blocked_either_way(db, sender_id, recipient_id):
            return Permission.BLOCKED

        setting = self.identity.get_privacy_setting(db, recipient_id)
        if setting is PrivacySetting.ANYONE:
            return Permission.ALLOWED
        if setting is PrivacySetting.NOBODY:
            return Permission.BLOCKED
        if self.identity.is_following(db, recipient_id, sender_id):
            return Permission.ALLOWED
        logger.debug("Recipient %s does not follow %s; sending as request", recipient_id, sender_id)
        return Permission.ALLOWED_AS_REQUEST
