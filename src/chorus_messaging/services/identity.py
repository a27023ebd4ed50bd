# src/chorus_messaging/services/identity.py
"""Identity/privacy collaborator consulted by the permission evaluator."""

from __future__ import annotations

from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from chorus_messaging.models import PrivacySetting, UserBlock, UserFollow, UserPrivacy


class IdentityProvider(Protocol):
    """Read access to privacy, block and follow state owned by the identity subsystem.

    Every call receives the caller's session so that checks made inside a
    messaging transaction observe the same committed state as its writes.
    """

    def get_privacy_setting(self, db: Session, user_id: str) -> PrivacySetting: ...

    def is_blocked(self, db: Session, blocker_id: str, blocked_id: str) -> bool: ...

    def is_following(self, db: Session, follower_id: str, followee_id: str) -> bool: ...

    def block(self, db: Session, blocker_id: str, blocked_id: str) -> None: ...

    def unblock(self, db: Session, blocker_id: str, blocked_id: str) -> None: ...


class SqlIdentityProvider:
    """IdentityProvider backed by the ``user_privacy``/``user_block``/``user_follow`` tables."""

    def get_privacy_setting(self, db: Session, user_id: str) -> PrivacySetting:
        row = db.get(UserPrivacy, user_id)
        if row is None:
            return PrivacySetting.ANYONE
        return row.who_can_message

    def is_blocked(self, db: Session, blocker_id: str, blocked_id: str) -> bool:
        stmt = select(UserBlock.blocker_id).where(
            UserBlock.blocker_id == blocker_id,
            UserBlock.blocked_id == blocked_id,
        )
        return db.execute(stmt).first() is not None

    def is_following(self, db: Session, follower_id: str, followee_id: str) -> bool:
        stmt = select(UserFollow.follower_id).where(
            UserFollow.follower_id == follower_id,
            UserFollow.followee_id == followee_id,
        )
        return db.execute(stmt).first() is not None

    def block(self, db: Session, blocker_id: str, blocked_id: str) -> None:
        if self.is_blocked(db, blocker_id, blocked_id):
            return
        db.add(UserBlock(blocker_id=blocker_id, blocked_id=blocked_id))
        db.flush()

    def unblock(self, db: Session, blocker_id: str, blocked_id: str) -> None:
        row = db.get(UserBlock, (blocker_id, blocked_id))
        if row is not None:
            db.delete(row)
            db.flush()

    # Write helpers used by tooling and tests; production writes belong to identity.

    def set_privacy(self, db: Session, user_id: str, setting: PrivacySetting) -> None:
        row = db.get(UserPrivacy, user_id)
        if row is None:
            db.add(UserPrivacy(user_id=user_id, who_can_message=setting))
        else:
            row.who_can_message = setting
        db.flush()

    def follow(self, db: Session, follower_id: str, followee_id: str) -> None:
        if not self.is_following(db, follower_id, followee_id):
            db.add(UserFollow(follower_id=follower_id, followee_id=followee_id))
            db.flush()
