# src/chorus_messaging/models/identity.py
"""Read-mostly identity tables consulted by the permission evaluator.

These rows belong to the identity subsystem; messaging only reads them, apart
from the block written when a recipient blocks a message request.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from chorus_messaging.db.session import Base
from chorus_messaging.db.time import UTCDateTime, utcnow

from .conversation import enum_column


class PrivacySetting(str, Enum):
    """Who may start a conversation with a user."""

    ANYONE = "anyone"
    FOLLOWERS = "followers"
    NOBODY = "nobody"


class UserPrivacy(Base):
    __tablename__ = "user_privacy"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    who_can_message: Mapped[PrivacySetting] = mapped_column(
        enum_column(PrivacySetting),
        nullable=False,
        default=PrivacySetting.ANYONE,
    )
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class UserBlock(Base):
    """``blocker_id`` has blocked ``blocked_id``."""

    __tablename__ = "user_block"

    blocker_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    blocked_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("ix_user_block_blocked", "blocked_id"),)


class UserFollow(Base):
    """``follower_id`` follows ``followee_id``."""

    __tablename__ = "user_follow"

    follower_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    followee_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
