# src/chorus_messaging/schemas/conversation.py
"""Conversation-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from chorus_messaging.models import ConversationKind, ConversationStatus
from chorus_messaging.services.conversations import ConversationEntry


class DirectConversationCreate(BaseModel):
    """Schema for opening a direct conversation with another user."""

    recipient_id: str = Field(..., min_length=1, max_length=64)


class GroupCreate(BaseModel):
    """Schema for creating a group conversation."""

    member_ids: list[str] = Field(..., description="Members besides the creator (at least two)")
    name: str = Field(..., description="Group display name")


class ConversationStateUpdate(BaseModel):
    """Per-participant flags; omitted fields are left unchanged."""

    archived: bool | None = None
    muted: bool | None = None
    pinned: bool | None = None


class DisappearingUpdate(BaseModel):
    seconds: int | None = Field(None, gt=0, description="Timer for new messages; null disables")


class GroupRename(BaseModel):
    name: str


class ParticipantsAdd(BaseModel):
    user_ids: list[str] = Field(..., min_length=1)


class TypingUpdate(BaseModel):
    is_typing: bool


class ConversationResponse(BaseModel):
    """A conversation as seen by one participant."""

    id: str
    kind: ConversationKind
    status: ConversationStatus
    display_name: str | None
    participant_ids: list[str]
    requester_id: str | None
    unread_count: int
    archived: bool
    muted: bool
    pinned: bool
    is_closed: bool
    disappearing_seconds: int | None
    last_message_preview: str | None
    last_message_at: datetime | None
    created_at: datetime

    @classmethod
    def from_entry(cls, entry: ConversationEntry) -> ConversationResponse:
        conversation, state = entry.conversation, entry.state
        return cls(
            id=conversation.id,
            kind=conversation.kind,
            status=conversation.status,
            display_name=conversation.display_name,
            participant_ids=conversation.participant_ids,
            requester_id=conversation.requester_id,
            unread_count=state.unread_count,
            archived=state.archived,
            muted=state.muted,
            pinned=state.pinned,
            is_closed=conversation.is_closed,
            disappearing_seconds=conversation.disappearing_seconds,
            last_message_preview=conversation.last_message_preview,
            last_message_at=conversation.last_message_at,
            created_at=conversation.created_at,
        )
