# src/chorus_messaging/schemas/message.py
"""Message-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from chorus_messaging.models import AttachmentKind, DeliveryStatus, Message
from chorus_messaging.services.validation import AttachmentInput


class AttachmentPayload(BaseModel):
    kind: AttachmentKind
    url: str
    content_type: str | None = None
    size_bytes: int | None = None

    def to_input(self) -> AttachmentInput:
        return AttachmentInput(
            kind=self.kind,
            url=self.url,
            content_type=self.content_type,
            size_bytes=self.size_bytes,
        )


class MessageCreate(BaseModel):
    """Schema for sending a message into a conversation or to a user."""

    conversation_id: str | None = Field(None, description="Existing conversation to post into")
    recipient_id: str | None = Field(None, description="User to message directly")
    body: str | None = None
    attachments: list[AttachmentPayload] = Field(default_factory=list)
    reply_to_message_id: str | None = None
    mentioned_user_ids: list[str] = Field(default_factory=list)
    client_message_id: str | None = Field(
        None,
        max_length=64,
        description="Client-chosen id; resending the same id never duplicates the message",
    )


class MessageForward(BaseModel):
    """Target of a forwarded copy; exactly one of the two targets is required."""

    conversation_id: str | None = None
    recipient_id: str | None = None
    client_message_id: str | None = Field(None, max_length=64)


class MessageEdit(BaseModel):
    body: str | None


class ReactionCreate(BaseModel):
    emoji: str


class DisappearSchedule(BaseModel):
    after_seconds: int = Field(..., gt=0)


class MessageResponse(BaseModel):
    """Schema for message information returned by the API."""

    id: str
    conversation_id: str
    order_index: int
    sender_id: str
    body: str | None
    attachments: list[AttachmentPayload]
    reactions: dict[str, list[str]]
    reply_to_message_id: str | None
    delivery_status: DeliveryStatus
    read_by: list[str]
    is_pinned: bool
    mentioned_user_ids: list[str]
    link_previews: list[str]
    created_at: datetime
    edited_at: datetime | None
    disappear_at: datetime | None

    @classmethod
    def from_message(cls, message: Message) -> MessageResponse:
        return cls(
            id=message.id,
            conversation_id=message.conversation_id,
            order_index=message.order_index,
            sender_id=message.sender_id,
            body=message.body,
            attachments=[
                AttachmentPayload(
                    kind=attachment.kind,
                    url=attachment.url,
                    content_type=attachment.content_type,
                    size_bytes=attachment.size_bytes,
                )
                for attachment in message.attachments
            ],
            reactions={
                emoji: sorted(users) for emoji, users in sorted(message.reaction_map.items())
            },
            reply_to_message_id=message.reply_to_message_id,
            delivery_status=message.delivery_status,
            read_by=sorted(message.read_by),
            is_pinned=message.is_pinned,
            mentioned_user_ids=sorted(message.mentioned_user_ids),
            link_previews=[preview.url for preview in message.link_previews],
            created_at=message.created_at,
            edited_at=message.edited_at,
            disappear_at=message.disappear_at,
        )


class MessagePageResponse(BaseModel):
    messages: list[MessageResponse]
    next_cursor: int | None


class AttachmentUploadResponse(BaseModel):
    url: str
    kind: AttachmentKind
    content_type: str | None
    size_bytes: int
