# src/chorus_messaging/schemas/request.py
"""Message request schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from chorus_messaging.services.request_gate import MessageRequestView, RequestDecision

from .conversation import ConversationResponse


class RequestResponse(BaseModel):
    conversation_id: str
    requester_id: str
    recipient_id: str
    first_message_preview: str | None
    acknowledged_by_recipient: bool
    created_at: datetime
    last_message_at: datetime | None

    @classmethod
    def from_view(cls, view: MessageRequestView) -> RequestResponse:
        return cls(
            conversation_id=view.conversation_id,
            requester_id=view.requester_id,
            recipient_id=view.recipient_id,
            first_message_preview=view.first_message_preview,
            acknowledged_by_recipient=view.acknowledged_by_recipient,
            created_at=view.created_at,
            last_message_at=view.last_message_at,
        )


class RequestDecisionCreate(BaseModel):
    decision: RequestDecision


class RequestDecisionResponse(BaseModel):
    conversation_id: str
    decision: RequestDecision
    conversation: ConversationResponse | None
