# src/chorus_messaging/api/v1/endpoints/messages.py
"""Message endpoints: send, edit, delete, react, pin and schedule disappearance."""

from __future__ import annotations

from fastapi import APIRouter, Response, status

from chorus_messaging.schemas.message import (
    DisappearSchedule,
    MessageCreate,
    MessageEdit,
    MessageForward,
    MessageResponse,
    ReactionCreate,
)

from ..dependencies import CurrentUserDep, MessagingServiceDep, SessionDep
from ..errors import translate_errors

router = APIRouter(prefix="/messages", tags=["messages"])


@router.post("/", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def send_message(
    payload: MessageCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> MessageResponse:
    """Send a message into a conversation, or directly to a user."""
    with translate_errors():
        message = service.send_message(
            db,
            current_user,
            conversation_id=payload.conversation_id,
            recipient_id=payload.recipient_id,
            body=payload.body,
            attachments=[attachment.to_input() for attachment in payload.attachments],
            reply_to_message_id=payload.reply_to_message_id,
            mentioned_user_ids=payload.mentioned_user_ids,
            client_message_id=payload.client_message_id,
        )
        return MessageResponse.from_message(message)


@router.post(
    "/{message_id}/forward", response_model=MessageResponse, status_code=status.HTTP_201_CREATED
)
def forward_message(
    message_id: str,
    payload: MessageForward,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> MessageResponse:
    """Forward a copy of a message the caller can see to another conversation or user."""
    with translate_errors():
        message = service.forward_message(
            db,
            current_user,
            message_id,
            conversation_id=payload.conversation_id,
            recipient_id=payload.recipient_id,
            client_message_id=payload.client_message_id,
        )
        return MessageResponse.from_message(message)


@router.patch("/{message_id}", response_model=MessageResponse)
def edit_message(
    message_id: str,
    payload: MessageEdit,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> MessageResponse:
    """Edit the body of the caller's own message."""
    with translate_errors():
        return MessageResponse.from_message(
            service.edit_message(db, message_id, current_user, payload.body)
        )


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_message(
    message_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> Response:
    """Unsend the caller's own message for everyone."""
    with translate_errors():
        service.delete_message(db, message_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{message_id}/reactions", response_model=MessageResponse)
def react_to_message(
    message_id: str,
    payload: ReactionCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> MessageResponse:
    with translate_errors():
        return MessageResponse.from_message(
            service.react_to_message(db, message_id, current_user, payload.emoji)
        )


@router.delete("/{message_id}/reactions/{emoji}", response_model=MessageResponse)
def unreact(
    message_id: str,
    emoji: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> MessageResponse:
    with translate_errors():
        return MessageResponse.from_message(
            service.unreact(db, message_id, current_user, emoji)
        )


@router.post("/{message_id}/pin", response_model=MessageResponse)
def pin_message(
    message_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> MessageResponse:
    """Toggle the message's pinned flag."""
    with translate_errors():
        return MessageResponse.from_message(service.pin_message(db, message_id, current_user))


@router.post("/{message_id}/disappear", response_model=MessageResponse)
def schedule_disappearance(
    message_id: str,
    payload: DisappearSchedule,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> MessageResponse:
    with translate_errors():
        return MessageResponse.from_message(
            service.schedule_disappearance(db, message_id, current_user, payload.after_seconds)
        )
