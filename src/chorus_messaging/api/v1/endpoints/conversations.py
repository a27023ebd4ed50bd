# src/chorus_messaging/api/v1/endpoints/conversations.py
"""Conversation endpoints: listing, creation, per-user flags and message pages."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, Response, status

from chorus_messaging.schemas.conversation import (
    ConversationResponse,
    ConversationStateUpdate,
    DirectConversationCreate,
    DisappearingUpdate,
    GroupCreate,
    GroupRename,
    ParticipantsAdd,
    TypingUpdate,
)
from chorus_messaging.schemas.message import MessagePageResponse, MessageResponse
from chorus_messaging.services.conversations import ConversationFilter

from ..dependencies import CurrentUserDep, MessagingServiceDep, SessionDep
from ..errors import translate_errors

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("/", response_model=list[ConversationResponse])
def list_conversations(
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
    conversation_filter: Annotated[ConversationFilter, Query(alias="filter")] = (
        ConversationFilter.ACTIVE
    ),
) -> list[ConversationResponse]:
    """List the caller's conversations, most recent activity first."""
    with translate_errors():
        entries = service.list_conversations(db, current_user, conversation_filter)
        return [ConversationResponse.from_entry(entry) for entry in entries]


@router.get("/unread-count")
def get_unread_total(
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> dict[str, int]:
    """Return the badge count across active conversations."""
    with translate_errors():
        return {"unread_count": service.unread_total(db, current_user)}


@router.post("/direct", response_model=ConversationResponse)
def open_direct_conversation(
    payload: DirectConversationCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> ConversationResponse:
    """Open (or fetch) the direct conversation with another user."""
    with translate_errors():
        conversation = service.open_direct(db, current_user, payload.recipient_id)
        entry = service.get_conversation(db, conversation.id, current_user)
        return ConversationResponse.from_entry(entry)


@router.post("/groups", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
def create_group(
    payload: GroupCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> ConversationResponse:
    """Create a group with the caller and at least two other members."""
    with translate_errors():
        conversation = service.create_group(db, current_user, payload.member_ids, payload.name)
        entry = service.get_conversation(db, conversation.id, current_user)
        return ConversationResponse.from_entry(entry)


@router.get("/{conversation_id}", response_model=ConversationResponse)
def get_conversation(
    conversation_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> ConversationResponse:
    with translate_errors():
        return ConversationResponse.from_entry(
            service.get_conversation(db, conversation_id, current_user)
        )


@router.patch("/{conversation_id}/state", response_model=ConversationResponse)
def update_conversation_state(
    conversation_id: str,
    payload: ConversationStateUpdate,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> ConversationResponse:
    """Flip the caller's archive, mute and pin flags."""
    with translate_errors():
        entry = service.update_conversation_state(
            db,
            conversation_id,
            current_user,
            archived=payload.archived,
            muted=payload.muted,
            pinned=payload.pinned,
        )
        return ConversationResponse.from_entry(entry)


@router.put("/{conversation_id}/disappearing", response_model=ConversationResponse)
def set_disappearing_duration(
    conversation_id: str,
    payload: DisappearingUpdate,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> ConversationResponse:
    """Set the disappearing timer for messages sent from now on."""
    with translate_errors():
        service.set_disappearing_duration(db, conversation_id, current_user, payload.seconds)
        return ConversationResponse.from_entry(
            service.get_conversation(db, conversation_id, current_user)
        )


@router.put("/{conversation_id}/name", response_model=ConversationResponse)
def rename_group(
    conversation_id: str,
    payload: GroupRename,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> ConversationResponse:
    with translate_errors():
        service.rename_group(db, conversation_id, current_user, payload.name)
        return ConversationResponse.from_entry(
            service.get_conversation(db, conversation_id, current_user)
        )


@router.post("/{conversation_id}/participants")
def add_participants(
    conversation_id: str,
    payload: ParticipantsAdd,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> dict[str, list[str]]:
    with translate_errors():
        added = service.add_participants(db, conversation_id, current_user, payload.user_ids)
        return {"added": added}


@router.delete(
    "/{conversation_id}/participants/{user_id}", status_code=status.HTTP_204_NO_CONTENT
)
def remove_participant(
    conversation_id: str,
    user_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> Response:
    """Remove another member from a group."""
    with translate_errors():
        service.remove_participant(db, conversation_id, current_user, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{conversation_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
def leave_conversation(
    conversation_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> Response:
    """Leave a group; the group closes when fewer than two members remain."""
    with translate_errors():
        service.leave_conversation(db, conversation_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{conversation_id}/read")
def mark_conversation_read(
    conversation_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> dict[str, int]:
    """Mark every message in the conversation read for the caller."""
    with translate_errors():
        marked = service.mark_conversation_read(db, conversation_id, current_user)
        return {"marked_read": marked}


@router.post("/{conversation_id}/delivered")
def mark_conversation_delivered(
    conversation_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> dict[str, int]:
    with translate_errors():
        advanced = service.mark_conversation_delivered(db, conversation_id, current_user)
        return {"delivered": advanced}


@router.get("/{conversation_id}/messages", response_model=MessagePageResponse)
def stream_messages(
    conversation_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
    after: Annotated[int | None, Query(ge=0)] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
) -> MessagePageResponse:
    """Return the next page of messages after the ``after`` cursor, oldest first."""
    with translate_errors():
        page = service.stream_messages(
            db, conversation_id, current_user, after=after, limit=limit
        )
        return MessagePageResponse(
            messages=[MessageResponse.from_message(message) for message in page.messages],
            next_cursor=page.next_cursor,
        )


@router.get("/{conversation_id}/pinned", response_model=list[MessageResponse])
def list_pinned_messages(
    conversation_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> list[MessageResponse]:
    with translate_errors():
        messages = service.list_pinned_messages(db, conversation_id, current_user)
        return [MessageResponse.from_message(message) for message in messages]


@router.post("/{conversation_id}/typing", status_code=status.HTTP_204_NO_CONTENT)
def set_typing(
    conversation_id: str,
    payload: TypingUpdate,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> Response:
    with translate_errors():
        service.set_typing(db, conversation_id, current_user, payload.is_typing)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{conversation_id}/typing")
def get_typing_users(
    conversation_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> dict[str, list[str]]:
    with translate_errors():
        return {"user_ids": service.typing_users(db, conversation_id, current_user)}
