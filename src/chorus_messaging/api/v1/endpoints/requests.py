# src/chorus_messaging/api/v1/endpoints/requests.py
"""Message request endpoints and user blocking."""

from __future__ import annotations

from fastapi import APIRouter, Response, status

from chorus_messaging.schemas.conversation import ConversationResponse
from chorus_messaging.schemas.request import (
    RequestDecisionCreate,
    RequestDecisionResponse,
    RequestResponse,
)

from ..dependencies import CurrentUserDep, MessagingServiceDep, SessionDep
from ..errors import translate_errors

router = APIRouter(prefix="/requests", tags=["requests"])
blocks_router = APIRouter(prefix="/blocks", tags=["requests"])


@router.get("/", response_model=list[RequestResponse])
def list_requests(
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> list[RequestResponse]:
    """List pending message requests addressed to the caller."""
    with translate_errors():
        return [RequestResponse.from_view(view) for view in service.list_requests(db, current_user)]


@router.post("/{conversation_id}/respond", response_model=RequestDecisionResponse)
def respond_to_request(
    conversation_id: str,
    payload: RequestDecisionCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> RequestDecisionResponse:
    """Accept, decline or block a pending request."""
    with translate_errors():
        conversation = service.respond_to_request(
            db, conversation_id, current_user, payload.decision
        )
        response = None
        if conversation is not None:
            response = ConversationResponse.from_entry(
                service.get_conversation(db, conversation.id, current_user)
            )
        return RequestDecisionResponse(
            conversation_id=conversation_id,
            decision=payload.decision,
            conversation=response,
        )


@router.post("/{conversation_id}/seen", status_code=status.HTTP_204_NO_CONTENT)
def mark_request_seen(
    conversation_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> Response:
    with translate_errors():
        service.mark_request_seen(db, conversation_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@blocks_router.post("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def block_user(
    user_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> Response:
    """Block another user; their sends to the caller fail from now on."""
    with translate_errors():
        service.block_user(db, current_user, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@blocks_router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def unblock_user(
    user_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    service: MessagingServiceDep,
) -> Response:
    with translate_errors():
        service.unblock_user(db, current_user, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
