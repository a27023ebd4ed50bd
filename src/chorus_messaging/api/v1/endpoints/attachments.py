# src/chorus_messaging/api/v1/endpoints/attachments.py
"""Attachment upload and download endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool

from chorus_messaging.models import AttachmentKind
from chorus_messaging.schemas.message import AttachmentUploadResponse

from ..dependencies import AttachmentStoreDep, CurrentUserDep
from ..errors import translate_errors

router = APIRouter(prefix="/attachments", tags=["attachments"])


@router.post("/", response_model=AttachmentUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_attachment(
    request: Request,
    _current_user: CurrentUserDep,
    store: AttachmentStoreDep,
    kind: Annotated[AttachmentKind, Query()] = AttachmentKind.FILE,
) -> AttachmentUploadResponse:
    """Store the raw request body and return its durable URL."""
    content = await request.body()
    with translate_errors():
        stored = await run_in_threadpool(
            store.put, content, kind, request.headers.get("content-type")
        )
    return AttachmentUploadResponse(
        url=stored.url,
        kind=stored.kind,
        content_type=stored.content_type,
        size_bytes=stored.size_bytes,
    )


@router.get("/{digest}")
def download_attachment(digest: str, store: AttachmentStoreDep) -> Response:
    with translate_errors():
        try:
            content = store.open(digest)
        except FileNotFoundError as exc:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Attachment not found",
            ) from exc
    return Response(content=content, media_type="application/octet-stream")
