# src/chorus_messaging/services/validation.py
"""Input validation performed before any write is attempted."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from chorus_messaging.core.errors import ValidationError
from chorus_messaging.core.settings import settings
from chorus_messaging.models import AttachmentKind, Message

URL_PATTERN = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)
REPEATED_CHARACTER_PATTERN = re.compile(r"(\S)\1{9,}")
MAX_URLS_PER_MESSAGE = 3
MAX_LINK_PREVIEWS = 3
MAX_EMOJI_LENGTH = 32


@dataclass(frozen=True)
class AttachmentInput:
    """Reference to an uploaded blob, as supplied by the client."""

    kind: AttachmentKind
    url: str
    content_type: str | None = None
    size_bytes: int | None = None


@dataclass(frozen=True)
class MessageContent:
    """Validated, normalised content of a message about to be appended."""

    body: str | None
    attachments: tuple[AttachmentInput, ...] = ()
    reply_to_message_id: str | None = None
    mentioned_user_ids: frozenset[str] = field(default_factory=frozenset)


def _check_body(body: str) -> None:
    if len(body) > settings.message_max_length:
        raise ValidationError(
            f"Message is too long (max {settings.message_max_length} characters)"
        )
    if REPEATED_CHARACTER_PATTERN.search(body):
        raise ValidationError("Message looks like spam")
    if len(URL_PATTERN.findall(body)) > MAX_URLS_PER_MESSAGE:
        raise ValidationError("Message contains too many links")


def _check_attachment(attachment: AttachmentInput) -> AttachmentInput:
    try:
        kind = AttachmentKind(attachment.kind)
    except ValueError as exc:
        raise ValidationError(f"Unsupported attachment kind: {attachment.kind}") from exc
    url = (attachment.url or "").strip()
    if not url:
        raise ValidationError("Attachment URL is required")
    if attachment.size_bytes is not None and attachment.size_bytes > settings.max_attachment_bytes:
        raise ValidationError("Attachment is too large")
    if attachment.size_bytes is not None and attachment.size_bytes < 0:
        raise ValidationError("Attachment size cannot be negative")
    return AttachmentInput(
        kind=kind,
        url=url,
        content_type=attachment.content_type,
        size_bytes=attachment.size_bytes,
    )


def validate_content(
    body: str | None,
    attachments: Iterable[AttachmentInput] = (),
    *,
    reply_to_message_id: str | None = None,
    mentioned_user_ids: Iterable[str] = (),
) -> MessageContent:
    """Normalise and validate message content.

    Args:
        body: Raw message text; surrounding whitespace is stripped.
        attachments: Attachment references already held by the attachment store.
        reply_to_message_id: Optional id of the message being replied to.
        mentioned_user_ids: User ids the client marked as mentioned.

    Returns:
        The normalised content.

    Raises:
        ValidationError: If the message is empty, too long, spammy or carries
            invalid attachments.
    """
    text = (body or "").strip()
    checked = tuple(_check_attachment(attachment) for attachment in attachments)

    if not text and not checked:
        raise ValidationError("Message cannot be empty")
    if len(checked) > settings.max_attachments:
        raise ValidationError(f"Too many attachments (max {settings.max_attachments})")
    if text:
        _check_body(text)

    return MessageContent(
        body=text or None,
        attachments=checked,
        reply_to_message_id=reply_to_message_id,
        mentioned_user_ids=frozenset(mentioned_user_ids),
    )


def validate_edit(body: str | None, *, has_attachments: bool) -> str | None:
    """Validate the replacement body for an edit and return it normalised."""
    text = (body or "").strip()
    if not text and not has_attachments:
        raise ValidationError("Message cannot be empty")
    if text:
        _check_body(text)
    return text or None


def validate_group_name(name: str | None) -> str:
    text = (name or "").strip()
    if not text:
        raise ValidationError("Group name is required")
    if len(text) > settings.group_name_max_length:
        raise ValidationError(
            f"Group name is too long (max {settings.group_name_max_length} characters)"
        )
    return text


def validate_emoji(emoji: str) -> str:
    text = (emoji or "").strip()
    if not text or len(text) > MAX_EMOJI_LENGTH:
        raise ValidationError("Invalid reaction")
    return text


def extract_links(body: str | None) -> list[str]:
    """Return up to three distinct http(s) URLs from ``body`` in order of appearance."""
    if not body:
        return []
    links: list[str] = []
    for match in URL_PATTERN.findall(body):
        url = match.rstrip(".,;:!?)")
        if url not in links:
            links.append(url)
        if len(links) == MAX_LINK_PREVIEWS:
            break
    return links


def build_preview(message: Message) -> str:
    """Return the short text shown in conversation lists and notifications."""
    if message.body:
        limit = settings.preview_max_length
        if len(message.body) <= limit:
            return message.body
        return message.body[: limit - 3].rstrip() + "..."
    if message.attachments:
        return f"[{message.attachments[0].kind.value}]"
    return ""
