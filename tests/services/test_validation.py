# tests/services/test_validation.py
"""Tests for content validation and previews."""

from __future__ import annotations

import pytest

from chorus_messaging.core.errors import ValidationError
from chorus_messaging.core.settings import settings
from chorus_messaging.models import AttachmentKind, Message, MessageAttachment
from chorus_messaging.services.validation import (
    AttachmentInput,
    build_preview,
    extract_links,
    validate_content,
    validate_edit,
    validate_emoji,
    validate_group_name,
)


def test_body_is_stripped() -> None:
    content = validate_content("  hi there \n")
    assert content.body == "hi there"
    assert content.attachments == ()


@pytest.mark.parametrize("body", [None, "", "   \n\t"])
def test_empty_message_without_attachments_is_rejected(body) -> None:
    with pytest.raises(ValidationError):
        validate_content(body)


def test_attachment_only_message_is_valid() -> None:
    content = validate_content(None, [AttachmentInput(kind=AttachmentKind.FILE, url=" /f/1 ")])
    assert content.body is None
    assert content.attachments[0].url == "/f/1"


def test_too_long_message_is_rejected() -> None:
    with pytest.raises(ValidationError):
        validate_content("ab " * (settings.message_max_length // 3 + 1))


def test_repeated_characters_look_like_spam() -> None:
    with pytest.raises(ValidationError):
        validate_content("heyyyyyyyyyyyy")
    assert validate_content("heyyyyyyyy").body == "heyyyyyyyy"


def test_long_runs_of_whitespace_are_allowed() -> None:
    assert validate_content("a" + " " * 20 + "b").body is not None


def test_more_than_three_links_is_rejected() -> None:
    body = " ".join(f"https://example.com/{i}" for i in range(4))
    with pytest.raises(ValidationError):
        validate_content(body)


def test_oversized_attachment_is_rejected() -> None:
    attachment = AttachmentInput(
        kind=AttachmentKind.VIDEO,
        url="/f/big",
        size_bytes=settings.max_attachment_bytes + 1,
    )
    with pytest.raises(ValidationError):
        validate_content("look", [attachment])


def test_too_many_attachments_is_rejected() -> None:
    attachments = [
        AttachmentInput(kind=AttachmentKind.IMAGE, url=f"/f/{i}")
        for i in range(settings.max_attachments + 1)
    ]
    with pytest.raises(ValidationError):
        validate_content(None, attachments)


def test_attachment_requires_url() -> None:
    with pytest.raises(ValidationError):
        validate_content(None, [AttachmentInput(kind=AttachmentKind.IMAGE, url="  ")])


def test_unknown_attachment_kind_is_rejected() -> None:
    with pytest.raises(ValidationError):
        validate_content(None, [AttachmentInput(kind="hologram", url="/f/1")])


def test_edit_may_clear_body_only_with_attachments() -> None:
    assert validate_edit("  ", has_attachments=True) is None
    with pytest.raises(ValidationError):
        validate_edit("  ", has_attachments=False)


def test_group_name_limits() -> None:
    assert validate_group_name(" Crew ") == "Crew"
    with pytest.raises(ValidationError):
        validate_group_name("x" * (settings.group_name_max_length + 1))
    with pytest.raises(ValidationError):
        validate_group_name(None)


def test_emoji_validation() -> None:
    assert validate_emoji(" 🎉 ") == "🎉"
    with pytest.raises(ValidationError):
        validate_emoji("")


def test_extract_links_dedupes_and_caps() -> None:
    body = "a https://x.io, b http://y.io/p?q=1 c https://x.io d https://z.io e https://w.io"
    assert extract_links(body) == ["https://x.io", "http://y.io/p?q=1", "https://z.io"]
    assert extract_links(None) == []


def test_preview_truncates_long_bodies() -> None:
    message = Message(body="word " * 100)

    preview = build_preview(message)

    assert len(preview) <= settings.preview_max_length
    assert preview.endswith("...")


def test_preview_of_attachment_only_message() -> None:
    message = Message(body=None)
    message.attachments = [MessageAttachment(kind=AttachmentKind.AUDIO, url="/f/a", position=0)]

    assert build_preview(message) == "[audio]"
