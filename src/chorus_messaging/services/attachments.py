# src/chorus_messaging/services/attachments.py
"""Attachment store collaborator: raw bytes in, durable URL out."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from chorus_messaging.core.errors import ValidationError
from chorus_messaging.core.settings import settings
from chorus_messaging.models import AttachmentKind
from chorus_messaging.utils.hash import blake3_hexdigest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredAttachment:
    url: str
    kind: AttachmentKind
    content_type: str | None
    size_bytes: int
    digest: str


class AttachmentStore(Protocol):
    def put(
        self, content: bytes, kind: AttachmentKind, content_type: str | None = None
    ) -> StoredAttachment: ...


class LocalAttachmentStore:
    """Content-addressed files on local disk, named by their BLAKE3 digest.

    Uploading the same bytes twice yields the same URL and a single file.
    """

    def __init__(
        self,
        root: str | Path | None = None,
        *,
        base_url: str | None = None,
        max_bytes: int | None = None,
    ) -> None:
        self.root = Path(root if root is not None else settings.attachment_dir)
        self.base_url = (base_url if base_url is not None else settings.attachment_base_url).rstrip(
            "/"
        )
        self.max_bytes = settings.max_attachment_bytes if max_bytes is None else max_bytes

    def put(
        self, content: bytes, kind: AttachmentKind, content_type: str | None = None
    ) -> StoredAttachment:
        if not content:
            raise ValidationError("Attachment is empty")
        if len(content) > self.max_bytes:
            raise ValidationError("Attachment is too large")

        digest = blake3_hexdigest(content)
        path = self.root / digest
        if not path.exists():
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=".upload-")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(content)
                os.replace(tmp_name, path)
            except OSError:
                Path(tmp_name).unlink(missing_ok=True)
                raise
            logger.debug("Stored %d-byte %s attachment %s", len(content), kind.value, digest)

        return StoredAttachment(
            url=f"{self.base_url}/{digest}",
            kind=kind,
            content_type=content_type,
            size_bytes=len(content),
            digest=digest,
        )

    def open(self, digest: str) -> bytes:
        """Return stored bytes for ``digest``."""
        if not digest.isalnum():
            raise ValidationError("Invalid attachment id")
        return (self.root / digest).read_bytes()
