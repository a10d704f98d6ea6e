"""Attachment validation and upload to the backend object storage."""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from ..api import BackendClient
from ..monitoring.metrics import attachment_rejections_total
from ..schemas import FileDescriptor, MessageType

logger = logging.getLogger(__name__)


class AttachmentRejected(ValueError):
    """Raised before any network call when an attachment violates a constraint."""

    def __init__(self, constraint: str, detail: str) -> None:
        super().__init__(detail)
        self.constraint = constraint
        self.detail = detail


@dataclass(frozen=True, slots=True)
class OutgoingFile:
    """File selected by the user for sending."""

    filename: str
    content: bytes
    content_type: str | None = None

    @classmethod
    def from_path(cls, path: str | Path, *, content_type: str | None = None) -> "OutgoingFile":
        path = Path(path)
        guessed, _ = mimetypes.guess_type(path.name)
        return cls(filename=path.name, content=path.read_bytes(), content_type=content_type or guessed)

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        suffix = Path(self.filename).suffix
        return suffix.lower().lstrip(".")


def classify_attachment(content_type: str | None) -> MessageType:
    if content_type and content_type.startswith("image/"):
        return MessageType.IMAGE
    return MessageType.FILE


def validate_attachment(
    upload: OutgoingFile, *, max_size: int, allowed_extensions: Iterable[str]
) -> None:
    allowed = [ext.lower().lstrip(".") for ext in allowed_extensions]
    if upload.size > max_size:
        limit_mb = max_size / (1024 * 1024)
        raise AttachmentRejected("size", f"File too large. Maximum size is {limit_mb:g}MB")
    if upload.extension not in allowed:
        listing = ", ".join(f".{ext}" for ext in allowed)
        raise AttachmentRejected("extension", f"File type not allowed. Allowed: {listing}")


class UploadGateway:
    """Validates attachments and ships them to ``POST /upload``."""

    def __init__(self, client: BackendClient) -> None:
        self._client = client
        self._settings = client.session.settings

    def validate(self, upload: OutgoingFile) -> None:
        try:
            validate_attachment(
                upload,
                max_size=self._settings.max_attachment_size,
                allowed_extensions=self._settings.allowed_attachment_extensions,
            )
        except AttachmentRejected as exc:
            attachment_rejections_total.labels(exc.constraint).inc()
            logger.info("Rejected attachment %s: %s", upload.filename, exc.detail)
            raise

    async def upload(self, upload: OutgoingFile) -> FileDescriptor:
        self.validate(upload)
        result = await self._client.upload_file(upload.filename, upload.content, upload.content_type)
        url = self._client.session.resolve_url(result.url)
        logger.debug("Uploaded %s as %s (%s bytes)", upload.filename, result.file_id, result.size)
        return result.to_descriptor(url=url)

    def resolve_url(self, url: str | None) -> str:
        return self._client.session.resolve_url(url)
