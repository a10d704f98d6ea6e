from __future__ import annotations

import pytest

from mentorlink.chat import (
    AttachmentRejected,
    OutgoingFile,
    UploadGateway,
    classify_attachment,
    validate_attachment,
)
from mentorlink.config import DEFAULT_ALLOWED_EXTENSIONS
from mentorlink.monitoring.metrics import attachment_rejections_total
from mentorlink.schemas import MessageType

MiB = 1024 * 1024


def _validate(upload: OutgoingFile) -> None:
    validate_attachment(upload, max_size=10 * MiB, allowed_extensions=DEFAULT_ALLOWED_EXTENSIONS)


def test_oversized_file_is_rejected() -> None:
    upload = OutgoingFile("notes.pdf", b"\0" * (11 * MiB), "application/pdf")
    with pytest.raises(AttachmentRejected) as excinfo:
        _validate(upload)
    assert excinfo.value.constraint == "size"
    assert excinfo.value.detail == "File too large. Maximum size is 10MB"


def test_disallowed_extension_is_rejected() -> None:
    with pytest.raises(AttachmentRejected) as excinfo:
        _validate(OutgoingFile("setup.exe", b"MZ", "application/octet-stream"))
    assert excinfo.value.constraint == "extension"
    assert excinfo.value.detail.startswith("File type not allowed. Allowed: .pdf, .doc")


def test_extension_check_is_case_insensitive() -> None:
    _validate(OutgoingFile("Report.PDF", b"%PDF", "application/pdf"))


def test_size_limit_is_inclusive() -> None:
    _validate(OutgoingFile("scan.png", b"\0" * (10 * MiB), "image/png"))


def test_classification_by_content_type() -> None:
    assert classify_attachment("image/png") is MessageType.IMAGE
    assert classify_attachment("application/pdf") is MessageType.FILE
    assert classify_attachment(None) is MessageType.FILE


def test_outgoing_file_from_path(tmp_path) -> None:
    path = tmp_path / "photo.jpg"
    path.write_bytes(b"\xff\xd8\xff")
    upload = OutgoingFile.from_path(path)
    assert upload.filename == "photo.jpg"
    assert upload.content_type == "image/jpeg"
    assert upload.size == 3
    assert upload.extension == "jpg"


@pytest.mark.anyio("asyncio")
async def test_gateway_rejects_before_any_request(make_client, marketplace) -> None:
    gateway = UploadGateway(make_client("alice"))
    with pytest.raises(AttachmentRejected):
        await gateway.upload(OutgoingFile("big.pdf", b"\0" * (11 * MiB), "application/pdf"))
    assert marketplace.requests == []
    assert attachment_rejections_total.value("size") == 1.0


@pytest.mark.anyio("asyncio")
async def test_gateway_uploads_and_resolves_url(make_client, marketplace) -> None:
    gateway = UploadGateway(make_client("alice"))
    descriptor = await gateway.upload(OutgoingFile("scan.png", b"\x89PNG" * 16, "image/png"))

    assert marketplace.count("POST", "/upload") == 1
    assert descriptor.filename == "scan.png"
    assert descriptor.url.startswith("http://testserver/uploads/")
    assert descriptor.is_image
