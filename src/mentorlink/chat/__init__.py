"""Chat sessions and attachment uploads."""

from .session import CHAT_EVENT_TYPES, ChatSession, MessageRejected
from .uploads import (
    AttachmentRejected,
    OutgoingFile,
    UploadGateway,
    classify_attachment,
    validate_attachment,
)

__all__ = [
    "AttachmentRejected",
    "CHAT_EVENT_TYPES",
    "ChatSession",
    "MessageRejected",
    "OutgoingFile",
    "UploadGateway",
    "classify_attachment",
    "validate_attachment",
]
