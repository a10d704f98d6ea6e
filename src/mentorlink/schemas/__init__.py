"""Pydantic schemas for the backend REST and realtime payloads."""

from .calls import CallerInfo, CallInfo, IceConfiguration
from .enums import CallDirection, CallStatus, CallType, MessageType, TERMINAL_CALL_STATUSES
from .messages import (
    MAX_ATTACHMENT_BYTES,
    ConversationPeer,
    ConversationSummary,
    FileDescriptor,
    Message,
    OutgoingMessage,
    UploadResult,
)

__all__ = [
    "CallDirection",
    "CallInfo",
    "CallStatus",
    "CallType",
    "CallerInfo",
    "ConversationPeer",
    "ConversationSummary",
    "FileDescriptor",
    "IceConfiguration",
    "MAX_ATTACHMENT_BYTES",
    "Message",
    "MessageType",
    "OutgoingMessage",
    "TERMINAL_CALL_STATUSES",
    "UploadResult",
]
