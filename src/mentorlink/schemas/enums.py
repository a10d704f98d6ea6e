from __future__ import annotations

from enum import Enum


class MessageType(str, Enum):
    """Kinds of chat message bodies."""

    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


class CallType(str, Enum):
    """Media requested for a call."""

    VOICE = "voice"
    VIDEO = "video"


class CallDirection(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class CallStatus(str, Enum):
    """States of the call negotiation state machine."""

    IDLE = "idle"
    INITIATING = "initiating"
    RINGING = "ringing"
    CONNECTING = "connecting"
    ACTIVE = "active"
    ENDED = "ended"
    REJECTED = "rejected"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_CALL_STATUSES


TERMINAL_CALL_STATUSES = frozenset({CallStatus.ENDED, CallStatus.REJECTED, CallStatus.FAILED})
