"""Typed realtime frames exchanged over the per-user websocket.

Inbound frames are JSON envelopes ``{"type": ..., ...payload}``. They are
decoded into a closed set of event classes; anything the client does not
understand becomes :class:`UnknownEvent` so newer servers never break older
clients. Outbound commands serialise themselves with ``to_payload``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Union

from pydantic import ValidationError

from ..schemas import CallerInfo, CallInfo, Message

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Inbound events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NewMessage:
    type = "new_message"
    message: Message


@dataclass(frozen=True, slots=True)
class UserTyping:
    type = "user_typing"
    user_id: str
    conversation_id: str | None = None


@dataclass(frozen=True, slots=True)
class UserStopTyping:
    type = "user_stop_typing"
    user_id: str
    conversation_id: str | None = None


@dataclass(frozen=True, slots=True)
class IncomingCall:
    type = "incoming_call"
    call: CallInfo
    caller: CallerInfo = field(default_factory=CallerInfo)


@dataclass(frozen=True, slots=True)
class CallAnswered:
    type = "call_answered"


@dataclass(frozen=True, slots=True)
class CallRejected:
    type = "call_rejected"


@dataclass(frozen=True, slots=True)
class CallEnded:
    type = "call_ended"


@dataclass(frozen=True, slots=True)
class WebRTCSignal:
    type = "webrtc_signal"
    signal_type: str
    data: Any = None


@dataclass(frozen=True, slots=True)
class UnknownEvent:
    type: str
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ConnectionLost:
    """Local event surfaced to subscribers when the transport fails."""

    type = "connection_lost"
    error: str | None = None


Event = Union[
    NewMessage,
    UserTyping,
    UserStopTyping,
    IncomingCall,
    CallAnswered,
    CallRejected,
    CallEnded,
    WebRTCSignal,
    UnknownEvent,
    ConnectionLost,
]


def _str_or_none(value: Any) -> str | None:
    return None if value is None else str(value)


_DECODERS: dict[str, Callable[[Mapping[str, Any]], Event]] = {
    NewMessage.type: lambda data: NewMessage(message=Message.model_validate(data["message"])),
    UserTyping.type: lambda data: UserTyping(
        user_id=str(data["user_id"]), conversation_id=_str_or_none(data.get("conversation_id"))
    ),
    UserStopTyping.type: lambda data: UserStopTyping(
        user_id=str(data["user_id"]), conversation_id=_str_or_none(data.get("conversation_id"))
    ),
    IncomingCall.type: lambda data: IncomingCall(
        call=CallInfo.model_validate(data["call"]),
        caller=CallerInfo.model_validate(data.get("caller") or {}),
    ),
    CallAnswered.type: lambda data: CallAnswered(),
    CallRejected.type: lambda data: CallRejected(),
    CallEnded.type: lambda data: CallEnded(),
    WebRTCSignal.type: lambda data: WebRTCSignal(
        signal_type=str(data["signal_type"]), data=data.get("data")
    ),
}


def decode_event(data: Mapping[str, Any]) -> Event:
    """Turn a decoded JSON envelope into a typed event."""

    event_type = str(data.get("type", ""))
    decoder = _DECODERS.get(event_type)
    if decoder is None:
        logger.debug("Ignoring realtime frame with unknown type %r", event_type)
        return UnknownEvent(type=event_type, payload=dict(data))
    try:
        return decoder(data)
    except (KeyError, TypeError, ValueError, ValidationError):
        logger.warning("Discarded malformed %s frame", event_type, exc_info=logger.isEnabledFor(logging.DEBUG))
        return UnknownEvent(type=event_type, payload=dict(data))


def parse_event(raw: str | bytes) -> Event | None:
    """Decode a websocket text frame; returns ``None`` for non-JSON frames."""

    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Discarded realtime frame that is not valid JSON")
        return None
    if not isinstance(data, dict):
        logger.warning("Discarded realtime frame that is not a JSON object")
        return None
    return decode_event(data)


# ---------------------------------------------------------------------------
# Outbound commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class JoinConversation:
    type = "join_conversation"
    conversation_id: str

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "conversation_id": self.conversation_id}


@dataclass(frozen=True, slots=True)
class Typing:
    type = "typing"
    conversation_id: str

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "conversation_id": self.conversation_id}


@dataclass(frozen=True, slots=True)
class StopTyping:
    type = "stop_typing"
    conversation_id: str

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "conversation_id": self.conversation_id}


Command = Union[JoinConversation, Typing, StopTyping]


def encode_command(command: Command) -> str:
    return json.dumps(command.to_payload())
