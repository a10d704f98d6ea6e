"""Realtime connection, event dispatch and typing indicators."""

from .broker import ConnectionBroker, EventStream
from .events import (  # noqa: F401
    CallAnswered,
    CallEnded,
    CallRejected,
    Command,
    ConnectionLost,
    Event,
    IncomingCall,
    JoinConversation,
    NewMessage,
    StopTyping,
    Typing,
    UnknownEvent,
    UserStopTyping,
    UserTyping,
    WebRTCSignal,
    decode_event,
    parse_event,
)
from .presence import PeerTypingStore, TypingTracker
from .transport import (
    ConnectionState,
    RealtimeConnection,
    Subscription,
    TransportUnavailableError,
    connect,
)

__all__ = [
    "ConnectionBroker",
    "ConnectionState",
    "EventStream",
    "PeerTypingStore",
    "RealtimeConnection",
    "Subscription",
    "TransportUnavailableError",
    "TypingTracker",
    "connect",
    "decode_event",
    "parse_event",
]
