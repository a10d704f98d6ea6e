"""Voice and video calls negotiated over the realtime connection."""

from .calls import CALL_EVENT_TYPES, CallController, CallSession, CallStateError
from .media import (
    LocalMedia,
    LocalTrack,
    MediaBackend,
    MediaUnavailableError,
    PeerCallbacks,
    PeerConnection,
    default_media_backend,
)
from .signaling import SignalType, build_signal_envelope, normalise_signal_type

__all__ = [
    "CALL_EVENT_TYPES",
    "CallController",
    "CallSession",
    "CallStateError",
    "LocalMedia",
    "LocalTrack",
    "MediaBackend",
    "MediaUnavailableError",
    "PeerCallbacks",
    "PeerConnection",
    "SignalType",
    "build_signal_envelope",
    "default_media_backend",
    "normalise_signal_type",
]
