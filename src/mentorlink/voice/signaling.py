"""Helpers for the WebRTC signalling payloads relayed through the backend.

Signals travel out through ``POST /calls/{call_id}/signal`` and come back
to the peer as ``webrtc_signal`` frames. Browsers and aiortc disagree on a
few spellings, so everything is normalised here before it reaches the call
state machine.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping


class SignalType(str, Enum):
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"


_SIGNAL_ALIASES = {
    "candidate": SignalType.ICE_CANDIDATE,
    "icecandidate": SignalType.ICE_CANDIDATE,
    "ice": SignalType.ICE_CANDIDATE,
}


def normalise_signal_type(value: Any) -> SignalType | None:
    """Return the signal kind for ``value`` or ``None`` when it is not understood."""

    if not isinstance(value, str):
        return None
    lowered = value.strip().lower().replace("_", "-")
    try:
        return SignalType(lowered)
    except ValueError:
        return _SIGNAL_ALIASES.get(lowered.replace("-", ""))


def session_description(data: Any, *, expected: SignalType | None = None) -> Dict[str, str] | None:
    """Validate an SDP description ``{"type": ..., "sdp": ...}``."""

    if not isinstance(data, Mapping):
        return None
    sdp = data.get("sdp")
    kind = data.get("type") or (expected.value if expected else None)
    if not isinstance(sdp, str) or not sdp or kind not in {"offer", "answer", "pranswer", "rollback"}:
        return None
    if expected is not None and kind != expected.value:
        return None
    return {"type": kind, "sdp": sdp}


def ice_candidate(data: Any) -> Dict[str, Any] | None:
    """Normalise a candidate to the browser JSON shape used on the wire."""

    if isinstance(data, str):
        return {"candidate": data, "sdpMid": None, "sdpMLineIndex": None}
    if not isinstance(data, Mapping) or not isinstance(data.get("candidate"), str):
        return None
    body: Dict[str, Any] = {
        "candidate": data["candidate"],
        "sdpMid": data.get("sdpMid", data.get("sdp_mid")),
        "sdpMLineIndex": data.get("sdpMLineIndex", data.get("sdp_mline_index")),
    }
    for key, value in data.items():
        if key in {"candidate", "sdpMid", "sdpMLineIndex", "sdp_mid", "sdp_mline_index"}:
            continue
        body[key] = value
    return body


def build_signal_envelope(kind: SignalType, data: Mapping[str, Any]) -> Dict[str, Any]:
    """Body of ``POST /calls/{call_id}/signal``."""

    return {"type": SignalType(kind).value, "data": dict(data)}


__all__ = [
    "SignalType",
    "build_signal_envelope",
    "ice_candidate",
    "normalise_signal_type",
    "session_description",
]
