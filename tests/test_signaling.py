from __future__ import annotations

from mentorlink.voice.signaling import (
    SignalType,
    build_signal_envelope,
    ice_candidate,
    normalise_signal_type,
    session_description,
)


def test_normalise_signal_type_accepts_common_spellings() -> None:
    assert normalise_signal_type("offer") is SignalType.OFFER
    assert normalise_signal_type("ANSWER") is SignalType.ANSWER
    assert normalise_signal_type("ice-candidate") is SignalType.ICE_CANDIDATE
    assert normalise_signal_type("ice_candidate") is SignalType.ICE_CANDIDATE
    assert normalise_signal_type("candidate") is SignalType.ICE_CANDIDATE
    assert normalise_signal_type("bye") is None
    assert normalise_signal_type(None) is None


def test_session_description_validation() -> None:
    assert session_description({"type": "offer", "sdp": "v=0"}) == {"type": "offer", "sdp": "v=0"}
    assert session_description({"sdp": "v=0"}, expected=SignalType.ANSWER) == {
        "type": "answer",
        "sdp": "v=0",
    }
    assert session_description({"type": "offer", "sdp": "v=0"}, expected=SignalType.ANSWER) is None
    assert session_description({"type": "offer", "sdp": ""}) is None
    assert session_description("v=0") is None


def test_ice_candidate_shapes() -> None:
    assert ice_candidate("candidate:1 1 udp 1 10.0.0.1 9 typ host") == {
        "candidate": "candidate:1 1 udp 1 10.0.0.1 9 typ host",
        "sdpMid": None,
        "sdpMLineIndex": None,
    }
    assert ice_candidate({"candidate": "c", "sdp_mid": "0", "sdp_mline_index": 0, "usernameFragment": "u"}) == {
        "candidate": "c",
        "sdpMid": "0",
        "sdpMLineIndex": 0,
        "usernameFragment": "u",
    }
    assert ice_candidate({"sdpMid": "0"}) is None


def test_build_signal_envelope() -> None:
    envelope = build_signal_envelope(SignalType.ICE_CANDIDATE, {"candidate": "c"})
    assert envelope == {"type": "ice-candidate", "data": {"candidate": "c"}}
    assert build_signal_envelope("offer", {"sdp": "v=0"})["type"] == "offer"
