from __future__ import annotations

import pytest

pytest.importorskip("aiortc")

from av import AudioFrame, VideoFrame  # noqa: E402

from mentorlink.config import IceServer  # noqa: E402
from mentorlink.schemas import IceConfiguration  # noqa: E402
from mentorlink.voice.media import PeerCallbacks  # noqa: E402
from mentorlink.voice.rtc import (  # noqa: E402
    AiortcMediaBackend,
    blank_frame,
    parse_remote_candidate,
    to_rtc_configuration,
)


async def _noop(*_args) -> None:
    return None


def test_parse_remote_candidate_from_browser_json() -> None:
    candidate = parse_remote_candidate(
        {
            "candidate": "candidate:842163049 1 udp 1677729535 203.0.113.7 46154 typ srflx raddr 10.0.0.2 rport 46154",
            "sdpMid": "0",
            "sdpMLineIndex": 0,
        }
    )
    assert candidate.ip == "203.0.113.7"
    assert candidate.port == 46154
    assert candidate.type == "srflx"
    assert candidate.sdpMid == "0"
    assert candidate.sdpMLineIndex == 0


def test_end_of_candidates_is_ignored() -> None:
    assert parse_remote_candidate({"candidate": "", "sdpMid": "0"}) is None


def test_rtc_configuration_from_ice_servers() -> None:
    config = to_rtc_configuration(
        IceConfiguration(ice_servers=[IceServer(urls=["turn:t.test"], username="u", credential="p")])
    )
    (server,) = config.iceServers
    assert server.urls == ["turn:t.test"]
    assert server.username == "u"


def test_blank_video_frame_keeps_timing() -> None:
    frame = VideoFrame(width=32, height=24, format="yuv420p")
    frame.pts = 3000
    blank = blank_frame(frame)
    assert (blank.width, blank.height) == (32, 24)
    assert blank.pts == 3000
    assert not any(bytes(blank.planes[0]))


def test_blank_audio_frame_is_silent() -> None:
    frame = AudioFrame(format="s16", layout="mono", samples=160)
    frame.sample_rate = 8000
    frame.pts = 160
    blank = blank_frame(frame)
    assert blank.samples == 160
    assert blank.sample_rate == 8000
    assert not any(bytes(blank.planes[0]))


@pytest.mark.anyio("asyncio")
async def test_offer_contains_local_tracks(settings) -> None:
    backend = AiortcMediaBackend(settings)
    pc = backend.create_peer_connection(
        IceConfiguration(), PeerCallbacks(_noop, _noop, _noop)
    )
    pc._pc.addTransceiver("audio", direction="sendrecv")
    offer = await pc.create_offer()
    local = await pc.set_local_description(offer)
    assert local["type"] == "offer"
    assert "m=audio" in local["sdp"]
    await pc.close()
    assert pc.connection_state == "closed"
