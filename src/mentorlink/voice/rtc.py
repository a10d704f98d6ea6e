"""aiortc implementation of :class:`~mentorlink.voice.media.MediaBackend`."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaPlayer
from aiortc.sdp import candidate_from_sdp
from av import AudioFrame, VideoFrame
from av.error import FFmpegError

from ..config import Settings
from ..schemas import IceConfiguration
from .media import LocalMedia, MediaUnavailableError, PeerCallbacks, SessionDescription

logger = logging.getLogger(__name__)


def blank_frame(frame: Any) -> Any:
    """Return a silent (audio) or black (video) frame with the timing of ``frame``."""

    if isinstance(frame, AudioFrame):
        blank = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
        for plane in blank.planes:
            plane.update(bytes(plane.buffer_size))
        blank.sample_rate = frame.sample_rate
    else:
        blank = VideoFrame(width=frame.width, height=frame.height, format="yuv420p")
        for index, plane in enumerate(blank.planes):
            # luma 0, chroma 128
            plane.update(bytes([0 if index == 0 else 128]) * plane.buffer_size)
    blank.pts = frame.pts
    blank.time_base = frame.time_base
    return blank


class GatedTrack(MediaStreamTrack):
    """Wraps a capture track; while disabled it keeps sending blank frames."""

    def __init__(self, source: MediaStreamTrack) -> None:
        super().__init__()
        self.kind = source.kind
        self.enabled = True
        self._source = source

    async def recv(self) -> Any:
        frame = await self._source.recv()
        if self.enabled:
            return frame
        return blank_frame(frame)

    def stop(self) -> None:
        super().stop()
        self._source.stop()


def parse_remote_candidate(data: Mapping[str, Any]) -> Any | None:
    """Convert browser candidate JSON into an ``RTCIceCandidate``; ``None`` marks end-of-candidates."""

    raw = data.get("candidate") or ""
    if raw.startswith("candidate:"):
        raw = raw[len("candidate:") :]
    if not raw:
        return None
    candidate = candidate_from_sdp(raw)
    candidate.sdpMid = data.get("sdpMid")
    candidate.sdpMLineIndex = data.get("sdpMLineIndex")
    return candidate


def to_rtc_configuration(ice: IceConfiguration) -> RTCConfiguration:
    return RTCConfiguration(
        iceServers=[
            RTCIceServer(urls=server.urls, username=server.username, credential=server.credential)
            for server in ice.ice_servers
        ]
    )


class AiortcPeerConnection:
    def __init__(self, pc: RTCPeerConnection, callbacks: PeerCallbacks) -> None:
        self._pc = pc
        self._callbacks = callbacks

        @pc.on("track")
        async def on_track(track: MediaStreamTrack) -> None:
            await callbacks.on_track(track)

        @pc.on("connectionstatechange")
        async def on_connection_state_change() -> None:
            await callbacks.on_connection_state_change(pc.connectionState)

    @property
    def connection_state(self) -> str:
        return self._pc.connectionState

    def add_track(self, track: Any) -> None:
        self._pc.addTrack(track)

    async def create_offer(self) -> SessionDescription:
        offer = await self._pc.createOffer()
        return {"type": offer.type, "sdp": offer.sdp}

    async def create_answer(self) -> SessionDescription:
        answer = await self._pc.createAnswer()
        return {"type": answer.type, "sdp": answer.sdp}

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        # aiortc gathers candidates here and embeds them in the local SDP
        await self._pc.setLocalDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )
        local = self._pc.localDescription
        return {"type": local.type, "sdp": local.sdp}

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )

    async def add_ice_candidate(self, candidate: Mapping[str, Any]) -> None:
        parsed = parse_remote_candidate(candidate)
        if parsed is None:
            return
        await self._pc.addIceCandidate(parsed)

    async def close(self) -> None:
        await self._pc.close()


class AiortcMediaBackend:
    """Captures devices through FFmpeg and negotiates with ``RTCPeerConnection``."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def acquire_local_media(self, *, audio: bool, video: bool) -> LocalMedia:
        media = LocalMedia()
        try:
            if audio:
                player = MediaPlayer(self._settings.audio_device, format=self._settings.audio_format)
                if player.audio is None:
                    raise MediaUnavailableError(f"No audio stream on {self._settings.audio_device}")
                media.tracks.append(GatedTrack(player.audio))
            if video:
                player = MediaPlayer(
                    self._settings.video_device,
                    format=self._settings.video_format,
                    options={"framerate": "30", "video_size": "640x480"},
                )
                if player.video is None:
                    raise MediaUnavailableError(f"No video stream on {self._settings.video_device}")
                media.tracks.append(GatedTrack(player.video))
        except (OSError, FFmpegError) as exc:
            media.stop()
            raise MediaUnavailableError(str(exc)) from exc
        except MediaUnavailableError:
            media.stop()
            raise
        logger.debug("Acquired local media: %s", [track.kind for track in media.tracks])
        return media

    def create_peer_connection(
        self, ice: IceConfiguration, callbacks: PeerCallbacks
    ) -> AiortcPeerConnection:
        pc = RTCPeerConnection(configuration=to_rtc_configuration(ice))
        return AiortcPeerConnection(pc, callbacks)


__all__ = [
    "AiortcMediaBackend",
    "AiortcPeerConnection",
    "GatedTrack",
    "blank_frame",
    "parse_remote_candidate",
    "to_rtc_configuration",
]
