"""Interfaces between the call state machine and a WebRTC implementation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Protocol, runtime_checkable

from ..config import Settings
from ..schemas import IceConfiguration

logger = logging.getLogger(__name__)

SessionDescription = dict[str, str]


class MediaUnavailableError(RuntimeError):
    """Raised when the camera or microphone cannot be acquired."""


@runtime_checkable
class LocalTrack(Protocol):
    kind: str
    enabled: bool

    def stop(self) -> None: ...


@dataclass(slots=True)
class LocalMedia:
    """Local capture tracks owned by exactly one call."""

    tracks: list[LocalTrack] = field(default_factory=list)
    stopped: bool = False

    @property
    def audio_tracks(self) -> list[LocalTrack]:
        return [track for track in self.tracks if track.kind == "audio"]

    @property
    def video_tracks(self) -> list[LocalTrack]:
        return [track for track in self.tracks if track.kind == "video"]

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        for track in self.tracks:
            try:
                track.stop()
            except Exception:
                logger.exception("Failed to stop local %s track", track.kind)


@dataclass(slots=True)
class PeerCallbacks:
    on_ice_candidate: Callable[[Mapping[str, Any]], Awaitable[None]]
    on_track: Callable[[Any], Awaitable[None]]
    on_connection_state_change: Callable[[str], Awaitable[None]]


class PeerConnection(Protocol):
    @property
    def connection_state(self) -> str: ...

    def add_track(self, track: LocalTrack) -> None: ...

    async def create_offer(self) -> SessionDescription: ...

    async def create_answer(self) -> SessionDescription: ...

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        """Apply ``description`` and return the description to send to the peer."""
        ...

    async def set_remote_description(self, description: SessionDescription) -> None: ...

    async def add_ice_candidate(self, candidate: Mapping[str, Any]) -> None: ...

    async def close(self) -> None: ...


class MediaBackend(Protocol):
    async def acquire_local_media(self, *, audio: bool, video: bool) -> LocalMedia: ...

    def create_peer_connection(
        self, ice: IceConfiguration, callbacks: PeerCallbacks
    ) -> PeerConnection: ...


def default_media_backend(settings: Settings) -> MediaBackend:
    """Return the aiortc backend; requires the ``media`` extra."""

    try:
        from .rtc import AiortcMediaBackend
    except ImportError as exc:
        raise MediaUnavailableError(
            "The 'aiortc' package is required for calls; install mentorlink-realtime[media]"
        ) from exc
    return AiortcMediaBackend(settings)
