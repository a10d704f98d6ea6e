"""Call negotiation state machine for one voice or video call.

Status flow::

    idle -> initiating -> ringing -> connecting -> active -> ended
    ringing (incoming) -> connecting -> active -> ended
    any non-terminal -> rejected | failed | ended

The controller owns the local media, the peer connection and its share of
the realtime connection. Every path out of the call goes through
:meth:`CallController.cleanup`, which is safe to run more than once.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping

from ..api import ApiError, BackendClient
from ..monitoring.metrics import call_transitions_total, ice_config_fallbacks_total
from ..notifications import NotificationCenter
from ..realtime import ConnectionBroker, EventStream, TransportUnavailableError
from ..realtime.events import (
    CallAnswered,
    CallEnded,
    CallRejected,
    ConnectionLost,
    Event,
    IncomingCall,
    WebRTCSignal,
)
from ..schemas import CallDirection, CallStatus, CallType, IceConfiguration
from .media import (
    LocalMedia,
    LocalTrack,
    MediaBackend,
    MediaUnavailableError,
    PeerCallbacks,
    PeerConnection,
    default_media_backend,
)
from .signaling import (
    SignalType,
    build_signal_envelope,
    ice_candidate,
    normalise_signal_type,
    session_description,
)

logger = logging.getLogger(__name__)

CALL_EVENT_TYPES = (CallAnswered.type, CallRejected.type, CallEnded.type, WebRTCSignal.type)

EndCallback = Callable[["CallSession"], Awaitable[None] | None]
StatusCallback = Callable[["CallSession"], None]


class CallStateError(RuntimeError):
    """Raised when an operation is not valid for the call's direction or status."""


@dataclass(slots=True)
class CallSession:
    call_type: CallType
    direction: CallDirection
    call_id: str | None = None
    booking_id: str | None = None
    status: CallStatus = CallStatus.IDLE
    peer_name: str | None = None
    peer_photo: str | None = None
    started_at: datetime | None = None
    duration_seconds: int = 0
    end_reason: str | None = None

    @property
    def formatted_duration(self) -> str:
        minutes, seconds = divmod(max(self.duration_seconds, 0), 60)
        return f"{minutes:02d}:{seconds:02d}"


class CallController:
    """Drives one call from initiation (or ringing) to teardown."""

    def __init__(
        self,
        client: BackendClient,
        broker: ConnectionBroker,
        session: CallSession,
        *,
        notifications: NotificationCenter,
        media: MediaBackend | None = None,
        on_end: EndCallback | None = None,
        on_status_change: StatusCallback | None = None,
    ) -> None:
        self._client = client
        self._broker = broker
        self._notifications = notifications
        self._settings = client.session.settings
        self._media_backend = media
        self._on_end = on_end
        self._on_status_change = on_status_change
        self.session = session
        self.remote_tracks: list[Any] = []

        self._ice: IceConfiguration | None = None
        self._local_media: LocalMedia | None = None
        self._pc: PeerConnection | None = None
        self._pc_lock = asyncio.Lock()
        self._stream: EventStream | None = None
        self._pump: asyncio.Task[None] | None = None
        self._acquired = False
        self._mounted = False
        self._answered = False
        self._peer_answered = False
        self._cleaned = False
        self._end_reported = False
        self._setup_timer: asyncio.Task[None] | None = None
        self._ticker: asyncio.Task[None] | None = None

    @classmethod
    def outgoing(
        cls,
        client: BackendClient,
        broker: ConnectionBroker,
        *,
        booking_id: str | None,
        call_type: CallType | str,
        peer_name: str | None = None,
        peer_photo: str | None = None,
        **kwargs: Any,
    ) -> "CallController":
        session = CallSession(
            call_type=CallType(call_type),
            direction=CallDirection.OUTGOING,
            booking_id=booking_id,
            peer_name=peer_name,
            peer_photo=peer_photo,
        )
        return cls(client, broker, session, **kwargs)

    @classmethod
    def incoming(
        cls, client: BackendClient, broker: ConnectionBroker, event: IncomingCall, **kwargs: Any
    ) -> "CallController":
        session = CallSession(
            call_type=event.call.call_type,
            direction=CallDirection.INCOMING,
            call_id=event.call.call_id,
            booking_id=event.call.booking_id,
            status=CallStatus.RINGING,
            peer_name=event.caller.display_name or None,
            peer_photo=event.caller.picture,
        )
        return cls(client, broker, session, **kwargs)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def status(self) -> CallStatus:
        return self.session.status

    @property
    def closed(self) -> bool:
        return self._cleaned

    @property
    def ice_configuration(self) -> IceConfiguration | None:
        return self._ice

    @property
    def peer_connection(self) -> PeerConnection | None:
        return self._pc

    @property
    def local_media(self) -> LocalMedia | None:
        return self._local_media

    @property
    def audio_enabled(self) -> bool:
        tracks = self._local_media.audio_tracks if self._local_media else []
        return bool(tracks) and tracks[0].enabled

    @property
    def video_enabled(self) -> bool:
        tracks = self._local_media.video_tracks if self._local_media else []
        return bool(tracks) and tracks[0].enabled

    def _transition(self, status: CallStatus) -> None:
        if self.session.status is status:
            return
        logger.debug("Call %s: %s -> %s", self.session.call_id, self.session.status.value, status.value)
        self.session.status = status
        call_transitions_total.labels(status.value).inc()
        if self._on_status_change is not None:
            self._on_status_change(self.session)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    async def prepare_ice(self) -> IceConfiguration:
        """Fetch ICE servers from the backend, falling back to public STUN."""

        if self._ice is not None:
            return self._ice
        try:
            ice = await self._client.fetch_ice_configuration()
        except ApiError as exc:
            logger.warning("Failed to fetch TURN config, using fallback STUN servers: %s", exc.detail)
            ice = None
        if ice is None or not ice.ice_servers:
            ice_config_fallbacks_total.inc()
            ice = IceConfiguration(ice_servers=list(self._settings.fallback_ice_servers), fallback=True)
        self._ice = ice
        return ice

    async def mount(self) -> bool:
        """Fetch ICE config and subscribe to call events. Returns ``False`` if the call failed."""

        if self._mounted:
            return not self._cleaned
        self._mounted = True
        self._stream = self._broker.subscribe(*CALL_EVENT_TYPES)
        self._pump = asyncio.create_task(self._consume(self._stream), name="call-events")
        try:
            await self._broker.acquire()
        except TransportUnavailableError as exc:
            logger.warning("Call signalling unavailable: %s", exc)
            self._notifications.error("Connection error")
            await self._finish(CallStatus.FAILED, "connection_error")
            return False
        self._acquired = True
        await self.prepare_ice()
        if self._cleaned:
            return False
        if self.session.status is CallStatus.RINGING:
            self._arm_setup_timer()
        return True

    async def _consume(self, stream: EventStream) -> None:
        async for event in stream:
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception("Call failed to process %s", event.type)

    def _arm_setup_timer(self) -> None:
        if self._setup_timer is None and not self._cleaned:
            self._setup_timer = asyncio.create_task(self._setup_timeout(), name="call-setup-timeout")

    async def _setup_timeout(self) -> None:
        await asyncio.sleep(self._settings.call_setup_timeout_seconds)
        if self._cleaned or self.session.status not in (
            CallStatus.INITIATING,
            CallStatus.RINGING,
            CallStatus.CONNECTING,
        ):
            return
        logger.info("Call %s was not established in time", self.session.call_id)
        self._notifications.error("No answer")
        await self._post_end()
        await self._finish(CallStatus.FAILED, "no_answer")

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------
    async def initiate(self) -> bool:
        if self.session.direction is not CallDirection.OUTGOING:
            raise CallStateError("Only outgoing calls can be initiated")
        if self.session.status is not CallStatus.IDLE:
            raise CallStateError(f"Cannot initiate a call that is {self.session.status.value}")
        if not await self.mount():
            return False
        self._transition(CallStatus.INITIATING)
        try:
            info = await self._client.initiate_call(self.session.booking_id, self.session.call_type)
        except ApiError as exc:
            logger.warning("Error initiating call: %s", exc.detail)
            self._notifications.error("Failed to start call")
            await self._finish(CallStatus.ENDED, "initiate_failed")
            return False
        if self._cleaned:
            return False
        if info is not None:
            self.session.call_id = info.call_id
        self._transition(CallStatus.RINGING)
        self._arm_setup_timer()
        if self._peer_answered:
            await self._on_peer_answered()
        return not self._cleaned

    async def answer(self) -> bool:
        if self.session.direction is not CallDirection.INCOMING:
            raise CallStateError("Only incoming calls can be answered")
        if self._answered or self._cleaned or self.session.status.is_terminal:
            return False
        if not await self.mount():
            return False
        self._answered = True
        try:
            await self._client.answer_call(self.session.call_id)
        except ApiError as exc:
            logger.warning("Error answering call %s: %s", self.session.call_id, exc.detail)
            self._answered = False
            self._notifications.error("Failed to answer call")
            return False
        if self._cleaned:
            return False
        if self.session.status is CallStatus.RINGING:
            self._transition(CallStatus.CONNECTING)
        return await self._ensure_peer_connection()

    async def reject(self) -> None:
        if self.session.direction is not CallDirection.INCOMING:
            raise CallStateError("Only incoming calls can be rejected")
        if self._cleaned:
            return
        try:
            await self._client.reject_call(self.session.call_id)
        except ApiError as exc:
            logger.warning("Error rejecting call %s: %s", self.session.call_id, exc.detail)
        await self._finish(CallStatus.REJECTED, "rejected")

    async def end(self) -> None:
        """Hang up. Backend errors are logged and local teardown happens regardless."""

        if self._cleaned:
            return
        await self._post_end()
        await self._finish(CallStatus.ENDED, "hangup")

    async def _post_end(self) -> None:
        if self.session.call_id is None:
            return
        try:
            await self._client.end_call(self.session.call_id)
        except ApiError as exc:
            logger.error("Error ending call %s: %s", self.session.call_id, exc.detail)

    def toggle_audio(self) -> bool:
        return self._toggle(self._local_media.audio_tracks if self._local_media else [])

    def toggle_video(self) -> bool:
        return self._toggle(self._local_media.video_tracks if self._local_media else [])

    @staticmethod
    def _toggle(tracks: list[LocalTrack]) -> bool:
        if not tracks:
            return False
        enabled = not tracks[0].enabled
        for track in tracks:
            track.enabled = enabled
        return enabled

    # ------------------------------------------------------------------
    # Realtime events
    # ------------------------------------------------------------------
    async def handle_event(self, event: Event) -> None:
        if self._cleaned:
            return
        if isinstance(event, CallAnswered):
            if self.session.direction is not CallDirection.OUTGOING:
                return
            if self.session.status is CallStatus.INITIATING:
                # the call id is not known yet; offer once initiate() returns
                self._peer_answered = True
            elif self.session.status is CallStatus.RINGING:
                await self._on_peer_answered()
        elif isinstance(event, CallRejected):
            self._notifications.info("Call declined")
            await self._finish(CallStatus.REJECTED, "remote_rejected")
        elif isinstance(event, CallEnded):
            self._notifications.info("Call ended")
            await self._finish(CallStatus.ENDED, "remote_ended")
        elif isinstance(event, WebRTCSignal):
            await self._handle_signal(event)
        elif isinstance(event, ConnectionLost):
            if event.error:
                logger.warning("Call signalling connection lost: %s", event.error)
                self._notifications.error("Connection error")

    async def _on_peer_answered(self) -> None:
        self._transition(CallStatus.CONNECTING)
        if not await self._ensure_peer_connection():
            return
        pc = self._pc
        try:
            offer = await pc.create_offer()
            local = await pc.set_local_description(offer)
        except Exception:
            if self._cleaned:
                return
            logger.exception("Error creating offer for call %s", self.session.call_id)
            await self._negotiation_failed()
            return
        if not self._cleaned:
            await self._send_signal(SignalType.OFFER, local)

    async def _handle_signal(self, event: WebRTCSignal) -> None:
        kind = normalise_signal_type(event.signal_type)
        if kind is SignalType.OFFER:
            description = session_description(event.data, expected=SignalType.OFFER)
            if description is None:
                logger.warning("Ignoring malformed offer for call %s", self.session.call_id)
                return
            if not await self._ensure_peer_connection():
                return
            pc = self._pc
            try:
                await pc.set_remote_description(description)
                answer = await pc.create_answer()
                local = await pc.set_local_description(answer)
            except Exception:
                if self._cleaned:
                    return
                logger.exception("Error handling offer for call %s", self.session.call_id)
                await self._negotiation_failed()
                return
            if not self._cleaned:
                await self._send_signal(SignalType.ANSWER, local)
        elif kind is SignalType.ANSWER:
            description = session_description(event.data, expected=SignalType.ANSWER)
            if description is None or self._pc is None:
                logger.warning("Ignoring answer for call %s", self.session.call_id)
                return
            try:
                await self._pc.set_remote_description(description)
            except Exception:
                if self._cleaned:
                    return
                logger.exception("Error applying answer for call %s", self.session.call_id)
                await self._negotiation_failed()
        elif kind is SignalType.ICE_CANDIDATE:
            candidate = ice_candidate(event.data)
            if candidate is None or self._pc is None:
                logger.debug("Dropping ICE candidate for call %s", self.session.call_id)
                return
            try:
                await self._pc.add_ice_candidate(candidate)
            except Exception as exc:
                logger.warning("Error adding ICE candidate: %s", exc)
        else:
            logger.debug("Ignoring signal %r", event.signal_type)

    async def _negotiation_failed(self) -> None:
        self._notifications.error("Call setup failed")
        await self._post_end()
        await self._finish(CallStatus.FAILED, "negotiation_failed")

    # ------------------------------------------------------------------
    # Peer connection
    # ------------------------------------------------------------------
    async def _ensure_peer_connection(self) -> bool:
        async with self._pc_lock:
            if self._pc is not None:
                return True
            if self._cleaned:
                return False
            if self._local_media is None:
                try:
                    backend = self._resolve_media_backend()
                    media = await backend.acquire_local_media(
                        audio=True, video=self.session.call_type is CallType.VIDEO
                    )
                except MediaUnavailableError as exc:
                    logger.warning("Error accessing media devices: %s", exc)
                    self._notifications.error("Could not access camera/microphone")
                    await self._post_end()
                    await self._finish(CallStatus.FAILED, "media_error")
                    return False
                if self._cleaned:
                    media.stop()
                    return False
                self._local_media = media
            ice = await self.prepare_ice()
            pc = self._resolve_media_backend().create_peer_connection(
                ice,
                PeerCallbacks(
                    on_ice_candidate=self._on_local_candidate,
                    on_track=self._on_remote_track,
                    on_connection_state_change=self._on_connection_state,
                ),
            )
            for track in self._local_media.tracks:
                pc.add_track(track)
            self._pc = pc
            return True

    def _resolve_media_backend(self) -> MediaBackend:
        if self._media_backend is None:
            self._media_backend = default_media_backend(self._settings)
        return self._media_backend

    async def _on_local_candidate(self, candidate: Mapping[str, Any]) -> None:
        payload = ice_candidate(candidate)
        if payload is not None and not self._cleaned:
            await self._send_signal(SignalType.ICE_CANDIDATE, payload)

    async def _on_remote_track(self, track: Any) -> None:
        if self._cleaned:
            return
        self.remote_tracks.append(track)
        if self.session.status is CallStatus.ACTIVE:
            return
        self._cancel(self._setup_timer)
        self._setup_timer = None
        self.session.started_at = datetime.now(timezone.utc)
        self.session.duration_seconds = 0
        self._transition(CallStatus.ACTIVE)
        self._ticker = asyncio.create_task(self._tick(), name="call-duration")
        logger.info("Call %s is active", self.session.call_id)

    async def _on_connection_state(self, state: str) -> None:
        if self._cleaned:
            return
        if state in ("disconnected", "failed") and self.session.status in (
            CallStatus.CONNECTING,
            CallStatus.ACTIVE,
        ):
            self._notifications.info("Call disconnected")
            await self._finish(CallStatus.ENDED, "disconnected")

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self._settings.call_duration_tick_seconds)
            self.session.duration_seconds += 1

    async def _send_signal(self, kind: SignalType, data: Mapping[str, Any]) -> None:
        if self.session.call_id is None:
            logger.warning("Cannot send %s before the call has an id", kind.value)
            return
        try:
            await self._client.send_signal(self.session.call_id, build_signal_envelope(kind, data))
        except ApiError as exc:
            logger.error("Error sending %s signal: %s", kind.value, exc.detail)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    async def _finish(self, status: CallStatus, reason: str) -> None:
        if self._cleaned:
            return
        self.session.end_reason = reason
        self._transition(status)
        await self.cleanup()

    async def cleanup(self) -> None:
        """Release media, the peer connection and the realtime connection. Idempotent."""

        if self._cleaned:
            return
        self._cleaned = True
        if not self.session.status.is_terminal:
            self.session.end_reason = self.session.end_reason or "hangup"
            self._transition(CallStatus.ENDED)

        for task in (self._setup_timer, self._ticker):
            self._cancel(task)
        self._setup_timer = self._ticker = None

        media, self._local_media = self._local_media, None
        if media is not None:
            media.stop()
        pc, self._pc = self._pc, None
        if pc is not None:
            try:
                await pc.close()
            except Exception:
                logger.exception("Error closing peer connection")

        stream, self._stream = self._stream, None
        if stream is not None:
            stream.close()
        pump, self._pump = self._pump, None
        if pump is not None and pump is not asyncio.current_task():
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump
        if self._acquired:
            self._acquired = False
            await self._broker.release()

        await self._report_end()

    async def _report_end(self) -> None:
        if self._end_reported or self._on_end is None:
            return
        self._end_reported = True
        result = self._on_end(self.session)
        if inspect.isawaitable(result):
            await result

    @staticmethod
    def _cancel(task: asyncio.Task[None] | None) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()


__all__ = [
    "CALL_EVENT_TYPES",
    "CallController",
    "CallSession",
    "CallStateError",
]
