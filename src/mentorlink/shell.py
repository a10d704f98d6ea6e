"""Wiring between dashboard surfaces and the chat and call controllers.

A dashboard (client or counselor) owns one :class:`DashboardShell`. The shell
keeps a realtime subscription for incoming calls and background messages,
opens chat sessions on request and runs at most one call at a time.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from .api import BackendClient
from .chat import ChatSession
from .notifications import NotificationCenter
from .realtime import ConnectionBroker, EventStream, TransportUnavailableError
from .realtime.events import ConnectionLost, Event, IncomingCall, NewMessage
from .schemas import CallType
from .session import SessionContext
from .voice import CallController, CallSession, CallStateError, MediaBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ChatTarget:
    other_user_id: str
    other_user_name: str | None = None
    other_user_photo: str | None = None
    booking_id: str | None = None


@dataclass(frozen=True, slots=True)
class CallTarget:
    booking_id: str | None
    call_type: CallType = CallType.VIDEO
    other_user_name: str | None = None
    other_user_photo: str | None = None


IncomingCallCallback = Callable[[CallController], Awaitable[None] | None]
StartCallCallback = Callable[[CallTarget], Awaitable[Any] | Any]
CallEndCallback = Callable[[CallSession], Awaitable[None] | None]


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class DashboardShell:
    """Opens chats and calls for a dashboard and routes background events."""

    def __init__(
        self,
        session: SessionContext,
        *,
        client: BackendClient | None = None,
        broker: ConnectionBroker | None = None,
        notifications: NotificationCenter | None = None,
        media: MediaBackend | None = None,
        on_incoming_call: IncomingCallCallback | None = None,
        on_start_call: StartCallCallback | None = None,
        on_call_end: CallEndCallback | None = None,
    ) -> None:
        self.session = session
        self._owns_client = client is None
        self.client = client or BackendClient(session)
        self.broker = broker or ConnectionBroker(session)
        self.notifications = notifications or NotificationCenter()
        self._media = media
        self._on_incoming_call = on_incoming_call
        self._on_start_call = on_start_call
        self._on_call_end = on_call_end

        self.chat: ChatSession | None = None
        self.chat_target: ChatTarget | None = None
        self.call: CallController | None = None
        self.incoming: CallController | None = None
        self._names: dict[str, str] = {}
        self._acquired = False
        self._stream: EventStream | None = None
        self._pump: asyncio.Task[None] | None = None

    @property
    def mounted(self) -> bool:
        return self._stream is not None

    async def mount(self) -> None:
        if self.mounted:
            return
        try:
            await self.broker.acquire()
        except TransportUnavailableError as exc:
            logger.warning("Dashboard realtime connection unavailable: %s", exc)
            self.notifications.error("Connection error")
        else:
            self._acquired = True
        self._stream = self.broker.subscribe(IncomingCall.type, NewMessage.type)
        self._pump = asyncio.create_task(self._consume(self._stream), name="dashboard-events")

    async def unmount(self) -> None:
        if self.chat is not None:
            await self.chat.close()
            self.chat = None
            self.chat_target = None
        for call in (self.incoming, self.call):
            if call is not None:
                await call.cleanup()
        self.incoming = self.call = None

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
            await self.broker.release()
        if self._owns_client:
            await self.client.aclose()

    async def _consume(self, stream: EventStream) -> None:
        async for event in stream:
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception("Dashboard failed to process %s", event.type)

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------
    async def open_chat(self, target: ChatTarget) -> ChatSession:
        if self.chat is not None:
            await self.chat.close()
        if target.other_user_name:
            self._names[str(target.other_user_id)] = target.other_user_name
        chat = ChatSession(
            self.client,
            self.broker,
            notifications=self.notifications,
            booking_id=target.booking_id,
            on_start_call=self._start_call_from_chat,
        )
        self.chat = chat
        self.chat_target = target
        await chat.open(target.other_user_id)
        return chat

    async def close_chat(self) -> None:
        if self.chat is not None:
            await self.chat.close()
        self.chat = None
        self.chat_target = None

    async def _start_call_from_chat(self, call_type: CallType) -> None:
        target = self.chat_target
        if target is None:
            return
        call_target = CallTarget(
            booking_id=target.booking_id,
            call_type=call_type,
            other_user_name=target.other_user_name,
            other_user_photo=target.other_user_photo,
        )
        if self._on_start_call is not None:
            await _maybe_await(self._on_start_call(call_target))
        else:
            await self.start_call(call_target)

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------
    def _busy(self) -> bool:
        return any(call is not None and not call.closed for call in (self.call, self.incoming))

    async def start_call(self, target: CallTarget) -> CallController:
        if self._busy():
            raise CallStateError("Another call is already in progress")
        call = CallController.outgoing(
            self.client,
            self.broker,
            booking_id=target.booking_id,
            call_type=target.call_type,
            peer_name=target.other_user_name,
            peer_photo=target.other_user_photo,
            notifications=self.notifications,
            media=self._media,
            on_end=self._call_finished,
        )
        self.call = call
        await call.initiate()
        return call

    async def accept_incoming(self) -> CallController | None:
        call, self.incoming = self.incoming, None
        if call is None or call.closed:
            return None
        self.call = call
        await call.answer()
        return call

    async def decline_incoming(self) -> None:
        call, self.incoming = self.incoming, None
        if call is not None:
            await call.reject()

    async def end_call(self) -> None:
        if self.call is not None:
            await self.call.end()

    async def _call_finished(self, session: CallSession) -> None:
        if self.call is not None and self.call.session is session:
            self.call = None
        if self.incoming is not None and self.incoming.session is session:
            self.incoming = None
        if self._on_call_end is not None:
            await _maybe_await(self._on_call_end(session))

    # ------------------------------------------------------------------
    # Background events
    # ------------------------------------------------------------------
    async def handle_event(self, event: Event) -> None:
        if isinstance(event, IncomingCall):
            await self._ring(event)
        elif isinstance(event, NewMessage):
            sender_id = event.message.sender_id
            if sender_id == self.session.user_id:
                return
            if self.chat is not None and self.chat.peer_id == sender_id:
                return
            name = self._names.get(sender_id, sender_id)
            self.notifications.info(f"New message from {name}")
        elif isinstance(event, ConnectionLost) and event.error:
            self.notifications.error("Connection lost")

    async def _ring(self, event: IncomingCall) -> None:
        if self._busy():
            logger.info("Ignoring incoming call %s while another call is in progress", event.call.call_id)
            return
        call = CallController.incoming(
            self.client,
            self.broker,
            event,
            notifications=self.notifications,
            media=self._media,
            on_end=self._call_finished,
        )
        self.incoming = call
        await call.mount()
        if self._on_incoming_call is not None and not call.closed:
            await _maybe_await(self._on_incoming_call(call))


__all__ = ["CallTarget", "ChatTarget", "DashboardShell"]
