"""Per-user duplex websocket connection with typed event dispatch."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from ..monitoring.metrics import (
    realtime_connections,
    realtime_events_total,
    realtime_send_failures_total,
)
from ..session import SessionContext
from .events import Command, ConnectionLost, Event, UnknownEvent, encode_command, parse_event

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], Awaitable[None]]
Connector = Callable[..., Awaitable[Any]]


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class TransportUnavailableError(RuntimeError):
    """Raised when the realtime endpoint cannot be reached."""


class Subscription:
    """Handle returned when registering an event handler."""

    def __init__(self, name: str, cleanup: Callable[[], None]) -> None:
        self._name = name
        self._cleanup: Callable[[], None] | None = cleanup

    @property
    def name(self) -> str:
        return self._name

    def close(self) -> None:
        if self._cleanup is not None:
            self._cleanup()
            self._cleanup = None


async def _default_connector(url: str, **kwargs: Any) -> Any:
    return await ws_connect(url, **kwargs)


class RealtimeConnection:
    """One physical websocket connection owned by a single component.

    Frames are decoded into typed events and handed to every registered
    handler in arrival order. Transport failures are surfaced as
    :class:`ConnectionLost`; the connection never reconnects on its own.
    """

    def __init__(self, session: SessionContext, *, connector: Connector | None = None) -> None:
        self._session = session
        self._connector = connector or _default_connector
        self._websocket: Any | None = None
        self._reader: asyncio.Task[None] | None = None
        self._handlers: list[EventHandler] = []
        self._closing = False
        self.state = ConnectionState.CLOSED
        self.last_error: str | None = None

    @property
    def user_id(self) -> str:
        return self._session.user_id

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    async def open(self) -> None:
        if self.state is not ConnectionState.CLOSED:
            return
        settings = self._session.settings
        self.state = ConnectionState.CONNECTING
        self._closing = False
        url = self._session.websocket_url
        try:
            self._websocket = await self._connector(
                url,
                additional_headers=self._session.auth_headers or None,
                open_timeout=settings.websocket_open_timeout_seconds,
                ping_interval=settings.websocket_ping_interval_seconds,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            self.state = ConnectionState.CLOSED
            self.last_error = f"{type(exc).__name__}: {exc}"
            logger.warning("Realtime connection to %s failed: %s", url, self.last_error)
            raise TransportUnavailableError(self.last_error) from exc

        self.state = ConnectionState.OPEN
        self.last_error = None
        realtime_connections.inc()
        logger.info("Realtime connection opened for user %s", self.user_id)
        self._reader = asyncio.create_task(self._read_loop(), name=f"realtime-reader-{self.user_id}")

    def on_event(self, handler: EventHandler) -> Subscription:
        self._handlers.append(handler)

        def cleanup() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return Subscription(getattr(handler, "__qualname__", "handler"), cleanup)

    async def send(self, command: Command) -> bool:
        """Best-effort send; returns ``False`` and logs when the socket is not open."""

        if self.state is not ConnectionState.OPEN or self._websocket is None:
            logger.error("Cannot send %s: realtime connection is %s", command.type, self.state.value)
            realtime_send_failures_total.labels("not_open").inc()
            return False
        try:
            await self._websocket.send(encode_command(command))
        except (ConnectionClosed, OSError) as exc:
            logger.error("Failed to send %s: %s", command.type, exc)
            realtime_send_failures_total.labels("closed").inc()
            return False
        realtime_events_total.labels("out", command.type).inc()
        return True

    async def close(self) -> None:
        if self.state is ConnectionState.CLOSED and self._websocket is None:
            return
        self._closing = True
        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            with contextlib.suppress(ConnectionClosed, OSError):
                await websocket.close()
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        self._mark_closed()
        self._handlers.clear()
        logger.info("Realtime connection closed for user %s", self.user_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _mark_closed(self) -> None:
        if self.state is ConnectionState.OPEN:
            realtime_connections.dec()
        self.state = ConnectionState.CLOSED

    async def _read_loop(self) -> None:
        websocket = self._websocket
        error: str | None = None
        try:
            async for raw in websocket:
                event = parse_event(raw)
                if event is None:
                    continue
                realtime_events_total.labels("in", event.type).inc()
                if isinstance(event, UnknownEvent):
                    continue
                await self._dispatch(event)
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as exc:
            error = f"{type(exc).__name__}: {exc}"
        except OSError as exc:
            error = f"{type(exc).__name__}: {exc}"

        if self._closing:
            return
        self._mark_closed()
        self._websocket = None
        if error is not None:
            self.last_error = error
            logger.warning("Realtime connection for user %s lost: %s", self.user_id, error)
        else:
            logger.info("Realtime connection for user %s closed by server", self.user_id)
        await self._dispatch(ConnectionLost(error=error))

    async def _dispatch(self, event: Event) -> None:
        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception:
                logger.exception("Realtime handler failed while processing %s", event.type)


async def connect(session: SessionContext, *, connector: Connector | None = None) -> RealtimeConnection:
    """Open a new realtime connection for ``session.user_id`` and return its handle."""

    connection = RealtimeConnection(session, connector=connector)
    await connection.open()
    return connection
