"""Session-scoped broker sharing one realtime connection between components."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Iterable

from ..session import SessionContext
from .events import Command, ConnectionLost, Event
from .transport import Connector, RealtimeConnection, Subscription

logger = logging.getLogger(__name__)

_CLOSED = object()


class EventStream:
    """Async iterator over the events a component subscribed to.

    Events are queued in arrival order. Iteration stops once the stream is
    closed, either by its owner or because the broker shut the connection.
    """

    def __init__(self, broker: "ConnectionBroker", event_types: frozenset[str]) -> None:
        self._broker = broker
        self._types = event_types
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def accepts(self, event: Event) -> bool:
        if isinstance(event, ConnectionLost):
            return True
        return not self._types or event.type in self._types

    def push(self, event: Event) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        self._broker._discard(self)

    def __aiter__(self) -> AsyncIterator[Event]:
        return self

    async def __anext__(self) -> Event:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item  # type: ignore[return-value]


class ConnectionBroker:
    """Reference-counted owner of a single :class:`RealtimeConnection`.

    Components call :meth:`acquire` on mount and :meth:`release` on teardown;
    the physical connection is opened by the first acquirer and closed when
    the last one releases it.
    """

    def __init__(self, session: SessionContext, *, connector: Connector | None = None) -> None:
        self._session = session
        self._connector = connector
        self._connection: RealtimeConnection | None = None
        self._subscription: Subscription | None = None
        self._streams: list[EventStream] = []
        self._refcount = 0
        self._lock = asyncio.Lock()

    @property
    def session(self) -> SessionContext:
        return self._session

    @property
    def refcount(self) -> int:
        return self._refcount

    @property
    def connection(self) -> RealtimeConnection | None:
        return self._connection

    @property
    def is_open(self) -> bool:
        return self._connection is not None and self._connection.is_open

    async def acquire(self) -> None:
        async with self._lock:
            if self._connection is None or not self._connection.is_open:
                if self._subscription is not None:
                    self._subscription.close()
                    self._subscription = None
                connection = RealtimeConnection(self._session, connector=self._connector)
                await connection.open()
                self._connection = connection
                self._subscription = connection.on_event(self._fan_out)
            self._refcount += 1
            logger.debug("Realtime broker acquired (refcount=%s)", self._refcount)

    async def release(self) -> None:
        async with self._lock:
            if self._refcount == 0:
                return
            self._refcount -= 1
            logger.debug("Realtime broker released (refcount=%s)", self._refcount)
            if self._refcount:
                return
            connection, self._connection = self._connection, None
            if self._subscription is not None:
                self._subscription.close()
                self._subscription = None
        if connection is not None:
            await connection.close()

    def subscribe(self, *event_types: str | Iterable[str]) -> EventStream:
        names: set[str] = set()
        for item in event_types:
            if isinstance(item, str):
                names.add(item)
            else:
                names.update(item)
        stream = EventStream(self, frozenset(names))
        self._streams.append(stream)
        return stream

    async def publish(self, command: Command) -> bool:
        if self._connection is None:
            logger.error("Cannot publish %s: no realtime connection acquired", command.type)
            return False
        return await self._connection.send(command)

    def _discard(self, stream: EventStream) -> None:
        if stream in self._streams:
            self._streams.remove(stream)

    async def _fan_out(self, event: Event) -> None:
        for stream in list(self._streams):
            if stream.accepts(event):
                stream.push(event)
