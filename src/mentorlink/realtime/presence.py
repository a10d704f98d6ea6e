"""Typing indicators: debounced outbound notifications and peer typing state."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict

from .events import Command, StopTyping, Typing, UserStopTyping, UserTyping

logger = logging.getLogger(__name__)

Publisher = Callable[[Command], Awaitable[bool]]


@dataclass(slots=True)
class _TypingSlot:
    active: bool = False
    timer: asyncio.Task[None] | None = None


class PeerTypingStore:
    """Tracks which peers are typing, expiring entries after ``ttl_seconds``."""

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[tuple[str, str], float] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    def set_status(self, conversation_id: str, peer_id: str, is_typing: bool) -> bool:
        key = (conversation_id, peer_id)
        if is_typing:
            changed = not self.is_typing(conversation_id, peer_id)
            self._entries[key] = self._clock()
            return changed
        return self._entries.pop(key, None) is not None

    def is_typing(self, conversation_id: str, peer_id: str) -> bool:
        key = (conversation_id, peer_id)
        stamp = self._entries.get(key)
        if stamp is None:
            return False
        if self._clock() - stamp > self._ttl:
            self._entries.pop(key, None)
            return False
        return True

    def clear(self, conversation_id: str | None = None) -> None:
        if conversation_id is None:
            self._entries.clear()
            return
        for key in [key for key in self._entries if key[0] == conversation_id]:
            self._entries.pop(key, None)


class TypingTracker:
    """Emits ``typing``/``stop_typing`` commands for the local user.

    The first keystroke after idle emits ``typing`` and arms a debounce
    timer; further keystrokes only re-arm the timer. Timer expiry or a sent
    message emits a single ``stop_typing``.
    """

    def __init__(self, publish: Publisher, *, debounce_seconds: float = 2.0) -> None:
        self._publish = publish
        self._debounce = debounce_seconds
        self._slots: Dict[str, _TypingSlot] = {}
        self.peers = PeerTypingStore(debounce_seconds)

    @property
    def debounce_seconds(self) -> float:
        return self._debounce

    def is_typing(self, conversation_id: str) -> bool:
        slot = self._slots.get(conversation_id)
        return bool(slot and slot.active)

    async def on_keystroke(self, conversation_id: str) -> None:
        slot = self._slots.setdefault(conversation_id, _TypingSlot())
        if not slot.active:
            slot.active = True
            await self._publish(Typing(conversation_id))
        self._arm(conversation_id, slot)

    async def on_send_message(self, conversation_id: str) -> None:
        await self._stop(conversation_id, reason="message sent")

    def handle_peer_event(self, event: UserTyping | UserStopTyping) -> bool:
        """Update peer typing state; returns whether the visible state changed."""

        if event.conversation_id is None:
            return False
        return self.peers.set_status(
            event.conversation_id, event.user_id, isinstance(event, UserTyping)
        )

    async def close(self) -> None:
        for slot in self._slots.values():
            self._disarm(slot)
        self._slots.clear()
        self.peers.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _arm(self, conversation_id: str, slot: _TypingSlot) -> None:
        self._disarm(slot)
        slot.timer = asyncio.create_task(
            self._expire(conversation_id), name=f"typing-timeout-{conversation_id}"
        )

    @staticmethod
    def _disarm(slot: _TypingSlot) -> None:
        timer, slot.timer = slot.timer, None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

    async def _expire(self, conversation_id: str) -> None:
        with contextlib.suppress(asyncio.CancelledError):
            await asyncio.sleep(self._debounce)
            await self._stop(conversation_id, reason="idle")

    async def _stop(self, conversation_id: str, *, reason: str) -> None:
        slot = self._slots.pop(conversation_id, None)
        if slot is not None:
            self._disarm(slot)
        logger.debug("Typing stopped in %s (%s)", conversation_id, reason)
        await self._publish(StopTyping(conversation_id))
