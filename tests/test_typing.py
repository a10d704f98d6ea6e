from __future__ import annotations

import asyncio

import pytest

from mentorlink.realtime import PeerTypingStore, TypingTracker, UserStopTyping, UserTyping
from mentorlink.realtime.events import StopTyping, Typing


class RecordingPublisher:
    def __init__(self) -> None:
        self.commands: list = []

    async def __call__(self, command) -> bool:
        self.commands.append(command)
        return True

    def kinds(self) -> list[str]:
        return [command.type for command in self.commands]


@pytest.mark.anyio("asyncio")
async def test_keystroke_burst_emits_single_typing_then_stop() -> None:
    publisher = RecordingPublisher()
    tracker = TypingTracker(publisher, debounce_seconds=0.1)

    for _ in range(5):
        await tracker.on_keystroke("c1")
        await asyncio.sleep(0.02)
    assert publisher.commands == [Typing("c1")]
    assert tracker.is_typing("c1")

    await asyncio.sleep(0.2)
    assert publisher.commands == [Typing("c1"), StopTyping("c1")]
    assert not tracker.is_typing("c1")
    await tracker.close()


@pytest.mark.anyio("asyncio")
async def test_keystrokes_keep_rearming_the_timer() -> None:
    publisher = RecordingPublisher()
    tracker = TypingTracker(publisher, debounce_seconds=0.1)

    for _ in range(6):
        await tracker.on_keystroke("c1")
        await asyncio.sleep(0.05)
    assert publisher.kinds() == ["typing"]
    await asyncio.sleep(0.15)
    assert publisher.kinds() == ["typing", "stop_typing"]
    await tracker.close()


@pytest.mark.anyio("asyncio")
async def test_sending_stops_typing_immediately() -> None:
    publisher = RecordingPublisher()
    tracker = TypingTracker(publisher, debounce_seconds=0.1)

    await tracker.on_keystroke("c1")
    await tracker.on_send_message("c1")
    assert publisher.kinds() == ["typing", "stop_typing"]

    await asyncio.sleep(0.15)
    assert publisher.kinds() == ["typing", "stop_typing"]

    # without any pending timer, sending still emits stop_typing
    await tracker.on_send_message("c1")
    assert publisher.kinds() == ["typing", "stop_typing", "stop_typing"]


@pytest.mark.anyio("asyncio")
async def test_typing_resumes_after_stop() -> None:
    publisher = RecordingPublisher()
    tracker = TypingTracker(publisher, debounce_seconds=0.05)

    await tracker.on_keystroke("c1")
    await asyncio.sleep(0.1)
    await tracker.on_keystroke("c1")
    assert publisher.kinds() == ["typing", "stop_typing", "typing"]
    await tracker.close()


@pytest.mark.anyio("asyncio")
async def test_close_cancels_pending_timers() -> None:
    publisher = RecordingPublisher()
    tracker = TypingTracker(publisher, debounce_seconds=0.05)
    await tracker.on_keystroke("c1")
    await tracker.close()
    await asyncio.sleep(0.1)
    assert publisher.kinds() == ["typing"]


def test_peer_typing_expires_after_ttl() -> None:
    now = [100.0]
    store = PeerTypingStore(2.0, clock=lambda: now[0])

    assert store.set_status("c1", "alice", True) is True
    assert store.set_status("c1", "alice", True) is False
    assert store.is_typing("c1", "alice")
    now[0] += 2.5
    assert not store.is_typing("c1", "alice")


def test_peer_events_update_store() -> None:
    tracker = TypingTracker(RecordingPublisher())
    assert tracker.handle_peer_event(UserTyping(user_id="alice", conversation_id="c1"))
    assert tracker.peers.is_typing("c1", "alice")
    assert tracker.handle_peer_event(UserStopTyping(user_id="alice", conversation_id="c1"))
    assert not tracker.peers.is_typing("c1", "alice")
    assert not tracker.handle_peer_event(UserTyping(user_id="alice"))
