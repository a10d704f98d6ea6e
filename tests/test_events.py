from __future__ import annotations

import json

from mentorlink.realtime.events import (
    CallAnswered,
    CallEnded,
    IncomingCall,
    JoinConversation,
    NewMessage,
    StopTyping,
    Typing,
    UnknownEvent,
    UserTyping,
    WebRTCSignal,
    decode_event,
    encode_command,
    parse_event,
)
from mentorlink.schemas import CallType, MessageType


def _message(**overrides):
    payload = {
        "message_id": 7,
        "conversation_id": "c1",
        "sender_id": 3,
        "receiver_id": 4,
        "message_type": "text",
        "content": "Hello",
        "created_at": "2024-05-01T09:00:00Z",
    }
    payload.update(overrides)
    return payload


def test_new_message_is_decoded_with_string_ids() -> None:
    event = decode_event({"type": "new_message", "message": _message()})
    assert isinstance(event, NewMessage)
    assert event.message.message_id == "7"
    assert event.message.sender_id == "3"
    assert event.message.message_type is MessageType.TEXT


def test_incoming_call_carries_caller() -> None:
    event = decode_event(
        {
            "type": "incoming_call",
            "call": {"call_id": "c-1", "booking_id": "b-1", "call_type": "voice"},
            "caller": {"first_name": "Ada", "last_name": "Lovelace", "picture": None},
        }
    )
    assert isinstance(event, IncomingCall)
    assert event.call.call_type is CallType.VOICE
    assert event.caller.display_name == "Ada Lovelace"


def test_signal_and_empty_payload_events() -> None:
    signal = decode_event({"type": "webrtc_signal", "signal_type": "offer", "data": {"sdp": "v=0"}})
    assert signal == WebRTCSignal(signal_type="offer", data={"sdp": "v=0"})
    assert isinstance(decode_event({"type": "call_answered"}), CallAnswered)


def test_typing_event_without_conversation() -> None:
    event = decode_event({"type": "user_typing", "user_id": 9})
    assert event == UserTyping(user_id="9", conversation_id=None)


def test_unknown_and_malformed_frames_become_unknown_events() -> None:
    unknown = decode_event({"type": "presence_update", "online": True})
    assert isinstance(unknown, UnknownEvent)
    assert unknown.type == "presence_update"

    malformed = decode_event({"type": "new_message", "message": _message(content="   ")})
    assert isinstance(malformed, UnknownEvent)
    assert isinstance(decode_event({"type": "incoming_call"}), UnknownEvent)


def test_parse_event_ignores_non_objects() -> None:
    assert parse_event("not json") is None
    assert parse_event("[1, 2]") is None
    assert isinstance(parse_event(json.dumps({"type": "call_ended"})), CallEnded)


def test_commands_encode_to_wire_shape() -> None:
    assert json.loads(encode_command(JoinConversation("c1"))) == {
        "type": "join_conversation",
        "conversation_id": "c1",
    }
    assert json.loads(encode_command(Typing("c1")))["type"] == "typing"
    assert json.loads(encode_command(StopTyping("c1")))["type"] == "stop_typing"
