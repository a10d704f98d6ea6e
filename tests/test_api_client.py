from __future__ import annotations

import json

import httpx
import pytest

from mentorlink.api import ApiError, BackendClient
from mentorlink.schemas import CallType, FileDescriptor, MessageType
from mentorlink.session import SessionContext
from mentorlink.voice.signaling import SignalType, build_signal_envelope


def _client(settings, handler) -> BackendClient:
    session = SessionContext(user_id="alice", token="t0k", settings=settings)
    return BackendClient(session, transport=httpx.MockTransport(handler))


@pytest.mark.anyio("asyncio")
async def test_requests_carry_bearer_token_and_prefix(settings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"conversation_id": 12})

    async with _client(settings, handler) as client:
        assert await client.get_or_create_conversation("bob") == "12"

    (request,) = seen
    assert request.url.path == "/api/chat/conversations/bob"
    assert request.headers["Authorization"] == "Bearer t0k"


@pytest.mark.anyio("asyncio")
async def test_error_detail_is_exposed(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"detail": "Not a participant"})

    async with _client(settings, handler) as client:
        with pytest.raises(ApiError) as excinfo:
            await client.list_messages("c1")
    assert excinfo.value.status_code == 403
    assert excinfo.value.detail == "Not a participant"


@pytest.mark.anyio("asyncio")
async def test_error_without_json_uses_reason_phrase(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>bad gateway</html>")

    async with _client(settings, handler) as client:
        with pytest.raises(ApiError) as excinfo:
            await client.end_call("call-1")
    assert excinfo.value.detail == "Bad Gateway"


@pytest.mark.anyio("asyncio")
async def test_network_failure_becomes_api_error(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(settings, handler) as client:
        with pytest.raises(ApiError) as excinfo:
            await client.fetch_ice_configuration()
    assert excinfo.value.status_code is None


@pytest.mark.anyio("asyncio")
async def test_messages_are_sorted_and_malformed_entries_skipped(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=[
                {"message_id": "2", "sender_id": "bob", "content": "second", "created_at": "2024-05-01T10:00:00Z"},
                {"message_id": "x", "sender_id": "bob", "message_type": "image"},
                {"message_id": "1", "sender_id": "alice", "content": "first", "created_at": "2024-05-01T09:00:00Z"},
            ],
        )

    async with _client(settings, handler) as client:
        messages = await client.list_messages("c1")
    assert [message.content for message in messages] == ["first", "second"]


@pytest.mark.anyio("asyncio")
async def test_send_file_message_payload(settings) -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        bodies.append(body)
        return httpx.Response(200, json={"message_id": "m1", "sender_id": "alice", **body})

    descriptor = FileDescriptor(file_id="f1", filename="a.pdf", url="/uploads/a.pdf", size=10)
    async with _client(settings, handler) as client:
        message = await client.send_message(
            "bob", "a.pdf", message_type=MessageType.FILE, file_data=descriptor
        )

    assert bodies[0]["message_type"] == "file"
    assert bodies[0]["file_data"]["file_id"] == "f1"
    assert "content_type" not in bodies[0]["file_data"]
    assert message.file_data.display_size == "10 B"


@pytest.mark.anyio("asyncio")
async def test_initiate_call_reads_nested_or_flat_payload(settings) -> None:
    responses = iter(
        [
            {"call": {"call_id": 5, "booking_id": "b1", "call_type": "voice"}},
            {"call_id": "6", "call_type": "video"},
            {"status": "queued"},
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content) == {"booking_id": "b1", "call_type": "video"}
        return httpx.Response(200, json=next(responses))

    async with _client(settings, handler) as client:
        nested = await client.initiate_call("b1", CallType.VIDEO)
        flat = await client.initiate_call("b1", CallType.VIDEO)
        missing = await client.initiate_call("b1", CallType.VIDEO)
    assert nested.call_id == "5"
    assert nested.call_type is CallType.VOICE
    assert flat.call_id == "6"
    assert missing is None


@pytest.mark.anyio("asyncio")
async def test_ice_configuration_alias(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"iceServers": [{"urls": "stun:s.test"}]})

    async with _client(settings, handler) as client:
        ice = await client.fetch_ice_configuration()
    assert ice.ice_servers[0].urls == ["stun:s.test"]
    assert ice.fallback is False


@pytest.mark.anyio("asyncio")
async def test_signal_body_shape(settings) -> None:
    bodies: list[tuple[str, dict]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={})

    async with _client(settings, handler) as client:
        await client.send_signal(
            "call-1", build_signal_envelope(SignalType.OFFER, {"type": "offer", "sdp": "v=0"})
        )
    assert bodies == [
        ("/api/calls/call-1/signal", {"type": "offer", "data": {"type": "offer", "sdp": "v=0"}})
    ]
