"""Async client for the marketplace REST API consumed by the realtime core."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx
from pydantic import ValidationError

from ..schemas import (
    CallInfo,
    CallType,
    ConversationSummary,
    FileDescriptor,
    IceConfiguration,
    Message,
    MessageType,
    OutgoingMessage,
    UploadResult,
)
from ..session import SessionContext

logger = logging.getLogger(__name__)


class ApiError(RuntimeError):
    """Raised when a backend request fails or returns an unexpected payload."""

    def __init__(self, status_code: int | None, detail: str) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail

    @classmethod
    def from_response(cls, response: httpx.Response) -> "ApiError":
        detail: str | None = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("detail"):
            raw = body["detail"]
            detail = raw if isinstance(raw, str) else str(raw)
        return cls(response.status_code, detail or response.reason_phrase or "Request failed")


class BackendClient:
    """Thin typed wrapper around the REST endpoints used by chat and calls."""

    def __init__(
        self,
        session: SessionContext,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._session = session
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=session.api_base_url,
            headers=session.auth_headers,
            timeout=session.settings.request_timeout_seconds,
            transport=transport,
        )

    @property
    def session(self) -> SessionContext:
        return self._session

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------
    async def get_or_create_conversation(self, other_user_id: str) -> str:
        payload = await self._request("GET", f"/chat/conversations/{other_user_id}")
        try:
            return str(payload["conversation_id"])
        except (KeyError, TypeError) as exc:
            raise ApiError(None, "Conversation response is missing conversation_id") from exc

    async def list_conversations(self) -> list[ConversationSummary]:
        payload = await self._request("GET", "/chat/conversations")
        return self._validate_list(ConversationSummary, payload)

    async def list_messages(self, conversation_id: str) -> list[Message]:
        payload = await self._request("GET", f"/chat/messages/{conversation_id}")
        messages = self._validate_list(Message, payload)
        return sorted(messages, key=Message.sort_key)

    async def send_message(
        self,
        receiver_id: str,
        content: str,
        *,
        message_type: MessageType = MessageType.TEXT,
        file_data: FileDescriptor | None = None,
    ) -> Message:
        body = OutgoingMessage(
            receiver_id=receiver_id,
            content=content,
            message_type=message_type,
            file_data=file_data,
        )
        payload = await self._request(
            "POST", "/chat/messages", json=body.model_dump(mode="json", exclude_none=True)
        )
        return self._validate(Message, payload)

    async def upload_file(
        self, filename: str, content: bytes, content_type: str | None
    ) -> UploadResult:
        files = {"file": (filename, content, content_type or "application/octet-stream")}
        payload = await self._request("POST", "/upload", files=files)
        return self._validate(UploadResult, payload)

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------
    async def fetch_ice_configuration(self) -> IceConfiguration:
        payload = await self._request("GET", "/webrtc/config")
        return self._validate(IceConfiguration, payload)

    async def initiate_call(self, booking_id: str | None, call_type: CallType) -> CallInfo | None:
        payload = await self._request(
            "POST",
            "/calls/initiate",
            json={"booking_id": booking_id, "call_type": CallType(call_type).value},
        )
        if isinstance(payload, dict):
            source = payload.get("call", payload)
            if isinstance(source, dict) and source.get("call_id"):
                return self._validate(CallInfo, source)
        return None

    async def send_signal(self, call_id: str, envelope: Mapping[str, Any]) -> None:
        await self._request("POST", f"/calls/{call_id}/signal", json=dict(envelope))

    async def answer_call(self, call_id: str) -> None:
        await self._request("POST", f"/calls/{call_id}/answer", json={})

    async def reject_call(self, call_id: str) -> None:
        await self._request("POST", f"/calls/{call_id}/reject", json={})

    async def end_call(self, call_id: str) -> None:
        await self._request("POST", f"/calls/{call_id}/end", json={})

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise ApiError(None, str(exc) or type(exc).__name__) from exc
        if response.is_error:
            error = ApiError.from_response(response)
            logger.warning("%s %s returned %s: %s", method, path, error.status_code, error.detail)
            raise error
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(response.status_code, "Response body is not valid JSON") from exc

    @staticmethod
    def _validate(model: type[Any], payload: Any) -> Any:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise ApiError(None, f"Unexpected {model.__name__} payload") from exc

    @staticmethod
    def _validate_list(model: type[Any], payload: Any) -> list[Any]:
        if not isinstance(payload, list):
            raise ApiError(None, f"Expected a list of {model.__name__}")
        items = []
        for entry in payload:
            try:
                items.append(model.model_validate(entry))
            except ValidationError:
                logger.warning("Skipping malformed %s entry", model.__name__)
        return items
