"""Chat session controller for a 1:1 conversation with another user."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import Any, Awaitable, Callable, Literal

from ..api import ApiError, BackendClient
from ..notifications import NotificationCenter
from ..realtime import ConnectionBroker, EventStream, TransportUnavailableError, TypingTracker
from ..realtime.events import (
    ConnectionLost,
    Event,
    JoinConversation,
    NewMessage,
    UserStopTyping,
    UserTyping,
)
from ..schemas import CallType, ConversationSummary, Message, MessageType
from .uploads import AttachmentRejected, OutgoingFile, UploadGateway, classify_attachment

logger = logging.getLogger(__name__)

StartCallCallback = Callable[[CallType], Awaitable[Any] | Any]

CHAT_EVENT_TYPES = (NewMessage.type, UserTyping.type, UserStopTyping.type)


class MessageRejected(ValueError):
    """Raised when a text message is empty or whitespace only."""


def _check_text(text: str) -> None:
    if not text.strip():
        raise MessageRejected("Message cannot be empty")


class ChatSession:
    """Loads, sends and receives messages of one open conversation.

    Local validation failures and backend errors are reported through the
    notification centre; the public coroutines return ``None`` in that case
    and leave the draft untouched so the caller can retry.
    """

    def __init__(
        self,
        client: BackendClient,
        broker: ConnectionBroker,
        *,
        notifications: NotificationCenter,
        uploads: UploadGateway | None = None,
        booking_id: str | None = None,
        on_start_call: StartCallCallback | None = None,
    ) -> None:
        self._client = client
        self._broker = broker
        self._notifications = notifications
        self._uploads = uploads or UploadGateway(client)
        self._settings = client.session.settings
        self._typing = TypingTracker(
            broker.publish, debounce_seconds=self._settings.typing_debounce_seconds
        )
        self._on_start_call = on_start_call
        self.booking_id = booking_id
        self.peer_id: str | None = None
        self.conversation_id: str | None = None
        self.messages: list[Message] = []
        self.draft = ""
        self.loading = False
        self._generation = 0
        self._acquired = False
        self._stream: EventStream | None = None
        self._pump: asyncio.Task[None] | None = None

    @property
    def user_id(self) -> str:
        return self._client.session.user_id

    @property
    def is_open(self) -> bool:
        return self.conversation_id is not None

    @property
    def peer_typing(self) -> bool:
        if self.conversation_id is None or self.peer_id is None:
            return False
        return self._typing.peers.is_typing(self.conversation_id, self.peer_id)

    @property
    def is_typing(self) -> bool:
        return self.conversation_id is not None and self._typing.is_typing(self.conversation_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def open(self, other_user_id: str) -> str | None:
        """Resolve (or create) the conversation with ``other_user_id`` and load its history."""

        if self.peer_id is not None:
            await self._teardown()
        self._generation += 1
        generation = self._generation
        self.peer_id = str(other_user_id)
        self.conversation_id = None
        self.messages = []
        self.loading = True

        await self._attach()
        try:
            conversation_id = await self._client.get_or_create_conversation(self.peer_id)
            history = await self._client.list_messages(conversation_id)
        except ApiError as exc:
            logger.warning("Failed to load chat with %s: %s", other_user_id, exc.detail)
            if generation == self._generation:
                self.loading = False
                self._notifications.error("Failed to load chat")
            return None

        if generation != self._generation:
            logger.debug("Discarding chat history for a conversation that is no longer open")
            return None
        self.conversation_id = conversation_id
        known = {message.message_id for message in history}
        live = [message for message in self.messages if message.message_id not in known]
        self.messages = sorted(history + live, key=Message.sort_key)
        self.loading = False
        if self._broker.is_open:
            await self._broker.publish(JoinConversation(conversation_id))
        logger.info("Opened conversation %s with %s", conversation_id, self.peer_id)
        return conversation_id

    async def close(self) -> None:
        self._generation += 1
        await self._teardown()
        self.peer_id = None
        self.conversation_id = None
        self.loading = False

    async def _attach(self) -> None:
        if not self._acquired:
            try:
                await self._broker.acquire()
            except TransportUnavailableError as exc:
                logger.warning("Chat realtime connection unavailable: %s", exc)
                self._notifications.error("Connection error")
            else:
                self._acquired = True
        stream = self._broker.subscribe(*CHAT_EVENT_TYPES)
        self._stream = stream
        self._pump = asyncio.create_task(self._consume(stream), name="chat-events")

    async def _teardown(self) -> None:
        await self._typing.close()
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

    async def _consume(self, stream: EventStream) -> None:
        async for event in stream:
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception("Chat failed to process %s", event.type)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------
    async def update_draft(self, text: str) -> None:
        """Keystroke handler: stores the draft and drives the typing indicator."""

        self.draft = text
        if self.conversation_id is not None and self._broker.is_open:
            await self._typing.on_keystroke(self.conversation_id)

    async def send_text(self, content: str | None = None) -> Message | None:
        text = self.draft if content is None else content
        try:
            _check_text(text)
        except MessageRejected as exc:
            self._notifications.error(str(exc))
            return None
        if self.peer_id is None or self.conversation_id is None:
            self._notifications.error("Chat is not open")
            return None

        generation = self._generation
        try:
            message = await self._client.send_message(self.peer_id, text)
        except ApiError as exc:
            logger.warning("Failed to send message to %s: %s", self.peer_id, exc.detail)
            if generation == self._generation:
                self._notifications.error("Failed to send message")
            return None
        if generation != self._generation:
            return None

        self._merge(message)
        if content is None or content == self.draft:
            self.draft = ""
        await self._typing.on_send_message(self.conversation_id)
        return message

    async def send_file(self, upload: OutgoingFile) -> Message | None:
        try:
            self._uploads.validate(upload)
        except AttachmentRejected as exc:
            self._notifications.error(exc.detail)
            return None
        if self.peer_id is None or self.conversation_id is None:
            self._notifications.error("Chat is not open")
            return None

        generation = self._generation
        try:
            descriptor = await self._uploads.upload(upload)
            message_type = classify_attachment(upload.content_type or descriptor.content_type)
            message = await self._client.send_message(
                self.peer_id,
                upload.filename,
                message_type=message_type,
                file_data=descriptor,
            )
        except ApiError as exc:
            logger.warning("Failed to send %s: %s", upload.filename, exc.detail)
            if generation == self._generation:
                self._notifications.error(exc.detail if exc.status_code else "Failed to upload file")
            return None
        if generation != self._generation:
            return None

        self._merge(message)
        self._notifications.success("File sent successfully")
        return message

    async def start_call(self, call_type: CallType | str) -> bool:
        """Forward a call request to the shell; only available for booked sessions."""

        if not self.booking_id or self._on_start_call is None:
            return False
        result = self._on_start_call(CallType(call_type))
        if inspect.isawaitable(result):
            await result
        return True

    async def list_conversations(self) -> list[ConversationSummary]:
        try:
            return await self._client.list_conversations()
        except ApiError as exc:
            logger.error("Failed to load conversations: %s", exc.detail)
            return []

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------
    async def handle_event(self, event: Event) -> None:
        if isinstance(event, NewMessage):
            if self.peer_id is not None and event.message.sender_id == self.peer_id:
                self._merge(event.message)
        elif isinstance(event, (UserTyping, UserStopTyping)):
            if self.peer_id is None or event.user_id != self.peer_id:
                return
            conversation_id = event.conversation_id or self.conversation_id
            if conversation_id is None or conversation_id != self.conversation_id:
                return
            self._typing.peers.set_status(conversation_id, event.user_id, isinstance(event, UserTyping))
        elif isinstance(event, ConnectionLost):
            if event.error:
                self._notifications.error("Chat connection lost")

    def _merge(self, message: Message) -> None:
        if any(existing.message_id == message.message_id for existing in self.messages):
            return
        self.messages.append(message)

    # ------------------------------------------------------------------
    # Presentation helpers
    # ------------------------------------------------------------------
    def is_mine(self, message: Message) -> bool:
        return message.sender_id == self.user_id

    def delivery_mark(self, message: Message) -> Literal["sent", "read"] | None:
        """Single check (``sent``) or double check (``read``) for own messages."""

        if not self.is_mine(message):
            return None
        return "read" if message.read else "sent"

    def file_url(self, message: Message) -> str:
        if message.message_type is MessageType.TEXT or message.file_data is None:
            return ""
        return self._uploads.resolve_url(message.file_data.url)
