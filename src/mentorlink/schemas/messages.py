"""Schemas related to conversations and chat messages."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .enums import MessageType

MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024


class FileDescriptor(BaseModel):
    """Uploaded file referenced by an image or file message."""

    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")

    file_id: str
    filename: str
    url: str
    size: int = Field(..., ge=0)
    content_type: str | None = None

    @property
    def is_image(self) -> bool:
        return bool(self.content_type and self.content_type.startswith("image/"))

    @property
    def display_size(self) -> str:
        if self.size < 1024:
            return f"{self.size} B"
        if self.size < 1024 * 1024:
            return f"{self.size / 1024:.1f} KB"
        return f"{self.size / (1024 * 1024):.1f} MB"


class UploadResult(BaseModel):
    """Response of the upload endpoint."""

    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")

    file_id: str
    original_name: str
    url: str
    size: int = Field(..., ge=0)
    content_type: str | None = None

    def to_descriptor(self, *, url: str | None = None) -> FileDescriptor:
        return FileDescriptor(
            file_id=self.file_id,
            filename=self.original_name,
            url=url or self.url,
            size=self.size,
            content_type=self.content_type,
        )


class Message(BaseModel):
    """Serialized representation of a chat message."""

    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")

    message_id: str
    conversation_id: str | None = None
    sender_id: str
    receiver_id: str | None = None
    message_type: MessageType = MessageType.TEXT
    content: str = ""
    file_data: FileDescriptor | None = None
    created_at: datetime | None = None
    read: bool = False

    @model_validator(mode="after")
    def check_body(self) -> "Message":
        if self.message_type is MessageType.TEXT:
            if not self.content.strip():
                raise ValueError("text messages require non-empty content")
        else:
            if self.file_data is None:
                raise ValueError(f"{self.message_type.value} messages require file_data")
            if self.file_data.size > MAX_ATTACHMENT_BYTES:
                raise ValueError("attachment exceeds the 10 MiB limit")
        return self

    def sort_key(self) -> tuple[float, str]:
        stamp = self.created_at.timestamp() if self.created_at else 0.0
        return stamp, self.message_id


class ConversationPeer(BaseModel):
    """The other participant as shown in a conversation list."""

    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")

    user_id: str
    name: str | None = None
    picture: str | None = None


class ConversationSummary(BaseModel):
    """Entry of the conversation list."""

    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")

    conversation_id: str
    participants: list[str] = Field(default_factory=list)
    other_user: ConversationPeer | None = None
    last_message: str | None = None
    last_message_time: datetime | None = None
    unread_count: int = Field(0, ge=0)


class OutgoingMessage(BaseModel):
    """Payload for ``POST /chat/messages``."""

    receiver_id: str
    content: str
    message_type: MessageType = MessageType.TEXT
    file_data: FileDescriptor | None = None
