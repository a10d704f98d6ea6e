import json
from functools import lru_cache
from typing import Annotated, Any, List

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_ALLOWED_EXTENSIONS = (
    "pdf",
    "doc",
    "docx",
    "jpg",
    "jpeg",
    "png",
    "gif",
    "txt",
    "xlsx",
    "xls",
)


class IceServer(BaseModel):
    """Representation of a WebRTC ICE server configuration."""

    urls: list[str] = Field(default_factory=list, description="ICE server URLs")
    username: str | None = Field(default=None, description="Optional TURN username")
    credential: str | None = Field(default=None, description="Optional TURN credential")

    @field_validator("urls", mode="before")
    @classmethod
    def ensure_list(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple, set)):
            return [str(item) for item in value]
        return [] if value in (None, Ellipsis) else [str(value)]


class Settings(BaseSettings):
    """Client settings loaded from ``MENTORLINK_*`` environment variables."""

    backend_url: str = Field(
        default="http://localhost:8000",
        description="Origin of the marketplace backend (REST and websocket)",
    )
    api_prefix: str = Field(default="/api", description="Path prefix of the REST API")
    websocket_path: str = Field(default="/ws", description="Path of the realtime endpoint")

    request_timeout_seconds: float = Field(default=10.0, description="HTTP request timeout")
    websocket_open_timeout_seconds: float = Field(
        default=10.0, description="Timeout for establishing the websocket connection"
    )
    websocket_ping_interval_seconds: float | None = Field(
        default=20.0,
        description="Interval between websocket ping frames; disabled when empty",
    )

    typing_debounce_seconds: float = Field(
        default=2.0, description="Inactivity window after which typing stops"
    )
    max_attachment_size: int = Field(
        default=10 * 1024 * 1024, description="Maximum attachment size in bytes"
    )
    allowed_attachment_extensions: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_EXTENSIONS),
        description="Attachment extensions accepted for upload",
    )

    call_setup_timeout_seconds: float = Field(
        default=60.0,
        description="Maximum time a call may spend ringing or connecting",
    )
    call_duration_tick_seconds: float = Field(
        default=1.0, description="Period of the active call duration counter"
    )
    fallback_ice_servers: Annotated[List[IceServer], NoDecode] = Field(
        default_factory=lambda: [
            IceServer(urls=["stun:stun.l.google.com:19302"]),
            IceServer(urls=["stun:stun1.l.google.com:19302"]),
        ],
        description="STUN-only servers used when the backend ICE config is unavailable",
    )

    video_device: str = Field(default="/dev/video0", description="Camera capture device")
    video_format: str | None = Field(default="v4l2", description="FFmpeg input format for video")
    audio_device: str = Field(default="default", description="Microphone capture device")
    audio_format: str | None = Field(default="pulse", description="FFmpeg input format for audio")

    log_level: str = Field(default="INFO", description="Logging level used by the CLI")

    model_config = SettingsConfigDict(
        env_prefix="MENTORLINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("backend_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.rstrip("/")
        return value

    @field_validator("allowed_attachment_extensions", mode="before")
    @classmethod
    def assemble_extensions(cls, value: Any) -> Any:
        if value in (None, "", Ellipsis):
            return list(DEFAULT_ALLOWED_EXTENSIONS)
        if isinstance(value, str):
            items = value.split(",")
        elif isinstance(value, (list, tuple, set)):
            items = list(value)
        else:
            return value
        return [str(item).strip().lower().lstrip(".") for item in items if str(item).strip()]

    @field_validator("fallback_ice_servers", mode="before")
    @classmethod
    def parse_iterable_field(cls, value: Any) -> list[Any] | Any:
        if value in (None, "", Ellipsis):
            return []
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, (list, tuple, set)):
                    value = list(parsed)
                elif isinstance(parsed, str):
                    return [{"urls": parsed}]
                else:
                    return [parsed]
            except json.JSONDecodeError:
                return [{"urls": item.strip()} for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [{"urls": item} if isinstance(item, str) else item for item in value]
        return [value]

    @field_validator("fallback_ice_servers", mode="after")
    @classmethod
    def drop_empty_servers(cls, value: list[IceServer]) -> list[IceServer]:
        return [server for server in value if server.urls]

    @property
    def api_base_url(self) -> str:
        return f"{self.backend_url}{self.api_prefix}"

    @property
    def websocket_base_url(self) -> str:
        return normalize_ws_url(self.backend_url) + self.websocket_path


def normalize_ws_url(source: str) -> str:
    """Translate an HTTP origin into the matching websocket scheme."""

    if source.startswith("https://"):
        return "wss://" + source.removeprefix("https://")
    if source.startswith("http://"):
        return "ws://" + source.removeprefix("http://")
    return source


@lru_cache
def get_settings() -> Settings:
    return Settings()
