"""Schemas related to calls and WebRTC configuration."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ..config import IceServer
from .enums import CallType


class CallInfo(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")

    call_id: str
    booking_id: str | None = None
    call_type: CallType = CallType.VIDEO


class CallerInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    first_name: str = ""
    last_name: str = ""
    picture: str | None = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class IceConfiguration(BaseModel):
    """ICE servers handed to the peer connection."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    ice_servers: list[IceServer] = Field(default_factory=list, alias="iceServers")
    fallback: bool = Field(default=False, exclude=True)
