"""Explicit identity/credential context shared by every client component."""

from __future__ import annotations

from dataclasses import dataclass, field

from .config import Settings, get_settings


@dataclass(frozen=True, slots=True)
class SessionContext:
    """Authenticated identity used to call the REST API and open realtime connections."""

    user_id: str
    token: str | None = None
    settings: Settings = field(default_factory=get_settings, compare=False, repr=False)

    @property
    def api_base_url(self) -> str:
        return self.settings.api_base_url

    @property
    def websocket_url(self) -> str:
        return f"{self.settings.websocket_base_url}/{self.user_id}"

    @property
    def auth_headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def resolve_url(self, url: str | None) -> str:
        """Return an absolute URL for a backend-relative file path."""

        if not url:
            return ""
        if url.startswith("http"):
            return url
        return f"{self.settings.backend_url}{url}"
