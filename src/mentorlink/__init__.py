"""Realtime chat and call client for the MentorLink counseling marketplace."""

from .config import Settings, get_settings
from .notifications import Notification, NotificationCenter
from .session import SessionContext
from .shell import CallTarget, ChatTarget, DashboardShell

__version__ = "0.1.0"

__all__ = [
    "CallTarget",
    "ChatTarget",
    "DashboardShell",
    "Notification",
    "NotificationCenter",
    "SessionContext",
    "Settings",
    "get_settings",
]
