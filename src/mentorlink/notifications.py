"""User-facing notification centre (toast equivalent)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Literal

logger = logging.getLogger(__name__)

NotificationLevel = Literal["info", "success", "error"]
NotificationListener = Callable[["Notification"], None]

_LOG_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "error": logging.WARNING,
}


@dataclass(frozen=True, slots=True)
class Notification:
    level: NotificationLevel
    message: str


class NotificationCenter:
    """Collects notifications and forwards them to registered listeners."""

    def __init__(self, *, history_limit: int = 100) -> None:
        self._history: list[Notification] = []
        self._listeners: list[NotificationListener] = []
        self._history_limit = history_limit

    @property
    def history(self) -> list[Notification]:
        return list(self._history)

    def messages(self, level: NotificationLevel | None = None) -> list[str]:
        return [item.message for item in self._history if level is None or item.level == level]

    def add_listener(self, listener: NotificationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def info(self, message: str) -> None:
        self._emit(Notification("info", message))

    def success(self, message: str) -> None:
        self._emit(Notification("success", message))

    def error(self, message: str) -> None:
        self._emit(Notification("error", message))

    def _emit(self, notification: Notification) -> None:
        logger.log(_LOG_LEVELS[notification.level], "notification: %s", notification.message)
        self._history.append(notification)
        if len(self._history) > self._history_limit:
            del self._history[: len(self._history) - self._history_limit]
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("Notification listener failed")
