"""User-facing notification sinks."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from threading import Lock

from agentteam.schemas import Notification

logger = logging.getLogger(__name__)

# (message, level) where level is info, success, warning or error
Notifier = Callable[[str, str], None]

_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def log_notifier(message: str, level: str = "info") -> None:
    """Default sink: forward notifications to the log."""
    logger.log(_LEVELS.get(level, logging.INFO), message)


def safe_notify(notify: Notifier, message: str, level: str = "info") -> None:
    """Deliver a notification without letting a failing sink escape."""
    try:
        notify(message, level)
    except Exception as e:
        logger.error(f"Notification sink failed: {e}")


class NotificationLog:
    """Bounded history of recent notifications, also forwarded to the log."""

    def __init__(self, max_size: int = 100):
        self._items: deque[Notification] = deque(maxlen=max_size)
        self._lock = Lock()

    def __call__(self, message: str, level: str = "info") -> None:
        if level not in _LEVELS:
            level = "info"
        with self._lock:
            self._items.append(Notification(message=message, level=level, created_at=time.time()))
        log_notifier(message, level)

    def recent(self, limit: int | None = None) -> list[Notification]:
        """Get notifications, newest last."""
        with self._lock:
            items = list(self._items)
        return items[-limit:] if limit else items

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
