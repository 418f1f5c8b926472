"""Fire-and-forget user notifications."""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)

LEVEL_INFO = "info"
LEVEL_WARNING = "warning"
LEVEL_ERROR = "error"


class NotificationSink(Protocol):
    def notify(self, level: str, message: str) -> None:
        ...


class LoggingNotificationSink:
    """Sink that only records notifications in the application log."""

    _LOG_LEVELS = {
        LEVEL_INFO: logging.INFO,
        LEVEL_WARNING: logging.WARNING,
        LEVEL_ERROR: logging.ERROR,
    }

    def notify(self, level: str, message: str) -> None:
        logger.log(self._LOG_LEVELS.get(level, logging.INFO), message, extra={"notification_level": level})


class CollectingNotificationSink:
    """Sink that keeps notifications so a response can carry them back to the client."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def notify(self, level: str, message: str) -> None:
        self.messages.append((level, message))


def notify_safely(sink: NotificationSink | None, level: str, message: str) -> None:
    """Deliver a notification; a failing sink is logged and otherwise ignored."""
    if sink is None:
        return
    try:
        sink.notify(level, message)
    except Exception as e:
        logger.warning("Notification delivery failed", extra={"notification_level": level, "error": str(e)})
