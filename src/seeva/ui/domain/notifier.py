"""Transient user notifications published on the event bus."""

from __future__ import annotations

import logging

from ..events import EventBus, NotificationPosted

LOGGER = logging.getLogger(__name__)

SUCCESS_DURATION_MS = 3000
INFO_DURATION_MS = 3000
ERROR_DURATION_MS = 5000
GATE_DURATION_MS = 7000

_LOG_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.WARNING,
}


class Notifier:
    """Publishes :class:`NotificationPosted` events with per-severity default durations."""

    def __init__(self, event_bus: EventBus) -> None:
        self._bus = event_bus

    def notify(self, severity: str, message: str, duration_ms: int) -> NotificationPosted:
        event = NotificationPosted(severity=severity, message=message, duration_ms=duration_ms)
        LOGGER.log(_LOG_LEVELS.get(severity, logging.INFO), "[%s] %s", severity, message)
        self._bus.publish(event)
        return event

    def info(self, message: str, duration_ms: int = INFO_DURATION_MS) -> NotificationPosted:
        return self.notify("info", message, duration_ms)

    def success(self, message: str, duration_ms: int = SUCCESS_DURATION_MS) -> NotificationPosted:
        return self.notify("success", message, duration_ms)

    def warning(self, message: str, duration_ms: int = ERROR_DURATION_MS) -> NotificationPosted:
        return self.notify("warning", message, duration_ms)

    def error(self, message: str, duration_ms: int = ERROR_DURATION_MS) -> NotificationPosted:
        return self.notify("error", message, duration_ms)


__all__ = [
    "ERROR_DURATION_MS",
    "GATE_DURATION_MS",
    "INFO_DURATION_MS",
    "Notifier",
    "SUCCESS_DURATION_MS",
]
