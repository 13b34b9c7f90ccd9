"""
docchat/notifications.py

User-facing notifications (the toasts of a front end).

Sinks are synchronous so state changes can announce themselves without
yielding to the event loop.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

import structlog

logger = structlog.get_logger(__name__)


class NotificationLevel(str, Enum):
    success = "success"
    error = "error"
    info = "info"


@dataclass(frozen=True)
class Notification:
    level: NotificationLevel
    title: str
    message: str
    error_kind: str | None = None


class NotificationSink(ABC):
    @abstractmethod
    def notify(self, notification: Notification) -> None:
        ...

    def success(self, title: str, message: str) -> None:
        self.notify(Notification(NotificationLevel.success, title, message))

    def info(self, title: str, message: str) -> None:
        self.notify(Notification(NotificationLevel.info, title, message))

    def error(self, title: str, message: str, kind: str) -> None:
        self.notify(Notification(NotificationLevel.error, title, message, error_kind=kind))


class LogNotificationSink(NotificationSink):
    """Writes notifications to the structured log."""

    def notify(self, notification: Notification) -> None:
        log = logger.warning if notification.level is NotificationLevel.error else logger.info
        log(
            "notification",
            level=notification.level.value,
            title=notification.title,
            message=notification.message,
            error_kind=notification.error_kind,
        )


class MemoryNotificationSink(NotificationSink):
    """Keeps every notification; optionally forwards them to a queue for a UI loop."""

    def __init__(self, queue: asyncio.Queue[Notification] | None = None) -> None:
        self.notifications: list[Notification] = []
        self._queue = queue

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)
        if self._queue is not None:
            self._queue.put_nowait(notification)

    def errors(self) -> list[Notification]:
        return [n for n in self.notifications if n.level is NotificationLevel.error]

    def clear(self) -> None:
        self.notifications.clear()
