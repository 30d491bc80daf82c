"""Fire-and-forget sync notifications."""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    SYNC_STARTED = "sync_started"
    SYNC_SUCCEEDED = "sync_succeeded"
    SYNC_FAILED = "sync_failed"


@dataclass
class Notification:
    """A single notification sent to the host."""

    event: NotificationEvent
    message: str
    day: date | None = None
    timestamp: datetime = field(default_factory=datetime.now)


@runtime_checkable
class Notifier(Protocol):
    """Protocol for notification dispatch."""

    def notify(self, notification: Notification) -> None:
        ...


class LoggingNotifier:
    """Writes notifications to the log."""

    def notify(self, notification: Notification) -> None:
        level = logging.WARNING if notification.event is NotificationEvent.SYNC_FAILED else logging.INFO
        logger.log(level, "[%s] %s", notification.event.value, notification.message)


class CollectingNotifier:
    """Keeps notifications in memory for the host to poll."""

    def __init__(self):
        self.notifications: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)

    def events(self) -> list[NotificationEvent]:
        return [n.event for n in self.notifications]
