"""Progress events emitted while documents are processed."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel, Field

from ragdoll.retrieval.models import utcnow

logger = logging.getLogger(__name__)


class ProgressEvent(BaseModel):
    document_id: str | None = None
    location: str
    phase: str
    processed: int = 0
    total: int = 0
    status: str
    message: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class NotificationSink(ABC):
    """Receiver of :class:`ProgressEvent` objects (websocket, queue, log …)."""

    @abstractmethod
    def notify(self, event: ProgressEvent) -> None:
        ...


class NullNotificationSink(NotificationSink):
    def notify(self, event: ProgressEvent) -> None:
        pass


class LoggingNotificationSink(NotificationSink):
    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def notify(self, event: ProgressEvent) -> None:
        logger.log(
            self.level,
            "[%s] %s %s (%d/%d)%s",
            event.phase,
            event.location,
            event.status,
            event.processed,
            event.total,
            f": {event.message}" if event.message else "",
        )


class CollectingNotificationSink(NotificationSink):
    """Keeps every event in memory; handy in tests and notebooks."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def notify(self, event: ProgressEvent) -> None:
        self.events.append(event)


def deliver(sink: NotificationSink | None, event: ProgressEvent) -> None:
    """Send *event* to *sink*; delivery failures are logged and ignored."""
    if sink is None:
        return
    try:
        sink.notify(event)
    except Exception:
        logger.warning("Notification delivery failed for %s", event.location, exc_info=True)
