"""Best-effort event publication.

The engine's invariants never depend on delivery: ``publish`` logs and
swallows every transport failure.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from services.dispatch.src.dispatch.schemas.enums import EventType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    type: EventType
    issue_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    ts: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "issue_id": self.issue_id,
            "ts": self.ts.isoformat(),
            "payload": self.payload,
        }


class Notifier(Protocol):
    def notify(self, event: Event) -> None:
        ...


class LoggingNotifier:
    """Default notifier: writes events to the application log."""

    def notify(self, event: Event) -> None:
        logger.info("event_published", extra=event.to_json())


class WebhookNotifier:
    """POSTs events to a fan-out service (e.g. a socket relay)."""

    def __init__(self, url: str, timeout_s: float = 2.0):
        self.url = url
        self.timeout_s = timeout_s

    def notify(self, event: Event) -> None:
        import httpx

        resp = httpx.post(self.url, json=event.to_json(), timeout=self.timeout_s)
        resp.raise_for_status()


class RecordingNotifier:
    """Keeps events in memory. Used by tests and local tooling."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def notify(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[Event]:
        return [e for e in self.events if e.type == event_type]


def publish(notifier: Notifier | None, event: Event) -> None:
    """Deliver ``event``; a failing notifier never fails the caller."""
    if notifier is None:
        return
    try:
        notifier.notify(event)
    except Exception as exc:
        logger.error("event_publish_failed", extra={
            "event_type": event.type.value, "issue_id": event.issue_id, "error": str(exc),
        })


def default_notifier() -> Notifier:
    from services.dispatch.src.dispatch.config import settings

    if settings.notify_webhook_url:
        return WebhookNotifier(settings.notify_webhook_url, settings.notify_timeout_s)
    return LoggingNotifier()
