"""Fire-and-forget event broadcast for UI notifications."""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger()

CHALLENGE_UPDATED = "challenge-updated"
FINALIZATION_UPDATED = "finalization-updated"

Subscriber = Callable[[str, dict[str, Any]], None]


@dataclass
class PublishedEvent:
    name: str
    payload: dict[str, Any] = field(default_factory=dict)


class EventBroadcaster:
    """Deliver named events to registered subscribers.

    Publishing never raises. A subscriber that raises is logged and removed,
    like a dropped streaming connection.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, Subscriber] = {}
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> str:
        subscriber_id = str(uuid.uuid4())
        with self._lock:
            self._subscribers[subscriber_id] = subscriber
        return subscriber_id

    def unsubscribe(self, subscriber_id: str) -> None:
        with self._lock:
            self._subscribers.pop(subscriber_id, None)

    def publish(self, event: str, payload: dict[str, Any] | None = None) -> None:
        data = dict(payload or {})
        with self._lock:
            subscribers = list(self._subscribers.items())

        for subscriber_id, subscriber in subscribers:
            try:
                subscriber(event, data)
            except Exception as e:
                logger.warning(
                    "event_subscriber_dropped",
                    event_name=event,
                    subscriber_id=subscriber_id,
                    error=str(e),
                )
                self.unsubscribe(subscriber_id)
        logger.debug("event_published", event_name=event, subscribers=len(subscribers))


class RecordingSubscriber:
    """Subscriber that keeps every event it receives, in order."""

    def __init__(self) -> None:
        self.events: list[PublishedEvent] = []

    def __call__(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append(PublishedEvent(event, payload))

    def names(self) -> list[str]:
        return [event.name for event in self.events]
