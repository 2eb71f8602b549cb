from __future__ import annotations

import threading

from cadence_core.events.types import LifecycleEvent
from cadence_core.logging import get_logger

logger = get_logger(__name__)


class LoggingNotifier:
    def publish(self, event: LifecycleEvent) -> None:
        logger.info(
            "Lifecycle event",
            extra={
                "event_type": event.event_type,
                "event_id": event.id,
                "tenant": event.tenant,
                "rollout_id": event.rollout_id,
                "group_id": event.group_id,
                "to_status": event.payload.get("status"),
            },
        )


class RecordingNotifier:
    """Keeps published events in memory, in publish order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[LifecycleEvent] = []

    def publish(self, event: LifecycleEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[LifecycleEvent]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: str) -> list[LifecycleEvent]:
        return [event for event in self.events if event.event_type == event_type]
