from cadence_core.events.notifiers import LoggingNotifier, RecordingNotifier
from cadence_core.events.types import (
    EVENT_GROUP_UPDATED,
    EVENT_ROLLOUT_CREATED,
    EVENT_ROLLOUT_DELETED,
    EVENT_ROLLOUT_UPDATED,
    LifecycleEvent,
    LifecycleNotifier,
    build_event,
    event_to_dict,
)

__all__ = [
    "EVENT_GROUP_UPDATED",
    "EVENT_ROLLOUT_CREATED",
    "EVENT_ROLLOUT_DELETED",
    "EVENT_ROLLOUT_UPDATED",
    "LifecycleEvent",
    "LifecycleNotifier",
    "LoggingNotifier",
    "RecordingNotifier",
    "build_event",
    "event_to_dict",
]
