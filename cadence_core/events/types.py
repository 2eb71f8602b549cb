from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

EVENT_ROLLOUT_CREATED = "rollout.created"
EVENT_ROLLOUT_UPDATED = "rollout.updated"
EVENT_ROLLOUT_DELETED = "rollout.deleted"
EVENT_GROUP_UPDATED = "rollout_group.updated"


@dataclass(frozen=True)
class LifecycleEvent:
    id: str
    event_type: str
    tenant: str
    rollout_id: str
    created_at: str
    payload: dict[str, Any]
    group_id: str | None = None


class LifecycleNotifier(Protocol):
    def publish(self, event: LifecycleEvent) -> None:
        ...


def build_event(
    event_type: str,
    *,
    tenant: str,
    rollout_id: str,
    payload: dict[str, Any],
    group_id: str | None = None,
) -> LifecycleEvent:
    return LifecycleEvent(
        id=str(uuid.uuid4()),
        event_type=event_type,
        tenant=tenant,
        rollout_id=rollout_id,
        created_at=datetime.now(timezone.utc).isoformat(),
        payload=payload,
        group_id=group_id,
    )


def event_to_dict(event: LifecycleEvent) -> dict[str, object]:
    return {
        "id": event.id,
        "type": event.event_type,
        "tenant": event.tenant,
        "rollout_id": event.rollout_id,
        "group_id": event.group_id,
        "created_at": event.created_at,
        "payload": event.payload,
    }
