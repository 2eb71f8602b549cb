from __future__ import annotations

from dataclasses import dataclass, field

ACTION_SCHEDULED = "SCHEDULED"
ACTION_RUNNING = "RUNNING"
ACTION_DOWNLOADED = "DOWNLOADED"
ACTION_FINISHED = "FINISHED"
ACTION_ERROR = "ERROR"
ACTION_CANCELING = "CANCELING"
ACTION_CANCELED = "CANCELED"

ACTION_STATUSES: tuple[str, ...] = (
    ACTION_SCHEDULED,
    ACTION_RUNNING,
    ACTION_DOWNLOADED,
    ACTION_FINISHED,
    ACTION_ERROR,
    ACTION_CANCELING,
    ACTION_CANCELED,
)

OPEN_ACTION_STATUSES = frozenset(
    {ACTION_SCHEDULED, ACTION_RUNNING, ACTION_DOWNLOADED, ACTION_CANCELING}
)


@dataclass(frozen=True)
class ActionRecord:
    id: str
    rollout_id: str
    group_id: str
    target_id: str
    status: str
    action_type: str
    forced_time: str | None
    weight: int | None
    error: str | None
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class ActionBatchResult:
    created: tuple[str, ...]
    existing: tuple[str, ...] = ()
    failed: dict[str, str] = field(default_factory=dict)
