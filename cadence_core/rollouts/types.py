from __future__ import annotations

from dataclasses import dataclass, replace

ROLLOUT_CREATING = "CREATING"
ROLLOUT_ERROR_CREATING = "ERROR_CREATING"
ROLLOUT_READY = "READY"
ROLLOUT_WAITING_FOR_APPROVAL = "WAITING_FOR_APPROVAL"
ROLLOUT_APPROVAL_DENIED = "APPROVAL_DENIED"
ROLLOUT_STARTING = "STARTING"
ROLLOUT_ERROR_STARTING = "ERROR_STARTING"
ROLLOUT_RUNNING = "RUNNING"
ROLLOUT_PAUSED = "PAUSED"
ROLLOUT_STOPPING = "STOPPING"
ROLLOUT_STOPPED = "STOPPED"
ROLLOUT_FINISHED = "FINISHED"
ROLLOUT_DELETING = "DELETING"
ROLLOUT_DELETED = "DELETED"

ROLLOUT_STATUSES: tuple[str, ...] = (
    ROLLOUT_CREATING,
    ROLLOUT_ERROR_CREATING,
    ROLLOUT_READY,
    ROLLOUT_WAITING_FOR_APPROVAL,
    ROLLOUT_APPROVAL_DENIED,
    ROLLOUT_STARTING,
    ROLLOUT_ERROR_STARTING,
    ROLLOUT_RUNNING,
    ROLLOUT_PAUSED,
    ROLLOUT_STOPPING,
    ROLLOUT_STOPPED,
    ROLLOUT_FINISHED,
    ROLLOUT_DELETING,
    ROLLOUT_DELETED,
)

TERMINAL_STATUSES = frozenset({ROLLOUT_FINISHED, ROLLOUT_STOPPED, ROLLOUT_DELETED})

GROUP_SCHEDULED = "SCHEDULED"
GROUP_RUNNING = "RUNNING"
GROUP_FINISHED = "FINISHED"
GROUP_ERROR = "ERROR"

GROUP_STATUSES: tuple[str, ...] = (
    GROUP_SCHEDULED,
    GROUP_RUNNING,
    GROUP_FINISHED,
    GROUP_ERROR,
)

ACTION_TYPE_FORCED = "FORCED"
ACTION_TYPE_SOFT = "SOFT"
ACTION_TYPE_TIMEFORCED = "TIMEFORCED"
ACTION_TYPE_DOWNLOAD_ONLY = "DOWNLOAD_ONLY"

ACTION_TYPES: tuple[str, ...] = (
    ACTION_TYPE_FORCED,
    ACTION_TYPE_SOFT,
    ACTION_TYPE_TIMEFORCED,
    ACTION_TYPE_DOWNLOAD_ONLY,
)

CONDITION_THRESHOLD = "THRESHOLD"
SUCCESS_ACTION_NEXTGROUP = "NEXTGROUP"

ERROR_ACTION_PAUSE = "PAUSE"
ERROR_ACTION_CONTINUE = "CONTINUE"
ERROR_ACTIONS: tuple[str, ...] = (ERROR_ACTION_PAUSE, ERROR_ACTION_CONTINUE)

APPROVAL_APPROVED = "APPROVED"
APPROVAL_DENIED = "DENIED"
APPROVAL_DECISIONS: tuple[str, ...] = (APPROVAL_APPROVED, APPROVAL_DENIED)

NAME_MAX_SIZE = 128
FILTER_MAX_SIZE = 1024
DECIDED_BY_MAX_SIZE = 64
APPROVAL_REMARK_MAX_SIZE = 255
WEIGHT_MIN = 0
WEIGHT_MAX = 1000


@dataclass(frozen=True)
class Condition:
    kind: str
    threshold: float


@dataclass(frozen=True)
class GroupSpec:
    name: str | None = None
    target_percentage: float = 100.0
    target_filter: str | None = None
    success_condition: Condition = Condition(CONDITION_THRESHOLD, 100.0)
    error_condition: Condition | None = None
    error_action: str = ERROR_ACTION_PAUSE


@dataclass(frozen=True)
class RolloutSpec:
    tenant: str
    name: str
    target_filter: str
    distribution_set_id: str
    groups: tuple[GroupSpec, ...]
    description: str | None = None
    action_type: str = ACTION_TYPE_FORCED
    forced_time: str | None = None
    weight: int | None = None
    dynamic: bool = False
    start_at: str | None = None
    created_by: str | None = None


@dataclass(frozen=True)
class Rollout:
    id: str
    tenant: str
    name: str
    description: str | None
    target_filter: str
    distribution_set_id: str
    status: str
    action_type: str
    forced_time: str | None
    weight: int | None
    dynamic: bool
    total_targets: int
    rollout_groups_created: int
    start_at: str | None
    last_check: str | None
    approval_decision: str | None
    approval_decided_by: str | None
    approval_remark: str | None
    deleted: bool
    status_reason: str | None
    last_target_sequence: int
    stop_requested_at: str | None
    version: int
    created_at: str
    updated_at: str
    created_by: str | None = None


@dataclass(frozen=True)
class RolloutGroup:
    id: str
    rollout_id: str
    index: int
    name: str
    target_percentage: float
    target_filter: str | None
    success_condition: Condition
    success_action: str
    error_condition: Condition | None
    error_action: str
    status: str
    total_targets: int
    actions_created: int
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class GroupStatusCounts:
    total: int
    not_started: int
    scheduled: int
    running: int
    downloaded: int
    finished: int
    error: int
    canceling: int
    canceled: int

    def percentage(self, count: int) -> float:
        if self.total <= 0:
            return 0.0
        return count * 100.0 / self.total

    @property
    def open_actions(self) -> int:
        return self.scheduled + self.running + self.downloaded + self.canceling


@dataclass(frozen=True)
class GroupView:
    group: RolloutGroup
    counts: GroupStatusCounts


@dataclass(frozen=True)
class RolloutView:
    rollout: Rollout
    groups: tuple[GroupView, ...]
    counts: GroupStatusCounts


@dataclass(frozen=True)
class RolloutState:
    rollout: Rollout
    groups: tuple[RolloutGroup, ...]

    def group(self, index: int) -> RolloutGroup:
        return self.groups[index]

    def last_group(self) -> RolloutGroup | None:
        return self.groups[-1] if self.groups else None

    def running_group(self) -> RolloutGroup | None:
        for group in self.groups:
            if group.status == GROUP_RUNNING:
                return group
        return None

    def is_last(self, group: RolloutGroup) -> bool:
        return group.index == len(self.groups) - 1

    def with_group(self, group: RolloutGroup) -> "RolloutState":
        groups = tuple(
            group if existing.index == group.index else existing
            for existing in self.groups
        )
        return replace(self, groups=groups)

    def with_rollout(self, **changes: object) -> "RolloutState":
        return replace(self, rollout=replace(self.rollout, **changes))
