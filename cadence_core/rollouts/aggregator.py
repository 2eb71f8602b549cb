from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Mapping

from cadence_core.actions.types import (
    ACTION_CANCELED,
    ACTION_CANCELING,
    ACTION_DOWNLOADED,
    ACTION_ERROR,
    ACTION_FINISHED,
    ACTION_RUNNING,
    ACTION_SCHEDULED,
)
from cadence_core.rollouts.types import (
    ACTION_TYPE_DOWNLOAD_ONLY,
    GroupStatusCounts,
    GroupView,
    RolloutState,
    RolloutView,
)

if TYPE_CHECKING:
    from cadence_core.rollouts.types import RolloutGroup
    from cadence_core.stores.interfaces import ActionTracker


def aggregate_counts(
    raw: Mapping[str, int],
    *,
    total: int,
    action_type: str,
) -> GroupStatusCounts:
    scheduled = int(raw.get(ACTION_SCHEDULED, 0))
    running = int(raw.get(ACTION_RUNNING, 0))
    downloaded = int(raw.get(ACTION_DOWNLOADED, 0))
    finished = int(raw.get(ACTION_FINISHED, 0))
    error = int(raw.get(ACTION_ERROR, 0))
    canceling = int(raw.get(ACTION_CANCELING, 0))
    canceled = int(raw.get(ACTION_CANCELED, 0))
    if action_type == ACTION_TYPE_DOWNLOAD_ONLY:
        # A download-only action is complete once the device has the artifact.
        finished += downloaded
        downloaded = 0
    tracked = scheduled + running + downloaded + finished + error + canceling + canceled
    total = max(total, tracked)
    return GroupStatusCounts(
        total=total,
        not_started=max(total - tracked, 0),
        scheduled=scheduled,
        running=running,
        downloaded=downloaded,
        finished=finished,
        error=error,
        canceling=canceling,
        canceled=canceled,
    )


def aggregate_group(
    tracker: ActionTracker,
    group: RolloutGroup,
    action_type: str,
) -> GroupStatusCounts:
    return aggregate_counts(
        tracker.count_by_status(group.id),
        total=group.total_targets,
        action_type=action_type,
    )


def sum_counts(items: Iterable[GroupStatusCounts]) -> GroupStatusCounts:
    fields = {
        "total": 0,
        "not_started": 0,
        "scheduled": 0,
        "running": 0,
        "downloaded": 0,
        "finished": 0,
        "error": 0,
        "canceling": 0,
        "canceled": 0,
    }
    for counts in items:
        for name in fields:
            fields[name] += getattr(counts, name)
    return GroupStatusCounts(**fields)


def aggregate_rollout(tracker: ActionTracker, state: RolloutState) -> RolloutView:
    action_type = state.rollout.action_type
    views = tuple(
        GroupView(group=group, counts=aggregate_group(tracker, group, action_type))
        for group in state.groups
    )
    return RolloutView(
        rollout=state.rollout,
        groups=views,
        counts=sum_counts(view.counts for view in views),
    )


def open_action_count(tracker: ActionTracker, state: RolloutState) -> int:
    return sum(
        aggregate_group(tracker, group, state.rollout.action_type).open_actions
        for group in state.groups
    )
