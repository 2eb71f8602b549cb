from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

from cadence_core.clock import Clock, isoformat, utc_now
from cadence_core.errors import InvalidStateError
from cadence_core.events.types import (
    EVENT_GROUP_UPDATED,
    EVENT_ROLLOUT_CREATED,
    EVENT_ROLLOUT_DELETED,
    EVENT_ROLLOUT_UPDATED,
    LifecycleEvent,
    LifecycleNotifier,
    build_event,
)
from cadence_core.logging import get_logger
from cadence_core.rollouts.types import (
    APPROVAL_APPROVED,
    GROUP_ERROR,
    GROUP_FINISHED,
    GROUP_RUNNING,
    GROUP_SCHEDULED,
    ROLLOUT_APPROVAL_DENIED,
    ROLLOUT_CREATING,
    ROLLOUT_DELETED,
    ROLLOUT_DELETING,
    ROLLOUT_ERROR_CREATING,
    ROLLOUT_ERROR_STARTING,
    ROLLOUT_FINISHED,
    ROLLOUT_PAUSED,
    ROLLOUT_READY,
    ROLLOUT_RUNNING,
    ROLLOUT_STARTING,
    ROLLOUT_STOPPED,
    ROLLOUT_STOPPING,
    ROLLOUT_WAITING_FOR_APPROVAL,
    Rollout,
    RolloutGroup,
    RolloutState,
)

if TYPE_CHECKING:
    from cadence_core.stores.interfaces import RolloutStore

logger = get_logger(__name__)

ROLLOUT_TRANSITIONS: dict[str, frozenset[str]] = {
    ROLLOUT_CREATING: frozenset(
        {ROLLOUT_READY, ROLLOUT_ERROR_CREATING, ROLLOUT_DELETING}
    ),
    ROLLOUT_ERROR_CREATING: frozenset({ROLLOUT_DELETING}),
    ROLLOUT_READY: frozenset(
        {ROLLOUT_WAITING_FOR_APPROVAL, ROLLOUT_STARTING, ROLLOUT_DELETING}
    ),
    ROLLOUT_WAITING_FOR_APPROVAL: frozenset(
        {
            ROLLOUT_READY,
            ROLLOUT_APPROVAL_DENIED,
            ROLLOUT_STARTING,
            ROLLOUT_DELETING,
        }
    ),
    ROLLOUT_APPROVAL_DENIED: frozenset({ROLLOUT_DELETING}),
    ROLLOUT_STARTING: frozenset(
        {ROLLOUT_RUNNING, ROLLOUT_ERROR_STARTING, ROLLOUT_DELETING}
    ),
    ROLLOUT_ERROR_STARTING: frozenset({ROLLOUT_DELETING}),
    ROLLOUT_RUNNING: frozenset(
        {ROLLOUT_PAUSED, ROLLOUT_FINISHED, ROLLOUT_STOPPING, ROLLOUT_DELETING}
    ),
    ROLLOUT_PAUSED: frozenset({ROLLOUT_RUNNING, ROLLOUT_STOPPING, ROLLOUT_DELETING}),
    ROLLOUT_STOPPING: frozenset({ROLLOUT_STOPPED, ROLLOUT_DELETING}),
    ROLLOUT_DELETING: frozenset({ROLLOUT_DELETED}),
    ROLLOUT_FINISHED: frozenset(),
    ROLLOUT_STOPPED: frozenset(),
    ROLLOUT_DELETED: frozenset(),
}

GROUP_TRANSITIONS: dict[str, frozenset[str]] = {
    GROUP_SCHEDULED: frozenset({GROUP_RUNNING}),
    GROUP_RUNNING: frozenset({GROUP_FINISHED, GROUP_ERROR}),
    GROUP_FINISHED: frozenset(),
    GROUP_ERROR: frozenset(),
}


def can_transition(
    current: str,
    target: str,
    *,
    approval_decision: str | None = None,
) -> bool:
    if target not in ROLLOUT_TRANSITIONS.get(current, frozenset()):
        return False
    if current == ROLLOUT_WAITING_FOR_APPROVAL and target in {
        ROLLOUT_READY,
        ROLLOUT_STARTING,
    }:
        return approval_decision == APPROVAL_APPROVED
    return True


def check_transition(
    current: str,
    target: str,
    *,
    approval_decision: str | None = None,
) -> None:
    if not can_transition(current, target, approval_decision=approval_decision):
        raise InvalidStateError(
            f"Rollout cannot move from {current} to {target}",
            current=current,
        )


def check_group_transition(current: str, target: str) -> None:
    if target not in GROUP_TRANSITIONS.get(current, frozenset()):
        raise InvalidStateError(
            f"Rollout group cannot move from {current} to {target}",
            current=current,
        )


class RolloutStateMachine:
    """Validates, persists and announces rollout and group transitions.

    Events go out only after the store accepted the new version. A notifier
    failure is logged and does not undo the committed state.
    """

    def __init__(
        self,
        store: RolloutStore,
        notifier: LifecycleNotifier,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._clock = clock

    def create(self, state: RolloutState) -> RolloutState:
        rollout = self._store.create_rollout(state.rollout, state.groups)
        created = RolloutState(rollout=rollout, groups=tuple(state.groups))
        logger.info(
            "Rollout created",
            extra={
                "tenant": rollout.tenant,
                "rollout_id": rollout.id,
                "rollout_name": rollout.name,
                "to_status": rollout.status,
            },
        )
        self._publish(
            build_event(
                EVENT_ROLLOUT_CREATED,
                tenant=rollout.tenant,
                rollout_id=rollout.id,
                payload=_rollout_payload(rollout, previous=None),
            )
        )
        return created

    def commit(self, before: RolloutState, after: RolloutState) -> RolloutState:
        previous = before.rollout
        current = after.rollout
        if current.status != previous.status:
            check_transition(
                previous.status,
                current.status,
                approval_decision=current.approval_decision,
            )
        earlier = {group.id: group for group in before.groups}
        changed_groups: list[tuple[str, RolloutGroup]] = []
        for group in after.groups:
            old = earlier.get(group.id)
            if old is not None and old.status != group.status:
                check_group_transition(old.status, group.status)
                changed_groups.append((old.status, group))

        now = isoformat(self._clock())
        groups = tuple(
            group if earlier.get(group.id) == group else replace(group, updated_at=now)
            for group in after.groups
        )
        saved = self._store.save_rollout(
            replace(current, updated_at=now),
            groups=groups,
            expected_version=previous.version,
        )
        committed = RolloutState(rollout=saved, groups=groups)

        for old_status, group in changed_groups:
            self._log_group(saved, old_status, group)
            self._publish(
                build_event(
                    EVENT_GROUP_UPDATED,
                    tenant=saved.tenant,
                    rollout_id=saved.id,
                    group_id=group.id,
                    payload={
                        "status": group.status,
                        "previous_status": old_status,
                        "index": group.index,
                        "name": group.name,
                        "total_targets": group.total_targets,
                    },
                )
            )
        if saved.status != previous.status:
            logger.info(
                "Rollout transition",
                extra={
                    "tenant": saved.tenant,
                    "rollout_id": saved.id,
                    "from_status": previous.status,
                    "to_status": saved.status,
                    "status_reason": saved.status_reason,
                },
            )
            event_type = (
                EVENT_ROLLOUT_DELETED
                if saved.status == ROLLOUT_DELETED
                else EVENT_ROLLOUT_UPDATED
            )
            self._publish(
                build_event(
                    event_type,
                    tenant=saved.tenant,
                    rollout_id=saved.id,
                    payload=_rollout_payload(saved, previous=previous.status),
                )
            )
        return committed

    def _log_group(
        self,
        rollout: Rollout,
        old_status: str,
        group: RolloutGroup,
    ) -> None:
        logger.info(
            "Rollout group transition",
            extra={
                "tenant": rollout.tenant,
                "rollout_id": rollout.id,
                "group_id": group.id,
                "group_index": group.index,
                "from_status": old_status,
                "to_status": group.status,
            },
        )

    def _publish(self, event: LifecycleEvent) -> None:
        try:
            self._notifier.publish(event)
        except Exception as exc:
            logger.warning(
                "Lifecycle event publish failed",
                extra={
                    "event_type": event.event_type,
                    "event_id": event.id,
                    "rollout_id": event.rollout_id,
                    "error_message": str(exc),
                },
            )


def _rollout_payload(rollout: Rollout, *, previous: str | None) -> dict[str, object]:
    return {
        "status": rollout.status,
        "previous_status": previous,
        "name": rollout.name,
        "distribution_set_id": rollout.distribution_set_id,
        "total_targets": rollout.total_targets,
        "status_reason": rollout.status_reason,
        "version": rollout.version,
    }
