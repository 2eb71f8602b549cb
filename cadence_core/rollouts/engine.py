from __future__ import annotations

import uuid
from dataclasses import replace
from typing import TYPE_CHECKING, AbstractSet

from cadence_core.clock import Clock, isoformat, parse_timestamp, utc_now
from cadence_core.config import EngineSettings
from cadence_core.errors import PermanentError, ValidationError
from cadence_core.logging import get_logger
from cadence_core.rollouts.aggregator import aggregate_group, open_action_count
from cadence_core.rollouts.assignment import (
    GroupInput,
    new_arrivals,
    normalize_percentages,
    partition_targets,
)
from cadence_core.rollouts.state_machine import RolloutStateMachine
from cadence_core.rollouts.thresholds import (
    OUTCOME_ERROR_PAUSE,
    OUTCOME_NONE,
    OUTCOME_SUCCESS,
    evaluate_group,
)
from cadence_core.rollouts.types import (
    GROUP_ERROR,
    GROUP_FINISHED,
    GROUP_RUNNING,
    GROUP_SCHEDULED,
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
    SUCCESS_ACTION_NEXTGROUP,
    Rollout,
    RolloutGroup,
    RolloutSpec,
    RolloutState,
)

if TYPE_CHECKING:
    from cadence_core.stores.interfaces import (
        ActionTracker,
        RolloutStore,
        TargetRepository,
    )

logger = get_logger(__name__)


class RolloutEngine:
    """Moves one rollout forward from whatever state it was left in.

    Every method takes a committed ``RolloutState`` and returns the latest
    committed one. Callers hold the rollout lease; the engine itself never
    locks.
    """

    def __init__(
        self,
        *,
        store: RolloutStore,
        targets: TargetRepository,
        tracker: ActionTracker,
        machine: RolloutStateMachine,
        settings: EngineSettings,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._targets = targets
        self._tracker = tracker
        self._machine = machine
        self._settings = settings
        self._clock = clock

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def machine(self) -> RolloutStateMachine:
        return self._machine

    def now(self) -> str:
        return isoformat(self._clock())

    def load(self, rollout_id: str) -> RolloutState | None:
        rollout = self._store.get_rollout(rollout_id)
        if rollout is None:
            return None
        return RolloutState(rollout=rollout, groups=self._store.get_groups(rollout_id))

    def commit(self, before: RolloutState, after: RolloutState) -> RolloutState:
        stamped = after.with_rollout(last_check=self.now())
        return self._machine.commit(before, stamped)

    def record_check(self, state: RolloutState) -> RolloutState:
        """Persist the evaluation time alone. No event, no status change."""
        rollout = state.rollout
        if rollout.deleted:
            return state
        saved = self._store.save_rollout(
            replace(rollout, last_check=self.now()),
            groups=state.groups,
            expected_version=rollout.version,
        )
        return RolloutState(rollout=saved, groups=state.groups)

    def build_state(self, spec: RolloutSpec) -> RolloutState:
        now = self.now()
        rollout_id = str(uuid.uuid4())
        percentages = normalize_percentages(
            [group.target_percentage for group in spec.groups]
        )
        groups = tuple(
            RolloutGroup(
                id=str(uuid.uuid4()),
                rollout_id=rollout_id,
                index=index,
                name=group.name or f"group-{index + 1}",
                target_percentage=percentages[index],
                target_filter=group.target_filter,
                success_condition=group.success_condition,
                success_action=SUCCESS_ACTION_NEXTGROUP,
                error_condition=group.error_condition,
                error_action=group.error_action,
                status=GROUP_SCHEDULED,
                total_targets=0,
                actions_created=0,
                created_at=now,
                updated_at=now,
            )
            for index, group in enumerate(spec.groups)
        )
        rollout = Rollout(
            id=rollout_id,
            tenant=spec.tenant,
            name=spec.name.strip(),
            description=spec.description,
            target_filter=spec.target_filter.strip(),
            distribution_set_id=spec.distribution_set_id,
            status=ROLLOUT_CREATING,
            action_type=spec.action_type,
            forced_time=spec.forced_time,
            weight=spec.weight,
            dynamic=spec.dynamic,
            total_targets=0,
            rollout_groups_created=0,
            start_at=spec.start_at,
            last_check=None,
            approval_decision=None,
            approval_decided_by=None,
            approval_remark=None,
            deleted=False,
            status_reason=None,
            last_target_sequence=0,
            stop_requested_at=None,
            version=0,
            created_at=now,
            updated_at=now,
            created_by=spec.created_by,
        )
        return RolloutState(rollout=rollout, groups=groups)

    def complete_creation(self, state: RolloutState) -> RolloutState:
        rollout = state.rollout
        try:
            matches = self._targets.find_matching(
                rollout.target_filter,
                tenant=rollout.tenant,
            )
            inputs = [
                GroupInput(
                    percent=group.target_percentage,
                    eligible=self._group_eligible(rollout, group),
                )
                for group in state.groups
            ]
        except ValidationError as exc:
            return self._fail_creation(state, str(exc))
        if not matches and not rollout.dynamic:
            return self._fail_creation(
                state, f"No targets match filter '{rollout.target_filter}'"
            )

        plan = partition_targets(matches, inputs)
        if plan.unassigned:
            return self._fail_creation(
                state,
                f"{len(plan.unassigned)} matching targets are not covered by any group",
            )

        groups: list[RolloutGroup] = []
        for group, assignment in zip(state.groups, plan.groups):
            self._store.assign_targets(rollout.id, group.id, assignment.target_ids)
            groups.append(replace(group, total_targets=len(assignment.target_ids)))
        watermark = max((match.sequence for match in matches), default=0)
        after = RolloutState(
            rollout=replace(
                rollout,
                status=ROLLOUT_READY,
                status_reason=None,
                total_targets=plan.total_targets,
                rollout_groups_created=len(groups),
                last_target_sequence=watermark,
            ),
            groups=tuple(groups),
        )
        state = self.commit(state, after)
        if self._settings.approval_required:
            state = self.commit(
                state, state.with_rollout(status=ROLLOUT_WAITING_FOR_APPROVAL)
            )
        return state

    def _fail_creation(self, state: RolloutState, reason: str) -> RolloutState:
        logger.warning(
            "Rollout creation failed",
            extra={
                "tenant": state.rollout.tenant,
                "rollout_id": state.rollout.id,
                "status_reason": reason,
            },
        )
        return self.commit(
            state,
            state.with_rollout(status=ROLLOUT_ERROR_CREATING, status_reason=reason),
        )

    def start_due(self, rollout: Rollout) -> bool:
        if rollout.status != ROLLOUT_READY:
            return False
        start_at = parse_timestamp(rollout.start_at)
        return start_at is not None and start_at <= self._clock()

    def begin_start(self, state: RolloutState) -> RolloutState:
        return self.commit(
            state, state.with_rollout(status=ROLLOUT_STARTING, status_reason=None)
        )

    def progress_starting(self, state: RolloutState) -> RolloutState:
        if not state.groups:
            return state
        first = state.group(0)
        if first.status == GROUP_SCHEDULED:
            state = self.commit(
                state, state.with_group(replace(first, status=GROUP_RUNNING))
            )
        try:
            state, done = self._dispatch(state, 0)
        except PermanentError as exc:
            logger.error(
                "Rollout start failed",
                extra={
                    "tenant": state.rollout.tenant,
                    "rollout_id": state.rollout.id,
                    "error_message": str(exc),
                },
            )
            return self.commit(
                state,
                state.with_rollout(
                    status=ROLLOUT_ERROR_STARTING, status_reason=str(exc)
                ),
            )
        if not done:
            return state
        state = self.commit(state, state.with_rollout(status=ROLLOUT_RUNNING))
        return self.evaluate(state)

    def progress_running(self, state: RolloutState) -> RolloutState:
        state = self.absorb(state)
        running = state.running_group()
        if running is None:
            return self._start_next_group(state)
        state, done = self._dispatch(state, running.index)
        if not done:
            return state
        return self.evaluate(state)

    def absorb(self, state: RolloutState) -> RolloutState:
        rollout = state.rollout
        if not rollout.dynamic or rollout.status != ROLLOUT_RUNNING:
            return state
        catch_all = state.last_group()
        if catch_all is None or catch_all.status not in (
            GROUP_SCHEDULED,
            GROUP_RUNNING,
        ):
            return state
        matches = self._targets.find_matching(
            rollout.target_filter,
            rollout.last_target_sequence,
            tenant=rollout.tenant,
        )
        if not matches:
            return state
        fresh, watermark = new_arrivals(
            matches,
            self._store.assigned_target_ids(rollout.id),
            watermark=rollout.last_target_sequence,
            eligible=self._group_eligible(rollout, catch_all),
        )
        if fresh:
            self._store.assign_targets(rollout.id, catch_all.id, fresh)
        group_total = len(self._store.group_targets(rollout.id, catch_all.id))
        rollout_total = len(self._store.assigned_target_ids(rollout.id))
        after = state.with_group(
            replace(catch_all, total_targets=group_total)
        ).with_rollout(
            total_targets=max(rollout.total_targets, rollout_total),
            last_target_sequence=watermark,
        )
        if after == state:
            return state
        logger.info(
            "Absorbed new targets",
            extra={
                "tenant": rollout.tenant,
                "rollout_id": rollout.id,
                "group_id": catch_all.id,
                "absorbed_count": len(fresh),
            },
        )
        return self.commit(state, after)

    def evaluate(self, state: RolloutState) -> RolloutState:
        # Each pass settles at most one group, so the group count bounds the loop.
        for _ in range(len(state.groups)):
            if state.rollout.status != ROLLOUT_RUNNING:
                break
            group = state.running_group()
            if group is None:
                break
            counts = aggregate_group(self._tracker, group, state.rollout.action_type)
            outcome = evaluate_group(
                group,
                counts,
                catch_all_dynamic=state.rollout.dynamic and state.is_last(group),
            )
            if outcome == OUTCOME_NONE:
                break
            if outcome == OUTCOME_ERROR_PAUSE:
                reason = f"Group {group.name} reached its error threshold"
                state = self.commit(
                    state,
                    state.with_group(replace(group, status=GROUP_ERROR)).with_rollout(
                        status=ROLLOUT_PAUSED, status_reason=reason
                    ),
                )
                break
            settled = GROUP_FINISHED if outcome == OUTCOME_SUCCESS else GROUP_ERROR
            state = self._settle_group(state, group, settled)
            if state.rollout.status != ROLLOUT_RUNNING:
                break
            running = state.running_group()
            if running is None:
                break
            state, done = self._dispatch(state, running.index)
            if not done:
                break
        return state

    def _settle_group(
        self,
        state: RolloutState,
        group: RolloutGroup,
        status: str,
    ) -> RolloutState:
        after = state.with_group(replace(group, status=status))
        if state.is_last(group):
            return self.commit(state, after.with_rollout(status=ROLLOUT_FINISHED))
        following = after.group(group.index + 1)
        return self.commit(
            state, after.with_group(replace(following, status=GROUP_RUNNING))
        )

    def _start_next_group(self, state: RolloutState) -> RolloutState:
        pending = [group for group in state.groups if group.status == GROUP_SCHEDULED]
        if not pending:
            return self.commit(state, state.with_rollout(status=ROLLOUT_FINISHED))
        state = self.commit(
            state, state.with_group(replace(pending[0], status=GROUP_RUNNING))
        )
        state, done = self._dispatch(state, pending[0].index)
        if not done:
            return state
        return self.evaluate(state)

    def _dispatch(self, state: RolloutState, index: int) -> tuple[RolloutState, bool]:
        rollout = state.rollout
        group = state.group(index)
        assigned = self._store.group_targets(rollout.id, group.id)
        batch_size = self._settings.action_batch_size
        batches = 0
        while group.actions_created < len(assigned):
            if batches >= self._settings.max_batches_per_tick:
                return state, False
            start = group.actions_created
            batch = assigned[start : start + batch_size]
            result = self._tracker.create_actions(
                group.id,
                batch,
                rollout.action_type,
                rollout.forced_time,
                rollout_id=rollout.id,
                weight=rollout.weight,
            )
            if result.failed:
                self._mark_failed(rollout, group, result.failed)
            logger.info(
                "Dispatched action batch",
                extra={
                    "tenant": rollout.tenant,
                    "rollout_id": rollout.id,
                    "group_id": group.id,
                    "group_index": group.index,
                    "batch_size": len(batch),
                    "created_count": len(result.created),
                    "failed_count": len(result.failed),
                },
            )
            state = self.commit(
                state,
                state.with_group(replace(group, actions_created=start + len(batch))),
            )
            group = state.group(index)
            batches += 1
        return state, True

    def _mark_failed(
        self,
        rollout: Rollout,
        group: RolloutGroup,
        failed: dict[str, str],
    ) -> None:
        by_reason: dict[str, list[str]] = {}
        for target_id, reason in failed.items():
            by_reason.setdefault(reason, []).append(target_id)
        for reason, target_ids in sorted(by_reason.items()):
            self._tracker.mark_failed(
                group.id, target_ids, reason, rollout_id=rollout.id
            )

    def progress_cancellation(self, state: RolloutState) -> RolloutState:
        rollout = state.rollout
        if rollout.status not in (ROLLOUT_STOPPING, ROLLOUT_DELETING):
            return state
        canceled = 0
        for group in state.groups:
            canceled += self._tracker.cancel_actions(group.id)
        open_actions = open_action_count(self._tracker, state)
        timed_out = self._cancellation_timed_out(rollout)
        logger.info(
            "Cancellation check",
            extra={
                "tenant": rollout.tenant,
                "rollout_id": rollout.id,
                "canceled_count": canceled,
                "open_actions": open_actions,
            },
        )
        if open_actions and not timed_out:
            return state
        if rollout.status == ROLLOUT_STOPPING:
            return self.commit(state, state.with_rollout(status=ROLLOUT_STOPPED))
        return self.commit(
            state, state.with_rollout(status=ROLLOUT_DELETED, deleted=True)
        )

    def _cancellation_timed_out(self, rollout: Rollout) -> bool:
        requested = parse_timestamp(rollout.stop_requested_at)
        if requested is None:
            return False
        elapsed = (self._clock() - requested).total_seconds()
        return elapsed >= self._settings.stop_timeout_seconds

    def advance(self, state: RolloutState) -> RolloutState:
        status = state.rollout.status
        if status == ROLLOUT_CREATING:
            return self.complete_creation(state)
        if status == ROLLOUT_READY:
            if not self.start_due(state.rollout):
                return state
            return self.progress_starting(self.begin_start(state))
        if status == ROLLOUT_STARTING:
            return self.progress_starting(state)
        if status == ROLLOUT_RUNNING:
            return self.progress_running(state)
        if status in (ROLLOUT_STOPPING, ROLLOUT_DELETING):
            return self.progress_cancellation(state)
        return state

    def _group_eligible(
        self,
        rollout: Rollout,
        group: RolloutGroup,
    ) -> AbstractSet[str] | None:
        if not group.target_filter:
            return None
        matches = self._targets.find_matching(
            group.target_filter,
            tenant=rollout.tenant,
        )
        return {match.target_id for match in matches}
