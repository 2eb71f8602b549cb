from __future__ import annotations

import time
import uuid
from dataclasses import replace
from typing import TYPE_CHECKING, Callable

from cadence_core.errors import (
    InvalidStateError,
    RolloutConflictError,
    RolloutNotFoundError,
    StaleStateError,
)
from cadence_core.leases.types import LeaseProvider, hold_lease
from cadence_core.logging import get_logger
from cadence_core.rollouts.aggregator import aggregate_rollout
from cadence_core.rollouts.engine import RolloutEngine
from cadence_core.rollouts.scheduler import default_worker_id
from cadence_core.rollouts.state_machine import check_transition
from cadence_core.rollouts.types import (
    APPROVAL_APPROVED,
    GROUP_RUNNING,
    GROUP_SCHEDULED,
    ROLLOUT_APPROVAL_DENIED,
    ROLLOUT_CREATING,
    ROLLOUT_DELETING,
    ROLLOUT_FINISHED,
    ROLLOUT_PAUSED,
    ROLLOUT_READY,
    ROLLOUT_RUNNING,
    ROLLOUT_STARTING,
    ROLLOUT_STOPPING,
    ROLLOUT_WAITING_FOR_APPROVAL,
    Rollout,
    RolloutSpec,
    RolloutState,
    RolloutView,
)
from cadence_core.rollouts.validation import validate_approval, validate_rollout_spec

if TYPE_CHECKING:
    from cadence_core.stores.interfaces import ActionTracker, RolloutStore

logger = get_logger(__name__)

Operation = Callable[[RolloutState], RolloutState]


class RolloutManager:
    """Administrative entry point for rollouts.

    Every mutating call runs under the same per-rollout lease as the
    scheduler tick. A busy lease is retried with a fixed backoff and a stale
    read is retried from a fresh copy; running out of attempts raises
    ``RolloutConflictError``.
    """

    def __init__(
        self,
        *,
        store: RolloutStore,
        tracker: ActionTracker,
        engine: RolloutEngine,
        leases: LeaseProvider,
        worker_id: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._engine = engine
        self._leases = leases
        self._worker_id = worker_id or default_worker_id()
        self._sleep = sleep

    def create(self, spec: RolloutSpec) -> Rollout:
        validate_rollout_spec(spec, self._engine.settings)
        state = self._engine.machine.create(self._engine.build_state(spec))
        state = self._run(state.rollout.id, self._complete_creation)
        return state.rollout

    def start(self, rollout_id: str) -> Rollout:
        return self._run(rollout_id, self._start).rollout

    def pause(self, rollout_id: str) -> Rollout:
        return self._run(rollout_id, self._pause).rollout

    def resume(self, rollout_id: str) -> Rollout:
        return self._run(rollout_id, self._resume).rollout

    def stop(self, rollout_id: str) -> Rollout:
        return self._run(rollout_id, self._stop).rollout

    def delete(self, rollout_id: str) -> Rollout:
        return self._run(rollout_id, self._delete).rollout

    def approve(
        self,
        rollout_id: str,
        decision: str,
        remark: str | None = None,
        decided_by: str | None = None,
    ) -> Rollout:
        normalized = validate_approval(decision, remark, decided_by)

        def apply(state: RolloutState) -> RolloutState:
            current = state.rollout.status
            if current != ROLLOUT_WAITING_FOR_APPROVAL:
                raise InvalidStateError(
                    f"Rollout {rollout_id} is not waiting for approval",
                    current=current,
                )
            target = (
                ROLLOUT_READY
                if normalized == APPROVAL_APPROVED
                else ROLLOUT_APPROVAL_DENIED
            )
            return self._engine.commit(
                state,
                state.with_rollout(
                    status=target,
                    approval_decision=normalized,
                    approval_remark=remark,
                    approval_decided_by=decided_by,
                ),
            )

        return self._run(rollout_id, apply).rollout

    def get(self, rollout_id: str) -> RolloutView:
        return aggregate_rollout(self._tracker, self._load(rollout_id))

    def list(
        self,
        tenant: str | None = None,
        *,
        include_deleted: bool = False,
    ) -> list[Rollout]:
        return self._store.list_rollouts(tenant=tenant, include_deleted=include_deleted)

    def _complete_creation(self, state: RolloutState) -> RolloutState:
        if state.rollout.status != ROLLOUT_CREATING:
            return state
        return self._engine.complete_creation(state)

    def _start(self, state: RolloutState) -> RolloutState:
        check_transition(
            state.rollout.status,
            ROLLOUT_STARTING,
            approval_decision=state.rollout.approval_decision,
        )
        return self._engine.progress_starting(self._engine.begin_start(state))

    def _pause(self, state: RolloutState) -> RolloutState:
        if state.rollout.status != ROLLOUT_RUNNING:
            raise InvalidStateError(
                f"Only running rollouts can be paused, not {state.rollout.status}",
                current=state.rollout.status,
            )
        return self._engine.commit(
            state,
            state.with_rollout(status=ROLLOUT_PAUSED, status_reason="Paused manually"),
        )

    def _resume(self, state: RolloutState) -> RolloutState:
        if state.rollout.status != ROLLOUT_PAUSED:
            raise InvalidStateError(
                f"Only paused rollouts can be resumed, not {state.rollout.status}",
                current=state.rollout.status,
            )
        after = state.with_rollout(status=ROLLOUT_RUNNING, status_reason=None)
        if after.running_group() is None:
            # Paused by a group error: move on to the next scheduled group.
            pending = [g for g in after.groups if g.status == GROUP_SCHEDULED]
            if pending:
                after = after.with_group(replace(pending[0], status=GROUP_RUNNING))
                state = self._engine.commit(state, after)
            else:
                state = self._engine.commit(state, after)
                return self._engine.commit(
                    state, state.with_rollout(status=ROLLOUT_FINISHED)
                )
        else:
            state = self._engine.commit(state, after)
        return self._engine.progress_running(state)

    def _stop(self, state: RolloutState) -> RolloutState:
        check_transition(state.rollout.status, ROLLOUT_STOPPING)
        state = self._engine.commit(
            state,
            state.with_rollout(
                status=ROLLOUT_STOPPING,
                stop_requested_at=self._engine.now(),
            ),
        )
        return self._engine.progress_cancellation(state)

    def _delete(self, state: RolloutState) -> RolloutState:
        check_transition(state.rollout.status, ROLLOUT_DELETING)
        requested = state.rollout.stop_requested_at or self._engine.now()
        state = self._engine.commit(
            state,
            state.with_rollout(status=ROLLOUT_DELETING, stop_requested_at=requested),
        )
        return self._engine.progress_cancellation(state)

    def _load(self, rollout_id: str) -> RolloutState:
        state = self._engine.load(rollout_id)
        if state is None:
            raise RolloutNotFoundError(f"Rollout not found: {rollout_id}")
        return state

    def _run(self, rollout_id: str, operation: Operation) -> RolloutState:
        settings = self._engine.settings
        attempts = max(1, settings.admin_lock_attempts)
        for attempt in range(1, attempts + 1):
            owner = f"{self._worker_id}:{uuid.uuid4().hex}"
            with hold_lease(self._leases, rollout_id, owner) as acquired:
                if acquired:
                    try:
                        return operation(self._load(rollout_id))
                    except StaleStateError as exc:
                        logger.info(
                            "Rollout changed during operation, retrying",
                            extra={
                                "rollout_id": rollout_id,
                                "attempt_count": attempt,
                                "error_message": str(exc),
                            },
                        )
            if attempt < attempts:
                self._sleep(settings.admin_lock_backoff_ms / 1000.0)
        raise RolloutConflictError(
            f"Rollout {rollout_id} is busy; gave up after {attempts} attempts"
        )
