from __future__ import annotations

import time
from datetime import timedelta

import pytest

from cadence_core.clock import isoformat
from cadence_core.errors import (
    InvalidStateError,
    RolloutConflictError,
    RolloutNotFoundError,
    ValidationError,
)
from cadence_core.rollouts.scheduler import SchedulerLoop
from cadence_core.rollouts.types import (
    ACTION_TYPE_TIMEFORCED,
    APPROVAL_APPROVED,
    GROUP_FINISHED,
    GROUP_RUNNING,
    ROLLOUT_APPROVAL_DENIED,
    ROLLOUT_DELETED,
    ROLLOUT_ERROR_CREATING,
    ROLLOUT_FINISHED,
    ROLLOUT_PAUSED,
    ROLLOUT_READY,
    ROLLOUT_RUNNING,
    ROLLOUT_STOPPED,
    ROLLOUT_STOPPING,
    ROLLOUT_WAITING_FOR_APPROVAL,
)


@pytest.mark.core
def test_create_without_matching_targets_fails(harness, rollout_spec):
    harness.register_targets(3, tags=("sensor",))
    rollout = harness.manager.create(rollout_spec())
    assert rollout.status == ROLLOUT_ERROR_CREATING
    assert rollout.status_reason == "No targets match filter 'tag==gateway'"
    assert harness.stores.rollouts.assigned_target_ids(rollout.id) == set()

    with pytest.raises(InvalidStateError):
        harness.manager.start(rollout.id)


@pytest.mark.core
def test_create_reports_targets_outside_every_group(
    harness, rollout_spec, group_spec
):
    harness.register_targets(3)
    rollout = harness.manager.create(
        rollout_spec(groups=(group_spec(100.0, target_filter="tag==sensor"),))
    )
    assert rollout.status == ROLLOUT_ERROR_CREATING
    assert rollout.status_reason == "3 matching targets are not covered by any group"


@pytest.mark.core
@pytest.mark.parametrize(
    ("target_filter", "group_filter"),
    [("bogus", None), ("tag==gateway", "bogus")],
)
def test_unparseable_filter_fails_creation(
    harness, rollout_spec, group_spec, target_filter, group_filter
):
    harness.register_targets(3)
    rollout = harness.manager.create(
        rollout_spec(
            target_filter=target_filter,
            groups=(group_spec(100.0, target_filter=group_filter),),
        )
    )
    assert rollout.status == ROLLOUT_ERROR_CREATING
    assert rollout.status_reason == "Invalid filter clause: bogus"
    assert harness.stores.rollouts.assigned_target_ids(rollout.id) == set()

    # Nothing left for the scheduler to retry.
    assert harness.scheduler.due_rollouts() == []
    assert harness.scheduler.tick(rollout.id).status == "idle"
    assert harness.state(rollout.id).rollout.status == ROLLOUT_ERROR_CREATING

    assert harness.manager.delete(rollout.id).status == ROLLOUT_DELETED
    fixed = harness.manager.create(rollout_spec())
    assert fixed.status == ROLLOUT_READY
    assert fixed.name == rollout.name


@pytest.mark.core
def test_group_filters_narrow_assignment(harness, rollout_spec, group_spec):
    harness.register_targets(2, tags=("gateway", "canary"))
    harness.register_targets(4)
    rollout = harness.manager.create(
        rollout_spec(
            groups=(
                group_spec(100.0, name="canary", target_filter="tag==canary"),
                group_spec(100.0, name="rest"),
            )
        )
    )
    state = harness.state(rollout.id)
    assert [group.name for group in state.groups] == ["canary", "rest"]
    canary = harness.stores.rollouts.group_targets(rollout.id, state.group(0).id)
    assert canary == ["device-0", "device-1"]
    assert state.group(1).total_targets == 4


@pytest.mark.core
def test_rollout_names_are_unique_per_tenant(harness, rollout_spec):
    harness.register_targets(2)
    harness.manager.create(rollout_spec())
    with pytest.raises(ValidationError):
        harness.manager.create(rollout_spec())
    other = harness.manager.create(rollout_spec(tenant="globex"))
    assert other.status == ROLLOUT_ERROR_CREATING


@pytest.mark.core
@pytest.mark.parametrize(
    "overrides",
    [
        {"name": " "},
        {"target_filter": ""},
        {"distribution_set_id": ""},
        {"weight": 1001},
        {"action_type": "LAZY"},
        {"action_type": ACTION_TYPE_TIMEFORCED},
        {"start_at": "tomorrow"},
        {"groups": ()},
    ],
)
def test_create_rejects_invalid_specs(harness, rollout_spec, overrides):
    with pytest.raises(ValidationError):
        harness.manager.create(rollout_spec(**overrides))
    assert harness.manager.list() == []


@pytest.mark.core
@pytest.mark.parametrize(
    "group_kwargs",
    [
        {"percentage": 0.0},
        {"percentage": 120.0},
        {"success": 0.0},
        {"error": 150.0},
        {"error_action": "RETRY"},
    ],
)
def test_create_rejects_invalid_groups(harness, rollout_spec, group_spec, group_kwargs):
    with pytest.raises(ValidationError):
        harness.manager.create(rollout_spec(groups=(group_spec(**group_kwargs),)))


@pytest.mark.core
def test_group_limit_is_enforced(make_harness, rollout_spec, group_spec):
    harness = make_harness(max_rollout_groups=2)
    groups = (group_spec(30.0), group_spec(60.0), group_spec(100.0))
    with pytest.raises(ValidationError, match="limit of 2 groups"):
        harness.manager.create(rollout_spec(groups=groups))


@pytest.mark.core
def test_approval_gates_start(make_harness, rollout_spec):
    harness = make_harness(approval_required=True)
    harness.register_targets(4)
    rollout = harness.manager.create(rollout_spec())
    assert rollout.status == ROLLOUT_WAITING_FOR_APPROVAL

    with pytest.raises(InvalidStateError):
        harness.manager.start(rollout.id)

    approved = harness.manager.approve(
        rollout.id, "approved", remark="looks good", decided_by="ops"
    )
    assert approved.status == ROLLOUT_READY
    assert approved.approval_decision == APPROVAL_APPROVED
    assert approved.approval_remark == "looks good"
    assert approved.approval_decided_by == "ops"

    assert harness.manager.start(approved.id).status == ROLLOUT_RUNNING


@pytest.mark.core
def test_denied_rollout_can_only_be_deleted(make_harness, rollout_spec):
    harness = make_harness(approval_required=True)
    harness.register_targets(4)
    rollout = harness.manager.create(rollout_spec())
    denied = harness.manager.approve(rollout.id, "DENIED")
    assert denied.status == ROLLOUT_APPROVAL_DENIED

    with pytest.raises(InvalidStateError):
        harness.manager.start(rollout.id)
    assert harness.manager.delete(rollout.id).status == ROLLOUT_DELETED


@pytest.mark.core
def test_approval_input_is_validated(make_harness, rollout_spec):
    harness = make_harness(approval_required=True)
    harness.register_targets(2)
    rollout = harness.manager.create(rollout_spec())

    with pytest.raises(ValidationError):
        harness.manager.approve(rollout.id, "approved", remark="x" * 256)
    with pytest.raises(ValidationError):
        harness.manager.approve(rollout.id, "maybe")
    assert harness.state(rollout.id).rollout.status == ROLLOUT_WAITING_FOR_APPROVAL


@pytest.mark.core
def test_approve_requires_waiting_rollout(harness, rollout_spec):
    harness.register_targets(2)
    rollout = harness.manager.create(rollout_spec())
    with pytest.raises(InvalidStateError) as excinfo:
        harness.manager.approve(rollout.id, "approved")
    assert excinfo.value.current == ROLLOUT_READY


@pytest.mark.core
def test_pause_and_resume_reevaluates_groups(harness, rollout_spec):
    harness.register_targets(10)
    rollout = harness.manager.create(rollout_spec())
    harness.manager.start(rollout.id)

    paused = harness.manager.pause(rollout.id)
    assert paused.status == ROLLOUT_PAUSED
    assert paused.status_reason == "Paused manually"

    harness.report(harness.group(rollout.id, 0), "FINISHED")
    assert harness.scheduler.tick(rollout.id).status == "idle"
    assert harness.group(rollout.id, 0).status == GROUP_RUNNING

    resumed = harness.manager.resume(rollout.id)
    assert resumed.status == ROLLOUT_RUNNING
    assert resumed.status_reason is None
    state = harness.state(rollout.id)
    assert state.group(0).status == GROUP_FINISHED
    assert state.group(1).status == GROUP_RUNNING


@pytest.mark.core
def test_pause_and_resume_require_matching_status(harness, rollout_spec):
    harness.register_targets(2)
    rollout = harness.manager.create(rollout_spec())
    with pytest.raises(InvalidStateError):
        harness.manager.pause(rollout.id)
    harness.manager.start(rollout.id)
    with pytest.raises(InvalidStateError):
        harness.manager.resume(rollout.id)


@pytest.mark.core
def test_resume_after_last_group_error_finishes(harness, rollout_spec, group_spec):
    harness.register_targets(4)
    rollout = harness.manager.create(
        rollout_spec(groups=(group_spec(100.0, error=50.0),))
    )
    harness.manager.start(rollout.id)
    harness.report(harness.group(rollout.id, 0), "ERROR", 2)
    harness.scheduler.tick(rollout.id)
    assert harness.state(rollout.id).rollout.status == ROLLOUT_PAUSED

    finished = harness.manager.resume(rollout.id)
    assert finished.status == ROLLOUT_FINISHED
    assert harness.statuses()[-3:] == [
        ROLLOUT_PAUSED,
        ROLLOUT_RUNNING,
        ROLLOUT_FINISHED,
    ]


@pytest.mark.core
def test_stop_waits_for_canceling_actions(harness, rollout_spec):
    harness.register_targets(10)
    rollout = harness.manager.create(rollout_spec())
    harness.manager.start(rollout.id)
    running = harness.report(harness.group(rollout.id, 0), "RUNNING", 2)

    stopping = harness.manager.stop(rollout.id)
    assert stopping.status == ROLLOUT_STOPPING
    view = harness.manager.get(rollout.id)
    assert view.groups[0].counts.canceling == 2
    assert view.groups[0].counts.canceled == 3

    assert harness.scheduler.tick(rollout.id).status == "idle"
    for target_id in running:
        harness.stores.actions.report_status(
            group_id=harness.group(rollout.id, 0).id,
            target_id=target_id,
            status="CANCELED",
        )
    result = harness.scheduler.tick(rollout.id)
    assert result.to_status == ROLLOUT_STOPPED


@pytest.mark.core
def test_stop_gives_up_on_devices_after_timeout(make_harness, rollout_spec):
    harness = make_harness(stop_timeout_seconds=120)
    harness.register_targets(4)
    rollout = harness.manager.create(rollout_spec())
    harness.manager.start(rollout.id)
    harness.report(harness.group(rollout.id, 0), "RUNNING")
    harness.manager.stop(rollout.id)

    harness.clock.advance(seconds=60)
    assert harness.scheduler.tick(rollout.id).status == "idle"
    harness.clock.advance(seconds=60)
    assert harness.scheduler.tick(rollout.id).to_status == ROLLOUT_STOPPED


@pytest.mark.core
def test_delete_hides_rollout_and_publishes_event(harness, rollout_spec):
    harness.register_targets(4)
    rollout = harness.manager.create(rollout_spec())
    harness.manager.start(rollout.id)

    deleted = harness.manager.delete(rollout.id)
    assert deleted.status == ROLLOUT_DELETED
    assert deleted.deleted is True
    assert harness.manager.list() == []
    assert [item.id for item in harness.manager.list(include_deleted=True)] == [
        rollout.id
    ]
    events = harness.notifier.of_type("rollout.deleted")
    assert len(events) == 1
    assert events[0].payload["previous_status"] == "DELETING"
    assert {
        action.status for action in harness.stores.actions.list_actions()
    } == {"CANCELED"}

    # The name is free again once the old rollout is gone.
    again = harness.manager.create(rollout_spec())
    assert again.status == ROLLOUT_READY


@pytest.mark.core
def test_finished_rollout_cannot_be_deleted(harness, rollout_spec, group_spec):
    harness.register_targets(2)
    rollout = harness.manager.create(rollout_spec(groups=(group_spec(100.0),)))
    harness.manager.start(rollout.id)
    harness.report(harness.group(rollout.id, 0), "FINISHED")
    harness.scheduler.tick(rollout.id)
    assert harness.state(rollout.id).rollout.status == ROLLOUT_FINISHED

    with pytest.raises(InvalidStateError):
        harness.manager.delete(rollout.id)
    with pytest.raises(InvalidStateError):
        harness.manager.stop(rollout.id)


@pytest.mark.core
def test_get_returns_group_counts(harness, rollout_spec):
    harness.register_targets(10)
    rollout = harness.manager.create(rollout_spec())
    harness.manager.start(rollout.id)
    first = harness.group(rollout.id, 0)
    harness.report(first, "FINISHED", 2)
    harness.report(first, "ERROR", 1, skip=2)

    view = harness.manager.get(rollout.id)
    first_counts = view.groups[0].counts
    assert (first_counts.total, first_counts.finished, first_counts.error) == (5, 2, 1)
    assert first_counts.scheduled == 2
    assert view.groups[1].counts.not_started == 5
    assert view.counts.total == 10
    assert view.counts.not_started == 5


@pytest.mark.core
def test_unknown_rollout_raises_not_found(harness):
    with pytest.raises(RolloutNotFoundError):
        harness.manager.get("missing")
    with pytest.raises(RolloutNotFoundError):
        harness.manager.pause("missing")


@pytest.mark.core
def test_list_filters_by_tenant(harness, rollout_spec):
    harness.register_targets(2)
    harness.register_targets(2, tenant="globex", prefix="edge")
    acme = harness.manager.create(rollout_spec())
    globex = harness.manager.create(rollout_spec(tenant="globex"))
    assert [item.id for item in harness.manager.list("acme")] == [acme.id]
    assert [item.id for item in harness.manager.list("globex")] == [globex.id]
    assert harness.stores.rollouts.list_tenants() == ["acme", "globex"]


@pytest.mark.core
def test_admin_call_gives_up_while_lease_is_held(harness, rollout_spec):
    harness.register_targets(2)
    rollout = harness.manager.create(rollout_spec())
    assert harness.leases.try_acquire(rollout.id, "someone-else")
    with pytest.raises(RolloutConflictError):
        harness.manager.start(rollout.id)
    harness.leases.release(rollout.id, "someone-else")
    assert harness.manager.start(rollout.id).status == ROLLOUT_RUNNING


@pytest.mark.core
def test_scheduler_loop_starts_due_rollouts(harness, rollout_spec):
    harness.register_targets(2)
    start_at = isoformat(harness.clock.now - timedelta(seconds=5))
    rollout = harness.manager.create(rollout_spec(start_at=start_at))

    loop = SchedulerLoop(harness.scheduler, 0.1, tenant="acme")
    loop.start()
    try:
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            if harness.state(rollout.id).rollout.status == ROLLOUT_RUNNING:
                break
            time.sleep(0.05)
    finally:
        loop.stop()
    assert harness.state(rollout.id).rollout.status == ROLLOUT_RUNNING
