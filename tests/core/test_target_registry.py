from __future__ import annotations

import pytest

from cadence_core.errors import ValidationError
from cadence_core.targets.filters import matches_filter, parse_filter
from cadence_core.targets.types import TargetRecord


def _target(**overrides) -> TargetRecord:
    values = {
        "id": "dev-1",
        "tenant": "acme",
        "name": "Gateway-Berlin",
        "tags": ("gateway", "eu"),
        "attributes": {"hw": "rev2"},
        "sequence": 1,
        "created_at": "2026-03-01T00:00:00+00:00",
    }
    values.update(overrides)
    return TargetRecord(**values)


@pytest.mark.core
@pytest.mark.parametrize(
    ("expression", "expected"),
    [
        ("*", True),
        ("tag==gateway", True),
        ("tag==sensor", False),
        ("tag!=sensor", True),
        ("name==gateway-*", True),
        ("id==dev-?", True),
        ("attr.hw==rev2", True),
        ("attr.hw==rev1", False),
        ("attr.region==eu", False),
        ("tag==gateway; tag==eu", True),
        ("tag==gateway; attr.hw!=rev2", False),
    ],
)
def test_filter_matching(expression, expected):
    assert matches_filter(parse_filter(expression), _target()) is expected


@pytest.mark.core
@pytest.mark.parametrize("expression", ["", "   ", "tag=gateway", "color==red"])
def test_invalid_filters_are_rejected(expression):
    with pytest.raises(ValidationError):
        parse_filter(expression)


@pytest.mark.core
def test_register_assigns_increasing_sequences(harness):
    first, second = harness.register_targets(2)
    assert (first.sequence, second.sequence) == (1, 2)
    assert first.tags == ("gateway",)
    with pytest.raises(ValueError):
        harness.stores.targets.register_target(
            tenant="acme", name="dup", target_id=first.id
        )


@pytest.mark.core
def test_register_normalizes_tags_and_attributes(harness):
    target = harness.stores.targets.register_target(
        tenant="acme",
        name="edge",
        tags=["Gateway", " gateway ", "EU"],
        attributes={"HW": "rev2"},
    )
    assert target.tags == ("gateway", "eu")
    assert target.attributes == {"hw": "rev2"}
    assert target.id


@pytest.mark.core
def test_find_matching_honors_watermark_and_tenant(harness):
    harness.register_targets(3)
    harness.register_targets(2, tenant="globex", prefix="edge")
    harness.register_targets(1, prefix="sensor", tags=("sensor",))
    targets = harness.stores.targets

    matches = targets.find_matching("tag==gateway", tenant="acme")
    assert [match.target_id for match in matches] == [
        "device-0",
        "device-1",
        "device-2",
    ]
    later = targets.find_matching("tag==gateway", 2, tenant="acme")
    assert [match.target_id for match in later] == ["device-2"]
    assert targets.count_matching("*", tenant="globex") == 2
    assert targets.count_matching("*", tenant="acme") == 4


@pytest.mark.core
def test_create_actions_is_idempotent_per_group(harness):
    actions = harness.stores.actions
    first = actions.create_actions(
        "g1", ["t1", "t2"], "FORCED", None, rollout_id="r1", weight=10
    )
    again = actions.create_actions(
        "g1", ["t2", "t3"], "FORCED", None, rollout_id="r1"
    )
    assert first.created == ("t1", "t2")
    assert again.created == ("t3",)
    assert again.existing == ("t2",)
    assert len(actions.list_actions(group_id="g1")) == 3


@pytest.mark.core
def test_open_actions_make_targets_busy(harness):
    actions = harness.stores.actions
    actions.create_actions("g1", ["t1", "t2"], "FORCED", None, rollout_id="r1")
    actions.report_status(group_id="g1", target_id="t2", status="finished")

    result = actions.create_actions(
        "g2", ["t1", "t2"], "SOFT", None, rollout_id="r2"
    )
    assert result.created == ("t2",)
    assert set(result.failed) == {"t1"}

    marked = actions.mark_failed("g2", ["t1"], result.failed["t1"], rollout_id="r2")
    assert marked == 1
    assert actions.count_by_status("g2") == {"SCHEDULED": 1, "ERROR": 1}


@pytest.mark.core
def test_cancel_actions_by_status(harness):
    actions = harness.stores.actions
    actions.create_actions("g1", ["t1", "t2", "t3"], "FORCED", None, rollout_id="r1")
    actions.report_status(group_id="g1", target_id="t2", status="RUNNING")
    actions.report_status(group_id="g1", target_id="t3", status="FINISHED")

    assert actions.cancel_actions("g1") == 2
    assert actions.count_by_status("g1") == {
        "CANCELED": 1,
        "CANCELING": 1,
        "FINISHED": 1,
    }
    assert actions.cancel_actions("g1") == 0


@pytest.mark.core
def test_report_status_validates_input(harness):
    actions = harness.stores.actions
    actions.create_actions("g1", ["t1"], "FORCED", None, rollout_id="r1")
    with pytest.raises(ValidationError):
        actions.report_status(group_id="g1", target_id="t1", status="EXPLODED")
    assert actions.report_status(group_id="g1", target_id="t9", status="ERROR") is None

    updated = actions.report_status(
        group_id="g1", target_id="t1", status="error", error="flash failed"
    )
    assert updated is not None
    assert (updated.status, updated.error) == ("ERROR", "flash failed")
