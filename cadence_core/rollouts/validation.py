from __future__ import annotations

from cadence_core.clock import parse_timestamp
from cadence_core.config import EngineSettings
from cadence_core.errors import ValidationError
from cadence_core.rollouts.types import (
    ACTION_TYPE_TIMEFORCED,
    ACTION_TYPES,
    APPROVAL_DECISIONS,
    APPROVAL_REMARK_MAX_SIZE,
    CONDITION_THRESHOLD,
    DECIDED_BY_MAX_SIZE,
    ERROR_ACTIONS,
    FILTER_MAX_SIZE,
    NAME_MAX_SIZE,
    WEIGHT_MAX,
    WEIGHT_MIN,
    Condition,
    GroupSpec,
    RolloutSpec,
)


def _check_size(label: str, value: str | None, max_size: int) -> None:
    if value is None or not value.strip():
        raise ValidationError(f"{label} is required")
    if len(value) > max_size:
        raise ValidationError(f"{label} exceeds {max_size} characters")


def _check_condition(label: str, condition: Condition) -> None:
    if condition.kind != CONDITION_THRESHOLD:
        raise ValidationError(f"{label} kind must be {CONDITION_THRESHOLD}")
    if not 0.0 < condition.threshold <= 100.0:
        raise ValidationError(f"{label} threshold must be in (0, 100]")


def validate_group_spec(index: int, group: GroupSpec) -> None:
    label = f"Group {index}"
    if group.name is not None:
        _check_size(f"{label} name", group.name, NAME_MAX_SIZE)
    if group.target_filter is not None:
        _check_size(f"{label} target filter", group.target_filter, FILTER_MAX_SIZE)
    if not 0.0 < group.target_percentage <= 100.0:
        raise ValidationError(f"{label} target percentage must be in (0, 100]")
    _check_condition(f"{label} success condition", group.success_condition)
    if group.error_condition is not None:
        _check_condition(f"{label} error condition", group.error_condition)
    if group.error_action not in ERROR_ACTIONS:
        allowed = ", ".join(ERROR_ACTIONS)
        raise ValidationError(f"{label} error action must be one of: {allowed}")


def validate_rollout_spec(spec: RolloutSpec, settings: EngineSettings) -> None:
    if not spec.tenant or not spec.tenant.strip():
        raise ValidationError("Rollout tenant is required")
    _check_size("Rollout name", spec.name, NAME_MAX_SIZE)
    _check_size("Rollout target filter", spec.target_filter, FILTER_MAX_SIZE)
    if not spec.distribution_set_id or not spec.distribution_set_id.strip():
        raise ValidationError("Distribution set id is required")
    if spec.action_type not in ACTION_TYPES:
        allowed = ", ".join(ACTION_TYPES)
        raise ValidationError(f"Action type must be one of: {allowed}")
    if spec.action_type == ACTION_TYPE_TIMEFORCED:
        if parse_timestamp(spec.forced_time) is None:
            raise ValidationError("TIMEFORCED rollouts need a valid forced_time")
    if spec.weight is not None and not WEIGHT_MIN <= spec.weight <= WEIGHT_MAX:
        raise ValidationError(f"Weight must be between {WEIGHT_MIN} and {WEIGHT_MAX}")
    if spec.start_at is not None and parse_timestamp(spec.start_at) is None:
        raise ValidationError(f"Invalid start_at timestamp: {spec.start_at}")

    if not spec.groups:
        raise ValidationError("Rollout needs at least one group")
    if len(spec.groups) > settings.max_rollout_groups:
        raise ValidationError(
            f"Rollout exceeds the limit of {settings.max_rollout_groups} groups"
        )
    for index, group in enumerate(spec.groups):
        validate_group_spec(index, group)


def validate_approval(
    decision: str,
    remark: str | None,
    decided_by: str | None,
) -> str:
    normalized = decision.strip().upper()
    if normalized not in APPROVAL_DECISIONS:
        allowed = ", ".join(APPROVAL_DECISIONS)
        raise ValidationError(f"Approval decision must be one of: {allowed}")
    if remark is not None and len(remark) > APPROVAL_REMARK_MAX_SIZE:
        raise ValidationError(
            f"Approval remark exceeds {APPROVAL_REMARK_MAX_SIZE} characters"
        )
    if decided_by is not None and len(decided_by) > DECIDED_BY_MAX_SIZE:
        raise ValidationError(
            f"Approval decided_by exceeds {DECIDED_BY_MAX_SIZE} characters"
        )
    return normalized
