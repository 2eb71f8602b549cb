"""Group completion decisions.

Conditions compare a percentage of the group's current total against a
threshold. The error condition is always checked before the success
condition, so a group that crosses both in the same tick errors.
"""

from __future__ import annotations

from cadence_core.rollouts.types import (
    ERROR_ACTION_CONTINUE,
    GROUP_RUNNING,
    Condition,
    GroupStatusCounts,
    RolloutGroup,
)

OUTCOME_NONE = "NONE"
OUTCOME_SUCCESS = "SUCCESS"
OUTCOME_ERROR_PAUSE = "ERROR_PAUSE"
OUTCOME_ERROR_CONTINUE = "ERROR_CONTINUE"

OUTCOMES: tuple[str, ...] = (
    OUTCOME_NONE,
    OUTCOME_SUCCESS,
    OUTCOME_ERROR_PAUSE,
    OUTCOME_ERROR_CONTINUE,
)


def condition_met(condition: Condition, count: int, total: int) -> bool:
    if total <= 0:
        return False
    return count * 100.0 / total >= condition.threshold


def evaluate_group(
    group: RolloutGroup,
    counts: GroupStatusCounts,
    *,
    catch_all_dynamic: bool = False,
) -> str:
    if group.status != GROUP_RUNNING:
        return OUTCOME_NONE
    if counts.total <= 0:
        # The dynamic catch-all may still receive targets.
        return OUTCOME_NONE if catch_all_dynamic else OUTCOME_SUCCESS
    if group.error_condition is not None and condition_met(
        group.error_condition, counts.error, counts.total
    ):
        if group.error_action == ERROR_ACTION_CONTINUE:
            return OUTCOME_ERROR_CONTINUE
        return OUTCOME_ERROR_PAUSE
    if condition_met(group.success_condition, counts.finished, counts.total):
        return OUTCOME_SUCCESS
    return OUTCOME_NONE
