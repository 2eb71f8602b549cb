from cadence_core.rollouts.aggregator import (
    aggregate_counts,
    aggregate_group,
    aggregate_rollout,
)
from cadence_core.rollouts.assignment import (
    AssignmentPlan,
    GroupAssignment,
    GroupInput,
    even_group_percentages,
    partition_targets,
)
from cadence_core.rollouts.engine import RolloutEngine
from cadence_core.rollouts.manager import RolloutManager
from cadence_core.rollouts.scheduler import (
    RolloutScheduler,
    SchedulerLoop,
    TickResult,
)
from cadence_core.rollouts.state_machine import (
    GROUP_TRANSITIONS,
    ROLLOUT_TRANSITIONS,
    RolloutStateMachine,
    can_transition,
    check_transition,
)
from cadence_core.rollouts.thresholds import evaluate_group
from cadence_core.rollouts.types import (
    Condition,
    GroupSpec,
    GroupStatusCounts,
    GroupView,
    Rollout,
    RolloutGroup,
    RolloutSpec,
    RolloutState,
    RolloutView,
)
from cadence_core.rollouts.validation import validate_rollout_spec

__all__ = [
    "AssignmentPlan",
    "Condition",
    "GROUP_TRANSITIONS",
    "GroupAssignment",
    "GroupInput",
    "GroupSpec",
    "GroupStatusCounts",
    "GroupView",
    "ROLLOUT_TRANSITIONS",
    "Rollout",
    "RolloutEngine",
    "RolloutGroup",
    "RolloutManager",
    "RolloutScheduler",
    "RolloutSpec",
    "RolloutState",
    "RolloutStateMachine",
    "RolloutView",
    "SchedulerLoop",
    "TickResult",
    "aggregate_counts",
    "aggregate_group",
    "aggregate_rollout",
    "can_transition",
    "check_transition",
    "evaluate_group",
    "even_group_percentages",
    "partition_targets",
    "validate_rollout_spec",
]
