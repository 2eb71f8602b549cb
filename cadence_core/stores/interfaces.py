from __future__ import annotations

from typing import Iterable, Mapping, Protocol, Sequence

from cadence_core.actions.types import ActionBatchResult
from cadence_core.rollouts.types import Rollout, RolloutGroup
from cadence_core.targets.types import TargetMatch


class RolloutStore(Protocol):
    def create_rollout(
        self,
        rollout: Rollout,
        groups: Sequence[RolloutGroup],
    ) -> Rollout:
        ...

    def get_rollout(self, rollout_id: str) -> Rollout | None:
        ...

    def get_groups(self, rollout_id: str) -> tuple[RolloutGroup, ...]:
        ...

    def save_rollout(
        self,
        rollout: Rollout,
        *,
        groups: Sequence[RolloutGroup],
        expected_version: int,
    ) -> Rollout:
        ...

    def list_rollouts(
        self,
        *,
        tenant: str | None = None,
        statuses: Iterable[str] | None = None,
        include_deleted: bool = False,
    ) -> list[Rollout]:
        ...

    def list_tenants(self) -> list[str]:
        ...

    def assign_targets(
        self,
        rollout_id: str,
        group_id: str,
        target_ids: Sequence[str],
    ) -> int:
        ...

    def group_targets(self, rollout_id: str, group_id: str) -> list[str]:
        ...

    def assigned_target_ids(self, rollout_id: str) -> set[str]:
        ...


class TargetRepository(Protocol):
    def find_matching(
        self,
        filter_expr: str,
        watermark: int = 0,
        *,
        tenant: str,
    ) -> list[TargetMatch]:
        ...

    def count_matching(self, filter_expr: str, *, tenant: str) -> int:
        ...


class ActionTracker(Protocol):
    def create_actions(
        self,
        group_id: str,
        target_ids: Sequence[str],
        action_type: str,
        forced_time: str | None,
        *,
        rollout_id: str,
        weight: int | None = None,
    ) -> ActionBatchResult:
        ...

    def mark_failed(
        self,
        group_id: str,
        target_ids: Sequence[str],
        reason: str,
        *,
        rollout_id: str,
    ) -> int:
        ...

    def cancel_actions(self, group_id: str) -> int:
        ...

    def count_by_status(self, group_id: str) -> Mapping[str, int]:
        ...
