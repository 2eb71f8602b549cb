from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from cadence_core.errors import ValidationError
from cadence_core.rollouts.assignment import even_group_percentages
from cadence_core.rollouts.types import (
    ACTION_TYPE_FORCED,
    CONDITION_THRESHOLD,
    ERROR_ACTION_PAUSE,
    Condition,
    GroupSpec,
    RolloutSpec,
)


class GroupDocument(BaseModel):
    name: str | None = None
    percentage: float = Field(default=100.0, gt=0, le=100)
    target_filter: str | None = None
    success_threshold: float = Field(default=100.0, gt=0, le=100)
    error_threshold: float | None = Field(default=None, gt=0, le=100)
    error_action: str = ERROR_ACTION_PAUSE

    def to_spec(self) -> GroupSpec:
        error_condition = None
        if self.error_threshold is not None:
            error_condition = Condition(CONDITION_THRESHOLD, self.error_threshold)
        return GroupSpec(
            name=self.name,
            target_percentage=self.percentage,
            target_filter=self.target_filter,
            success_condition=Condition(CONDITION_THRESHOLD, self.success_threshold),
            error_condition=error_condition,
            error_action=self.error_action.strip().upper(),
        )


class RolloutDocument(BaseModel):
    """Rollout definition as operators write it in YAML.

    Either list ``groups`` explicitly or give ``group_count`` to split the
    matching targets into equally sized groups sharing ``defaults``.
    """

    tenant: str
    name: str
    target_filter: str
    distribution_set_id: str
    description: str | None = None
    action_type: str = ACTION_TYPE_FORCED
    forced_time: str | None = None
    weight: int | None = Field(default=None, ge=0, le=1000)
    dynamic: bool = False
    start_at: str | None = None
    created_by: str | None = None
    groups: list[GroupDocument] = Field(default_factory=list)
    group_count: int | None = Field(default=None, ge=1)
    defaults: GroupDocument = Field(default_factory=GroupDocument)

    def group_specs(self) -> tuple[GroupSpec, ...]:
        if self.groups:
            return tuple(group.to_spec() for group in self.groups)
        if not self.group_count:
            raise ValidationError("Rollout document needs groups or group_count")
        return tuple(
            self.defaults.model_copy(
                update={"name": f"group-{index + 1}", "percentage": percent}
            ).to_spec()
            for index, percent in enumerate(even_group_percentages(self.group_count))
        )

    def to_spec(self) -> RolloutSpec:
        return RolloutSpec(
            tenant=self.tenant,
            name=self.name,
            target_filter=self.target_filter,
            distribution_set_id=self.distribution_set_id,
            groups=self.group_specs(),
            description=self.description,
            action_type=self.action_type.strip().upper(),
            forced_time=self.forced_time,
            weight=self.weight,
            dynamic=self.dynamic,
            start_at=self.start_at,
            created_by=self.created_by,
        )


def load_rollout_document(path: Path) -> RolloutDocument:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValidationError(f"Rollout document must be a mapping: {path}")
    return RolloutDocument.model_validate(data)
