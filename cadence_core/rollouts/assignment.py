from __future__ import annotations

import math
from dataclasses import dataclass
from typing import AbstractSet, Iterable, Sequence

from cadence_core.targets.types import TargetMatch


@dataclass(frozen=True)
class GroupInput:
    percent: float
    eligible: AbstractSet[str] | None = None


@dataclass(frozen=True)
class GroupAssignment:
    index: int
    percent: float
    target_ids: tuple[str, ...]


@dataclass(frozen=True)
class AssignmentPlan:
    total_targets: int
    groups: tuple[GroupAssignment, ...]
    unassigned: tuple[str, ...] = ()


def even_group_percentages(count: int) -> tuple[float, ...]:
    """Relative percentages giving ``count`` groups equal absolute shares.

    Each group takes its share of what the earlier groups left over, so the
    i-th group of n takes 100 / (n - i) percent of the remaining pool.
    """
    if count < 1:
        return ()
    return tuple(100.0 / (count - index) for index in range(count))


def normalize_percentages(values: Sequence[float]) -> tuple[float, ...]:
    cleaned = [max(0.0, min(100.0, float(value))) for value in values]
    if cleaned:
        cleaned[-1] = 100.0
    return tuple(cleaned)


def _share(percent: float, pool: int) -> int:
    # Rounded first so float noise like 3.0000000004 does not add a target.
    count = math.ceil(round(percent / 100.0 * pool, 9))
    return min(max(count, 0), pool)


def partition_targets(
    matches: Iterable[TargetMatch],
    groups: Sequence[GroupInput],
) -> AssignmentPlan:
    ordered = sorted(matches, key=lambda match: match.sequence)
    remaining = [match.target_id for match in ordered]
    percentages = normalize_percentages([group.percent for group in groups])

    assignments: list[GroupAssignment] = []
    for index, group in enumerate(groups):
        percent = percentages[index]
        if group.eligible is None:
            eligible = list(remaining)
        else:
            eligible = [item for item in remaining if item in group.eligible]
        picked = eligible[: _share(percent, len(eligible))]
        taken = set(picked)
        remaining = [item for item in remaining if item not in taken]
        assignments.append(
            GroupAssignment(index=index, percent=percent, target_ids=tuple(picked))
        )

    return AssignmentPlan(
        total_targets=len(ordered),
        groups=tuple(assignments),
        unassigned=tuple(remaining),
    )


def new_arrivals(
    matches: Iterable[TargetMatch],
    assigned: AbstractSet[str],
    *,
    watermark: int,
    eligible: AbstractSet[str] | None = None,
) -> tuple[list[str], int]:
    """Targets above the watermark that no group holds yet, plus the new watermark."""
    fresh: list[str] = []
    highest = watermark
    for match in sorted(matches, key=lambda item: item.sequence):
        if match.sequence <= watermark:
            continue
        highest = max(highest, match.sequence)
        if match.target_id in assigned:
            continue
        if eligible is not None and match.target_id not in eligible:
            continue
        fresh.append(match.target_id)
    return fresh, highest
