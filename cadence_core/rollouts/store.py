from __future__ import annotations

from dataclasses import asdict
from typing import Iterable

from cadence_core.rollouts.types import (
    CONDITION_THRESHOLD,
    ERROR_ACTION_PAUSE,
    GROUP_SCHEDULED,
    ROLLOUT_CREATING,
    SUCCESS_ACTION_NEXTGROUP,
    Condition,
    Rollout,
    RolloutGroup,
)
from cadence_core.storage.documents import (
    list_documents,
    read_document,
    write_document,
)
from cadence_core.storage.paths import control_uri


def rollouts_dir_uri(base_uri: str) -> str:
    return control_uri(base_uri, "rollouts")


def rollout_document_uri(base_uri: str, rollout_id: str) -> str:
    return control_uri(base_uri, "rollouts", f"{rollout_id}.json")


def assignment_document_uri(base_uri: str, rollout_id: str) -> str:
    return control_uri(base_uri, "rollout_targets", f"{rollout_id}.json")


def load_rollout_document(
    base_uri: str,
    rollout_id: str,
) -> tuple[Rollout, tuple[RolloutGroup, ...]] | None:
    payload = read_document(rollout_document_uri(base_uri, rollout_id))
    return _document_from_payload(payload)


def save_rollout_document(
    base_uri: str,
    rollout: Rollout,
    groups: Iterable[RolloutGroup],
) -> str:
    ordered = sorted(groups, key=lambda group: group.index)
    return write_document(
        rollout_document_uri(base_uri, rollout.id),
        {
            "rollout": asdict(rollout),
            "groups": [asdict(group) for group in ordered],
        },
    )


def load_rollouts(base_uri: str) -> list[Rollout]:
    results: list[Rollout] = []
    for uri in list_documents(rollouts_dir_uri(base_uri)):
        document = _document_from_payload(read_document(uri))
        if document is not None:
            results.append(document[0])
    results.sort(key=lambda rollout: rollout.created_at)
    return results


def load_assignments(base_uri: str, rollout_id: str) -> dict[str, list[str]]:
    payload = read_document(assignment_document_uri(base_uri, rollout_id))
    if payload is None:
        return {}
    raw = payload.get("assignments")
    if not isinstance(raw, dict):
        return {}
    return {
        str(group_id): [str(item) for item in items]
        for group_id, items in raw.items()
        if isinstance(items, list)
    }


def save_assignments(
    base_uri: str,
    rollout_id: str,
    assignments: dict[str, list[str]],
) -> str:
    return write_document(
        assignment_document_uri(base_uri, rollout_id),
        {"rollout_id": rollout_id, "assignments": assignments},
    )


def _document_from_payload(
    payload: dict[str, object] | None,
) -> tuple[Rollout, tuple[RolloutGroup, ...]] | None:
    if payload is None:
        return None
    rollout_payload = payload.get("rollout")
    if not isinstance(rollout_payload, dict):
        return None
    raw_groups = payload.get("groups")
    groups = tuple(
        sorted(
            (
                _group_from_dict(item)
                for item in (raw_groups if isinstance(raw_groups, list) else [])
                if isinstance(item, dict)
            ),
            key=lambda group: group.index,
        )
    )
    return _rollout_from_dict(rollout_payload), groups


def _coerce_optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_optional_int(value: object) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _condition_from_dict(value: object) -> Condition | None:
    if not isinstance(value, dict):
        return None
    return Condition(
        kind=str(value.get("kind", CONDITION_THRESHOLD)),
        threshold=float(value.get("threshold", 100.0)),
    )


def _rollout_from_dict(payload: dict[str, object]) -> Rollout:
    return Rollout(
        id=str(payload.get("id")),
        tenant=str(payload.get("tenant", "")),
        name=str(payload.get("name", "")),
        description=_coerce_optional_str(payload.get("description")),
        target_filter=str(payload.get("target_filter", "")),
        distribution_set_id=str(payload.get("distribution_set_id", "")),
        status=str(payload.get("status", ROLLOUT_CREATING)),
        action_type=str(payload.get("action_type", "FORCED")),
        forced_time=_coerce_optional_str(payload.get("forced_time")),
        weight=_coerce_optional_int(payload.get("weight")),
        dynamic=bool(payload.get("dynamic", False)),
        total_targets=int(payload.get("total_targets", 0) or 0),
        rollout_groups_created=int(payload.get("rollout_groups_created", 0) or 0),
        start_at=_coerce_optional_str(payload.get("start_at")),
        last_check=_coerce_optional_str(payload.get("last_check")),
        approval_decision=_coerce_optional_str(payload.get("approval_decision")),
        approval_decided_by=_coerce_optional_str(payload.get("approval_decided_by")),
        approval_remark=_coerce_optional_str(payload.get("approval_remark")),
        deleted=bool(payload.get("deleted", False)),
        status_reason=_coerce_optional_str(payload.get("status_reason")),
        last_target_sequence=int(payload.get("last_target_sequence", 0) or 0),
        stop_requested_at=_coerce_optional_str(payload.get("stop_requested_at")),
        version=int(payload.get("version", 0) or 0),
        created_at=str(payload.get("created_at", "")),
        updated_at=str(payload.get("updated_at", "")),
        created_by=_coerce_optional_str(payload.get("created_by")),
    )


def _group_from_dict(payload: dict[str, object]) -> RolloutGroup:
    success = _condition_from_dict(payload.get("success_condition"))
    return RolloutGroup(
        id=str(payload.get("id")),
        rollout_id=str(payload.get("rollout_id", "")),
        index=int(payload.get("index", 0) or 0),
        name=str(payload.get("name", "")),
        target_percentage=float(payload.get("target_percentage", 100.0)),
        target_filter=_coerce_optional_str(payload.get("target_filter")),
        success_condition=success or Condition(CONDITION_THRESHOLD, 100.0),
        success_action=str(payload.get("success_action", SUCCESS_ACTION_NEXTGROUP)),
        error_condition=_condition_from_dict(payload.get("error_condition")),
        error_action=str(payload.get("error_action", ERROR_ACTION_PAUSE)),
        status=str(payload.get("status", GROUP_SCHEDULED)),
        total_targets=int(payload.get("total_targets", 0) or 0),
        actions_created=int(payload.get("actions_created", 0) or 0),
        created_at=str(payload.get("created_at", "")),
        updated_at=str(payload.get("updated_at", "")),
    )
