from __future__ import annotations

import uuid
from dataclasses import asdict, replace
from datetime import datetime, timezone
from typing import Iterable

from cadence_core.actions.types import (
    ACTION_CANCELED,
    ACTION_CANCELING,
    ACTION_ERROR,
    ACTION_SCHEDULED,
    ACTION_STATUSES,
    OPEN_ACTION_STATUSES,
    ActionBatchResult,
    ActionRecord,
)
from cadence_core.errors import ValidationError
from cadence_core.storage.documents import read_items, write_items
from cadence_core.storage.paths import control_uri


def action_registry_uri(base_uri: str) -> str:
    return control_uri(base_uri, "actions.json")


def load_actions(base_uri: str) -> list[ActionRecord]:
    items = read_items(action_registry_uri(base_uri), "actions")
    return [_action_from_dict(item) for item in items]


def save_actions(base_uri: str, actions: Iterable[ActionRecord]) -> str:
    return write_items(
        action_registry_uri(base_uri),
        "actions",
        [asdict(action) for action in actions],
    )


def list_actions(base_uri: str, *, group_id: str | None = None) -> list[ActionRecord]:
    actions = load_actions(base_uri)
    if group_id:
        actions = [action for action in actions if action.group_id == group_id]
    return actions


def create_actions(
    *,
    base_uri: str,
    rollout_id: str,
    group_id: str,
    target_ids: Iterable[str],
    action_type: str,
    forced_time: str | None = None,
    weight: int | None = None,
) -> ActionBatchResult:
    actions = load_actions(base_uri)
    in_group = {
        action.target_id for action in actions if action.group_id == group_id
    }
    busy = {
        action.target_id
        for action in actions
        if action.group_id != group_id and action.status in OPEN_ACTION_STATUSES
    }
    now = datetime.now(timezone.utc).isoformat()
    created: list[str] = []
    existing: list[str] = []
    failed: dict[str, str] = {}
    for target_id in target_ids:
        if target_id in in_group:
            existing.append(target_id)
            continue
        if target_id in busy:
            failed[target_id] = "target busy with another open action"
            continue
        actions.append(
            ActionRecord(
                id=str(uuid.uuid4()),
                rollout_id=rollout_id,
                group_id=group_id,
                target_id=target_id,
                status=ACTION_SCHEDULED,
                action_type=action_type,
                forced_time=forced_time,
                weight=weight,
                error=None,
                created_at=now,
                updated_at=now,
            )
        )
        in_group.add(target_id)
        created.append(target_id)
    if created:
        save_actions(base_uri, actions)
    return ActionBatchResult(
        created=tuple(created),
        existing=tuple(existing),
        failed=failed,
    )


def mark_failed(
    *,
    base_uri: str,
    rollout_id: str,
    group_id: str,
    target_ids: Iterable[str],
    reason: str,
) -> int:
    actions = load_actions(base_uri)
    pending = set(target_ids)
    total = len(pending)
    now = datetime.now(timezone.utc).isoformat()
    updated: list[ActionRecord] = []
    for action in actions:
        if action.group_id == group_id and action.target_id in pending:
            updated.append(
                replace(action, status=ACTION_ERROR, error=reason, updated_at=now)
            )
            pending.discard(action.target_id)
        else:
            updated.append(action)
    for target_id in sorted(pending):
        updated.append(
            ActionRecord(
                id=str(uuid.uuid4()),
                rollout_id=rollout_id,
                group_id=group_id,
                target_id=target_id,
                status=ACTION_ERROR,
                action_type="",
                forced_time=None,
                weight=None,
                error=reason,
                created_at=now,
                updated_at=now,
            )
        )
    save_actions(base_uri, updated)
    return total


def cancel_actions(*, base_uri: str, group_id: str) -> int:
    actions = load_actions(base_uri)
    now = datetime.now(timezone.utc).isoformat()
    updated: list[ActionRecord] = []
    canceled = 0
    for action in actions:
        if action.group_id != group_id or action.status not in OPEN_ACTION_STATUSES:
            updated.append(action)
            continue
        if action.status == ACTION_CANCELING:
            updated.append(action)
            continue
        # Scheduled actions never reached the device and cancel at once.
        if action.status == ACTION_SCHEDULED:
            status = ACTION_CANCELED
        else:
            status = ACTION_CANCELING
        updated.append(replace(action, status=status, updated_at=now))
        canceled += 1
    if canceled:
        save_actions(base_uri, updated)
    return canceled


def count_by_status(*, base_uri: str, group_id: str) -> dict[str, int]:
    counts: dict[str, int] = {}
    for action in load_actions(base_uri):
        if action.group_id != group_id:
            continue
        counts[action.status] = counts.get(action.status, 0) + 1
    return counts


def report_status(
    *,
    base_uri: str,
    group_id: str,
    target_id: str,
    status: str,
    error: str | None = None,
) -> ActionRecord | None:
    normalized = status.strip().upper()
    if normalized not in ACTION_STATUSES:
        raise ValidationError(f"Unknown action status: {status}")
    actions = load_actions(base_uri)
    now = datetime.now(timezone.utc).isoformat()
    match: ActionRecord | None = None
    updated: list[ActionRecord] = []
    for action in actions:
        if action.group_id == group_id and action.target_id == target_id:
            match = replace(action, status=normalized, error=error, updated_at=now)
            updated.append(match)
        else:
            updated.append(action)
    if match is None:
        return None
    save_actions(base_uri, updated)
    return match


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


def _action_from_dict(payload: dict[str, object]) -> ActionRecord:
    return ActionRecord(
        id=str(payload.get("id")),
        rollout_id=str(payload.get("rollout_id", "")),
        group_id=str(payload.get("group_id", "")),
        target_id=str(payload.get("target_id", "")),
        status=str(payload.get("status", ACTION_SCHEDULED)),
        action_type=str(payload.get("action_type", "")),
        forced_time=_coerce_optional_str(payload.get("forced_time")),
        weight=_coerce_optional_int(payload.get("weight")),
        error=_coerce_optional_str(payload.get("error")),
        created_at=str(payload.get("created_at", "")),
        updated_at=str(payload.get("updated_at", "")),
    )
