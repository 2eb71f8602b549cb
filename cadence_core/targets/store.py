from __future__ import annotations

import uuid
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Iterable

from cadence_core.storage.documents import read_items, write_items
from cadence_core.storage.paths import control_uri
from cadence_core.targets.filters import matches_filter, parse_filter
from cadence_core.targets.types import TargetMatch, TargetRecord


def target_registry_uri(base_uri: str) -> str:
    return control_uri(base_uri, "targets.json")


def load_targets(base_uri: str) -> list[TargetRecord]:
    items = read_items(target_registry_uri(base_uri), "targets")
    return [_target_from_dict(item) for item in items]


def save_targets(base_uri: str, targets: Iterable[TargetRecord]) -> str:
    return write_items(
        target_registry_uri(base_uri),
        "targets",
        [asdict(target) for target in targets],
    )


def register_target(
    *,
    base_uri: str,
    tenant: str,
    name: str,
    target_id: str | None = None,
    tags: Iterable[str] | None = None,
    attributes: dict[str, object] | None = None,
) -> TargetRecord:
    targets = load_targets(base_uri)
    next_sequence = max((target.sequence for target in targets), default=0) + 1
    target = TargetRecord(
        id=target_id or str(uuid.uuid4()),
        tenant=tenant,
        name=name,
        tags=_normalize_list(tags),
        attributes=_normalize_attributes(attributes),
        sequence=next_sequence,
        created_at=datetime.now(timezone.utc).isoformat(),
    )
    if any(existing.id == target.id for existing in targets):
        raise ValueError(f"Target already registered: {target.id}")
    targets.append(target)
    save_targets(base_uri, targets)
    return target


def find_matching(
    base_uri: str,
    filter_expr: str,
    watermark: int = 0,
    *,
    tenant: str,
) -> list[TargetMatch]:
    clauses = parse_filter(filter_expr)
    matches = [
        TargetMatch(target_id=target.id, sequence=target.sequence)
        for target in load_targets(base_uri)
        if target.tenant == tenant
        and target.sequence > watermark
        and matches_filter(clauses, target)
    ]
    matches.sort(key=lambda match: match.sequence)
    return matches


def count_matching(base_uri: str, filter_expr: str, *, tenant: str) -> int:
    return len(find_matching(base_uri, filter_expr, tenant=tenant))


def _normalize_list(items: Iterable[object] | None) -> tuple[str, ...] | None:
    if not items:
        return None
    cleaned = [str(item).strip().lower() for item in items if str(item).strip()]
    if not cleaned:
        return None
    deduped: list[str] = []
    for item in cleaned:
        if item not in deduped:
            deduped.append(item)
    return tuple(deduped)


def _normalize_attributes(value: object) -> dict[str, str] | None:
    if not isinstance(value, dict) or not value:
        return None
    return {str(key).strip().lower(): str(item) for key, item in value.items()}


def _coerce_iterable(value: object) -> Iterable[object] | None:
    if isinstance(value, (list, tuple, set)):
        return value
    return None


def _target_from_dict(payload: dict[str, object]) -> TargetRecord:
    return TargetRecord(
        id=str(payload.get("id")),
        tenant=str(payload.get("tenant", "")),
        name=str(payload.get("name", "")),
        tags=_normalize_list(_coerce_iterable(payload.get("tags"))),
        attributes=_normalize_attributes(payload.get("attributes")),
        sequence=int(payload.get("sequence", 0) or 0),
        created_at=str(payload.get("created_at", "")),
    )
