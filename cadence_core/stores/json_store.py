from __future__ import annotations

import threading
from dataclasses import replace
from typing import Iterable, Mapping, Sequence

from cadence_core.actions import store as action_store
from cadence_core.actions.types import ActionBatchResult, ActionRecord
from cadence_core.errors import RolloutNotFoundError, StaleStateError, ValidationError
from cadence_core.rollouts import store as rollout_store
from cadence_core.rollouts.types import Rollout, RolloutGroup
from cadence_core.stores.interfaces import ActionTracker, RolloutStore, TargetRepository
from cadence_core.targets import store as target_store
from cadence_core.targets.types import TargetMatch, TargetRecord


class JsonRolloutStore(RolloutStore):
    """Rollout documents on fsspec, one file per rollout.

    Writes are serialized within the process. ``save_rollout`` compares the
    stored version with ``expected_version`` before writing.
    """

    def __init__(self, base_uri: str) -> None:
        self._base_uri = base_uri
        self._lock = threading.RLock()

    def create_rollout(
        self,
        rollout: Rollout,
        groups: Sequence[RolloutGroup],
    ) -> Rollout:
        with self._lock:
            if rollout_store.load_rollout_document(self._base_uri, rollout.id):
                raise ValidationError(f"Rollout already exists: {rollout.id}")
            for existing in rollout_store.load_rollouts(self._base_uri):
                if (
                    existing.tenant == rollout.tenant
                    and existing.name == rollout.name
                    and not existing.deleted
                ):
                    raise ValidationError(
                        f"Rollout name already in use for tenant: {rollout.name}"
                    )
            rollout_store.save_rollout_document(self._base_uri, rollout, groups)
            return rollout

    def get_rollout(self, rollout_id: str) -> Rollout | None:
        document = rollout_store.load_rollout_document(self._base_uri, rollout_id)
        return document[0] if document else None

    def get_groups(self, rollout_id: str) -> tuple[RolloutGroup, ...]:
        document = rollout_store.load_rollout_document(self._base_uri, rollout_id)
        return document[1] if document else ()

    def save_rollout(
        self,
        rollout: Rollout,
        *,
        groups: Sequence[RolloutGroup],
        expected_version: int,
    ) -> Rollout:
        with self._lock:
            document = rollout_store.load_rollout_document(self._base_uri, rollout.id)
            if document is None:
                raise RolloutNotFoundError(f"Rollout not found: {rollout.id}")
            stored, _groups = document
            if stored.version != expected_version:
                raise StaleStateError(
                    f"Rollout {rollout.id} changed: expected version "
                    f"{expected_version}, found {stored.version}"
                )
            saved = replace(rollout, version=expected_version + 1)
            rollout_store.save_rollout_document(self._base_uri, saved, groups)
            return saved

    def list_rollouts(
        self,
        *,
        tenant: str | None = None,
        statuses: Iterable[str] | None = None,
        include_deleted: bool = False,
    ) -> list[Rollout]:
        wanted = set(statuses) if statuses is not None else None
        results: list[Rollout] = []
        for rollout in rollout_store.load_rollouts(self._base_uri):
            if tenant is not None and rollout.tenant != tenant:
                continue
            if wanted is not None and rollout.status not in wanted:
                continue
            if rollout.deleted and not include_deleted:
                continue
            results.append(rollout)
        return results

    def list_tenants(self) -> list[str]:
        rollouts = rollout_store.load_rollouts(self._base_uri)
        tenants = {rollout.tenant for rollout in rollouts}
        return sorted(tenants)

    def assign_targets(
        self,
        rollout_id: str,
        group_id: str,
        target_ids: Sequence[str],
    ) -> int:
        with self._lock:
            assignments = rollout_store.load_assignments(self._base_uri, rollout_id)
            assigned = {item for items in assignments.values() for item in items}
            bucket = assignments.setdefault(group_id, [])
            added = 0
            for target_id in target_ids:
                if target_id in assigned:
                    continue
                bucket.append(target_id)
                assigned.add(target_id)
                added += 1
            if added:
                rollout_store.save_assignments(self._base_uri, rollout_id, assignments)
            return added

    def group_targets(self, rollout_id: str, group_id: str) -> list[str]:
        assignments = rollout_store.load_assignments(self._base_uri, rollout_id)
        return list(assignments.get(group_id, []))

    def assigned_target_ids(self, rollout_id: str) -> set[str]:
        assignments = rollout_store.load_assignments(self._base_uri, rollout_id)
        return {item for items in assignments.values() for item in items}


class JsonTargetRepository(TargetRepository):
    def __init__(self, base_uri: str) -> None:
        self._base_uri = base_uri
        self._lock = threading.Lock()

    def find_matching(
        self,
        filter_expr: str,
        watermark: int = 0,
        *,
        tenant: str,
    ) -> list[TargetMatch]:
        return target_store.find_matching(
            self._base_uri,
            filter_expr,
            watermark,
            tenant=tenant,
        )

    def count_matching(self, filter_expr: str, *, tenant: str) -> int:
        return target_store.count_matching(self._base_uri, filter_expr, tenant=tenant)

    def load_targets(self) -> list[TargetRecord]:
        return target_store.load_targets(self._base_uri)

    def register_target(
        self,
        *,
        tenant: str,
        name: str,
        target_id: str | None = None,
        tags: Iterable[str] | None = None,
        attributes: dict[str, object] | None = None,
    ) -> TargetRecord:
        with self._lock:
            return target_store.register_target(
                base_uri=self._base_uri,
                tenant=tenant,
                name=name,
                target_id=target_id,
                tags=tags,
                attributes=attributes,
            )


class JsonActionTracker(ActionTracker):
    def __init__(self, base_uri: str) -> None:
        self._base_uri = base_uri
        self._lock = threading.RLock()

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
        with self._lock:
            return action_store.create_actions(
                base_uri=self._base_uri,
                rollout_id=rollout_id,
                group_id=group_id,
                target_ids=target_ids,
                action_type=action_type,
                forced_time=forced_time,
                weight=weight,
            )

    def mark_failed(
        self,
        group_id: str,
        target_ids: Sequence[str],
        reason: str,
        *,
        rollout_id: str,
    ) -> int:
        with self._lock:
            return action_store.mark_failed(
                base_uri=self._base_uri,
                rollout_id=rollout_id,
                group_id=group_id,
                target_ids=target_ids,
                reason=reason,
            )

    def cancel_actions(self, group_id: str) -> int:
        with self._lock:
            return action_store.cancel_actions(
                base_uri=self._base_uri,
                group_id=group_id,
            )

    def count_by_status(self, group_id: str) -> Mapping[str, int]:
        with self._lock:
            return action_store.count_by_status(
                base_uri=self._base_uri,
                group_id=group_id,
            )

    def list_actions(self, *, group_id: str | None = None) -> list[ActionRecord]:
        with self._lock:
            return action_store.list_actions(self._base_uri, group_id=group_id)

    def report_status(
        self,
        *,
        group_id: str,
        target_id: str,
        status: str,
        error: str | None = None,
    ) -> ActionRecord | None:
        with self._lock:
            return action_store.report_status(
                base_uri=self._base_uri,
                group_id=group_id,
                target_id=target_id,
                status=status,
                error=error,
            )
