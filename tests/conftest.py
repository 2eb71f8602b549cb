from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

from cadence_core.config import EngineSettings
from cadence_core.events.notifiers import RecordingNotifier
from cadence_core.leases.memory import InMemoryLeaseProvider
from cadence_core.rollouts.engine import RolloutEngine
from cadence_core.rollouts.manager import RolloutManager
from cadence_core.rollouts.scheduler import RolloutScheduler
from cadence_core.rollouts.state_machine import RolloutStateMachine
from cadence_core.rollouts.types import (
    CONDITION_THRESHOLD,
    ERROR_ACTION_PAUSE,
    Condition,
    GroupSpec,
    RolloutGroup,
    RolloutSpec,
    RolloutState,
)
from cadence_core.stores.registry import StoreBundle, get_store_bundle
from cadence_core.targets.types import TargetRecord


@pytest.fixture(autouse=True)
def _cadence_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STATE_ROOT", str(tmp_path / "env_state"))
    monkeypatch.setenv("LEASE_BACKEND", "memory")
    monkeypatch.setenv("NOTIFIER_BACKEND", "log")
    monkeypatch.delenv("CONTROL_PLANE_STORE", raising=False)
    monkeypatch.delenv("ROLLOUT_APPROVAL_REQUIRED", raising=False)


class ManualClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@dataclass
class RolloutHarness:
    stores: StoreBundle
    tracker: Any
    notifier: RecordingNotifier
    leases: InMemoryLeaseProvider
    clock: ManualClock
    engine: RolloutEngine
    manager: RolloutManager
    scheduler: RolloutScheduler

    def register_targets(
        self,
        count: int,
        *,
        tenant: str = "acme",
        prefix: str = "device",
        tags: tuple[str, ...] = ("gateway",),
        attributes: dict[str, object] | None = None,
    ) -> list[TargetRecord]:
        offset = len(self.stores.targets.load_targets())
        return [
            self.stores.targets.register_target(
                tenant=tenant,
                name=f"{prefix}-{offset + index}",
                target_id=f"{prefix}-{offset + index}",
                tags=tags,
                attributes=attributes,
            )
            for index in range(count)
        ]

    def state(self, rollout_id: str) -> RolloutState:
        state = self.engine.load(rollout_id)
        assert state is not None
        return state

    def group(self, rollout_id: str, index: int) -> RolloutGroup:
        return self.state(rollout_id).group(index)

    def report(
        self,
        group: RolloutGroup,
        status: str,
        count: int | None = None,
        *,
        skip: int = 0,
    ) -> list[str]:
        target_ids = self.stores.rollouts.group_targets(group.rollout_id, group.id)
        end = None if count is None else skip + count
        selected = target_ids[skip:end]
        for target_id in selected:
            self.stores.actions.report_status(
                group_id=group.id,
                target_id=target_id,
                status=status,
            )
        return selected

    def statuses(self, event_type: str = "rollout.updated") -> list[str]:
        return [
            str(event.payload["status"]) for event in self.notifier.of_type(event_type)
        ]


def build_harness(
    state_root: Path,
    *,
    tracker_factory: Callable[[Any], Any] | None = None,
    **overrides: Any,
) -> RolloutHarness:
    stores = get_store_bundle(str(state_root))
    settings = replace(
        EngineSettings(admin_lock_attempts=2, admin_lock_backoff_ms=0),
        **overrides,
    )
    tracker = tracker_factory(stores.actions) if tracker_factory else stores.actions
    clock = ManualClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))
    notifier = RecordingNotifier()
    leases = InMemoryLeaseProvider(ttl=timedelta(seconds=60))
    machine = RolloutStateMachine(stores.rollouts, notifier, clock=clock)
    engine = RolloutEngine(
        store=stores.rollouts,
        targets=stores.targets,
        tracker=tracker,
        machine=machine,
        settings=settings,
        clock=clock,
    )
    manager = RolloutManager(
        store=stores.rollouts,
        tracker=tracker,
        engine=engine,
        leases=leases,
        worker_id="test-admin",
        sleep=lambda _seconds: None,
    )
    scheduler = RolloutScheduler(
        store=stores.rollouts,
        engine=engine,
        leases=leases,
        worker_id="test-worker",
    )
    return RolloutHarness(
        stores=stores,
        tracker=tracker,
        notifier=notifier,
        leases=leases,
        clock=clock,
        engine=engine,
        manager=manager,
        scheduler=scheduler,
    )


@pytest.fixture
def make_harness(tmp_path: Path) -> Callable[..., RolloutHarness]:
    def _factory(**kwargs: Any) -> RolloutHarness:
        return build_harness(tmp_path / "state", **kwargs)

    return _factory


@pytest.fixture
def harness(make_harness) -> RolloutHarness:
    return make_harness()


def _group(
    percentage: float = 100.0,
    *,
    success: float = 100.0,
    error: float | None = None,
    error_action: str = ERROR_ACTION_PAUSE,
    name: str | None = None,
    target_filter: str | None = None,
) -> GroupSpec:
    return GroupSpec(
        name=name,
        target_percentage=percentage,
        target_filter=target_filter,
        success_condition=Condition(CONDITION_THRESHOLD, success),
        error_condition=(
            Condition(CONDITION_THRESHOLD, error) if error is not None else None
        ),
        error_action=error_action,
    )


@pytest.fixture
def group_spec() -> Callable[..., GroupSpec]:
    return _group


@pytest.fixture
def rollout_spec() -> Callable[..., RolloutSpec]:
    def _factory(
        name: str = "fw-2.4",
        *,
        groups: tuple[GroupSpec, ...] | None = None,
        **kwargs: Any,
    ) -> RolloutSpec:
        values: dict[str, Any] = {
            "tenant": "acme",
            "name": name,
            "target_filter": "tag==gateway",
            "distribution_set_id": "ds-1",
            "groups": groups if groups is not None else (_group(50.0), _group(100.0)),
        }
        values.update(kwargs)
        return RolloutSpec(**values)

    return _factory
