from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from cadence_core.clock import Clock, utc_now
from cadence_core.config import Config
from cadence_core.events.notifiers import LoggingNotifier
from cadence_core.events.types import LifecycleNotifier
from cadence_core.leases.memory import InMemoryLeaseProvider
from cadence_core.leases.sqlite import SqliteLeaseProvider
from cadence_core.leases.types import LeaseProvider
from cadence_core.rollouts.engine import RolloutEngine
from cadence_core.rollouts.manager import RolloutManager
from cadence_core.rollouts.scheduler import RolloutScheduler, SchedulerLoop
from cadence_core.rollouts.state_machine import RolloutStateMachine
from cadence_core.stores.registry import StoreBundle, get_store_bundle


@dataclass(frozen=True)
class Runtime:
    config: Config
    stores: StoreBundle
    engine: RolloutEngine
    manager: RolloutManager
    scheduler: RolloutScheduler

    def scheduler_loop(self, tenant: str | None = None) -> SchedulerLoop:
        return SchedulerLoop(
            self.scheduler,
            self.config.tick_interval_seconds,
            tenant=tenant,
        )


def build_lease_provider(config: Config) -> LeaseProvider:
    ttl = timedelta(seconds=config.lease_ttl_seconds)
    if config.lease_backend == "sqlite":
        return SqliteLeaseProvider(path=config.lease_path(), ttl=ttl)
    if config.lease_backend == "memory":
        return InMemoryLeaseProvider(ttl=ttl)
    raise ValueError(
        f"Lease backend {config.lease_backend} needs the gcp adapter runtime"
    )


def build_notifier(config: Config) -> LifecycleNotifier:
    if config.notifier_backend == "log":
        return LoggingNotifier()
    raise ValueError(
        f"Notifier backend {config.notifier_backend} needs the gcp adapter runtime"
    )


def build_runtime(
    config: Config,
    *,
    notifier: LifecycleNotifier | None = None,
    leases: LeaseProvider | None = None,
    clock: Clock = utc_now,
    worker_id: str | None = None,
) -> Runtime:
    stores = get_store_bundle(config.state_root_uri())
    settings = config.engine_settings()
    machine = RolloutStateMachine(
        stores.rollouts,
        notifier if notifier is not None else build_notifier(config),
        clock=clock,
    )
    engine = RolloutEngine(
        store=stores.rollouts,
        targets=stores.targets,
        tracker=stores.actions,
        machine=machine,
        settings=settings,
        clock=clock,
    )
    lease_provider = leases if leases is not None else build_lease_provider(config)
    manager = RolloutManager(
        store=stores.rollouts,
        tracker=stores.actions,
        engine=engine,
        leases=lease_provider,
        worker_id=worker_id,
    )
    scheduler = RolloutScheduler(
        store=stores.rollouts,
        engine=engine,
        leases=lease_provider,
        worker_id=worker_id,
    )
    return Runtime(
        config=config,
        stores=stores,
        engine=engine,
        manager=manager,
        scheduler=scheduler,
    )
