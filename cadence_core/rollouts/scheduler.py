from __future__ import annotations

import os
import socket
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cadence_core.errors import CadenceError, RecoverableError, StaleStateError
from cadence_core.leases.types import LeaseProvider, hold_lease
from cadence_core.logging import get_logger
from cadence_core.rollouts.engine import RolloutEngine
from cadence_core.rollouts.types import (
    ROLLOUT_CREATING,
    ROLLOUT_DELETING,
    ROLLOUT_READY,
    ROLLOUT_RUNNING,
    ROLLOUT_STARTING,
    ROLLOUT_STOPPING,
    Rollout,
)

if TYPE_CHECKING:
    from cadence_core.stores.interfaces import RolloutStore

logger = get_logger(__name__)

TICK_PROCESSED = "processed"
TICK_IDLE = "idle"
TICK_SKIPPED = "skipped"
TICK_FAILED = "failed"

TICK_STATUSES: tuple[str, ...] = (TICK_PROCESSED, TICK_IDLE, TICK_SKIPPED, TICK_FAILED)

SCHEDULABLE_STATUSES: tuple[str, ...] = (
    ROLLOUT_CREATING,
    ROLLOUT_READY,
    ROLLOUT_STARTING,
    ROLLOUT_RUNNING,
    ROLLOUT_STOPPING,
    ROLLOUT_DELETING,
)


@dataclass(frozen=True)
class TickResult:
    rollout_id: str
    status: str
    transitions: int = 0
    from_status: str | None = None
    to_status: str | None = None
    error: str | None = None


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class RolloutScheduler:
    def __init__(
        self,
        *,
        store: RolloutStore,
        engine: RolloutEngine,
        leases: LeaseProvider,
        worker_id: str | None = None,
    ) -> None:
        self._store = store
        self._engine = engine
        self._leases = leases
        self._worker_id = worker_id or default_worker_id()

    def tick(self, rollout_id: str) -> TickResult:
        owner = f"{self._worker_id}:{uuid.uuid4().hex}"
        started = time.monotonic()
        try:
            with hold_lease(self._leases, rollout_id, owner) as acquired:
                if not acquired:
                    result = TickResult(rollout_id=rollout_id, status=TICK_SKIPPED)
                else:
                    result = self._advance(rollout_id)
        except StaleStateError as exc:
            result = TickResult(rollout_id, TICK_SKIPPED, error=str(exc))
        except (RecoverableError, OSError) as exc:
            result = TickResult(rollout_id, TICK_FAILED, error=str(exc))
        except CadenceError as exc:
            logger.error(
                "Rollout tick failed",
                extra={
                    "rollout_id": rollout_id,
                    "worker_id": self._worker_id,
                    "error_code": exc.__class__.__name__,
                    "error_message": str(exc),
                },
            )
            result = TickResult(rollout_id, TICK_FAILED, error=str(exc))
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Rollout tick",
            extra={
                "rollout_id": rollout_id,
                "worker_id": self._worker_id,
                "tick_status": result.status,
                "from_status": result.from_status,
                "to_status": result.to_status,
                "duration_ms": duration_ms,
                "error_message": result.error,
            },
        )
        return result

    def _advance(self, rollout_id: str) -> TickResult:
        state = self._engine.load(rollout_id)
        if state is None:
            return TickResult(rollout_id=rollout_id, status=TICK_IDLE)
        before = state.rollout
        state = self._engine.advance(state)
        transitions = state.rollout.version - before.version
        self._engine.record_check(state)
        if transitions <= 0:
            return TickResult(
                rollout_id=rollout_id,
                status=TICK_IDLE,
                from_status=before.status,
                to_status=before.status,
            )
        return TickResult(
            rollout_id=rollout_id,
            status=TICK_PROCESSED,
            transitions=transitions,
            from_status=before.status,
            to_status=state.rollout.status,
        )

    def due_rollouts(self, tenant: str | None = None) -> list[Rollout]:
        candidates = self._store.list_rollouts(
            tenant=tenant,
            statuses=SCHEDULABLE_STATUSES,
        )
        due = [
            rollout
            for rollout in candidates
            if rollout.status != ROLLOUT_READY or self._engine.start_due(rollout)
        ]
        due.sort(key=lambda rollout: (-(rollout.weight or 0), rollout.created_at))
        return due

    def run_cycle(self, tenant: str | None = None) -> list[TickResult]:
        rollouts = self.due_rollouts(tenant)
        if not rollouts:
            return []
        workers = max(1, min(self._engine.settings.tick_workers, len(rollouts)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(self.tick, [rollout.id for rollout in rollouts]))
        logger.info(
            "Scheduler cycle complete",
            extra={
                "tenant": tenant,
                "worker_id": self._worker_id,
                "rollout_count": len(results),
            },
        )
        return results


class SchedulerLoop:
    def __init__(
        self,
        scheduler: RolloutScheduler,
        interval_seconds: float,
        *,
        tenant: str | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._interval_seconds = max(0.1, interval_seconds)
        self._tenant = tenant
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)

    def run_forever(self) -> None:
        self._run()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self._scheduler.run_cycle(self._tenant)
            except Exception as exc:
                logger.warning(
                    "Scheduler cycle failed",
                    extra={"tenant": self._tenant, "error_message": str(exc)},
                )
            self._stop.wait(self._interval_seconds)
