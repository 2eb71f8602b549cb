from __future__ import annotations

import threading
from datetime import datetime, timedelta

from cadence_core.clock import Clock, utc_now


class InMemoryLeaseProvider:
    """Process-local leases for tests and single-process runtimes."""

    def __init__(self, ttl: timedelta, clock: Clock = utc_now) -> None:
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._leases: dict[str, tuple[str, datetime]] = {}

    def try_acquire(self, rollout_id: str, owner: str) -> bool:
        now = self._clock()
        with self._lock:
            current = self._leases.get(rollout_id)
            if current is not None:
                holder, expires_at = current
                if holder != owner and expires_at > now:
                    return False
            self._leases[rollout_id] = (owner, now + self._ttl)
            return True

    def release(self, rollout_id: str, owner: str) -> None:
        with self._lock:
            current = self._leases.get(rollout_id)
            if current is not None and current[0] == owner:
                del self._leases[rollout_id]

    def holder(self, rollout_id: str) -> str | None:
        now = self._clock()
        with self._lock:
            current = self._leases.get(rollout_id)
            if current is None or current[1] <= now:
                return None
            return current[0]
