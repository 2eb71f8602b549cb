from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Protocol


class LeaseProvider(Protocol):
    def try_acquire(self, rollout_id: str, owner: str) -> bool:
        ...

    def release(self, rollout_id: str, owner: str) -> None:
        ...


@contextmanager
def hold_lease(provider: LeaseProvider, rollout_id: str, owner: str) -> Iterator[bool]:
    acquired = provider.try_acquire(rollout_id, owner)
    try:
        yield acquired
    finally:
        if acquired:
            provider.release(rollout_id, owner)
