from __future__ import annotations

import os
from dataclasses import dataclass

from cadence_core.stores.json_store import (
    JsonActionTracker,
    JsonRolloutStore,
    JsonTargetRepository,
)


@dataclass(frozen=True)
class StoreBundle:
    rollouts: JsonRolloutStore
    targets: JsonTargetRepository
    actions: JsonActionTracker


def get_store_bundle(base_uri: str) -> StoreBundle:
    backend = os.getenv("CONTROL_PLANE_STORE", "json").strip().lower()
    if backend != "json":
        raise ValueError(f"Unsupported control-plane store backend: {backend}")
    return StoreBundle(
        rollouts=JsonRolloutStore(base_uri),
        targets=JsonTargetRepository(base_uri),
        actions=JsonActionTracker(base_uri),
    )
