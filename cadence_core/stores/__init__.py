from cadence_core.stores.interfaces import ActionTracker, RolloutStore, TargetRepository
from cadence_core.stores.registry import StoreBundle, get_store_bundle

__all__ = [
    "ActionTracker",
    "RolloutStore",
    "StoreBundle",
    "TargetRepository",
    "get_store_bundle",
]
