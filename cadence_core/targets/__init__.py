from cadence_core.targets.filters import matches_filter, parse_filter
from cadence_core.targets.store import (
    count_matching,
    find_matching,
    load_targets,
    register_target,
    save_targets,
    target_registry_uri,
)
from cadence_core.targets.types import TargetMatch, TargetRecord

__all__ = [
    "TargetMatch",
    "TargetRecord",
    "count_matching",
    "find_matching",
    "load_targets",
    "matches_filter",
    "parse_filter",
    "register_target",
    "save_targets",
    "target_registry_uri",
]
