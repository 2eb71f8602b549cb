from cadence_core.actions.store import (
    action_registry_uri,
    cancel_actions,
    count_by_status,
    create_actions,
    list_actions,
    load_actions,
    mark_failed,
    report_status,
    save_actions,
)
from cadence_core.actions.types import (
    ACTION_STATUSES,
    OPEN_ACTION_STATUSES,
    ActionBatchResult,
    ActionRecord,
)

__all__ = [
    "ACTION_STATUSES",
    "OPEN_ACTION_STATUSES",
    "ActionBatchResult",
    "ActionRecord",
    "action_registry_uri",
    "cancel_actions",
    "count_by_status",
    "create_actions",
    "list_actions",
    "load_actions",
    "mark_failed",
    "report_status",
    "save_actions",
]
