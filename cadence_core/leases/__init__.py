from cadence_core.leases.memory import InMemoryLeaseProvider
from cadence_core.leases.sqlite import SqliteLeaseProvider
from cadence_core.leases.types import LeaseProvider, hold_lease

__all__ = [
    "InMemoryLeaseProvider",
    "LeaseProvider",
    "SqliteLeaseProvider",
    "hold_lease",
]
