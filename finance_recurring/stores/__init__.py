"""
finance_recurring.stores -- Store protocols and implementations.
"""

from finance_recurring.stores.base import (
    LeaseStore,
    LedgerStore,
    RunMarkerStore,
    ScheduleStore,
)
from finance_recurring.stores.marker_file import DEFAULT_MARKER_KEY, FileRunMarkerStore
from finance_recurring.stores.memory import (
    InMemoryLeaseStore,
    InMemoryLedgerStore,
    InMemoryRunMarkerStore,
    InMemoryScheduleStore,
)

__all__ = [
    "DEFAULT_MARKER_KEY",
    "FileRunMarkerStore",
    "InMemoryLeaseStore",
    "InMemoryLedgerStore",
    "InMemoryRunMarkerStore",
    "InMemoryScheduleStore",
    "LeaseStore",
    "LedgerStore",
    "RunMarkerStore",
    "ScheduleStore",
]
