"""
finance_recurring.models -- ORM models backing the SQL stores.

Architecture: finance_recurring/models. Imports from finance_recurring.db.base only.
"""

from finance_recurring.models.ledger import LedgerEntryModel
from finance_recurring.models.run_state import BatchLeaseModel, RunMarkerModel
from finance_recurring.models.schedule import (
    RecurrenceRuleModel,
    SavingsInstrumentModel,
    SavingsOccurrenceModel,
)

__all__ = [
    "BatchLeaseModel",
    "LedgerEntryModel",
    "RecurrenceRuleModel",
    "RunMarkerModel",
    "SavingsInstrumentModel",
    "SavingsOccurrenceModel",
]
