"""
finance_recurring.domain -- Pure types and occurrence generation.

ZERO I/O.  All types are frozen dataclasses.
"""

from finance_recurring.domain.occurrences import (
    add_months,
    due_dates,
    next_occurrence_after,
)
from finance_recurring.domain.types import (
    DEFAULT_WATERMARK_POLICY,
    BatchRunResult,
    Frequency,
    LedgerEntryRequest,
    RecurrenceRule,
    RuleKind,
    RuleProcessingResult,
    RuleStatus,
    SavingsAutoDeductRule,
    WatermarkPolicy,
)

__all__ = [
    "DEFAULT_WATERMARK_POLICY",
    "BatchRunResult",
    "Frequency",
    "LedgerEntryRequest",
    "RecurrenceRule",
    "RuleKind",
    "RuleProcessingResult",
    "RuleStatus",
    "SavingsAutoDeductRule",
    "WatermarkPolicy",
    "add_months",
    "due_dates",
    "next_occurrence_after",
]
