"""
finance_recurring.domain.types -- Pure frozen dataclasses for the engine.

ZERO I/O.  Frozen dataclasses with ``str`` enum status fields and tuples
for immutable collections.

Rule DTOs keep ``frequency`` / ``kind`` / ``status`` as the raw values the
store handed over; ``domain.validation`` turns them into enums and raises
``MalformedRuleError`` for values that cannot be scheduled.  One bad record
therefore cannot break a whole ``list_rules()`` call.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


# =============================================================================
# Enums
# =============================================================================


class Frequency(str, Enum):
    """Recurrence frequency of a rule or savings instrument."""

    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    ONE_TIME = "one-time"  # Savings only; never generates occurrences


RECURRING_FREQUENCIES: frozenset[Frequency] = frozenset(
    f for f in Frequency if f is not Frequency.ONE_TIME
)


class RuleKind(str, Enum):
    """Which ledger a rule writes to."""

    EXPENSE = "expense"
    INCOME = "income"


class RuleStatus(str, Enum):
    """User-controlled lifecycle status."""

    ACTIVE = "active"
    PAUSED = "paused"
    INACTIVE = "inactive"


class RuleSource(str, Enum):
    """Which processor produced a ledger entry."""

    RECURRING = "recurring"
    SAVINGS = "savings"


class WatermarkPolicy(str, Enum):
    """What happens to the watermark when some writes of a rule fail."""

    # Attempt every due date, then advance to the last due date if at least
    # one write succeeded.  Failed dates are reported as skipped and never
    # retried.
    SKIP_FORWARD = "skip_forward"
    # Stop at the first failed write and advance only past the dates that
    # were written.  The failed date is due again on the next run.
    RETRY_UNTIL_WRITTEN = "retry_until_written"


DEFAULT_WATERMARK_POLICY = WatermarkPolicy.SKIP_FORWARD


class OccurrenceStatus(str, Enum):
    """Lifecycle of a savings applied-occurrence marker."""

    PENDING = "pending"  # Intent recorded, ledger entry not confirmed
    APPLIED = "applied"  # Ledger entry written; counts toward the accumulator


class RuleOutcome(str, Enum):
    """Per-rule result of one processing pass."""

    NOTHING_DUE = "nothing_due"
    SUCCEEDED = "succeeded"
    PARTIALLY_SUCCEEDED = "partially_succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # Paused / inactive / not auto-deduct
    MALFORMED = "malformed"


# =============================================================================
# Rule DTOs
# =============================================================================


@dataclass(frozen=True)
class RecurrenceRule:
    """Immutable snapshot of one recurring ledger template."""

    rule_id: str
    owner_id: str
    kind: str  # RuleKind value
    amount: Decimal
    category: str
    frequency: str  # Frequency value
    start_date: date | None
    description: str = ""
    end_date: date | None = None
    status: str = RuleStatus.ACTIVE.value
    payment_method: str | None = None
    payment_method_id: str | None = None
    payment_method_name: str | None = None
    notes: str | None = None
    last_processed_date: date | None = None  # Watermark
    next_due_date: date | None = None  # Derived cache


@dataclass(frozen=True)
class SavingsAutoDeductRule:
    """Immutable snapshot of a savings instrument with auto-deduct.

    ``accumulated_value`` = ``opening_value`` + every applied occurrence.
    """

    savings_id: str
    owner_id: str
    name: str
    amount: Decimal
    frequency: str  # Frequency value
    start_date: date | None
    saving_type: str = ""
    maturity_date: date | None = None
    status: str = RuleStatus.ACTIVE.value
    auto_deduct: bool = True
    opening_value: Decimal = Decimal("0")
    accumulated_value: Decimal = Decimal("0")
    last_processed_date: date | None = None
    next_due_date: date | None = None


@dataclass(frozen=True)
class RuleSchedule:
    """Validated scheduling fields of a rule (see domain.validation)."""

    start_date: date
    frequency: Frequency
    end_date: date | None = None
    last_processed_date: date | None = None


# =============================================================================
# Ledger DTOs
# =============================================================================


@dataclass(frozen=True)
class LedgerEntryRequest:
    """One ledger entry the engine asks the Ledger Store to create."""

    kind: RuleKind
    amount: Decimal
    category: str
    entry_date: date
    description: str
    recurring_id: str
    source: RuleSource = RuleSource.RECURRING
    payment_method: str | None = None
    payment_method_id: str | None = None
    payment_method_name: str | None = None
    notes: str | None = None
    is_recurring: bool = True  # Machine-generated flag

    def to_payload(self) -> dict[str, Any]:
        """Payload in the shape the Ledger Store consumes."""
        return {
            "amount": self.amount,
            "category": self.category,
            "date": self.entry_date,
            "description": self.description,
            "payment_method": self.payment_method,
            "payment_method_id": self.payment_method_id,
            "payment_method_name": self.payment_method_name,
            "is_recurring": self.is_recurring,
            "recurring_id": self.recurring_id,
            "source": self.source.value,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class StoreResult:
    """Outcome of a store write: ``success`` with ``id``, or ``error``."""

    success: bool
    id: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, record_id: str | None = None) -> StoreResult:
        return cls(success=True, id=record_id)

    @classmethod
    def failed(cls, error: str) -> StoreResult:
        return cls(success=False, error=error)


@dataclass(frozen=True)
class AppliedOccurrence:
    """Savings occurrence marker; the accumulator is the sum of applied ones."""

    savings_id: str
    occurrence_date: date
    amount: Decimal
    status: OccurrenceStatus
    entry_id: str | None = None


# =============================================================================
# Result DTOs
# =============================================================================


@dataclass(frozen=True)
class CreatedTransaction:
    """A ledger entry created during a run (for UI feedback)."""

    rule_id: str
    source: RuleSource
    kind: RuleKind
    description: str
    amount: Decimal
    occurrence_date: date
    entry_id: str | None = None


@dataclass(frozen=True)
class RuleProcessingResult:
    """Immutable result of processing one rule or savings instrument."""

    rule_id: str
    source: RuleSource
    outcome: RuleOutcome
    due_dates: tuple[date, ...] = ()
    created: tuple[CreatedTransaction, ...] = ()
    errors: tuple[str, ...] = ()
    skipped_dates: tuple[date, ...] = ()  # Due but never written
    watermark: date | None = None
    next_due_date: date | None = None
    accumulated_value: Decimal | None = None  # Savings only

    @property
    def created_count(self) -> int:
        return len(self.created)


@dataclass(frozen=True)
class BatchRunResult:
    """Immutable result of one ``run_batch()`` call."""

    run_id: str
    run_skipped: bool = False
    skip_reason: str | None = None
    rule_results: tuple[RuleProcessingResult, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0

    @property
    def total_created(self) -> int:
        return sum(r.created_count for r in self.rule_results)

    @property
    def transactions(self) -> tuple[CreatedTransaction, ...]:
        return tuple(tx for r in self.rule_results for tx in r.created)

    @property
    def errors(self) -> tuple[dict[str, Any], ...]:
        """Per-rule error list, suitable for display."""
        return tuple(
            {
                "rule_id": r.rule_id,
                "source": r.source.value,
                "outcome": r.outcome.value,
                "errors": list(r.errors),
                "skipped_dates": [d.isoformat() for d in r.skipped_dates],
            }
            for r in self.rule_results
            if r.errors or r.skipped_dates
        )


@dataclass(frozen=True)
class UpcomingOccurrence:
    """Read-only projection of a rule's next due date."""

    rule_id: str
    kind: str
    description: str
    amount: Decimal
    category: str
    frequency: str
    next_due_date: date
    days_until: int
