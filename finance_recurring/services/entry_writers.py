"""
Entry writers -- the closed set of ledger kinds a rule can write to.

Contract:
    ``writer_for(kind)`` returns the writer for a rule kind once, before
    any due date is processed.  An unknown kind raises
    ``MalformedRuleError`` up front instead of silently producing
    nothing for every due date.

Architecture:
    finance_recurring/services.  Imports from finance_recurring.domain and
    finance_recurring.stores.base only.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from types import MappingProxyType

from finance_recurring.domain.types import (
    LedgerEntryRequest,
    RecurrenceRule,
    RuleKind,
    RuleSource,
    SavingsAutoDeductRule,
    StoreResult,
)
from finance_recurring.domain.validation import parse_kind
from finance_recurring.stores.base import LedgerStore

DEFAULT_PAYMENT_METHOD = "cash"
DEFAULT_SAVINGS_CATEGORY = "Savings"


def default_notes(description: str) -> str:
    return f"Auto-generated from recurring: {description}"


class EntryWriter(ABC):
    """Writes one ledger entry per due date for a fixed kind."""

    kind: RuleKind

    def write(self, ledger: LedgerStore, request: LedgerEntryRequest) -> StoreResult:
        """Send ``request`` to the ledger store under this writer's kind."""
        if request.kind is not self.kind:
            raise ValueError(
                f"{type(self).__name__} cannot write a {request.kind.value} entry"
            )
        return ledger.create_entry(self.kind, request.to_payload())

    @abstractmethod
    def describe(self, description: str, entry_date: date) -> str:
        """Log label for one write."""


class ExpenseWriter(EntryWriter):
    kind = RuleKind.EXPENSE

    def describe(self, description: str, entry_date: date) -> str:
        return f"expense '{description}' on {entry_date.isoformat()}"


class IncomeWriter(EntryWriter):
    kind = RuleKind.INCOME

    def describe(self, description: str, entry_date: date) -> str:
        return f"income '{description}' on {entry_date.isoformat()}"


_WRITERS: MappingProxyType[RuleKind, EntryWriter] = MappingProxyType({
    RuleKind.EXPENSE: ExpenseWriter(),
    RuleKind.INCOME: IncomeWriter(),
})


def writer_for(kind: RuleKind | str, rule_id: str = "") -> EntryWriter:
    """Return the writer for ``kind``.

    Raises:
        MalformedRuleError: If ``kind`` is not a known RuleKind.
    """
    return _WRITERS[parse_kind(rule_id, kind)]


# =============================================================================
# Request builders
# =============================================================================


def rule_entry_request(
    rule: RecurrenceRule,
    entry_date: date,
    default_payment_method: str = DEFAULT_PAYMENT_METHOD,
) -> LedgerEntryRequest:
    """Ledger request for one occurrence of a recurrence rule."""
    return LedgerEntryRequest(
        kind=RuleKind(rule.kind),
        amount=Decimal(str(rule.amount)),
        category=rule.category,
        entry_date=entry_date,
        description=rule.description,
        recurring_id=rule.rule_id,
        source=RuleSource.RECURRING,
        payment_method=rule.payment_method or default_payment_method,
        payment_method_id=rule.payment_method_id,
        payment_method_name=rule.payment_method_name,
        notes=rule.notes or default_notes(rule.description),
    )


def savings_entry_request(
    savings: SavingsAutoDeductRule,
    entry_date: date,
    category: str = DEFAULT_SAVINGS_CATEGORY,
    default_payment_method: str = DEFAULT_PAYMENT_METHOD,
) -> LedgerEntryRequest:
    """Expense request for one auto-deducted savings contribution."""
    description = savings.name
    if savings.saving_type:
        description = f"{savings.name} ({savings.saving_type})"
    return LedgerEntryRequest(
        kind=RuleKind.EXPENSE,
        amount=Decimal(str(savings.amount)),
        category=category,
        entry_date=entry_date,
        description=description,
        recurring_id=savings.savings_id,
        source=RuleSource.SAVINGS,
        payment_method=default_payment_method,
        notes=f"Auto-deducted contribution to {savings.name}",
    )
