"""
Store protocols -- the engine's view of its external collaborators.

Contract:
    ``LedgerStore``     creates / updates ledger entries (expense, income).
    ``ScheduleStore``   lists rules and savings instruments, persists
                        watermarks and savings applied-occurrence markers.
    ``RunMarkerStore``  the single "last full batch" timestamp.
    ``LeaseStore``      per-owner advisory lease so at most one batch runs
                        per owner at a time.

Architecture:
    finance_recurring/stores.  Only imports from finance_recurring.domain.
    Implementations live in stores/memory.py, stores/marker_file.py and
    stores/sql.py.

Error conventions:
    - A rejected write returns ``StoreResult.failed(...)`` or raises a
      ``StoreError`` subclass; the processors treat both the same way.
    - ``AuthorizationError`` is raised when the actor may not touch the
      owner's data; it aborts the whole batch.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from finance_recurring.domain.types import (
    AppliedOccurrence,
    RecurrenceRule,
    RuleKind,
    SavingsAutoDeductRule,
    StoreResult,
)


@runtime_checkable
class LedgerStore(Protocol):
    """Append-only (from the engine's side) store of expense / income entries."""

    def create_entry(self, kind: RuleKind, payload: dict[str, Any]) -> StoreResult:
        """Create one entry of ``kind``; returns the new id on success."""
        ...

    def update_entry(self, entry_id: str, partial: dict[str, Any]) -> StoreResult:
        """Update fields of an existing entry."""
        ...

    def find_entry(self, recurring_id: str, entry_date: date) -> str | None:
        """Id of the entry generated from ``recurring_id`` for ``entry_date``, if any."""
        ...


@runtime_checkable
class ScheduleStore(Protocol):
    """Recurrence rules, savings instruments, and their processing state."""

    def list_rules(self, owner_id: str) -> Sequence[RecurrenceRule]:
        """All of the owner's recurrence rules, ordered by start date."""
        ...

    def list_active_savings(self, owner_id: str) -> Sequence[SavingsAutoDeductRule]:
        """The owner's active savings instruments with auto-deduct on."""
        ...

    def update_rule(
        self,
        rule_id: str,
        *,
        last_processed_date: date,
        next_due_date: date | None,
    ) -> StoreResult:
        """Persist a rule's watermark and next-due cache."""
        ...

    def update_savings(
        self,
        savings_id: str,
        *,
        last_processed_date: date,
        next_due_date: date | None,
        accumulated_value: Decimal,
    ) -> StoreResult:
        """Persist a savings instrument's watermark, next-due and accumulator."""
        ...

    def get_applied_occurrence(
        self, savings_id: str, occurrence_date: date,
    ) -> AppliedOccurrence | None:
        """The marker for one savings occurrence, if any."""
        ...

    def record_occurrence_intent(
        self, savings_id: str, occurrence_date: date, amount: Decimal,
    ) -> AppliedOccurrence:
        """Create (or return the existing) marker for one savings occurrence."""
        ...

    def mark_occurrence_applied(
        self, savings_id: str, occurrence_date: date, entry_id: str | None,
    ) -> AppliedOccurrence:
        """Flip a pending marker to applied."""
        ...

    def applied_total(self, savings_id: str) -> Decimal:
        """Sum of amounts over the instrument's applied markers."""
        ...


@runtime_checkable
class RunMarkerStore(Protocol):
    """The persisted "last full batch run" timestamp."""

    def get(self) -> datetime | None: ...

    def set(self, value: datetime) -> None: ...

    def clear(self) -> None: ...


@runtime_checkable
class LeaseStore(Protocol):
    """Short-lived per-owner lease used as an advisory batch lock."""

    def acquire(
        self, owner_id: str, holder: str, now: datetime, ttl_seconds: int,
    ) -> bool:
        """Take the lease unless another holder has an unexpired one."""
        ...

    def release(self, owner_id: str, holder: str) -> None:
        """Drop the lease if ``holder`` still owns it."""
        ...
