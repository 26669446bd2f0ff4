"""
In-memory store implementations.

Used by the test suite and for dry runs (projecting what a batch would
create without touching the real database).  Behaviour matches the SQL
stores: ids are uuid4 strings, updates replace the frozen DTOs, and the
savings accumulator is derived from applied markers.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import uuid4

from finance_recurring.domain.types import (
    AppliedOccurrence,
    OccurrenceStatus,
    RecurrenceRule,
    RuleKind,
    RuleStatus,
    SavingsAutoDeductRule,
    StoreResult,
)
from finance_recurring.exceptions import RecordNotFoundError


def _start_key(start: date | None) -> tuple[int, date]:
    return (0, start) if isinstance(start, date) else (1, date.max)


class InMemoryLedgerStore:
    """Ledger entries kept in a dict keyed by entry id."""

    def __init__(self) -> None:
        self.entries: dict[str, dict[str, Any]] = {}

    def create_entry(self, kind: RuleKind, payload: dict[str, Any]) -> StoreResult:
        entry_id = str(uuid4())
        self.entries[entry_id] = {"id": entry_id, "kind": RuleKind(kind).value, **payload}
        return StoreResult.ok(entry_id)

    def update_entry(self, entry_id: str, partial: dict[str, Any]) -> StoreResult:
        if entry_id not in self.entries:
            return StoreResult.failed(f"entry not found: {entry_id}")
        self.entries[entry_id].update(partial)
        return StoreResult.ok(entry_id)

    def find_entry(self, recurring_id: str, entry_date: date) -> str | None:
        for entry in self.entries.values():
            if entry.get("recurring_id") == recurring_id and entry.get("date") == entry_date:
                return entry["id"]
        return None

    def entries_for(self, recurring_id: str) -> list[dict[str, Any]]:
        """Entries generated from one rule, in creation order."""
        return [e for e in self.entries.values() if e.get("recurring_id") == recurring_id]


class InMemoryScheduleStore:
    """Rules, savings instruments and applied-occurrence markers in dicts."""

    def __init__(
        self,
        rules: Sequence[RecurrenceRule] = (),
        savings: Sequence[SavingsAutoDeductRule] = (),
    ) -> None:
        self.rules: dict[str, RecurrenceRule] = {r.rule_id: r for r in rules}
        self.savings: dict[str, SavingsAutoDeductRule] = {s.savings_id: s for s in savings}
        self.occurrences: dict[tuple[str, date], AppliedOccurrence] = {}

    # -------------------------------------------------------------------------
    # Seeding
    # -------------------------------------------------------------------------

    def add_rule(self, rule: RecurrenceRule) -> None:
        self.rules[rule.rule_id] = rule

    def add_savings(self, savings: SavingsAutoDeductRule) -> None:
        self.savings[savings.savings_id] = savings

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_rules(self, owner_id: str) -> list[RecurrenceRule]:
        owned = [r for r in self.rules.values() if r.owner_id == owner_id]
        return sorted(owned, key=lambda r: _start_key(r.start_date))

    def list_active_savings(self, owner_id: str) -> list[SavingsAutoDeductRule]:
        owned = [
            s for s in self.savings.values()
            if s.owner_id == owner_id
            and s.status == RuleStatus.ACTIVE.value
            and s.auto_deduct
        ]
        return sorted(owned, key=lambda s: _start_key(s.start_date))

    # -------------------------------------------------------------------------
    # Watermarks
    # -------------------------------------------------------------------------

    def update_rule(
        self,
        rule_id: str,
        *,
        last_processed_date: date,
        next_due_date: date | None,
    ) -> StoreResult:
        rule = self.rules.get(rule_id)
        if rule is None:
            return StoreResult.failed(f"rule not found: {rule_id}")
        self.rules[rule_id] = replace(
            rule,
            last_processed_date=last_processed_date,
            next_due_date=next_due_date,
        )
        return StoreResult.ok(rule_id)

    def update_savings(
        self,
        savings_id: str,
        *,
        last_processed_date: date,
        next_due_date: date | None,
        accumulated_value: Decimal,
    ) -> StoreResult:
        savings = self.savings.get(savings_id)
        if savings is None:
            return StoreResult.failed(f"savings not found: {savings_id}")
        self.savings[savings_id] = replace(
            savings,
            last_processed_date=last_processed_date,
            next_due_date=next_due_date,
            accumulated_value=accumulated_value,
        )
        return StoreResult.ok(savings_id)

    # -------------------------------------------------------------------------
    # Applied occurrences
    # -------------------------------------------------------------------------

    def get_applied_occurrence(
        self, savings_id: str, occurrence_date: date,
    ) -> AppliedOccurrence | None:
        return self.occurrences.get((savings_id, occurrence_date))

    def record_occurrence_intent(
        self, savings_id: str, occurrence_date: date, amount: Decimal,
    ) -> AppliedOccurrence:
        key = (savings_id, occurrence_date)
        existing = self.occurrences.get(key)
        if existing is not None:
            return existing
        marker = AppliedOccurrence(
            savings_id=savings_id,
            occurrence_date=occurrence_date,
            amount=amount,
            status=OccurrenceStatus.PENDING,
        )
        self.occurrences[key] = marker
        return marker

    def mark_occurrence_applied(
        self, savings_id: str, occurrence_date: date, entry_id: str | None,
    ) -> AppliedOccurrence:
        key = (savings_id, occurrence_date)
        marker = self.occurrences.get(key)
        if marker is None:
            raise RecordNotFoundError(
                "AppliedOccurrence", f"{savings_id}@{occurrence_date.isoformat()}",
            )
        applied = replace(marker, status=OccurrenceStatus.APPLIED, entry_id=entry_id)
        self.occurrences[key] = applied
        return applied

    def applied_total(self, savings_id: str) -> Decimal:
        return sum(
            (
                m.amount for (sid, _), m in self.occurrences.items()
                if sid == savings_id and m.status == OccurrenceStatus.APPLIED
            ),
            Decimal("0"),
        )


class InMemoryRunMarkerStore:
    """Run marker held in an attribute."""

    def __init__(self, value: datetime | None = None) -> None:
        self._value = value

    def get(self) -> datetime | None:
        return self._value

    def set(self, value: datetime) -> None:
        self._value = value

    def clear(self) -> None:
        self._value = None


class InMemoryLeaseStore:
    """Per-owner leases: owner_id -> (holder, expires_at)."""

    def __init__(self) -> None:
        self.leases: dict[str, tuple[str, datetime]] = {}

    def acquire(
        self, owner_id: str, holder: str, now: datetime, ttl_seconds: int,
    ) -> bool:
        current = self.leases.get(owner_id)
        if current is not None:
            current_holder, expires_at = current
            if current_holder != holder and expires_at > now:
                return False
        self.leases[owner_id] = (holder, now + timedelta(seconds=ttl_seconds))
        return True

    def release(self, owner_id: str, holder: str) -> None:
        current = self.leases.get(owner_id)
        if current is not None and current[0] == holder:
            del self.leases[owner_id]
