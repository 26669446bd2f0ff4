"""Tests for finance_recurring.stores.memory."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from finance_recurring.domain.types import OccurrenceStatus, RuleKind
from finance_recurring.exceptions import RecordNotFoundError
from finance_recurring.stores.base import LeaseStore, LedgerStore, RunMarkerStore, ScheduleStore
from finance_recurring.stores.memory import (
    InMemoryLeaseStore,
    InMemoryLedgerStore,
    InMemoryRunMarkerStore,
    InMemoryScheduleStore,
)

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


class TestProtocols:

    def test_in_memory_stores_satisfy_protocols(self):
        assert isinstance(InMemoryLedgerStore(), LedgerStore)
        assert isinstance(InMemoryScheduleStore(), ScheduleStore)
        assert isinstance(InMemoryRunMarkerStore(), RunMarkerStore)
        assert isinstance(InMemoryLeaseStore(), LeaseStore)


class TestLedger:

    def test_update_unknown_entry_fails(self):
        result = InMemoryLedgerStore().update_entry("missing", {"notes": "x"})
        assert not result.success

    def test_update_entry(self):
        ledger = InMemoryLedgerStore()
        created = ledger.create_entry(RuleKind.INCOME, {"amount": Decimal("1")})
        ledger.update_entry(created.id, {"notes": "edited"})
        assert ledger.entries[created.id]["notes"] == "edited"


class TestSchedule:

    def test_lists_are_owner_scoped_and_sorted(self, make_rule, make_savings):
        late = make_rule(start_date=date(2024, 6, 1))
        early = make_rule(start_date=date(2024, 1, 1))
        undated = make_rule(start_date=None)
        other = make_rule(owner_id="someone-else")
        store = InMemoryScheduleStore(rules=[late, undated, early, other])

        assert [r.rule_id for r in store.list_rules("owner-1")] == [
            early.rule_id, late.rule_id, undated.rule_id,
        ]

    def test_active_savings_excludes_manual_and_closed(self, make_savings):
        active = make_savings()
        manual = make_savings(auto_deduct=False)
        closed = make_savings(status="inactive")
        store = InMemoryScheduleStore(savings=[active, manual, closed])

        assert [s.savings_id for s in store.list_active_savings("owner-1")] == [
            active.savings_id,
        ]

    def test_update_unknown_rule_fails(self):
        result = InMemoryScheduleStore().update_rule(
            "nope", last_processed_date=date(2024, 1, 1), next_due_date=None,
        )
        assert not result.success

    def test_occurrence_intent_is_idempotent(self):
        store = InMemoryScheduleStore()
        first = store.record_occurrence_intent("s1", date(2024, 1, 1), Decimal("10"))
        again = store.record_occurrence_intent("s1", date(2024, 1, 1), Decimal("10"))
        assert first is again
        assert first.status is OccurrenceStatus.PENDING

    def test_applied_total_counts_applied_only(self):
        store = InMemoryScheduleStore()
        store.record_occurrence_intent("s1", date(2024, 1, 1), Decimal("10"))
        store.record_occurrence_intent("s1", date(2024, 2, 1), Decimal("10"))
        store.mark_occurrence_applied("s1", date(2024, 1, 1), "e1")

        assert store.applied_total("s1") == Decimal("10")
        assert store.applied_total("s2") == Decimal("0")

    def test_mark_without_intent_raises(self):
        with pytest.raises(RecordNotFoundError):
            InMemoryScheduleStore().mark_occurrence_applied("s1", date(2024, 1, 1), "e1")


class TestLease:

    def test_second_holder_is_refused_until_expiry(self):
        leases = InMemoryLeaseStore()
        assert leases.acquire("o", "run-a", NOW, 60)
        assert not leases.acquire("o", "run-b", NOW + timedelta(seconds=30), 60)
        assert leases.acquire("o", "run-b", NOW + timedelta(seconds=61), 60)

    def test_release_only_by_holder(self):
        leases = InMemoryLeaseStore()
        leases.acquire("o", "run-a", NOW, 60)
        leases.release("o", "run-b")
        assert "o" in leases.leases
        leases.release("o", "run-a")
        assert "o" not in leases.leases
