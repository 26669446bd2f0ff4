"""
Tests for finance_recurring.orchestrator.BatchOrchestrator.

Covers gating and forced runs, the per-owner lease, authorization aborts,
per-rule error isolation, the savings accumulator through a full batch,
the upcoming projection, and the SQL-backed factory.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

import pytest
from sqlalchemy import func, select

from finance_recurring.config import EngineSettings
from finance_recurring.domain.clock import DeterministicClock
from finance_recurring.domain.types import RuleOutcome, RuleSource, WatermarkPolicy
from finance_recurring.exceptions import AuthorizationError
from finance_recurring.models import BatchLeaseModel, LedgerEntryModel, RecurrenceRuleModel
from finance_recurring.orchestrator import (
    SKIP_ALREADY_PROCESSED,
    SKIP_ALREADY_RUNNING,
    BatchOrchestrator,
)
from finance_recurring.stores.marker_file import FileRunMarkerStore
from finance_recurring.stores.sql import SqlRunMarkerStore

OWNER_ID = "owner-1"


@pytest.fixture
def orchestrator(ledger, schedule, markers, leases, clock) -> BatchOrchestrator:
    return BatchOrchestrator(OWNER_ID, ledger, schedule, markers, leases, clock=clock)


# =============================================================================
# Gating
# =============================================================================


class TestGatedRuns:

    def test_first_run_catches_up_and_writes_marker(
        self, orchestrator, ledger, schedule, markers, clock, make_rule,
    ):
        rule = make_rule()
        schedule.add_rule(rule)

        result = orchestrator.run_batch()

        assert not result.run_skipped
        assert result.total_created == 3
        assert [tx.occurrence_date for tx in result.transactions] == [
            date(2024, 1, 15), date(2024, 2, 15), date(2024, 3, 15),
        ]
        assert len(ledger.entries) == 3
        assert markers.get() == clock.now()
        assert schedule.rules[rule.rule_id].last_processed_date == date(2024, 3, 15)

    def test_second_run_same_day_is_skipped(self, orchestrator, ledger, schedule, make_rule):
        schedule.add_rule(make_rule())
        orchestrator.run_batch()

        again = orchestrator.run_batch()

        assert again.run_skipped
        assert again.skip_reason == SKIP_ALREADY_PROCESSED
        assert again.total_created == 0
        assert len(ledger.entries) == 3

    def test_forced_run_creates_no_duplicates(self, orchestrator, ledger, schedule, make_rule):
        schedule.add_rule(make_rule())
        orchestrator.run_batch()

        forced = orchestrator.run_batch(force=True)

        assert not forced.run_skipped
        assert forced.total_created == 0
        assert [r.outcome for r in forced.rule_results] == [RuleOutcome.NOTHING_DUE]
        assert len(ledger.entries) == 3

    def test_catch_up_after_days_offline(self, orchestrator, ledger, schedule, clock, make_rule):
        schedule.add_rule(make_rule())
        orchestrator.run_batch()

        clock.advance_days(62)  # 2024-05-16
        result = orchestrator.run_batch()

        assert [tx.occurrence_date for tx in result.transactions] == [
            date(2024, 4, 15), date(2024, 5, 15),
        ]
        dates = sorted(e["date"] for e in ledger.entries.values())
        assert len(dates) == len(set(dates)) == 5

    def test_rule_added_after_todays_run_is_picked_up(
        self, orchestrator, ledger, schedule, make_rule,
    ):
        orchestrator.run_batch()
        late = make_rule(start_date=date(2024, 3, 1), frequency="weekly")
        schedule.add_rule(late)

        result = orchestrator.run_batch()

        assert not result.run_skipped
        assert result.total_created == 3  # Mar 1, 8, 15

    def test_reset_run_marker(self, orchestrator, schedule, markers, make_rule, captured_logs):
        schedule.add_rule(make_rule())
        orchestrator.run_batch()

        orchestrator.reset_run_marker()

        assert markers.get() is None
        assert not orchestrator.run_batch().run_skipped
        assert any(r["message"] == "run_marker_reset" for r in captured_logs())


# =============================================================================
# Lease
# =============================================================================


class TestLease:

    def test_running_batch_elsewhere_fails_fast(
        self, orchestrator, ledger, schedule, markers, leases, clock, make_rule,
    ):
        schedule.add_rule(make_rule())
        leases.acquire(OWNER_ID, "another-run", clock.now(), 600)

        result = orchestrator.run_batch()

        assert result.run_skipped
        assert result.skip_reason == SKIP_ALREADY_RUNNING
        assert ledger.entries == {}
        assert markers.get() is None
        assert leases.leases[OWNER_ID][0] == "another-run"

    def test_lease_released_after_run(self, orchestrator, leases):
        orchestrator.run_batch()
        assert OWNER_ID not in leases.leases

    def test_expired_lease_is_taken_over(self, ledger, schedule, markers, leases, clock):
        settings = EngineSettings(lease_ttl_seconds=30)
        orch = BatchOrchestrator(
            OWNER_ID, ledger, schedule, markers, leases, clock=clock, settings=settings,
        )
        leases.acquire(OWNER_ID, "stale-run", clock.now(), 1)
        clock.advance(5)

        assert not orch.run_batch().run_skipped
        assert OWNER_ID not in leases.leases


# =============================================================================
# Errors
# =============================================================================


class TestErrors:

    def test_authorization_error_aborts_batch(
        self, unauthorized_ledger, schedule, markers, leases, clock, make_rule, captured_logs,
    ):
        schedule.add_rule(make_rule())
        orch = BatchOrchestrator(
            OWNER_ID, unauthorized_ledger, schedule, markers, leases, clock=clock,
        )

        with pytest.raises(AuthorizationError):
            orch.run_batch()

        assert markers.get() is None
        assert leases.leases == {}
        assert any(r["message"] == "batch_run_aborted" for r in captured_logs())

    def test_malformed_rule_does_not_block_others(
        self, orchestrator, ledger, schedule, make_rule,
    ):
        bad = make_rule(frequency="fortnightly", start_date=date(2024, 1, 1))
        good = make_rule(start_date=date(2024, 2, 1))
        schedule.add_rule(bad)
        schedule.add_rule(good)

        result = orchestrator.run_batch()

        outcomes = {r.rule_id: r.outcome for r in result.rule_results}
        assert outcomes[bad.rule_id] is RuleOutcome.MALFORMED
        assert result.total_created == 2
        assert [e["rule_id"] for e in result.errors] == [bad.rule_id]

    def test_unexpected_error_fails_only_that_rule(
        self, orchestrator, ledger, schedule, make_rule, monkeypatch, captured_logs,
    ):
        broken = make_rule(start_date=date(2024, 1, 1))
        healthy = make_rule(start_date=date(2024, 2, 1))
        schedule.add_rule(broken)
        schedule.add_rule(healthy)

        real_process = orchestrator._rules.process

        def process(rule, as_of):
            if rule.rule_id == broken.rule_id:
                raise RuntimeError("boom")
            return real_process(rule, as_of)

        monkeypatch.setattr(orchestrator._rules, "process", process)

        result = orchestrator.run_batch()

        by_id = {r.rule_id: r for r in result.rule_results}
        assert by_id[broken.rule_id].outcome is RuleOutcome.FAILED
        assert by_id[broken.rule_id].errors == ("UNHANDLED_EXCEPTION: boom",)
        assert by_id[healthy.rule_id].created_count == 2
        failure_logs = [r for r in captured_logs() if r["message"] == "rule_processing_failed"]
        assert failure_logs[0]["rule_id"] == broken.rule_id

    def test_failed_write_is_reported_per_rule(
        self, flaky_ledger_factory, schedule, markers, leases, clock, make_rule,
    ):
        ledger = flaky_ledger_factory(reject_dates={date(2024, 2, 15)})
        rule = make_rule()
        schedule.add_rule(rule)
        orch = BatchOrchestrator(OWNER_ID, ledger, schedule, markers, leases, clock=clock)

        result = orch.run_batch()

        assert result.total_created == 2
        (error,) = result.errors
        assert error["rule_id"] == rule.rule_id
        assert error["skipped_dates"] == ["2024-02-15"]
        assert markers.get() is not None

    def test_retry_policy_from_settings(
        self, flaky_ledger_factory, schedule, markers, leases, clock, make_rule,
    ):
        ledger = flaky_ledger_factory(reject_dates={date(2024, 2, 15)})
        rule = make_rule()
        schedule.add_rule(rule)
        settings = EngineSettings(watermark_policy=WatermarkPolicy.RETRY_UNTIL_WRITTEN)
        orch = BatchOrchestrator(
            OWNER_ID, ledger, schedule, markers, leases, clock=clock, settings=settings,
        )

        orch.run_batch()
        ledger.reject_dates.clear()
        retried = orch.run_batch(force=True)

        assert [tx.occurrence_date for tx in retried.transactions] == [
            date(2024, 2, 15), date(2024, 3, 15),
        ]


# =============================================================================
# Savings
# =============================================================================


class TestSavingsInBatch:

    def test_two_due_contributions_add_two_amounts(
        self, ledger, schedule, markers, leases, make_savings,
    ):
        clock = DeterministicClock(datetime(2024, 2, 10, 9, 0, tzinfo=timezone.utc))
        savings = make_savings(opening_value=Decimal("5000"), accumulated_value=Decimal("5000"))
        schedule.add_savings(savings)
        orch = BatchOrchestrator(OWNER_ID, ledger, schedule, markers, leases, clock=clock)

        result = orch.run_batch()

        (savings_result,) = result.rule_results
        assert savings_result.source is RuleSource.SAVINGS
        assert savings_result.created_count == 2
        assert schedule.savings[savings.savings_id].accumulated_value == Decimal("7000.00")
        entries = ledger.entries_for(savings.savings_id)
        assert len(entries) == 2
        assert {e["recurring_id"] for e in entries} == {savings.savings_id}

    def test_rules_then_savings(self, orchestrator, schedule, make_rule, make_savings):
        schedule.add_savings(make_savings())
        schedule.add_rule(make_rule())

        result = orchestrator.run_batch()

        assert [r.source for r in result.rule_results] == [
            RuleSource.RECURRING, RuleSource.SAVINGS,
        ]


# =============================================================================
# Upcoming
# =============================================================================


class TestListUpcoming:

    def test_projection(self, orchestrator, schedule, make_rule):
        fresh = make_rule(start_date=date(2024, 1, 20))
        weekly = make_rule(
            start_date=date(2024, 3, 1), frequency="weekly",
            last_processed_date=date(2024, 3, 15),
        )
        overdue = make_rule(last_processed_date=date(2024, 1, 15))
        schedule.add_rule(fresh)
        schedule.add_rule(weekly)
        schedule.add_rule(overdue)
        schedule.add_rule(make_rule(status="paused"))
        schedule.add_rule(make_rule(start_date=date(2024, 1, 1), end_date=date(2024, 3, 10)))
        schedule.add_rule(make_rule(start_date=date(2023, 6, 1), frequency="yearly"))
        schedule.add_rule(make_rule(frequency="never"))

        upcoming = orchestrator.list_upcoming()

        assert [(u.rule_id, u.next_due_date, u.days_until) for u in upcoming] == [
            (overdue.rule_id, date(2024, 2, 15), -29),
            (fresh.rule_id, date(2024, 3, 20), 5),
            (weekly.rule_id, date(2024, 3, 22), 7),
        ]

    def test_window_argument(self, orchestrator, schedule, make_rule):
        schedule.add_rule(make_rule(start_date=date(2023, 6, 1), frequency="yearly"))

        assert orchestrator.list_upcoming(days_ahead=30) == []
        (item,) = orchestrator.list_upcoming(days_ahead=90)
        assert item.next_due_date == date(2024, 6, 1)

    def test_is_read_only(self, orchestrator, ledger, schedule, markers, make_rule):
        rule = make_rule()
        schedule.add_rule(rule)

        orchestrator.list_upcoming()

        assert ledger.entries == {}
        assert markers.get() is None
        assert schedule.rules[rule.rule_id] == rule


# =============================================================================
# SQL-backed factory
# =============================================================================


class TestFromSession:

    def test_batch_over_sqlite(self, db_session, clock, make_rule):
        rule = make_rule()
        db_session.add(RecurrenceRuleModel.from_dto(rule))
        db_session.flush()
        orch = BatchOrchestrator.from_session(db_session, OWNER_ID, clock=clock)

        result = orch.run_batch()

        assert result.total_created == 3
        count = db_session.execute(select(func.count(LedgerEntryModel.id))).scalar_one()
        assert count == 3
        stored = db_session.get(RecurrenceRuleModel, UUID(rule.rule_id))
        assert stored.last_processed_date == date(2024, 3, 15)
        assert stored.next_due_date == date(2024, 4, 15)
        assert SqlRunMarkerStore(db_session).get() == clock.now()
        leases = db_session.execute(select(func.count(BatchLeaseModel.id))).scalar_one()
        assert leases == 0

        assert orch.run_batch().skip_reason == SKIP_ALREADY_PROCESSED

    def test_marker_file_from_settings(self, db_session, clock, tmp_path):
        path = tmp_path / "marker.json"
        settings = EngineSettings(marker_path=str(path))
        orch = BatchOrchestrator.from_session(
            db_session, OWNER_ID, clock=clock, settings=settings,
        )

        orch.run_batch()

        assert FileRunMarkerStore(path).get() == clock.now()
        assert SqlRunMarkerStore(db_session).get() is None
