"""
Pytest fixtures for the recurring engine test suite.

Provides:
- Structured logging set up once per session, plus ``captured_logs``
- A deterministic clock pinned to 2024-03-15 12:00 UTC
- In-memory stores and rule / savings factories
- An in-memory SQLite session for the SQL store tests
- Ledger / schedule doubles that fail on demand
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Any
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import finance_recurring.models  # noqa: F401  (registers tables on Base.metadata)
from finance_recurring.db.base import Base
from finance_recurring.db.engine import enable_sqlite_savepoints
from finance_recurring.domain.clock import DeterministicClock
from finance_recurring.domain.types import (
    RecurrenceRule,
    RuleKind,
    SavingsAutoDeductRule,
    StoreResult,
)
from finance_recurring.exceptions import AuthorizationError
from finance_recurring.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from finance_recurring.stores.memory import (
    InMemoryLeaseStore,
    InMemoryLedgerStore,
    InMemoryRunMarkerStore,
    InMemoryScheduleStore,
)

OWNER_ID = "owner-1"
NOW = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture finance_recurring logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.run_batch()
            logs = captured_logs()
            assert any(r["message"] == "batch_run_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("finance_recurring")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Clock / factories
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(NOW)


def build_rule(**overrides: Any) -> RecurrenceRule:
    """RecurrenceRule with sensible defaults: 500 monthly expense from Jan 15."""
    values: dict[str, Any] = {
        "rule_id": str(uuid4()),
        "owner_id": OWNER_ID,
        "kind": RuleKind.EXPENSE.value,
        "amount": Decimal("500.00"),
        "category": "Rent",
        "frequency": "monthly",
        "start_date": date(2024, 1, 15),
        "description": "Apartment rent",
    }
    values.update(overrides)
    return RecurrenceRule(**values)


def build_savings(**overrides: Any) -> SavingsAutoDeductRule:
    """Monthly 1000 SIP starting Jan 1 with auto-deduct on."""
    values: dict[str, Any] = {
        "savings_id": str(uuid4()),
        "owner_id": OWNER_ID,
        "name": "Index fund SIP",
        "saving_type": "sip",
        "amount": Decimal("1000.00"),
        "frequency": "monthly",
        "start_date": date(2024, 1, 1),
    }
    values.update(overrides)
    return SavingsAutoDeductRule(**values)


@pytest.fixture
def make_rule():
    return build_rule


@pytest.fixture
def make_savings():
    return build_savings


# =============================================================================
# In-memory stores
# =============================================================================


@pytest.fixture
def ledger() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def schedule() -> InMemoryScheduleStore:
    return InMemoryScheduleStore()


@pytest.fixture
def markers() -> InMemoryRunMarkerStore:
    return InMemoryRunMarkerStore()


@pytest.fixture
def leases() -> InMemoryLeaseStore:
    return InMemoryLeaseStore()


class FlakyLedgerStore(InMemoryLedgerStore):
    """In-memory ledger that rejects or raises for chosen entry dates."""

    def __init__(
        self,
        reject_dates: set[date] | None = None,
        raise_dates: dict[date, Exception] | None = None,
    ) -> None:
        super().__init__()
        self.reject_dates = set(reject_dates or ())
        self.raise_dates = dict(raise_dates or {})
        self.calls: list[tuple[RuleKind, date]] = []

    def create_entry(self, kind: RuleKind, payload: dict[str, Any]) -> StoreResult:
        entry_date = payload["date"]
        self.calls.append((RuleKind(kind), entry_date))
        if entry_date in self.raise_dates:
            raise self.raise_dates[entry_date]
        if entry_date in self.reject_dates:
            return StoreResult.failed(f"rejected {entry_date.isoformat()}")
        return super().create_entry(kind, payload)


class UnauthorizedLedgerStore(InMemoryLedgerStore):
    """Ledger that refuses every write for the owner."""

    def create_entry(self, kind: RuleKind, payload: dict[str, Any]) -> StoreResult:
        raise AuthorizationError(OWNER_ID, "session expired")


@pytest.fixture
def flaky_ledger_factory():
    return FlakyLedgerStore


@pytest.fixture
def unauthorized_ledger() -> UnauthorizedLedgerStore:
    return UnauthorizedLedgerStore()


# =============================================================================
# SQLite
# =============================================================================


@pytest.fixture
def sqlite_engine():
    """In-memory SQLite engine with nested-transaction support."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(sqlite_engine):
    """Session on the in-memory SQLite engine; rolled back after each test."""
    SessionLocal = sessionmaker(bind=sqlite_engine, expire_on_commit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
