"""
SQLAlchemy-backed store implementations.

Contract:
    All stores share the caller's Session and never call
    ``session.commit()`` -- the caller controls transaction boundaries
    (normally one ``session_scope()`` around a whole batch run).

    Every ledger and schedule write runs inside its own SAVEPOINT, so one
    rejected write rolls back alone and the shared session stays usable
    for the rest of the batch.

Error mapping:
    - ``OperationalError`` (connection lost, database locked) raises
      ``StoreUnavailableError``.
    - Any other ``SQLAlchemyError`` on an entry or watermark write
      returns ``StoreResult.failed(...)``; occurrence-marker writes
      re-raise it after rolling back their savepoint.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from finance_recurring.domain.types import (
    AppliedOccurrence,
    OccurrenceStatus,
    RecurrenceRule,
    RuleKind,
    RuleStatus,
    SavingsAutoDeductRule,
    StoreResult,
)
from finance_recurring.exceptions import RecordNotFoundError, StoreUnavailableError
from finance_recurring.logging_config import get_logger
from finance_recurring.models.ledger import LedgerEntryModel
from finance_recurring.models.run_state import BatchLeaseModel, RunMarkerModel
from finance_recurring.models.schedule import (
    RecurrenceRuleModel,
    SavingsInstrumentModel,
    SavingsOccurrenceModel,
)
from finance_recurring.stores.marker_file import DEFAULT_MARKER_KEY

logger = get_logger("stores.sql")

_LEDGER_FIELDS = (
    "category",
    "description",
    "payment_method",
    "payment_method_id",
    "payment_method_name",
    "is_recurring",
    "recurring_id",
    "source",
    "notes",
)


def _parse_uuid(value: str) -> UUID | None:
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _aware(value: datetime) -> datetime:
    """SQLite drops tzinfo; stored values are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _entry_columns(payload: dict[str, Any]) -> dict[str, Any]:
    columns = {k: payload[k] for k in _LEDGER_FIELDS if k in payload}
    if "amount" in payload:
        columns["amount"] = Decimal(str(payload["amount"]))
    if "date" in payload:
        columns["entry_date"] = payload["date"]
    return columns


# =============================================================================
# Ledger
# =============================================================================


class SqlLedgerStore:
    """LedgerStore writing to ``ledger_entries`` for one owner."""

    def __init__(self, session: Session, owner_id: str) -> None:
        self._session = session
        self._owner_id = owner_id

    def create_entry(self, kind: RuleKind, payload: dict[str, Any]) -> StoreResult:
        model = LedgerEntryModel(
            owner_id=self._owner_id,
            kind=RuleKind(kind).value,
            **_entry_columns(payload),
        )
        savepoint = self._session.begin_nested()
        try:
            self._session.add(model)
            self._session.flush()
            savepoint.commit()
        except OperationalError as exc:
            savepoint.rollback()
            raise StoreUnavailableError("ledger", str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            savepoint.rollback()
            logger.warning(
                "ledger_insert_rejected",
                extra={"kind": RuleKind(kind).value, "error": str(exc)},
            )
            return StoreResult.failed(str(exc))
        return StoreResult.ok(str(model.id))

    def update_entry(self, entry_id: str, partial: dict[str, Any]) -> StoreResult:
        key = _parse_uuid(entry_id)
        model = self._session.get(LedgerEntryModel, key) if key else None
        if model is None or model.owner_id != self._owner_id:
            return StoreResult.failed(f"entry not found: {entry_id}")
        savepoint = self._session.begin_nested()
        try:
            for column, value in _entry_columns(partial).items():
                setattr(model, column, value)
            self._session.flush()
            savepoint.commit()
        except OperationalError as exc:
            savepoint.rollback()
            raise StoreUnavailableError("ledger", str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            savepoint.rollback()
            return StoreResult.failed(str(exc))
        return StoreResult.ok(entry_id)

    def find_entry(self, recurring_id: str, entry_date: date) -> str | None:
        entry_id = self._session.execute(
            select(LedgerEntryModel.id)
            .where(
                LedgerEntryModel.owner_id == self._owner_id,
                LedgerEntryModel.recurring_id == recurring_id,
                LedgerEntryModel.entry_date == entry_date,
            )
            .order_by(LedgerEntryModel.created_at)
            .limit(1)
        ).scalar_one_or_none()
        return str(entry_id) if entry_id is not None else None


# =============================================================================
# Schedule
# =============================================================================


class SqlScheduleStore:
    """ScheduleStore over ``recurring_transactions`` / ``savings``."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_rules(self, owner_id: str) -> list[RecurrenceRule]:
        models = self._session.execute(
            select(RecurrenceRuleModel)
            .where(RecurrenceRuleModel.owner_id == owner_id)
            .order_by(
                RecurrenceRuleModel.start_date.is_(None),
                RecurrenceRuleModel.start_date,
            )
        ).scalars().all()
        return [m.to_dto() for m in models]

    def list_active_savings(self, owner_id: str) -> list[SavingsAutoDeductRule]:
        models = self._session.execute(
            select(SavingsInstrumentModel)
            .where(
                SavingsInstrumentModel.owner_id == owner_id,
                SavingsInstrumentModel.status == RuleStatus.ACTIVE.value,
                SavingsInstrumentModel.auto_deduct == True,  # noqa: E712
            )
            .order_by(
                SavingsInstrumentModel.start_date.is_(None),
                SavingsInstrumentModel.start_date,
            )
        ).scalars().all()
        return [m.to_dto() for m in models]

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
        key = _parse_uuid(rule_id)
        model = self._session.get(RecurrenceRuleModel, key) if key else None
        if model is None:
            return StoreResult.failed(f"rule not found: {rule_id}")
        return self._apply(
            "rule", rule_id, model,
            last_processed_date=last_processed_date,
            next_due_date=next_due_date,
        )

    def update_savings(
        self,
        savings_id: str,
        *,
        last_processed_date: date,
        next_due_date: date | None,
        accumulated_value: Decimal,
    ) -> StoreResult:
        key = _parse_uuid(savings_id)
        model = self._session.get(SavingsInstrumentModel, key) if key else None
        if model is None:
            return StoreResult.failed(f"savings not found: {savings_id}")
        return self._apply(
            "savings", savings_id, model,
            last_processed_date=last_processed_date,
            next_due_date=next_due_date,
            accumulated_value=accumulated_value,
        )

    # -------------------------------------------------------------------------
    # Applied occurrences
    # -------------------------------------------------------------------------

    def _find_occurrence(
        self, savings_id: str, occurrence_date: date,
    ) -> SavingsOccurrenceModel | None:
        key = _parse_uuid(savings_id)
        if key is None:
            return None
        return self._session.execute(
            select(SavingsOccurrenceModel).where(
                SavingsOccurrenceModel.savings_id == key,
                SavingsOccurrenceModel.occurrence_date == occurrence_date,
            )
        ).scalar_one_or_none()

    def get_applied_occurrence(
        self, savings_id: str, occurrence_date: date,
    ) -> AppliedOccurrence | None:
        model = self._find_occurrence(savings_id, occurrence_date)
        return model.to_dto() if model is not None else None

    def record_occurrence_intent(
        self, savings_id: str, occurrence_date: date, amount: Decimal,
    ) -> AppliedOccurrence:
        existing = self._find_occurrence(savings_id, occurrence_date)
        if existing is not None:
            return existing.to_dto()
        key = _parse_uuid(savings_id)
        if key is None:
            raise RecordNotFoundError("Savings", savings_id)
        model = SavingsOccurrenceModel(
            savings_id=key,
            occurrence_date=occurrence_date,
            amount=amount,
            status=OccurrenceStatus.PENDING.value,
        )
        savepoint = self._session.begin_nested()
        try:
            self._session.add(model)
            self._session.flush()
            savepoint.commit()
        except OperationalError as exc:
            savepoint.rollback()
            raise StoreUnavailableError("schedule", str(exc.orig)) from exc
        except IntegrityError:
            # Marker inserted by another writer since the lookup above.
            savepoint.rollback()
            existing = self._find_occurrence(savings_id, occurrence_date)
            if existing is None:
                raise
            return existing.to_dto()
        except SQLAlchemyError:
            savepoint.rollback()
            raise
        return model.to_dto()

    def mark_occurrence_applied(
        self, savings_id: str, occurrence_date: date, entry_id: str | None,
    ) -> AppliedOccurrence:
        model = self._find_occurrence(savings_id, occurrence_date)
        if model is None:
            raise RecordNotFoundError(
                "AppliedOccurrence", f"{savings_id}@{occurrence_date.isoformat()}",
            )
        savepoint = self._session.begin_nested()
        try:
            model.status = OccurrenceStatus.APPLIED.value
            model.entry_id = entry_id
            self._session.flush()
            savepoint.commit()
        except OperationalError as exc:
            savepoint.rollback()
            raise StoreUnavailableError("schedule", str(exc.orig)) from exc
        except SQLAlchemyError:
            savepoint.rollback()
            raise
        return model.to_dto()

    def applied_total(self, savings_id: str) -> Decimal:
        key = _parse_uuid(savings_id)
        if key is None:
            return Decimal("0")
        total = self._session.execute(
            select(func.coalesce(func.sum(SavingsOccurrenceModel.amount), 0)).where(
                SavingsOccurrenceModel.savings_id == key,
                SavingsOccurrenceModel.status == OccurrenceStatus.APPLIED.value,
            )
        ).scalar_one()
        return Decimal(str(total))

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _apply(
        self, record_type: str, record_id: str, model: Any, **values: Any,
    ) -> StoreResult:
        """Set ``values`` on ``model`` and flush them inside a SAVEPOINT."""
        savepoint = self._session.begin_nested()
        try:
            for column, value in values.items():
                setattr(model, column, value)
            self._session.flush()
            savepoint.commit()
        except OperationalError as exc:
            savepoint.rollback()
            raise StoreUnavailableError("schedule", str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            savepoint.rollback()
            logger.warning(
                "schedule_update_rejected",
                extra={"record_type": record_type, "record_id": record_id},
            )
            return StoreResult.failed(str(exc))
        return StoreResult.ok(record_id)


# =============================================================================
# Run marker / lease
# =============================================================================


class SqlRunMarkerStore:
    """RunMarkerStore kept as one row of ``run_markers``."""

    def __init__(self, session: Session, key: str = DEFAULT_MARKER_KEY) -> None:
        self._session = session
        self._key = key

    def _row(self) -> RunMarkerModel | None:
        return self._session.execute(
            select(RunMarkerModel).where(RunMarkerModel.key == self._key)
        ).scalar_one_or_none()

    def get(self) -> datetime | None:
        row = self._row()
        return _aware(row.value) if row is not None else None

    def set(self, value: datetime) -> None:
        row = self._row()
        stored = value.astimezone(timezone.utc)
        if row is None:
            self._session.add(RunMarkerModel(key=self._key, value=stored))
        else:
            row.value = stored
        self._session.flush()

    def clear(self) -> None:
        self._session.execute(
            delete(RunMarkerModel).where(RunMarkerModel.key == self._key)
        )
        self._session.flush()


class SqlLeaseStore:
    """LeaseStore over ``batch_leases`` (one row per owner)."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def acquire(
        self, owner_id: str, holder: str, now: datetime, ttl_seconds: int,
    ) -> bool:
        now_utc = now.astimezone(timezone.utc)
        expires_at = now_utc + timedelta(seconds=ttl_seconds)

        savepoint = self._session.begin_nested()
        try:
            row = self._session.execute(
                select(BatchLeaseModel)
                .where(BatchLeaseModel.owner_id == owner_id)
                .with_for_update()
            ).scalar_one_or_none()

            if row is not None:
                if row.holder != holder and _aware(row.expires_at) > now_utc:
                    savepoint.rollback()
                    return False
                row.holder = holder
                row.expires_at = expires_at
            else:
                self._session.add(
                    BatchLeaseModel(
                        owner_id=owner_id, holder=holder, expires_at=expires_at,
                    )
                )
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            # Another process inserted the owner's row first.
            savepoint.rollback()
            return False
        return True

    def release(self, owner_id: str, holder: str) -> None:
        self._session.execute(
            delete(BatchLeaseModel).where(
                BatchLeaseModel.owner_id == owner_id,
                BatchLeaseModel.holder == holder,
            )
        )
        self._session.flush()
