"""
ORM models for recurrence rules, savings instruments and their
applied-occurrence markers.

Contract:
    Each model has ``to_dto()`` / ``from_dto()`` round-trip methods.
    ``frequency`` / ``kind`` / ``status`` are stored as plain strings and
    passed through unchanged so that bad rows surface as
    ``MalformedRuleError`` in the processors, not as load failures.

Invariants enforced:
    - (savings_id, occurrence_date) is UNIQUE on savings_occurrences: one
      marker per occurrence, which makes re-runs idempotent for savings.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Date, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from finance_recurring.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from finance_recurring.domain.types import (
        AppliedOccurrence,
        RecurrenceRule,
        SavingsAutoDeductRule,
    )


def _to_uuid(value: str | None) -> UUID:
    return UUID(value) if value else uuid4()


class RecurrenceRuleModel(TrackedBase):
    """Persistent recurring transaction template."""

    __tablename__ = "recurring_transactions"

    __table_args__ = (
        Index("ix_recurring_transactions_owner", "owner_id"),
        Index("ix_recurring_transactions_owner_start", "owner_id", "start_date"),
    )

    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    frequency: Mapped[str] = mapped_column(String(20), nullable=False)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_method_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    payment_method_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_processed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    def to_dto(self) -> RecurrenceRule:
        from finance_recurring.domain.types import RecurrenceRule

        return RecurrenceRule(
            rule_id=str(self.id),
            owner_id=self.owner_id,
            kind=self.kind,
            amount=self.amount,
            category=self.category,
            description=self.description,
            frequency=self.frequency,
            start_date=self.start_date,
            end_date=self.end_date,
            status=self.status,
            payment_method=self.payment_method,
            payment_method_id=self.payment_method_id,
            payment_method_name=self.payment_method_name,
            notes=self.notes,
            last_processed_date=self.last_processed_date,
            next_due_date=self.next_due_date,
        )

    @classmethod
    def from_dto(cls, dto: RecurrenceRule) -> RecurrenceRuleModel:
        return cls(
            id=_to_uuid(dto.rule_id),
            owner_id=dto.owner_id,
            kind=dto.kind,
            amount=dto.amount,
            category=dto.category,
            description=dto.description,
            frequency=dto.frequency,
            start_date=dto.start_date,
            end_date=dto.end_date,
            status=dto.status,
            payment_method=dto.payment_method,
            payment_method_id=dto.payment_method_id,
            payment_method_name=dto.payment_method_name,
            notes=dto.notes,
            last_processed_date=dto.last_processed_date,
            next_due_date=dto.next_due_date,
        )


class SavingsInstrumentModel(TrackedBase):
    """Persistent savings instrument (SIP, RD, FD, ...)."""

    __tablename__ = "savings"

    __table_args__ = (
        Index("ix_savings_owner_status", "owner_id", "status"),
    )

    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    saving_type: Mapped[str] = mapped_column(String(50), default="", nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    frequency: Mapped[str] = mapped_column(String(20), nullable=False)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    maturity_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    auto_deduct: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    opening_value: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    accumulated_value: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    last_processed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    def to_dto(self) -> SavingsAutoDeductRule:
        from finance_recurring.domain.types import SavingsAutoDeductRule

        return SavingsAutoDeductRule(
            savings_id=str(self.id),
            owner_id=self.owner_id,
            name=self.name,
            saving_type=self.saving_type,
            amount=self.amount,
            frequency=self.frequency,
            start_date=self.start_date,
            maturity_date=self.maturity_date,
            status=self.status,
            auto_deduct=self.auto_deduct,
            opening_value=self.opening_value,
            accumulated_value=self.accumulated_value,
            last_processed_date=self.last_processed_date,
            next_due_date=self.next_due_date,
        )

    @classmethod
    def from_dto(cls, dto: SavingsAutoDeductRule) -> SavingsInstrumentModel:
        return cls(
            id=_to_uuid(dto.savings_id),
            owner_id=dto.owner_id,
            name=dto.name,
            saving_type=dto.saving_type,
            amount=dto.amount,
            frequency=dto.frequency,
            start_date=dto.start_date,
            maturity_date=dto.maturity_date,
            status=dto.status,
            auto_deduct=dto.auto_deduct,
            opening_value=dto.opening_value,
            accumulated_value=dto.accumulated_value,
            last_processed_date=dto.last_processed_date,
            next_due_date=dto.next_due_date,
        )


class SavingsOccurrenceModel(TrackedBase):
    """One applied (or pending) auto-deduct occurrence of a savings instrument."""

    __tablename__ = "savings_occurrences"

    __table_args__ = (
        UniqueConstraint(
            "savings_id", "occurrence_date", name="uq_savings_occurrence",
        ),
        Index("ix_savings_occurrences_status", "savings_id", "status"),
    )

    savings_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("savings.id", ondelete="CASCADE"),
        nullable=False,
    )
    occurrence_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    entry_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def to_dto(self) -> AppliedOccurrence:
        from finance_recurring.domain.types import AppliedOccurrence, OccurrenceStatus

        return AppliedOccurrence(
            savings_id=str(self.savings_id),
            occurrence_date=self.occurrence_date,
            amount=self.amount,
            status=OccurrenceStatus(self.status),
            entry_id=self.entry_id,
        )
