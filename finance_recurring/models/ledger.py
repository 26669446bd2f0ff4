"""
ORM model for ledger entries (expenses and income).

The SQL ledger store writes here; the engine itself never edits or
deletes an entry once created.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, Date, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from finance_recurring.db.base import TrackedBase


class LedgerEntryModel(TrackedBase):
    """One expense or income record."""

    __tablename__ = "ledger_entries"

    __table_args__ = (
        Index("ix_ledger_entries_owner_date", "owner_id", "entry_date"),
        Index("ix_ledger_entries_recurring_id", "recurring_id"),
    )

    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_method_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    payment_method_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurring_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    source: Mapped[str | None] = mapped_column(String(20), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
