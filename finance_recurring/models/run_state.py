"""
ORM models for batch run bookkeeping: the run marker and per-owner leases.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from finance_recurring.db.base import TrackedBase


class RunMarkerModel(TrackedBase):
    """Last full batch run, one row per marker key."""

    __tablename__ = "run_markers"

    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    value: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class BatchLeaseModel(TrackedBase):
    """Advisory lease: at most one running batch per owner."""

    __tablename__ = "batch_leases"

    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    holder: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
