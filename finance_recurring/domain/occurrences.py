"""
Pure occurrence generation for recurrence rules.

Contract:
    ``due_dates(start, frequency, last_processed, end, as_of=...)`` returns
    the ordered dates that are due as of ``as_of`` and were not yet
    materialized.  PURE -- no I/O, no clock reads; the caller supplies
    ``as_of``.

Occurrence grid:
    Occurrence *n* of a rule is ``start + n * step``.  Day-based steps
    (daily / weekly / biweekly) add days.  Month-based steps (monthly /
    quarterly / yearly) add ``n * k`` calendar months to the *start date*
    and clamp the day to the month's length, so a rule starting Jan 31
    lands on Feb 28 (29 in leap years) and returns to Mar 31.  Stepping
    from the previous occurrence instead would drift to the 28th forever.

Boundaries:
    - The watermark itself is never re-emitted (strict advance).
    - A candidate equal to ``as_of`` or ``end_date`` is due (inclusive).
    - Everything compares calendar days; datetimes are reduced to
      ``.date()`` first.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterator
from datetime import date, datetime, timedelta

from finance_recurring.domain.types import Frequency


# =============================================================================
# Step table
# =============================================================================

_DAY_STEPS: dict[Frequency, int] = {
    Frequency.DAILY: 1,
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
}

_MONTH_STEPS: dict[Frequency, int] = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}


def _coerce_frequency(frequency: Frequency | str) -> Frequency:
    """Return the Frequency for ``frequency``.

    Raises:
        ValueError: If the value is unknown or has no recurrence step.
    """
    freq = Frequency(frequency)
    if freq not in _DAY_STEPS and freq not in _MONTH_STEPS:
        raise ValueError(f"Frequency '{freq.value}' has no recurrence step")
    return freq


def as_day(value: date | datetime) -> date:
    """Reduce a date or datetime to its calendar day."""
    if isinstance(value, datetime):
        return value.date()
    return value


# =============================================================================
# Calendar arithmetic
# =============================================================================


def add_months(d: date, months: int) -> date:
    """Add ``months`` calendar months to ``d``, clamping the day to month end."""
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def occurrence_at(start_date: date, frequency: Frequency | str, index: int) -> date:
    """Return occurrence number ``index`` (0 = start date) of a rule."""
    if index < 0:
        raise ValueError(f"Occurrence index must be >= 0, got {index}")
    freq = _coerce_frequency(frequency)
    if freq in _DAY_STEPS:
        return start_date + timedelta(days=_DAY_STEPS[freq] * index)
    return add_months(start_date, _MONTH_STEPS[freq] * index)


def first_index_after(
    start_date: date, frequency: Frequency | str, after: date,
) -> int:
    """Smallest occurrence index whose date is strictly after ``after``."""
    freq = _coerce_frequency(frequency)
    if after < start_date:
        return 0

    if freq in _DAY_STEPS:
        return (after - start_date).days // _DAY_STEPS[freq] + 1

    step = _MONTH_STEPS[freq]
    months_between = (
        (after.year - start_date.year) * 12 + after.month - start_date.month
    )
    # Start one step early: that occurrence is in an earlier month than
    # ``after``, so it is never past it.
    index = max(months_between // step - 1, 0)
    while add_months(start_date, step * index) <= after:
        index += 1
    return index


def next_occurrence_after(
    start_date: date, frequency: Frequency | str, after: date,
) -> date:
    """The first occurrence strictly after ``after``."""
    return occurrence_at(
        start_date, frequency, first_index_after(start_date, frequency, after),
    )


def first_occurrence_on_or_after(
    start_date: date, frequency: Frequency | str, day: date,
) -> date:
    """The first occurrence on or after ``day``."""
    return next_occurrence_after(start_date, frequency, day - timedelta(days=1))


def iter_occurrences(
    start_date: date, frequency: Frequency | str, from_index: int = 0,
) -> Iterator[date]:
    """Unbounded iterator over the occurrence grid, from ``from_index`` on."""
    freq = _coerce_frequency(frequency)
    index = from_index
    while True:
        yield occurrence_at(start_date, freq, index)
        index += 1


# =============================================================================
# Due dates
# =============================================================================


def due_dates(
    start_date: date | datetime,
    frequency: Frequency | str,
    last_processed_date: date | datetime | None = None,
    end_date: date | datetime | None = None,
    *,
    as_of: date | datetime,
) -> list[date]:
    """Return the dates due as of ``as_of`` that are not yet materialized.

    Args:
        start_date: First occurrence of the rule.
        frequency: One of the six recurring frequencies.
        last_processed_date: Watermark; the last date already materialized.
        end_date: Last day on which an occurrence may fall (inclusive).
        as_of: "Today" (inclusive).

    Returns:
        Strictly increasing list of dates, possibly empty.

    Raises:
        ValueError: If ``frequency`` is unknown or one-time.
    """
    start = as_day(start_date)
    upper = as_day(as_of)
    if end_date is not None:
        upper = min(upper, as_day(end_date))

    first = 0
    if last_processed_date is not None:
        first = first_index_after(start, frequency, as_day(last_processed_date))

    result: list[date] = []
    for candidate in iter_occurrences(start, frequency, first):
        if candidate > upper:
            break
        result.append(candidate)
    return result


def next_due_after_watermark(
    start_date: date,
    frequency: Frequency | str,
    watermark: date,
    end_date: date | None = None,
) -> date | None:
    """Next expected due date after ``watermark``; None once past the end date."""
    candidate = next_occurrence_after(start_date, frequency, watermark)
    if end_date is not None and candidate > end_date:
        return None
    return candidate
