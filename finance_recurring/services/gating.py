"""
GatingCheck -- decides whether a full batch pass is worth running.

Contract:
    ``should_run_full_pass()`` is read-only.  It returns True when:
      - there is no run marker, or
      - the marker's calendar day differs from today, or
      - some active rule or auto-deduct savings instrument has due dates.

    Any store error while inspecting makes it return True (fail open):
    a spurious full pass is harmless, a missed one is not.  Malformed
    rules never count as pending.
"""

from __future__ import annotations

from datetime import date

from finance_recurring.domain.clock import Clock
from finance_recurring.domain.occurrences import due_dates
from finance_recurring.domain.validation import validate_rule, validate_savings
from finance_recurring.exceptions import MalformedRuleError
from finance_recurring.logging_config import get_logger
from finance_recurring.services.rule_processor import INACTIVE_STATUSES
from finance_recurring.services.savings_processor import is_auto_deductible
from finance_recurring.stores.base import RunMarkerStore, ScheduleStore

logger = get_logger("services.gating")


class GatingCheck:
    """Cheap pre-check run before every non-forced batch."""

    def __init__(
        self,
        marker_store: RunMarkerStore,
        schedule_store: ScheduleStore,
        clock: Clock,
        owner_id: str,
    ):
        self._markers = marker_store
        self._schedule = schedule_store
        self._clock = clock
        self._owner_id = owner_id

    def should_run_full_pass(self) -> bool:
        today = self._clock.today()
        try:
            marker = self._markers.get()
            if marker is None:
                logger.debug("gating_no_marker")
                return True
            if marker.astimezone(self._clock.now().tzinfo).date() != today:
                logger.debug("gating_new_day", extra={"marker": marker})
                return True
            pending = self._has_pending(today)
        except Exception as exc:
            logger.warning(
                "gating_store_error",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return True

        logger.debug("gating_checked", extra={"pending": pending})
        return pending

    def _has_pending(self, today: date) -> bool:
        for rule in self._schedule.list_rules(self._owner_id):
            if rule.status in INACTIVE_STATUSES:
                continue
            try:
                schedule = validate_rule(rule)
            except MalformedRuleError:
                continue
            if due_dates(
                schedule.start_date, schedule.frequency,
                schedule.last_processed_date, schedule.end_date, as_of=today,
            ):
                return True

        for savings in self._schedule.list_active_savings(self._owner_id):
            if not is_auto_deductible(savings):
                continue
            try:
                schedule = validate_savings(savings)
            except MalformedRuleError:
                continue
            if due_dates(
                schedule.start_date, schedule.frequency,
                schedule.last_processed_date, schedule.end_date, as_of=today,
            ):
                return True

        return False
