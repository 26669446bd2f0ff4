"""
BatchOrchestrator -- entry point for one owner's recurring catch-up batch.

Contract:
    ``run_batch(force=False)``   gate, lease, process every rule and savings
                                 instrument, write the run marker.
    ``reset_run_marker()``       forget the last run so the next call runs
                                 a full pass.
    ``list_upcoming(days)``      read-only projection of next due dates.

Architecture: finance_recurring (top-level).  Wires the stores, the clock,
    the gating check and both processors.  ``from_session()`` composes the
    SQL-backed stores; tests pass in-memory stores directly.

Invariants enforced:
    - At most one batch per owner at a time (lease; fail fast).
    - Rules are processed sequentially; one rule's failure never aborts
      the others.
    - ``AuthorizationError`` aborts the whole batch and propagates; the
      run marker is not written and the lease is released.
    - All timestamps come from the injected Clock.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy.orm import Session

from finance_recurring.config import EngineSettings
from finance_recurring.domain.clock import Clock, SystemClock
from finance_recurring.domain.occurrences import (
    first_occurrence_on_or_after,
    next_occurrence_after,
)
from finance_recurring.domain.types import (
    BatchRunResult,
    RuleOutcome,
    RuleProcessingResult,
    RuleSource,
    UpcomingOccurrence,
)
from finance_recurring.domain.validation import validate_rule
from finance_recurring.exceptions import AuthorizationError, MalformedRuleError
from finance_recurring.logging_config import LogContext, get_logger
from finance_recurring.services.gating import GatingCheck
from finance_recurring.services.rule_processor import (
    INACTIVE_STATUSES,
    RuleProcessor,
    describe_error,
)
from finance_recurring.services.savings_processor import SavingsAutoDeductProcessor
from finance_recurring.stores.base import (
    LeaseStore,
    LedgerStore,
    RunMarkerStore,
    ScheduleStore,
)
from finance_recurring.stores.marker_file import FileRunMarkerStore
from finance_recurring.stores.sql import (
    SqlLeaseStore,
    SqlLedgerStore,
    SqlRunMarkerStore,
    SqlScheduleStore,
)

logger = get_logger("orchestrator")

SKIP_ALREADY_PROCESSED = "already_processed_today"
SKIP_ALREADY_RUNNING = "already_running"


class BatchOrchestrator:
    """Recurring catch-up batch for a single owner.

    Non-goals:
        - Does NOT manage session lifecycle -- caller controls commits.
        - Does NOT schedule itself -- callers invoke ``run_batch()`` on
          app open, on a timer, or from the CLI.
    """

    def __init__(
        self,
        owner_id: str,
        ledger: LedgerStore,
        schedule: ScheduleStore,
        marker_store: RunMarkerStore,
        lease_store: LeaseStore,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        self._owner_id = owner_id
        self._schedule = schedule
        self._markers = marker_store
        self._leases = lease_store
        self._clock = clock or SystemClock()
        self._settings = settings or EngineSettings()

        policy = self._settings.watermark_policy
        self._gating = GatingCheck(marker_store, schedule, self._clock, owner_id)
        self._rules = RuleProcessor(
            ledger,
            schedule,
            policy=policy,
            default_payment_method=self._settings.default_payment_method,
        )
        self._savings = SavingsAutoDeductProcessor(
            ledger,
            schedule,
            policy=policy,
            category=self._settings.savings_category,
            default_payment_method=self._settings.default_payment_method,
        )

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session(
        cls,
        session: Session,
        owner_id: str,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        marker_store: RunMarkerStore | None = None,
    ) -> BatchOrchestrator:
        """Create an orchestrator backed by the SQL stores.

        Args:
            session: SQLAlchemy session shared by every store.
            owner_id: Owner whose rules are processed.
            clock: Optional clock for deterministic testing.
            settings: Optional settings; defaults to ``EngineSettings()``.
            marker_store: Optional run marker override.  If None, uses the
                JSON file at ``settings.marker_path`` when set, otherwise
                a row in ``run_markers``.
        """
        effective = settings or EngineSettings()
        if marker_store is None:
            if effective.marker_path:
                marker_store = FileRunMarkerStore(
                    effective.marker_path, effective.marker_key,
                )
            else:
                marker_store = SqlRunMarkerStore(session, effective.marker_key)

        return cls(
            owner_id=owner_id,
            ledger=SqlLedgerStore(session, owner_id),
            schedule=SqlScheduleStore(session),
            marker_store=marker_store,
            lease_store=SqlLeaseStore(session),
            clock=clock,
            settings=effective,
        )

    # -------------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------------

    def run_batch(self, force: bool = False) -> BatchRunResult:
        """Process every due occurrence for the owner.

        Raises:
            AuthorizationError: If the stores reject the owner; nothing after
                the failing call runs and the run marker is left unchanged.
        """
        run_id = str(uuid4())
        start_time = time.monotonic()
        started_at = self._clock.now()

        with LogContext.bind(run_id=run_id, owner_id=self._owner_id):
            if not force and not self._gating.should_run_full_pass():
                logger.info("batch_run_skipped", extra={"reason": SKIP_ALREADY_PROCESSED})
                return self._skipped(run_id, SKIP_ALREADY_PROCESSED, started_at)

            acquired = self._leases.acquire(
                self._owner_id,
                run_id,
                self._clock.now(),
                self._settings.lease_ttl_seconds,
            )
            if not acquired:
                logger.warning("batch_run_skipped", extra={"reason": SKIP_ALREADY_RUNNING})
                return self._skipped(run_id, SKIP_ALREADY_RUNNING, started_at)

            logger.info(
                "batch_run_started",
                extra={"force": force, "policy": self._settings.watermark_policy.value},
            )
            try:
                results = self._process_all()
                self._markers.set(self._clock.now())
            except AuthorizationError as exc:
                logger.error(
                    "batch_run_aborted",
                    extra={"error_code": exc.code, "reason": exc.reason},
                )
                raise
            finally:
                self._leases.release(self._owner_id, run_id)

            completed_at = self._clock.now()
            result = BatchRunResult(
                run_id=run_id,
                rule_results=tuple(results),
                started_at=started_at,
                completed_at=completed_at,
                duration_ms=int((time.monotonic() - start_time) * 1000),
            )
            logger.info(
                "batch_run_completed",
                extra={
                    "rules": len(result.rule_results),
                    "created_count": result.total_created,
                    "rules_with_errors": len(result.errors),
                    "duration_ms": result.duration_ms,
                },
            )
            return result

    def _process_all(self) -> list[RuleProcessingResult]:
        today = self._clock.today()
        results: list[RuleProcessingResult] = []

        for rule in self._schedule.list_rules(self._owner_id):
            with LogContext.bind(rule_id=rule.rule_id):
                results.append(self._guarded(
                    rule.rule_id, RuleSource.RECURRING,
                    lambda: self._rules.process(rule, today),
                ))

        for savings in self._schedule.list_active_savings(self._owner_id):
            with LogContext.bind(rule_id=savings.savings_id):
                results.append(self._guarded(
                    savings.savings_id, RuleSource.SAVINGS,
                    lambda: self._savings.process(savings, today),
                ))

        return results

    @staticmethod
    def _guarded(
        rule_id: str,
        source: RuleSource,
        process: Callable[[], RuleProcessingResult],
    ) -> RuleProcessingResult:
        """Run one processor call; unexpected errors fail only that rule."""
        try:
            return process()
        except AuthorizationError:
            raise
        except Exception as exc:
            logger.exception(
                "rule_processing_failed",
                extra={"rule_id": rule_id, "source": source.value},
            )
            return RuleProcessingResult(
                rule_id=rule_id,
                source=source,
                outcome=RuleOutcome.FAILED,
                errors=(describe_error(exc),),
            )

    def _skipped(
        self, run_id: str, reason: str, started_at: datetime,
    ) -> BatchRunResult:
        return BatchRunResult(
            run_id=run_id,
            run_skipped=True,
            skip_reason=reason,
            started_at=started_at,
            completed_at=self._clock.now(),
        )

    # -------------------------------------------------------------------------
    # Marker / projection
    # -------------------------------------------------------------------------

    def reset_run_marker(self) -> None:
        """Clear the run marker so the next non-forced batch runs fully."""
        self._markers.clear()
        logger.info("run_marker_reset", extra={"owner_id": self._owner_id})

    def list_upcoming(self, days_ahead: int | None = None) -> list[UpcomingOccurrence]:
        """Next due date of each live recurrence rule within ``days_ahead`` days.

        Read-only.  Rules never processed project from today; the rest
        project from their watermark, so an overdue rule shows a negative
        ``days_until``.
        """
        days = self._settings.upcoming_days if days_ahead is None else days_ahead
        today = self._clock.today()
        horizon = today + timedelta(days=days)
        upcoming: list[UpcomingOccurrence] = []

        for rule in self._schedule.list_rules(self._owner_id):
            if rule.status in INACTIVE_STATUSES:
                continue
            try:
                schedule = validate_rule(rule)
            except MalformedRuleError:
                continue

            if schedule.last_processed_date is not None:
                next_due = next_occurrence_after(
                    schedule.start_date,
                    schedule.frequency,
                    schedule.last_processed_date,
                )
            else:
                next_due = first_occurrence_on_or_after(
                    schedule.start_date, schedule.frequency, today,
                )

            if schedule.end_date is not None and next_due > schedule.end_date:
                continue
            if next_due > horizon:
                continue

            upcoming.append(UpcomingOccurrence(
                rule_id=rule.rule_id,
                kind=rule.kind,
                description=rule.description,
                amount=rule.amount,
                category=rule.category,
                frequency=rule.frequency,
                next_due_date=next_due,
                days_until=(next_due - today).days,
            ))

        upcoming.sort(key=lambda u: (u.next_due_date, u.rule_id))
        return upcoming

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def settings(self) -> EngineSettings:
        return self._settings
