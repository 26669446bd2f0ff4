"""
SavingsAutoDeductProcessor -- periodic contributions into savings instruments.

Contract:
    ``process(savings, as_of)`` creates one ``expense`` ledger entry tagged
    ``source="savings"`` per due contribution and keeps the instrument's
    accumulated value in step with the contributions actually applied.

Two-phase intent (per due date):
    1. ``record_occurrence_intent()``  -- pending marker for (instrument, date)
    2. ``LedgerStore.create_entry()``  -- the expense entry
    3. ``mark_occurrence_applied()``   -- marker flipped, linked to the entry

    An occurrence whose marker is already ``applied`` is not written again,
    so a lost watermark update cannot double-deduct on the next run.  A
    ``pending`` marker is first matched against the ledger with
    ``find_entry()``; an entry found there is linked, not re-created.

    If step 3 fails the entry still counts as written, but the watermark
    is held before that date so the next run reconciles the marker and
    the accumulator catches up with the ledger.

Invariants enforced:
    - accumulated_value == opening_value + sum(applied markers), written
      in the same ``update_savings()`` call as the watermark.
    - Only ``active`` instruments with auto-deduct on and a recurring
      frequency are processed; ``one-time`` instruments never are.
    - Watermark policy identical to RuleProcessor (shared ``catch_up()``).
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from datetime import date, datetime
from decimal import Decimal

from finance_recurring.domain.occurrences import as_day, due_dates, next_due_after_watermark
from finance_recurring.domain.types import (
    DEFAULT_WATERMARK_POLICY,
    CreatedTransaction,
    Frequency,
    OccurrenceStatus,
    RuleKind,
    RuleOutcome,
    RuleProcessingResult,
    RuleSource,
    RuleStatus,
    SavingsAutoDeductRule,
    StoreResult,
    WatermarkPolicy,
)
from finance_recurring.domain.validation import validate_savings
from finance_recurring.exceptions import AuthorizationError, MalformedRuleError
from finance_recurring.logging_config import get_logger
from finance_recurring.services.entry_writers import (
    DEFAULT_PAYMENT_METHOD,
    DEFAULT_SAVINGS_CATEGORY,
    savings_entry_request,
    writer_for,
)
from finance_recurring.services.rule_processor import (
    catch_up,
    describe_error,
    format_failures,
)
from finance_recurring.stores.base import LedgerStore, ScheduleStore

logger = get_logger("services.savings_processor")


def hold_before(
    dates: Sequence[date], pending: Collection[date], watermark: date | None,
) -> date | None:
    """Latest watermark at or below ``watermark`` that leaves ``pending`` due.

    None means the watermark must not move.
    """
    if watermark is None or not pending:
        return watermark
    first = min(pending)
    earlier = [d for d in dates if d < first]
    return min(earlier[-1], watermark) if earlier else None


def is_auto_deductible(savings: SavingsAutoDeductRule) -> bool:
    """True if the instrument takes part in auto-deduct processing at all."""
    return (
        savings.status == RuleStatus.ACTIVE.value
        and bool(savings.auto_deduct)
        and savings.frequency != Frequency.ONE_TIME.value
    )


class SavingsAutoDeductProcessor:
    """Catch-up processing for savings instruments with auto-deduct."""

    def __init__(
        self,
        ledger: LedgerStore,
        schedule: ScheduleStore,
        policy: WatermarkPolicy = DEFAULT_WATERMARK_POLICY,
        category: str = DEFAULT_SAVINGS_CATEGORY,
        default_payment_method: str = DEFAULT_PAYMENT_METHOD,
    ):
        self._ledger = ledger
        self._schedule = schedule
        self._policy = WatermarkPolicy(policy)
        self._category = category
        self._default_payment_method = default_payment_method
        self._writer = writer_for(RuleKind.EXPENSE)

    def process(
        self, savings: SavingsAutoDeductRule, as_of: date | datetime,
    ) -> RuleProcessingResult:
        """Deduct the instrument's due contributions and advance its watermark."""
        today = as_day(as_of)

        if not is_auto_deductible(savings):
            logger.debug(
                "savings_skipped",
                extra={
                    "rule_id": savings.savings_id,
                    "status": savings.status,
                    "auto_deduct": savings.auto_deduct,
                    "frequency": savings.frequency,
                },
            )
            return self._result(savings, RuleOutcome.SKIPPED)

        try:
            schedule = validate_savings(savings)
            dates = due_dates(
                schedule.start_date,
                schedule.frequency,
                schedule.last_processed_date,
                schedule.end_date,
                as_of=today,
            )
        except MalformedRuleError as exc:
            logger.warning(
                "savings_malformed",
                extra={
                    "rule_id": savings.savings_id,
                    "field": exc.field,
                    "reason": exc.reason,
                },
                exc_info=True,
            )
            return self._result(
                savings, RuleOutcome.MALFORMED, errors=(describe_error(exc),),
            )

        if not dates:
            return self._result(savings, RuleOutcome.NOTHING_DUE)

        amount = Decimal(str(savings.amount))
        reused: set[date] = set()
        unreconciled: set[date] = set()

        def write(due: date) -> StoreResult:
            marker = self._schedule.get_applied_occurrence(savings.savings_id, due)
            if marker is not None and marker.status is OccurrenceStatus.APPLIED:
                logger.info(
                    "savings_occurrence_already_applied",
                    extra={
                        "rule_id": savings.savings_id,
                        "occurrence_date": due,
                        "entry_id": marker.entry_id,
                    },
                )
                reused.add(due)
                return StoreResult.ok(marker.entry_id)

            if marker is None:
                self._schedule.record_occurrence_intent(savings.savings_id, due, amount)
            else:
                # Pending: the entry may exist from a run that lost the flip.
                entry_id = self._ledger.find_entry(savings.savings_id, due)
                if entry_id is not None:
                    logger.info(
                        "savings_occurrence_reconciled",
                        extra={
                            "rule_id": savings.savings_id,
                            "occurrence_date": due,
                            "entry_id": entry_id,
                        },
                    )
                    reused.add(due)
                    if not self._mark_applied(savings.savings_id, due, entry_id):
                        unreconciled.add(due)
                    return StoreResult.ok(entry_id)

            request = savings_entry_request(
                savings, due, self._category, self._default_payment_method,
            )
            result = self._writer.write(self._ledger, request)
            if not result.success:
                logger.warning(
                    "ledger_write_failed",
                    extra={
                        "rule_id": savings.savings_id,
                        "entry": self._writer.describe(request.description, due),
                        "error": result.error,
                    },
                )
                return result
            if not self._mark_applied(savings.savings_id, due, result.id):
                unreconciled.add(due)
            return result

        run = catch_up(dates, write, self._policy)
        errors = format_failures(run.failed)
        errors += tuple(
            f"{d.isoformat()}: entry written, occurrence marker still pending"
            for d in sorted(unreconciled)
        )
        target = hold_before(dates, unreconciled, run.watermark)
        watermark = schedule.last_processed_date
        next_due = savings.next_due_date
        accumulated = savings.accumulated_value

        if target is not None:
            new_next_due = next_due_after_watermark(
                schedule.start_date, schedule.frequency, target,
                schedule.end_date,
            )
            try:
                new_accumulated = (
                    Decimal(str(savings.opening_value))
                    + self._schedule.applied_total(savings.savings_id)
                )
                stored = self._schedule.update_savings(
                    savings.savings_id,
                    last_processed_date=target,
                    next_due_date=new_next_due,
                    accumulated_value=new_accumulated,
                )
                update_error = None if stored.success else (
                    stored.error or "savings update rejected"
                )
            except AuthorizationError:
                raise
            except Exception as exc:
                update_error = describe_error(exc)

            if update_error is None:
                watermark = target
                next_due = new_next_due
                accumulated = new_accumulated
            else:
                logger.error(
                    "watermark_update_failed",
                    extra={
                        "rule_id": savings.savings_id,
                        "watermark": target,
                        "error": update_error,
                    },
                )
                errors += (f"watermark {target.isoformat()}: {update_error}",)

        skipped: tuple[date, ...] = ()
        if target is not None:
            skipped = tuple(d for d, _ in run.failed if d <= target)

        created = tuple(
            CreatedTransaction(
                rule_id=savings.savings_id,
                source=RuleSource.SAVINGS,
                kind=RuleKind.EXPENSE,
                description=savings.name,
                amount=amount,
                occurrence_date=d,
                entry_id=entry_id,
            )
            for d, entry_id in run.written
            if d not in reused
        )

        result = RuleProcessingResult(
            rule_id=savings.savings_id,
            source=RuleSource.SAVINGS,
            outcome=run.outcome,
            due_dates=tuple(dates),
            created=created,
            errors=errors,
            skipped_dates=skipped,
            watermark=watermark,
            next_due_date=next_due,
            accumulated_value=accumulated,
        )

        logger.info(
            "savings_processed",
            extra={
                "rule_id": savings.savings_id,
                "outcome": result.outcome.value,
                "created_count": result.created_count,
                "already_applied": len(reused),
                "unreconciled": len(unreconciled),
                "failed": len(run.failed),
                "accumulated_value": accumulated,
                "watermark": watermark,
                "policy": self._policy.value,
            },
        )
        return result

    def _mark_applied(self, savings_id: str, due: date, entry_id: str | None) -> bool:
        """Flip the occurrence marker; False leaves it pending for the next run."""
        try:
            self._schedule.mark_occurrence_applied(savings_id, due, entry_id)
        except AuthorizationError:
            raise
        except Exception as exc:
            logger.error(
                "savings_marker_update_failed",
                extra={
                    "rule_id": savings_id,
                    "occurrence_date": due,
                    "entry_id": entry_id,
                    "error": describe_error(exc),
                },
            )
            return False
        return True

    @staticmethod
    def _result(
        savings: SavingsAutoDeductRule,
        outcome: RuleOutcome,
        errors: tuple[str, ...] = (),
    ) -> RuleProcessingResult:
        return RuleProcessingResult(
            rule_id=savings.savings_id,
            source=RuleSource.SAVINGS,
            outcome=outcome,
            errors=errors,
            watermark=savings.last_processed_date,
            next_due_date=savings.next_due_date,
            accumulated_value=savings.accumulated_value,
        )
