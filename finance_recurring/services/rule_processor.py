"""
RuleProcessor -- materializes the due occurrences of one recurrence rule.

Contract:
    ``process(rule, as_of)`` creates one ledger entry per due date (in
    date order) and then moves the rule's watermark with at most one
    ``update_rule()`` call.  Returns an immutable ``RuleProcessingResult``.

Architecture:
    finance_recurring/services.  Imports from finance_recurring.domain,
    finance_recurring.stores.base and the entry writers.  The savings
    processor shares ``catch_up()`` so both apply the same watermark
    policy.

Invariants enforced:
    - Paused / inactive rules make zero store calls.
    - No due dates -> zero store calls.
    - The watermark is always a generated occurrence, never past ``as_of``,
      and never moves backwards.
    - One failed write never aborts the rest of the batch; only
      ``AuthorizationError`` propagates.

Watermark policies:
    SKIP_FORWARD         attempt every due date; if at least one write
                         succeeded, advance to the last due date and report
                         the failed dates as ``skipped_dates``.
    RETRY_UNTIL_WRITTEN  stop at the first failed write; advance only past
                         the written prefix so the failed date is retried.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from finance_recurring.domain.occurrences import as_day, due_dates, next_due_after_watermark
from finance_recurring.domain.types import (
    DEFAULT_WATERMARK_POLICY,
    CreatedTransaction,
    RecurrenceRule,
    RuleKind,
    RuleOutcome,
    RuleProcessingResult,
    RuleSource,
    RuleStatus,
    StoreResult,
    WatermarkPolicy,
)
from finance_recurring.domain.validation import validate_rule
from finance_recurring.exceptions import AuthorizationError, MalformedRuleError
from finance_recurring.logging_config import get_logger
from finance_recurring.services.entry_writers import (
    DEFAULT_PAYMENT_METHOD,
    rule_entry_request,
    writer_for,
)
from finance_recurring.stores.base import LedgerStore, ScheduleStore

logger = get_logger("services.rule_processor")

INACTIVE_STATUSES = frozenset({RuleStatus.PAUSED.value, RuleStatus.INACTIVE.value})


# =============================================================================
# Shared catch-up loop
# =============================================================================


@dataclass(frozen=True)
class CatchUpOutcome:
    """What happened to each due date of one rule."""

    written: tuple[tuple[date, str | None], ...]
    failed: tuple[tuple[date, str], ...]
    watermark: date | None  # New watermark, None if it must not move

    @property
    def outcome(self) -> RuleOutcome:
        if not self.failed:
            return RuleOutcome.SUCCEEDED
        if self.written:
            return RuleOutcome.PARTIALLY_SUCCEEDED
        return RuleOutcome.FAILED


def describe_error(exc: Exception) -> str:
    code = getattr(exc, "code", "UNHANDLED_EXCEPTION")
    return f"{code}: {exc}"


def catch_up(
    dates: Sequence[date],
    write: Callable[[date], StoreResult],
    policy: WatermarkPolicy,
) -> CatchUpOutcome:
    """Run ``write`` for each due date and decide the new watermark.

    ``write`` returns a StoreResult or raises.  ``AuthorizationError``
    propagates; any other exception counts as a failed write.
    """
    written: list[tuple[date, str | None]] = []
    failed: list[tuple[date, str]] = []

    for due in dates:
        try:
            result = write(due)
            error = None if result.success else (result.error or "write rejected")
        except AuthorizationError:
            raise
        except Exception as exc:
            error = describe_error(exc)
            result = None

        if error is None:
            written.append((due, result.id if result else None))
            continue

        failed.append((due, error))
        if policy is WatermarkPolicy.RETRY_UNTIL_WRITTEN:
            break

    watermark: date | None = None
    if written:
        if policy is WatermarkPolicy.RETRY_UNTIL_WRITTEN:
            watermark = written[-1][0]
        else:
            watermark = dates[-1]

    return CatchUpOutcome(
        written=tuple(written),
        failed=tuple(failed),
        watermark=watermark,
    )


def format_failures(failed: Sequence[tuple[date, str]]) -> tuple[str, ...]:
    return tuple(f"{d.isoformat()}: {error}" for d, error in failed)


# =============================================================================
# Rule processor
# =============================================================================


class RuleProcessor:
    """Catch-up processing for recurring expense / income rules.

    Non-goals:
        - Does NOT decide whether a batch should run (GatingCheck).
        - Does NOT read the clock -- ``as_of`` is supplied by the caller.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        schedule: ScheduleStore,
        policy: WatermarkPolicy = DEFAULT_WATERMARK_POLICY,
        default_payment_method: str = DEFAULT_PAYMENT_METHOD,
    ):
        self._ledger = ledger
        self._schedule = schedule
        self._policy = WatermarkPolicy(policy)
        self._default_payment_method = default_payment_method

    @property
    def policy(self) -> WatermarkPolicy:
        return self._policy

    def process(
        self, rule: RecurrenceRule, as_of: date | datetime,
    ) -> RuleProcessingResult:
        """Create the rule's due entries and advance its watermark."""
        today = as_day(as_of)

        if rule.status in INACTIVE_STATUSES:
            logger.debug(
                "rule_skipped",
                extra={"rule_id": rule.rule_id, "status": rule.status},
            )
            return self._result(rule, RuleOutcome.SKIPPED)

        try:
            schedule = validate_rule(rule)
            writer = writer_for(rule.kind, rule.rule_id)
            dates = due_dates(
                schedule.start_date,
                schedule.frequency,
                schedule.last_processed_date,
                schedule.end_date,
                as_of=today,
            )
        except MalformedRuleError as exc:
            logger.warning(
                "rule_malformed",
                extra={
                    "rule_id": rule.rule_id,
                    "field": exc.field,
                    "reason": exc.reason,
                },
                exc_info=True,
            )
            return self._result(
                rule, RuleOutcome.MALFORMED, errors=(describe_error(exc),),
            )

        if not dates:
            return self._result(rule, RuleOutcome.NOTHING_DUE)

        logger.info(
            "rule_catch_up_started",
            extra={
                "rule_id": rule.rule_id,
                "kind": writer.kind.value,
                "due_count": len(dates),
                "first_due": dates[0],
                "last_due": dates[-1],
            },
        )

        def write(due: date) -> StoreResult:
            request = rule_entry_request(rule, due, self._default_payment_method)
            result = writer.write(self._ledger, request)
            if not result.success:
                logger.warning(
                    "ledger_write_failed",
                    extra={
                        "rule_id": rule.rule_id,
                        "entry": writer.describe(rule.description, due),
                        "error": result.error,
                    },
                )
            return result

        run = catch_up(dates, write, self._policy)
        errors = format_failures(run.failed)
        watermark = schedule.last_processed_date
        next_due = rule.next_due_date

        if run.watermark is not None:
            next_due = next_due_after_watermark(
                schedule.start_date, schedule.frequency, run.watermark,
                schedule.end_date,
            )
            update_error = self._update_watermark(rule.rule_id, run.watermark, next_due)
            if update_error is None:
                watermark = run.watermark
            else:
                errors += (update_error,)
                next_due = rule.next_due_date

        skipped: tuple[date, ...] = ()
        if self._policy is WatermarkPolicy.SKIP_FORWARD and run.written:
            skipped = tuple(d for d, _ in run.failed)

        created = tuple(
            CreatedTransaction(
                rule_id=rule.rule_id,
                source=RuleSource.RECURRING,
                kind=RuleKind(rule.kind),
                description=rule.description,
                amount=Decimal(str(rule.amount)),
                occurrence_date=d,
                entry_id=entry_id,
            )
            for d, entry_id in run.written
        )

        result = RuleProcessingResult(
            rule_id=rule.rule_id,
            source=RuleSource.RECURRING,
            outcome=run.outcome,
            due_dates=tuple(dates),
            created=created,
            errors=errors,
            skipped_dates=skipped,
            watermark=watermark,
            next_due_date=next_due,
        )

        logger.info(
            "rule_processed",
            extra={
                "rule_id": rule.rule_id,
                "outcome": result.outcome.value,
                "created_count": result.created_count,
                "failed": len(run.failed),
                "skipped_dates": [d.isoformat() for d in skipped],
                "watermark": watermark,
                "policy": self._policy.value,
            },
        )
        return result

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _update_watermark(
        self, rule_id: str, watermark: date, next_due: date | None,
    ) -> str | None:
        """Persist the watermark; returns an error string on failure."""
        try:
            stored = self._schedule.update_rule(
                rule_id, last_processed_date=watermark, next_due_date=next_due,
            )
        except AuthorizationError:
            raise
        except Exception as exc:
            error = describe_error(exc)
        else:
            if stored.success:
                return None
            error = stored.error or "watermark update rejected"

        logger.error(
            "watermark_update_failed",
            extra={"rule_id": rule_id, "watermark": watermark, "error": error},
        )
        return f"watermark {watermark.isoformat()}: {error}"

    @staticmethod
    def _result(
        rule: RecurrenceRule,
        outcome: RuleOutcome,
        errors: tuple[str, ...] = (),
    ) -> RuleProcessingResult:
        return RuleProcessingResult(
            rule_id=rule.rule_id,
            source=RuleSource.RECURRING,
            outcome=outcome,
            errors=errors,
            watermark=rule.last_processed_date,
            next_due_date=rule.next_due_date,
        )
