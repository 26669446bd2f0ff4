"""
Rule validation -- turns raw rule DTOs into schedulable values.

Malformed data (unknown frequency, missing start date, unparseable
watermark, non-positive amount, unknown kind) raises
``MalformedRuleError``; the processors skip that one rule and keep going.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from finance_recurring.domain.types import (
    RECURRING_FREQUENCIES,
    Frequency,
    RecurrenceRule,
    RuleKind,
    RuleSchedule,
    SavingsAutoDeductRule,
)
from finance_recurring.exceptions import MalformedRuleError


def _parse_frequency(rule_id: str, value: object) -> Frequency:
    try:
        freq = Frequency(value)
    except ValueError:
        raise MalformedRuleError(
            rule_id, "frequency", f"unknown frequency {value!r}",
        ) from None
    if freq not in RECURRING_FREQUENCIES:
        raise MalformedRuleError(
            rule_id, "frequency", f"'{freq.value}' does not recur",
        )
    return freq


def _parse_day(rule_id: str, field: str, value: object, required: bool) -> date | None:
    if value is None:
        if required:
            raise MalformedRuleError(rule_id, field, "missing")
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            pass
    raise MalformedRuleError(rule_id, field, f"not a date: {value!r}")


def _parse_amount(rule_id: str, value: object) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise MalformedRuleError(rule_id, "amount", f"not a number: {value!r}") from None
    if not amount.is_finite() or amount <= 0:
        raise MalformedRuleError(rule_id, "amount", f"must be positive, got {value!r}")
    return amount


def parse_kind(rule_id: str, value: object) -> RuleKind:
    """Return the RuleKind for a rule or raise MalformedRuleError."""
    try:
        return RuleKind(value)
    except ValueError:
        raise MalformedRuleError(rule_id, "kind", f"unknown kind {value!r}") from None


def validate_rule(rule: RecurrenceRule) -> RuleSchedule:
    """Validate a recurrence rule and return its schedule.

    Raises:
        MalformedRuleError: On the first invalid field.
    """
    parse_kind(rule.rule_id, rule.kind)
    _parse_amount(rule.rule_id, rule.amount)
    return RuleSchedule(
        start_date=_parse_day(rule.rule_id, "start_date", rule.start_date, True),
        frequency=_parse_frequency(rule.rule_id, rule.frequency),
        end_date=_parse_day(rule.rule_id, "end_date", rule.end_date, False),
        last_processed_date=_parse_day(
            rule.rule_id, "last_processed_date", rule.last_processed_date, False,
        ),
    )


def validate_savings(savings: SavingsAutoDeductRule) -> RuleSchedule:
    """Validate a savings instrument and return its schedule.

    The maturity date acts as the end date.
    """
    _parse_amount(savings.savings_id, savings.amount)
    return RuleSchedule(
        start_date=_parse_day(
            savings.savings_id, "start_date", savings.start_date, True,
        ),
        frequency=_parse_frequency(savings.savings_id, savings.frequency),
        end_date=_parse_day(
            savings.savings_id, "maturity_date", savings.maturity_date, False,
        ),
        last_processed_date=_parse_day(
            savings.savings_id, "last_processed_date",
            savings.last_processed_date, False,
        ),
    )
