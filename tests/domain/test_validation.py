"""Tests for finance_recurring.domain.validation."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from finance_recurring.domain.types import Frequency, RuleKind
from finance_recurring.domain.validation import parse_kind, validate_rule, validate_savings
from finance_recurring.exceptions import MalformedRuleError


class TestValidateRule:

    def test_valid_rule_returns_schedule(self, make_rule):
        schedule = validate_rule(make_rule(end_date=date(2024, 12, 31)))
        assert schedule.start_date == date(2024, 1, 15)
        assert schedule.frequency is Frequency.MONTHLY
        assert schedule.end_date == date(2024, 12, 31)

    def test_iso_string_and_datetime_dates_are_accepted(self, make_rule):
        schedule = validate_rule(make_rule(
            start_date="2024-01-15T00:00:00",
            end_date=datetime(2024, 6, 30, 8, 0),
        ))
        assert schedule.start_date == date(2024, 1, 15)
        assert schedule.end_date == date(2024, 6, 30)

    def test_watermark_is_parsed(self, make_rule):
        assert validate_rule(make_rule()).last_processed_date is None
        schedule = validate_rule(make_rule(last_processed_date="2024-02-15"))
        assert schedule.last_processed_date == date(2024, 2, 15)

    @pytest.mark.parametrize(
        ("overrides", "field"),
        [
            ({"frequency": "fortnightly"}, "frequency"),
            ({"frequency": "one-time"}, "frequency"),
            ({"start_date": None}, "start_date"),
            ({"start_date": "not-a-date"}, "start_date"),
            ({"end_date": 42}, "end_date"),
            ({"last_processed_date": "yesterday"}, "last_processed_date"),
            ({"last_processed_date": 20240215}, "last_processed_date"),
            ({"amount": Decimal("0")}, "amount"),
            ({"amount": Decimal("-10")}, "amount"),
            ({"amount": "abc"}, "amount"),
            ({"amount": Decimal("NaN")}, "amount"),
            ({"kind": "transfer"}, "kind"),
        ],
    )
    def test_malformed_fields(self, make_rule, overrides, field):
        rule = make_rule(rule_id="r-bad", **overrides)
        with pytest.raises(MalformedRuleError) as exc_info:
            validate_rule(rule)
        assert exc_info.value.rule_id == "r-bad"
        assert exc_info.value.field == field
        assert exc_info.value.code == "MALFORMED_RULE"


class TestValidateSavings:

    def test_maturity_date_is_the_end_date(self, make_savings):
        schedule = validate_savings(make_savings(maturity_date=date(2025, 1, 1)))
        assert schedule.end_date == date(2025, 1, 1)

    def test_missing_start_date(self, make_savings):
        with pytest.raises(MalformedRuleError, match="start_date"):
            validate_savings(make_savings(start_date=None))

    def test_unparseable_watermark(self, make_savings):
        with pytest.raises(MalformedRuleError) as exc_info:
            validate_savings(make_savings(last_processed_date="soon"))
        assert exc_info.value.field == "last_processed_date"


class TestParseKind:

    def test_known_kinds(self):
        assert parse_kind("r", "expense") is RuleKind.EXPENSE
        assert parse_kind("r", RuleKind.INCOME) is RuleKind.INCOME

    def test_unknown_kind(self):
        with pytest.raises(MalformedRuleError):
            parse_kind("r", "refund")
