"""
finance_recurring.services -- Gating check and per-rule processors.
"""

from finance_recurring.services.gating import GatingCheck
from finance_recurring.services.rule_processor import RuleProcessor, catch_up
from finance_recurring.services.savings_processor import SavingsAutoDeductProcessor

__all__ = [
    "GatingCheck",
    "RuleProcessor",
    "SavingsAutoDeductProcessor",
    "catch_up",
]
