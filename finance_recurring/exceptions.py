"""
Exception hierarchy for the recurring engine.

Every exception carries a ``code`` class attribute for machine-readable
identification and stores its context as attributes, so structured log
output (see logging_config.StructuredFormatter) and API layers can use
them without parsing messages.

Categories map to how the batch treats them:

    StoreError          -- store unreachable or record missing; recorded on
                           the rule, batch continues.  Rejected writes
                           come back as StoreResult.failed, not exceptions.
    AuthorizationError  -- caller may not touch this owner's data; batch aborts.
    MalformedRuleError  -- rule data cannot be scheduled; rule skipped.
    ConfigurationError  -- invalid settings file or values.
"""


class FinanceRecurringError(Exception):
    """Base exception for all recurring engine errors."""

    code: str = "FINANCE_RECURRING_ERROR"


# Store-related exceptions


class StoreError(FinanceRecurringError):
    """Base exception for ledger / schedule store failures."""

    code: str = "STORE_ERROR"


class StoreUnavailableError(StoreError):
    """The backing store could not be reached."""

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, store: str, reason: str):
        self.store = store
        self.reason = reason
        super().__init__(f"{store} unavailable: {reason}")


class RecordNotFoundError(StoreError):
    """A record addressed by id does not exist."""

    code: str = "RECORD_NOT_FOUND"

    def __init__(self, record_type: str, record_id: str):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(f"{record_type} not found: {record_id}")


# Authorization


class AuthorizationError(FinanceRecurringError):
    """The current actor may not read or write the owner's records."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, owner_id: str, reason: str = "not authenticated"):
        self.owner_id = owner_id
        self.reason = reason
        super().__init__(f"Not authorized for owner {owner_id}: {reason}")


# Rule data


class MalformedRuleError(FinanceRecurringError):
    """Rule data is missing or invalid and cannot be scheduled."""

    code: str = "MALFORMED_RULE"

    def __init__(self, rule_id: str, field: str, reason: str):
        self.rule_id = rule_id
        self.field = field
        self.reason = reason
        super().__init__(f"Rule {rule_id} has invalid {field}: {reason}")


# Configuration


class ConfigurationError(FinanceRecurringError):
    """Settings file or values are invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid setting '{key}': {reason}")
