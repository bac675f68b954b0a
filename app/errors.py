# app/errors.py
# Role: Domain exceptions raised by the service layer.
#       main.py turns them into JSON error responses using their status_code.

"""
Domain errors for the finance tracker.

All of them are ValueError subclasses so plain callers (scripts, tests)
can keep catching ValueError.
"""


class FinanceTrackerError(ValueError):
    """Base class for validation errors raised by services."""

    status_code = 400


class InvalidConversionRateError(FinanceTrackerError):
    pass


class InvalidCardTypeError(FinanceTrackerError):
    pass


class InvalidRuleError(FinanceTrackerError):
    pass


class InvalidLedgerEntryError(FinanceTrackerError):
    pass


class NotFoundError(FinanceTrackerError):
    status_code = 404


class RuleNotFoundError(NotFoundError):
    pass


class LedgerEntryNotFoundError(NotFoundError):
    pass


class InsightNotFoundError(NotFoundError):
    pass


class ReferencedRowError(FinanceTrackerError):
    """Row is still referenced by another table (foreign key violation)."""

    status_code = 409


class StorageError(FinanceTrackerError):
    """A write could not be saved."""

    status_code = 500


def is_foreign_key_violation(exc: Exception) -> bool:
    # Drivers word this differently; all of them mention "foreign key"
    return "foreign key" in str(exc).lower()
