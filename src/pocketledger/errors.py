"""Error taxonomy surfaced by the ledger core.

Validation and not-found errors carry specific, actionable messages.
Infrastructure and concurrency errors expose only a generic ``user_message``;
the underlying exception is chained for logs.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for every error raised by the ledger core."""

    user_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.user_message)


class ValidationError(LedgerError):
    """Input rejected before any state changed."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return str(self)


class DuplicateCategory(ValidationError):
    """A budget already exists for this owner and category."""

    def __init__(self, category: str) -> None:
        super().__init__(f"A budget for category '{category}' already exists.", field="category")
        self.category = category


class NotFound(LedgerError):
    """The referenced record or budget does not exist for this owner."""

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return str(self)


class RecordNotFound(NotFound):
    def __init__(self, record_id: int) -> None:
        super().__init__(f"Record {record_id} was not found.")
        self.record_id = record_id


class BudgetNotFound(NotFound):
    def __init__(self, budget_id: int) -> None:
        super().__init__(f"Budget {budget_id} was not found.")
        self.budget_id = budget_id


class RateUnavailable(LedgerError):
    """No exchange rate is known for a currency a conversion needs."""

    def __init__(self, currency: str) -> None:
        super().__init__(f"No exchange rate available for {currency}.")
        self.currency = currency

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return str(self)


class TransientFailure(LedgerError):
    """A concurrency conflict outlived its retries; the caller may retry."""

    user_message = "The ledger is busy right now. Please try again."


class FetchTimeout(TransientFailure):
    """A one-shot read did not finish within the caller's timeout."""


class StoreUnavailable(LedgerError):
    """The backing store could not be reached."""

    user_message = "The ledger is temporarily unavailable. Please try again."


__all__ = [
    "BudgetNotFound",
    "DuplicateCategory",
    "FetchTimeout",
    "LedgerError",
    "NotFound",
    "RateUnavailable",
    "RecordNotFound",
    "StoreUnavailable",
    "TransientFailure",
    "ValidationError",
]
