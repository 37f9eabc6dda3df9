"""SQLModel table and input-model exports."""

from .aggregate import LedgerBalance, UserAggregate
from .budget import ALL_CATEGORIES, Budget, BudgetCreate, BudgetUpdate
from .record import MIN_AMOUNT, Record, RecordCreate, RecordKind, RecordUpdate

__all__ = [
    "ALL_CATEGORIES",
    "Budget",
    "BudgetCreate",
    "BudgetUpdate",
    "LedgerBalance",
    "MIN_AMOUNT",
    "Record",
    "RecordCreate",
    "RecordKind",
    "RecordUpdate",
    "UserAggregate",
]
