"""Repository protocol definitions for domain layer."""

from .aggregate import AggregateRepository
from .budget import BudgetRepository
from .record import RecordRepository

__all__ = [
    "AggregateRepository",
    "BudgetRepository",
    "RecordRepository",
]
