"""Concrete repository implementations using SQLModel."""

from .aggregate import SQLModelAggregateRepository
from .budget import SQLModelBudgetRepository
from .record import SQLModelRecordRepository

__all__ = [
    "SQLModelAggregateRepository",
    "SQLModelBudgetRepository",
    "SQLModelRecordRepository",
]
