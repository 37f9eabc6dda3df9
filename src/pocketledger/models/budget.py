"""Budgeting tables."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, ClassVar, Optional

from pydantic import field_validator
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from .record import MIN_AMOUNT

ALL_CATEGORIES = "All"


class Budget(SQLModel, table=True):
    """A spending limit for one expense category (or ``All``)."""

    __tablename__: ClassVar[str] = "budget"
    __table_args__ = (UniqueConstraint("owner_id", "category", name="uq_budget_owner_category"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(nullable=False, index=True, max_length=128)
    category: str = Field(nullable=False, max_length=50)
    amount: Decimal = Field(nullable=False, max_digits=12, decimal_places=2)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def covers_all_categories(self) -> bool:
        return self.category == ALL_CATEGORIES


def _strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


class BudgetCreate(SQLModel):
    category: str = Field(min_length=1, max_length=50)
    amount: Decimal = Field(ge=MIN_AMOUNT, max_digits=12, decimal_places=2)

    @field_validator("category", mode="before")
    @classmethod
    def _clean_category(cls, value: Any) -> Any:
        return _strip(value)


class BudgetUpdate(SQLModel):
    category: Optional[str] = Field(default=None, min_length=1, max_length=50)
    amount: Optional[Decimal] = Field(default=None, ge=MIN_AMOUNT, max_digits=12, decimal_places=2)

    @field_validator("category", mode="before")
    @classmethod
    def _clean_category(cls, value: Any) -> Any:
        return _strip(value)

    def changes(self) -> dict[str, Any]:
        return {k: v for k, v in self.model_dump(exclude_unset=True).items() if v is not None}
