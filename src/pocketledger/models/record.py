"""SQLModel definitions for ledger records (income and expense entries)."""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import field_validator, model_validator
from sqlalchemy import Index
from sqlmodel import Field, SQLModel

MIN_AMOUNT = Decimal("0.01")
_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_REQUIRED_FIELDS = frozenset({"name", "amount", "currency", "category", "kind", "occurred_on"})


class RecordKind(str, Enum):
    """Direction of a record; the stored amount is always positive."""

    EXPENSE = "expense"
    INCOME = "income"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Record(SQLModel, table=True):
    """A single income or expense entry owned by one user."""

    __tablename__: ClassVar[str] = "ledger_record"
    __table_args__ = (
        Index("ix_ledger_record_owner_occurred", "owner_id", "occurred_on", "created_at"),
        Index("ix_ledger_record_owner_amount", "owner_id", "amount"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(nullable=False, index=True, max_length=128)
    name: str = Field(nullable=False, max_length=100)
    amount: Decimal = Field(nullable=False, max_digits=12, decimal_places=2)
    currency: str = Field(nullable=False, max_length=3)
    category: str = Field(nullable=False, max_length=50, index=True)
    kind: RecordKind = Field(nullable=False)
    occurred_on: date = Field(nullable=False)
    notes: Optional[str] = Field(default=None, max_length=200)
    created_at: datetime = Field(default_factory=_utcnow, nullable=False)
    version: int = Field(default=1, nullable=False)

    @property
    def signed_amount(self) -> Decimal:
        """Amount with the sign carried by ``kind`` (income positive)."""

        return self.amount if self.kind == RecordKind.INCOME else -self.amount


def _parse_occurred_on(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        if not _DATE_PATTERN.match(value):
            raise ValueError("Invalid date format (YYYY-MM-DD)")
        return date.fromisoformat(value)
    return value


def normalize_currency(value: Any) -> Any:
    if isinstance(value, str):
        code = value.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError("Currency must be a 3-letter code")
        return code
    return value


class RecordCreate(SQLModel):
    """Validated input for a new record."""

    name: str = Field(min_length=1, max_length=100)
    amount: Decimal = Field(ge=MIN_AMOUNT, max_digits=12, decimal_places=2)
    currency: str
    category: str = Field(min_length=1, max_length=50)
    kind: RecordKind
    occurred_on: date
    notes: Optional[str] = Field(default=None, max_length=200)

    @field_validator("occurred_on", mode="before")
    @classmethod
    def _check_date(cls, value: Any) -> Any:
        return _parse_occurred_on(value)

    @field_validator("currency", mode="before")
    @classmethod
    def _check_currency(cls, value: Any) -> Any:
        return normalize_currency(value)

    @field_validator("notes", mode="before")
    @classmethod
    def _blank_notes(cls, value: Any) -> Any:
        return None if value == "" else value


class RecordUpdate(SQLModel):
    """Partial patch for an existing record; unset fields are left untouched."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount: Optional[Decimal] = Field(default=None, ge=MIN_AMOUNT, max_digits=12, decimal_places=2)
    currency: Optional[str] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=50)
    kind: Optional[RecordKind] = None
    occurred_on: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=200)

    @field_validator("occurred_on", mode="before")
    @classmethod
    def _check_date(cls, value: Any) -> Any:
        return _parse_occurred_on(value)

    @field_validator("currency", mode="before")
    @classmethod
    def _check_currency(cls, value: Any) -> Any:
        return normalize_currency(value)

    @field_validator("notes", mode="before")
    @classmethod
    def _blank_notes(cls, value: Any) -> Any:
        return None if value == "" else value

    @model_validator(mode="after")
    def _no_null_required(self) -> "RecordUpdate":
        for name in self.model_fields_set & _REQUIRED_FIELDS:
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be cleared")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)
