"""Per-user derived state: preferences, pinned budget, running balances."""

from __future__ import annotations

from typing import ClassVar, Optional

from sqlalchemy import BigInteger, Column
from sqlmodel import Field, SQLModel


class UserAggregate(SQLModel, table=True):
    """One row per owner, created lazily by the first mutation."""

    __tablename__: ClassVar[str] = "user_aggregate"

    owner_id: str = Field(primary_key=True, max_length=128)
    default_currency: str = Field(default="INR", nullable=False, max_length=3)
    # Plain pointer; cleared in the same transaction that deletes the budget.
    pinned_budget_id: Optional[int] = Field(default=None)


class LedgerBalance(SQLModel, table=True):
    """Running balance of one owner in one currency, in hundredths."""

    __tablename__: ClassVar[str] = "ledger_balance"

    owner_id: str = Field(primary_key=True, max_length=128)
    currency: str = Field(primary_key=True, max_length=3)
    balance_minor: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))
