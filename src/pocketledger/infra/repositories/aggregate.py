"""SQLModel implementation of the per-user aggregate and balance rows."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ...models.aggregate import LedgerBalance, UserAggregate
from ._base import SessionScopedRepository

_UPSERT_DIALECTS = {"sqlite": sqlite_insert, "postgresql": pg_insert}


def _upsert_factory(session: Session):
    return _UPSERT_DIALECTS.get(session.get_bind().dialect.name)


class SQLModelAggregateRepository(SessionScopedRepository):
    """Aggregate rows are created by idempotent upserts, never check-then-create."""

    def get(self, owner_id: str, *, session: Optional[Session] = None) -> Optional[UserAggregate]:
        with self._session(session) as (active, owned):
            row = active.get(UserAggregate, owner_id)
            if row is not None and owned:
                active.expunge(row)
            return row

    def ensure(self, owner_id: str, *, default_currency: str, session: Session) -> None:
        """Create the owner's aggregate row if missing; never overwrites an existing one."""
        table = UserAggregate.__table__  # type: ignore[attr-defined]
        values = {"owner_id": owner_id, "default_currency": default_currency}
        insert = _upsert_factory(session)
        if insert is not None:
            statement = insert(table).values(**values).on_conflict_do_nothing(
                index_elements=["owner_id"]
            )
            session.exec(statement)  # type: ignore[call-overload]
            return
        if session.get(UserAggregate, owner_id) is not None:
            return
        try:
            with session.begin_nested():
                session.exec(table.insert().values(**values))  # type: ignore[call-overload]
        except IntegrityError:
            # Created concurrently; the existing row wins.
            pass

    def increment_balance(
        self, owner_id: str, currency: str, delta_minor: int, *, session: Session
    ) -> None:
        """Atomically add ``delta_minor`` to the owner's balance in ``currency``.

        Uses ``INSERT .. ON CONFLICT DO UPDATE`` so the first write for an owner
        seeds the row and concurrent writers all land their increments.
        """
        table = LedgerBalance.__table__  # type: ignore[attr-defined]
        insert = _upsert_factory(session)
        if insert is not None:
            statement = insert(table).values(
                owner_id=owner_id, currency=currency, balance_minor=delta_minor
            )
            statement = statement.on_conflict_do_update(
                index_elements=["owner_id", "currency"],
                set_={"balance_minor": table.c.balance_minor + statement.excluded.balance_minor},
            )
            session.exec(statement)  # type: ignore[call-overload]
            return
        self._increment_portable(table, owner_id, currency, delta_minor, session=session)

    def _increment_portable(self, table, owner_id: str, currency: str, delta_minor: int, *, session: Session) -> None:
        bump = (
            update(table)
            .where(table.c.owner_id == owner_id, table.c.currency == currency)
            .values(balance_minor=table.c.balance_minor + delta_minor)
        )
        if session.exec(bump).rowcount == 1:  # type: ignore[call-overload]
            return
        try:
            with session.begin_nested():
                session.exec(  # type: ignore[call-overload]
                    table.insert().values(
                        owner_id=owner_id, currency=currency, balance_minor=delta_minor
                    )
                )
        except IntegrityError:
            # Lost the creation race: the row exists now, so increment it.
            session.exec(bump)  # type: ignore[call-overload]

    def balances(self, owner_id: str, *, session: Optional[Session] = None) -> dict[str, int]:
        """Return {currency: balance in minor units} for every currency row."""
        with self._session(session) as (active, _):
            rows = active.exec(
                select(LedgerBalance.currency, LedgerBalance.balance_minor).where(
                    LedgerBalance.owner_id == owner_id
                )
            )
            return {currency: int(minor) for currency, minor in rows}

    def set_pinned(self, owner_id: str, budget_id: Optional[int], *, session: Session) -> None:
        session.exec(  # type: ignore[call-overload]
            update(UserAggregate)
            .where(UserAggregate.owner_id == owner_id)
            .values(pinned_budget_id=budget_id)
            .execution_options(synchronize_session=False)
        )

    def clear_pin_if(self, owner_id: str, budget_id: int, *, session: Session) -> bool:
        """Clear the pinned pointer only if it references ``budget_id``."""
        result = session.exec(  # type: ignore[call-overload]
            update(UserAggregate)
            .where(UserAggregate.owner_id == owner_id)
            .where(UserAggregate.pinned_budget_id == budget_id)
            .values(pinned_budget_id=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def set_default_currency(self, owner_id: str, currency: str, *, session: Session) -> None:
        session.exec(  # type: ignore[call-overload]
            update(UserAggregate)
            .where(UserAggregate.owner_id == owner_id)
            .values(default_currency=currency)
            .execution_options(synchronize_session=False)
        )
