"""SQLModel implementation of the Record store."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import delete, func, update
from sqlmodel import Session, select

from ...models.record import Record, RecordKind
from ._base import SessionScopedRepository

# Compound order relied upon by every "recent" or "top" listing.
_NEWEST_FIRST = (
    Record.occurred_on.desc(),  # type: ignore[attr-defined]
    Record.created_at.desc(),  # type: ignore[attr-defined]
    Record.id.desc(),  # type: ignore[union-attr]
)


def _in_window(statement, start: Optional[date], end: Optional[date]):
    """Restrict to the half-open window [start, end)."""
    if start is not None:
        statement = statement.where(Record.occurred_on >= start)
    if end is not None:
        statement = statement.where(Record.occurred_on < end)
    return statement


class SQLModelRecordRepository(SessionScopedRepository):
    """SQLModel-based record repository implementation.

    All date windows are half-open ``[start, end)`` on ``occurred_on``.
    """

    def get(
        self, record_id: int, *, owner_id: str, session: Optional[Session] = None
    ) -> Optional[Record]:
        """Retrieve a record by ID."""
        with self._session(session) as (active, owned):
            obj = active.exec(
                select(Record).where(Record.id == record_id).where(Record.owner_id == owner_id)
            ).first()
            if obj is not None and owned:
                active.expunge(obj)
            return obj

    def create(self, record: Record, *, owner_id: str, session: Session) -> Record:
        """Insert a record; ``id`` and ``created_at`` are assigned here."""
        record.owner_id = owner_id
        record.version = 1
        session.add(record)
        session.flush()
        session.refresh(record)
        return record

    def update_if_version(
        self,
        record_id: int,
        *,
        owner_id: str,
        expected_version: int,
        changes: dict[str, Any],
        session: Session,
    ) -> bool:
        """Apply ``changes`` only if nobody else touched the row since it was read."""
        statement = (
            update(Record)
            .where(Record.id == record_id)
            .where(Record.owner_id == owner_id)
            .where(Record.version == expected_version)
            .values(**changes, version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        result = session.exec(statement)  # type: ignore[call-overload]
        return result.rowcount == 1

    def delete_if_version(
        self, record_id: int, *, owner_id: str, expected_version: int, session: Session
    ) -> bool:
        """Delete the row only if it still carries ``expected_version``."""
        statement = (
            delete(Record)
            .where(Record.id == record_id)
            .where(Record.owner_id == owner_id)
            .where(Record.version == expected_version)
            .execution_options(synchronize_session=False)
        )
        result = session.exec(statement)  # type: ignore[call-overload]
        return result.rowcount == 1

    def search(
        self,
        *,
        owner_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        kind: Optional[RecordKind] = None,
        category: Optional[str] = None,
        limit: Optional[int] = None,
        session: Optional[Session] = None,
    ) -> list[Record]:
        """Filtered listing, newest first."""
        with self._session(session) as (active, owned):
            statement = select(Record).where(Record.owner_id == owner_id)
            statement = _in_window(statement, start, end)
            if kind is not None:
                statement = statement.where(Record.kind == kind)
            if category is not None:
                statement = statement.where(Record.category == category)
            statement = statement.order_by(*_NEWEST_FIRST)
            if limit is not None:
                statement = statement.limit(limit)
            rows = list(active.exec(statement).all())
            if owned:
                active.expunge_all()
            return rows

    def recent(
        self, *, owner_id: str, limit: int, session: Optional[Session] = None
    ) -> list[Record]:
        """Most recent records by (occurred_on, created_at), no date window."""
        return self.search(owner_id=owner_id, limit=limit, session=session)

    def top_by_amount(
        self,
        *,
        owner_id: str,
        start: Optional[date],
        end: Optional[date],
        limit: int,
        session: Optional[Session] = None,
    ) -> list[Record]:
        """Largest records in the window, ties broken by newest creation."""
        with self._session(session) as (active, owned):
            statement = _in_window(select(Record).where(Record.owner_id == owner_id), start, end)
            statement = statement.order_by(
                Record.amount.desc(),  # type: ignore[attr-defined]
                Record.created_at.desc(),  # type: ignore[attr-defined]
                Record.id.desc(),  # type: ignore[union-attr]
            ).limit(limit)
            rows = list(active.exec(statement).all())
            if owned:
                active.expunge_all()
            return rows

    def totals_by_kind(
        self,
        *,
        owner_id: str,
        start: Optional[date],
        end: Optional[date],
        session: Optional[Session] = None,
    ) -> list[tuple[RecordKind, str, Decimal]]:
        """(kind, currency, summed amount) rows for the window."""
        with self._session(session) as (active, _):
            statement = select(Record.kind, Record.currency, func.sum(Record.amount)).where(
                Record.owner_id == owner_id
            )
            statement = _in_window(statement, start, end).group_by(Record.kind, Record.currency)
            return [(kind, currency, total) for kind, currency, total in active.exec(statement)]

    def totals_by_category(
        self,
        *,
        owner_id: str,
        start: Optional[date],
        end: Optional[date],
        kind: RecordKind = RecordKind.EXPENSE,
        category: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> list[tuple[str, str, Decimal]]:
        """(category, currency, summed amount) rows for one kind in the window."""
        with self._session(session) as (active, _):
            statement = select(Record.category, Record.currency, func.sum(Record.amount)).where(
                Record.owner_id == owner_id, Record.kind == kind
            )
            if category is not None:
                statement = statement.where(Record.category == category)
            statement = _in_window(statement, start, end).group_by(
                Record.category, Record.currency
            )
            return [(cat, currency, total) for cat, currency, total in active.exec(statement)]

    def totals_by_day(
        self,
        *,
        owner_id: str,
        start: date,
        end: date,
        session: Optional[Session] = None,
    ) -> list[tuple[date, RecordKind, str, Decimal]]:
        """(occurred_on, kind, currency, summed amount) rows for the window."""
        with self._session(session) as (active, _):
            statement = select(
                Record.occurred_on, Record.kind, Record.currency, func.sum(Record.amount)
            ).where(Record.owner_id == owner_id)
            statement = _in_window(statement, start, end).group_by(
                Record.occurred_on, Record.kind, Record.currency
            )
            return [(day, kind, cur, total) for day, kind, cur, total in active.exec(statement)]

    def signed_totals_by_currency(
        self, *, owner_id: str, session: Optional[Session] = None
    ) -> dict[str, Decimal]:
        """Full re-scan of signed sums per currency; used for reconciliation only."""
        totals: dict[str, Decimal] = {}
        with self._session(session) as (active, _):
            statement = (
                select(Record.kind, Record.currency, func.sum(Record.amount))
                .where(Record.owner_id == owner_id)
                .group_by(Record.kind, Record.currency)
            )
            for kind, currency, total in active.exec(statement):
                signed = total if kind == RecordKind.INCOME else -total
                totals[currency] = totals.get(currency, Decimal("0")) + signed
        return totals
