"""Record repository protocol."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Optional, Protocol

from sqlmodel import Session

from ...models.record import Record, RecordKind


class RecordRepository(Protocol):
    """Repository for managing ledger records.

    Date windows are half-open ``[start, end)`` on ``occurred_on``; listings are
    ordered by ``occurred_on`` then ``created_at``, both descending.
    """

    def get(
        self, record_id: int, *, owner_id: str, session: Optional[Session] = None
    ) -> Optional[Record]:
        """Retrieve a record by ID."""
        ...

    def create(self, record: Record, *, owner_id: str, session: Session) -> Record:
        """Insert a new record."""
        ...

    def update_if_version(
        self,
        record_id: int,
        *,
        owner_id: str,
        expected_version: int,
        changes: dict[str, Any],
        session: Session,
    ) -> bool:
        """Patch a record if its version still matches."""
        ...

    def delete_if_version(
        self, record_id: int, *, owner_id: str, expected_version: int, session: Session
    ) -> bool:
        """Delete a record if its version still matches."""
        ...

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
        ...

    def recent(self, *, owner_id: str, limit: int, session: Optional[Session] = None) -> list[Record]:
        ...

    def top_by_amount(
        self,
        *,
        owner_id: str,
        start: Optional[date],
        end: Optional[date],
        limit: int,
        session: Optional[Session] = None,
    ) -> list[Record]:
        ...

    def totals_by_kind(
        self, *, owner_id: str, start: Optional[date], end: Optional[date], session: Optional[Session] = None
    ) -> list[tuple[RecordKind, str, Decimal]]:
        ...

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
        ...

    def totals_by_day(
        self, *, owner_id: str, start: date, end: date, session: Optional[Session] = None
    ) -> list[tuple[date, RecordKind, str, Decimal]]:
        ...

    def signed_totals_by_currency(
        self, *, owner_id: str, session: Optional[Session] = None
    ) -> dict[str, Decimal]:
        ...
