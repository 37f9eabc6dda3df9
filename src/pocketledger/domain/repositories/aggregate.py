"""Per-user aggregate repository protocol."""

from __future__ import annotations

from typing import Optional, Protocol

from sqlmodel import Session

from ...models.aggregate import UserAggregate


class AggregateRepository(Protocol):
    """Repository for the per-user aggregate row and its balances."""

    def get(self, owner_id: str, *, session: Optional[Session] = None) -> Optional[UserAggregate]:
        ...

    def ensure(self, owner_id: str, *, default_currency: str, session: Session) -> None:
        """Create the aggregate row if missing, idempotently."""
        ...

    def increment_balance(
        self, owner_id: str, currency: str, delta_minor: int, *, session: Session
    ) -> None:
        """Atomically add to one currency balance, creating it if missing."""
        ...

    def balances(self, owner_id: str, *, session: Optional[Session] = None) -> dict[str, int]:
        ...

    def set_pinned(self, owner_id: str, budget_id: Optional[int], *, session: Session) -> None:
        ...

    def clear_pin_if(self, owner_id: str, budget_id: int, *, session: Session) -> bool:
        ...

    def set_default_currency(self, owner_id: str, currency: str, *, session: Session) -> None:
        ...
