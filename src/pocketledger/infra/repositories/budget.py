"""SQLModel implementation of Budget repository."""

from __future__ import annotations

from typing import Any, Optional

from sqlmodel import Session, select

from ...models.budget import Budget
from ._base import SessionScopedRepository


class SQLModelBudgetRepository(SessionScopedRepository):
    """SQLModel-based budget repository implementation."""

    def get(
        self, budget_id: int, *, owner_id: str, session: Optional[Session] = None
    ) -> Optional[Budget]:
        """Retrieve a budget by ID."""
        with self._session(session) as (active, owned):
            obj = active.exec(
                select(Budget).where(Budget.id == budget_id).where(Budget.owner_id == owner_id)
            ).first()
            if obj is not None and owned:
                active.expunge(obj)
            return obj

    def find_by_category(
        self, category: str, *, owner_id: str, session: Optional[Session] = None
    ) -> Optional[Budget]:
        """Return the owner's budget for ``category`` if one exists."""
        with self._session(session) as (active, owned):
            obj = active.exec(
                select(Budget).where(Budget.owner_id == owner_id, Budget.category == category)
            ).first()
            if obj is not None and owned:
                active.expunge(obj)
            return obj

    def list_all(self, *, owner_id: str, session: Optional[Session] = None) -> list[Budget]:
        """List budgets, newest first."""
        with self._session(session) as (active, owned):
            statement = (
                select(Budget)
                .where(Budget.owner_id == owner_id)
                .order_by(Budget.created_at.desc(), Budget.id.desc())  # type: ignore[attr-defined,union-attr]
            )
            rows = list(active.exec(statement).all())
            if owned:
                active.expunge_all()
            return rows

    def create(self, budget: Budget, *, owner_id: str, session: Session) -> Budget:
        """Insert a budget; the (owner_id, category) constraint is checked on flush."""
        budget.owner_id = owner_id
        session.add(budget)
        session.flush()
        session.refresh(budget)
        return budget

    def update(
        self, budget_id: int, *, owner_id: str, changes: dict[str, Any], session: Session
    ) -> Optional[Budget]:
        """Apply a partial patch; returns None when the budget does not exist."""
        budget = self.get(budget_id, owner_id=owner_id, session=session)
        if budget is None:
            return None
        for key, value in changes.items():
            setattr(budget, key, value)
        session.add(budget)
        session.flush()
        session.refresh(budget)
        return budget

    def delete(self, budget_id: int, *, owner_id: str, session: Session) -> bool:
        """Delete a budget by ID; returns False when nothing was deleted."""
        budget = self.get(budget_id, owner_id=owner_id, session=session)
        if budget is None:
            return False
        session.delete(budget)
        session.flush()
        return True
