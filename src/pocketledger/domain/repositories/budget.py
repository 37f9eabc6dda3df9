"""Budget repository protocol."""

from __future__ import annotations

from typing import Any, Optional, Protocol

from sqlmodel import Session

from ...models.budget import Budget


class BudgetRepository(Protocol):
    """Repository for managing budget entities."""

    def get(
        self, budget_id: int, *, owner_id: str, session: Optional[Session] = None
    ) -> Optional[Budget]:
        """Retrieve a budget by ID."""
        ...

    def find_by_category(
        self, category: str, *, owner_id: str, session: Optional[Session] = None
    ) -> Optional[Budget]:
        """Return the owner's budget for a category."""
        ...

    def list_all(self, *, owner_id: str, session: Optional[Session] = None) -> list[Budget]:
        """List all budgets."""
        ...

    def create(self, budget: Budget, *, owner_id: str, session: Session) -> Budget:
        """Create a new budget."""
        ...

    def update(
        self, budget_id: int, *, owner_id: str, changes: dict[str, Any], session: Session
    ) -> Optional[Budget]:
        """Update an existing budget."""
        ...

    def delete(self, budget_id: int, *, owner_id: str, session: Session) -> bool:
        """Delete a budget by ID."""
        ...
