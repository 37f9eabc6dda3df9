"""Budgeting domain services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..domain.repositories import AggregateRepository, BudgetRepository, RecordRepository
from ..errors import BudgetNotFound, DuplicateCategory, ValidationError
from ..infra.database import SessionFactory, run_in_transaction
from ..logging_config import get_logger
from ..models.budget import ALL_CATEGORIES, Budget
from ..models.record import RecordKind
from .currency import RatesLike, convert_or_keep, quantize_money

logger = get_logger("services.budgeting")

_HUNDRED = Decimal("100")


@dataclass(slots=True)
class Consumption:
    """Spend against one budget limit over a period."""

    category: str
    spent: Decimal
    limit: Decimal
    currency: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def percent(self) -> Decimal:
        """Unclamped share of the limit used; threshold logic reads this."""
        return quantize_money(self.spent / self.limit * _HUNDRED)

    @property
    def display_percent(self) -> Decimal:
        """Percent clamped to [0, 100] for progress bars."""
        return min(max(self.percent, Decimal("0")), _HUNDRED)

    @property
    def over_budget(self) -> bool:
        return self.spent > self.limit

    @property
    def remaining(self) -> Decimal:
        return self.limit - self.spent


@dataclass(slots=True)
class BudgetStatus:
    budget: Budget
    consumption: Consumption
    pinned: bool = False


class BudgetTracker:
    """One budget per (owner, category), consumption, and the pinned pointer."""

    def __init__(
        self,
        session_factory: SessionFactory,
        budgets: BudgetRepository,
        aggregates: AggregateRepository,
        records: RecordRepository,
        *,
        default_currency: str = "INR",
        attempts: int = 5,
        backoff: float = 0.05,
    ) -> None:
        self.session_factory = session_factory
        self.budgets = budgets
        self.aggregates = aggregates
        self.records = records
        self.default_currency = default_currency
        self.attempts = attempts
        self.backoff = backoff

    def _transaction(self, work, *, operation: str):
        return run_in_transaction(
            self.session_factory,
            work,
            attempts=self.attempts,
            backoff=self.backoff,
            operation=operation,
        )

    def create_budget(self, owner_id: str, category: str, amount: Decimal) -> Budget:
        """Create a budget; ``DuplicateCategory`` if the owner already budgets it.

        The pre-check gives the common case a clean error; the unique
        constraint catches two creations racing past the pre-check.
        """

        def work(session: Session) -> Budget:
            if self.budgets.find_by_category(category, owner_id=owner_id, session=session):
                raise DuplicateCategory(category)
            try:
                return self.budgets.create(
                    Budget(owner_id=owner_id, category=category, amount=amount),
                    owner_id=owner_id,
                    session=session,
                )
            except IntegrityError as exc:
                raise DuplicateCategory(category) from exc

        budget = self._transaction(work, operation="create budget")
        logger.info(
            "Budget created",
            extra={"owner_id": owner_id, "budget_id": budget.id, "category": category},
        )
        return budget

    def update_budget(self, owner_id: str, budget_id: int, changes: dict[str, Any]) -> Budget:
        """Partial update. No duplicate pre-check; the unique constraint still applies."""

        def work(session: Session) -> Budget:
            try:
                budget = self.budgets.update(
                    budget_id, owner_id=owner_id, changes=changes, session=session
                )
            except IntegrityError as exc:
                raise DuplicateCategory(str(changes.get("category"))) from exc
            if budget is None:
                raise BudgetNotFound(budget_id)
            return budget

        budget = self._transaction(work, operation="update budget")
        logger.info(
            "Budget updated",
            extra={"owner_id": owner_id, "budget_id": budget_id, "fields": sorted(changes)},
        )
        return budget

    def delete_budget(self, owner_id: str, budget_id: int) -> bool:
        """Delete a budget and clear the pin pointing at it; missing budgets are a no-op."""

        def work(session: Session) -> bool:
            deleted = self.budgets.delete(budget_id, owner_id=owner_id, session=session)
            if deleted:
                self.aggregates.clear_pin_if(owner_id, budget_id, session=session)
            return deleted

        deleted = self._transaction(work, operation="delete budget")
        if deleted:
            logger.info("Budget deleted", extra={"owner_id": owner_id, "budget_id": budget_id})
        else:
            logger.info(
                "Budget delete ignored; not found",
                extra={"owner_id": owner_id, "budget_id": budget_id},
            )
        return deleted

    def pin(self, owner_id: str, budget_id: int) -> None:
        """Pin ``budget_id``, replacing any previous pin."""

        def work(session: Session) -> None:
            if self.budgets.get(budget_id, owner_id=owner_id, session=session) is None:
                raise BudgetNotFound(budget_id)
            self.aggregates.ensure(owner_id, default_currency=self.default_currency, session=session)
            self.aggregates.set_pinned(owner_id, budget_id, session=session)

        self._transaction(work, operation="pin budget")
        logger.info("Budget pinned", extra={"owner_id": owner_id, "budget_id": budget_id})

    def unpin(self, owner_id: str) -> None:
        def work(session: Session) -> None:
            self.aggregates.set_pinned(owner_id, None, session=session)

        self._transaction(work, operation="unpin budget")
        logger.info("Budget unpinned", extra={"owner_id": owner_id})

    def pinned_budget(self, owner_id: str, *, session: Optional[Session] = None) -> Optional[Budget]:
        aggregate = self.aggregates.get(owner_id, session=session)
        if aggregate is None or aggregate.pinned_budget_id is None:
            return None
        return self.budgets.get(aggregate.pinned_budget_id, owner_id=owner_id, session=session)

    def list_budgets(self, owner_id: str, *, session: Optional[Session] = None) -> list[Budget]:
        return self.budgets.list_all(owner_id=owner_id, session=session)

    def consumption(
        self,
        owner_id: str,
        category: str,
        period_start: date,
        period_end: date,
        *,
        limit: Optional[Decimal] = None,
        currency: Optional[str] = None,
        rates: RatesLike = None,
        session: Optional[Session] = None,
    ) -> Consumption:
        """Expense spend for ``category`` over ``[period_start, period_end)``.

        ``category == "All"`` sums every expense category. Amounts in other
        currencies are normalized into ``currency`` (the owner's default when
        omitted), falling back to unconverted figures with a warning.
        """

        if period_end <= period_start:
            raise ValidationError("Budget period end must be after its start.", field="period_end")
        if limit is None:
            budget = self.budgets.find_by_category(category, owner_id=owner_id, session=session)
            if budget is None:
                raise ValidationError(f"No budget exists for category '{category}'.", field="category")
            limit = budget.amount
        if currency is None:
            aggregate = self.aggregates.get(owner_id, session=session)
            currency = aggregate.default_currency if aggregate else self.default_currency

        rows = self.records.totals_by_category(
            owner_id=owner_id,
            start=period_start,
            end=period_end,
            kind=RecordKind.EXPENSE,
            category=None if category == ALL_CATEGORIES else category,
            session=session,
        )
        warnings: list[str] = []
        spent = Decimal("0")
        for _, code, total in rows:
            spent += convert_or_keep(total, code, currency, rates, warnings)
        return Consumption(
            category=category,
            spent=quantize_money(spent),
            limit=limit,
            currency=currency,
            warnings=warnings,
        )

    def budget_statuses(
        self,
        owner_id: str,
        period_start: date,
        period_end: date,
        *,
        currency: Optional[str] = None,
        rates: RatesLike = None,
        session: Optional[Session] = None,
    ) -> list[BudgetStatus]:
        """Every budget of the owner with its consumption for the period."""

        aggregate = self.aggregates.get(owner_id, session=session)
        pinned_id = aggregate.pinned_budget_id if aggregate else None
        if currency is None:
            currency = aggregate.default_currency if aggregate else self.default_currency
        statuses = []
        for budget in self.budgets.list_all(owner_id=owner_id, session=session):
            consumption = self.consumption(
                owner_id,
                budget.category,
                period_start,
                period_end,
                limit=budget.amount,
                currency=currency,
                rates=rates,
                session=session,
            )
            statuses.append(
                BudgetStatus(budget=budget, consumption=consumption, pinned=budget.id == pinned_id)
            )
        return statuses
