"""Application context wiring the ledger core together."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from sqlalchemy.engine import Engine

from .config import BaseConfig
from .infra.database import SessionFactory, create_db_engine, create_session_factory, init_database
from .infra.repositories import (
    SQLModelAggregateRepository,
    SQLModelBudgetRepository,
    SQLModelRecordRepository,
)
from .services.aggregation import AggregationEngine
from .services.balance import BalanceMaintainer
from .services.budgeting import BudgetTracker
from .services.currency import RateProvider
from .services.ledger_service import LedgerService
from .services.live import ChangeBus


@dataclass
class AppContext:
    """Centralized context with repositories and services."""

    # Configuration
    config: BaseConfig
    engine: Engine
    session_factory: SessionFactory

    # Repositories
    record_repo: SQLModelRecordRepository
    budget_repo: SQLModelBudgetRepository
    aggregate_repo: SQLModelAggregateRepository

    # Services
    bus: ChangeBus
    balances: BalanceMaintainer
    budgets: BudgetTracker
    ledger: LedgerService
    aggregation: AggregationEngine
    rates: RateProvider

    def close(self) -> None:
        """Stop background fetch and rollover threads and release pooled connections."""
        self.aggregation.close()
        self.engine.dispose()


def create_app_context(
    config: Optional[BaseConfig] = None,
    *,
    today: Callable[[], date] = date.today,
) -> AppContext:
    """Create the engine, initialize the schema and wire every service."""

    if config is None:
        config = BaseConfig()

    engine = create_db_engine(config)
    init_database(engine)
    session_factory = create_session_factory(engine)

    record_repo = SQLModelRecordRepository(session_factory)
    budget_repo = SQLModelBudgetRepository(session_factory)
    aggregate_repo = SQLModelAggregateRepository(session_factory)

    bus = ChangeBus()
    rates = RateProvider()
    balances = BalanceMaintainer(
        aggregate_repo, record_repo, default_currency=config.DEFAULT_CURRENCY
    )
    budgets = BudgetTracker(
        session_factory,
        budget_repo,
        aggregate_repo,
        record_repo,
        default_currency=config.DEFAULT_CURRENCY,
        attempts=config.RETRY_ATTEMPTS,
        backoff=config.RETRY_BACKOFF,
    )
    ledger = LedgerService(
        session_factory,
        record_repo,
        aggregate_repo,
        balances,
        budgets,
        bus,
        default_currency=config.DEFAULT_CURRENCY,
        attempts=config.RETRY_ATTEMPTS,
        backoff=config.RETRY_BACKOFF,
    )
    aggregation = AggregationEngine(
        record_repo,
        balances,
        budgets,
        bus,
        rate_provider=rates,
        category_cap=config.CATEGORY_CAP,
        resume_interval=config.RESUME_INTERVAL,
        rollover_interval=config.ROLLOVER_INTERVAL,
        today=today,
    )

    return AppContext(
        config=config,
        engine=engine,
        session_factory=session_factory,
        record_repo=record_repo,
        budget_repo=budget_repo,
        aggregate_repo=aggregate_repo,
        bus=bus,
        balances=balances,
        budgets=budgets,
        ledger=ledger,
        aggregation=aggregation,
        rates=rates,
    )
