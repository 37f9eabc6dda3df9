"""Domain services: balance maintenance, budgets, aggregation and live queries."""

from .aggregation import (
    AggregationEngine,
    CategoryBreakdown,
    CategoryTotal,
    DailyBucket,
    DailySeries,
    MonthlyTotals,
)
from .balance import BalanceMaintainer, BalanceSummary, Entry
from .budgeting import BudgetStatus, BudgetTracker, Consumption
from .currency import DEFAULT_RATES, RateProvider, RateTable, convert
from .ledger_service import LedgerService
from .live import ChangeBus, ChangeEvent, Subscription, Topic
from .windows import DateWindow

__all__ = [
    "AggregationEngine",
    "BalanceMaintainer",
    "BalanceSummary",
    "BudgetStatus",
    "BudgetTracker",
    "CategoryBreakdown",
    "CategoryTotal",
    "ChangeBus",
    "ChangeEvent",
    "Consumption",
    "DEFAULT_RATES",
    "DailyBucket",
    "DailySeries",
    "DateWindow",
    "Entry",
    "LedgerService",
    "MonthlyTotals",
    "RateProvider",
    "RateTable",
    "Subscription",
    "Topic",
    "convert",
]
