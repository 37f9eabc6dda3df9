"""Windowed aggregation queries, as one-shot fetches and live subscriptions.

Every query here is read-only. Sums are computed in SQL per (group, currency)
and only then normalized, so a request never loads more rows than its result
needs. ``currency``/``rates`` are optional on every shape: without a currency
sums are reported in the records' own currencies, and without rates the rate
provider's snapshot is used.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError

from ..constants.categories import OTHER_BUCKET
from ..domain.repositories import RecordRepository
from ..errors import FetchTimeout, StoreUnavailable, ValidationError
from ..logging_config import get_logger
from ..models.record import Record, RecordKind
from .balance import BalanceMaintainer, BalanceSummary
from .budgeting import BudgetStatus, BudgetTracker
from .currency import RateProvider, RatesLike, convert_or_keep, quantize_money
from .live import ChangeBus, ChangeEvent, DayRollover, Subscription, Topic
from .windows import DateWindow

logger = get_logger("services.aggregation")

T = TypeVar("T")
ZERO = Decimal("0")


@dataclass
class MonthlyTotals:
    year: int
    month: int
    income: Decimal
    expense: Decimal
    currency: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


@dataclass
class CategoryTotal:
    category: str
    amount: Decimal


@dataclass
class CategoryBreakdown:
    window: DateWindow
    totals: list[CategoryTotal]
    currency: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Decimal]:
        return {entry.category: entry.amount for entry in self.totals}

    @property
    def grand_total(self) -> Decimal:
        return sum((entry.amount for entry in self.totals), ZERO)


@dataclass
class DailyBucket:
    date: date
    income: Decimal = ZERO
    expense: Decimal = ZERO


@dataclass
class DailySeries:
    buckets: list[DailyBucket]
    currency: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


def _mixed_currency_warning(codes: set[str], warnings: list[str]) -> None:
    if len(codes) > 1:
        warnings.append(
            "Totals mix currencies "
            + ", ".join(sorted(codes))
            + "; request a display currency to normalize them."
        )


def fold_overflow(totals: dict[str, Decimal], cap: int) -> list[CategoryTotal]:
    """Order categories by amount and fold everything past the cap into ``Other``.

    At most ``cap`` entries come back; no amount is dropped.
    """

    ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    if len(ordered) > cap:
        kept = dict(ordered[: cap - 1])
        overflow = sum((amount for _, amount in ordered[cap - 1 :]), ZERO)
        kept[OTHER_BUCKET] = kept.get(OTHER_BUCKET, ZERO) + overflow
        ordered = sorted(kept.items(), key=lambda item: (-item[1], item[0]))
    return [CategoryTotal(category=name, amount=amount) for name, amount in ordered]


def _at_least_one(value: int, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{field_name} must be a whole number of at least 1.", field=field_name)
    return value


class AggregationEngine:
    """Monthly totals, category breakdown, daily buckets, record listings,
    balance and budget status, each with ``fetch_*`` and ``subscribe_*``.

    When a shape is asked for a display currency without explicit ``rates``,
    the rate provider's current snapshot is used.
    """

    def __init__(
        self,
        records: RecordRepository,
        balances: BalanceMaintainer,
        budgets: BudgetTracker,
        bus: ChangeBus,
        *,
        rate_provider: Optional[RateProvider] = None,
        category_cap: int = 9,
        resume_interval: float = 1.0,
        rollover_interval: float = 60.0,
        today: Callable[[], date] = date.today,
        max_workers: int = 4,
    ) -> None:
        self.records = records
        self.balances = balances
        self.budgets = budgets
        self.bus = bus
        self.rate_provider = rate_provider
        self.category_cap = category_cap
        self.resume_interval = resume_interval
        self.rollover_interval = rollover_interval
        self.today = today
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="pocketledger-fetch"
        )
        self._lock = threading.Lock()
        self._rollovers: set[DayRollover] = set()

    def close(self) -> None:
        with self._lock:
            rollovers, self._rollovers = self._rollovers, set()
        for rollover in rollovers:
            rollover.stop()
        self._executor.shutdown(wait=False, cancel_futures=True)

    # -- plumbing ---------------------------------------------------------

    def _rates(self, rates: RatesLike) -> RatesLike:
        if rates is None and self.rate_provider is not None:
            return self.rate_provider.snapshot()
        return rates

    @staticmethod
    def _read(query: Callable[[], T]) -> T:
        try:
            return query()
        except DBAPIError as exc:
            logger.error("Aggregation read failed", exc_info=True)
            raise StoreUnavailable() from exc

    def _fetch(self, query: Callable[[], T], timeout: Optional[float]) -> T:
        if timeout is None:
            return self._read(query)
        future = self._executor.submit(self._read, query)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            logger.warning("Aggregation fetch timed out", extra={"timeout": timeout})
            raise FetchTimeout() from None

    def _subscribe(
        self,
        owner_id: str,
        query: Callable[[], T],
        callback: Callable[[T], None],
        relevant: Callable[[ChangeEvent], bool],
        name: str,
        *,
        follow_today: bool = False,
    ) -> Subscription[T]:
        subscription: Subscription[T] = Subscription(
            self.bus,
            owner_id,
            compute=lambda: self._read(query),
            callback=callback,
            relevant=relevant,
            resume_interval=self.resume_interval,
            name=name,
        )
        subscription.start()
        if follow_today:
            self._follow_today(subscription)
        return subscription

    def _follow_today(self, subscription: Subscription) -> None:
        """Recompute ``subscription`` when its today-relative window moves."""
        rollover = DayRollover(subscription, self.today, interval=self.rollover_interval)
        with self._lock:
            self._rollovers.add(rollover)

        def forget() -> None:
            with self._lock:
                self._rollovers.discard(rollover)

        subscription.on_close(forget)
        rollover.start()

    @staticmethod
    def _records_in(window_of: Callable[[], DateWindow]) -> Callable[[ChangeEvent], bool]:
        def relevant(event: ChangeEvent) -> bool:
            if event.topic != Topic.RECORDS:
                return False
            window = window_of()
            return event.touches(window.start, window.end_exclusive)

        return relevant

    # -- monthly totals ---------------------------------------------------

    def monthly_totals(
        self,
        owner_id: str,
        year: int,
        month: int,
        *,
        currency: Optional[str] = None,
        rates: RatesLike = None,
    ) -> MonthlyTotals:
        rates = self._rates(rates)
        window = DateWindow.month(year, month)
        rows = self.records.totals_by_kind(
            owner_id=owner_id, start=window.start, end=window.end_exclusive
        )
        result = MonthlyTotals(year=year, month=month, income=ZERO, expense=ZERO, currency=currency)
        for kind, code, total in rows:
            amount = (
                convert_or_keep(total, code, currency, rates, result.warnings) if currency else total
            )
            if kind == RecordKind.INCOME:
                result.income += amount
            else:
                result.expense += amount
        if currency is None:
            _mixed_currency_warning({code for _, code, _ in rows}, result.warnings)
        result.income = quantize_money(result.income)
        result.expense = quantize_money(result.expense)
        return result

    def fetch_monthly_totals(
        self,
        owner_id: str,
        year: int,
        month: int,
        *,
        currency: Optional[str] = None,
        rates: RatesLike = None,
        timeout: Optional[float] = None,
    ) -> MonthlyTotals:
        return self._fetch(
            lambda: self.monthly_totals(owner_id, year, month, currency=currency, rates=rates),
            timeout,
        )

    def subscribe_monthly_totals(
        self,
        owner_id: str,
        year: int,
        month: int,
        callback: Callable[[MonthlyTotals], None],
        *,
        currency: Optional[str] = None,
        rates: RatesLike = None,
    ) -> Subscription[MonthlyTotals]:
        window = DateWindow.month(year, month)
        return self._subscribe(
            owner_id,
            lambda: self.monthly_totals(owner_id, year, month, currency=currency, rates=rates),
            callback,
            self._records_in(lambda: window),
            "monthly totals",
        )

    # -- category breakdown -----------------------------------------------

    def category_breakdown(
        self,
        owner_id: str,
        window: DateWindow,
        *,
        currency: Optional[str] = None,
        rates: RatesLike = None,
    ) -> CategoryBreakdown:
        rates = self._rates(rates)
        rows = self.records.totals_by_category(
            owner_id=owner_id,
            start=window.start,
            end=window.end_exclusive,
            kind=RecordKind.EXPENSE,
        )
        warnings: list[str] = []
        totals: dict[str, Decimal] = {}
        for category, code, total in rows:
            amount = convert_or_keep(total, code, currency, rates, warnings) if currency else total
            totals[category] = totals.get(category, ZERO) + amount
        if currency is None:
            _mixed_currency_warning({code for _, code, _ in rows}, warnings)
        totals = {name: quantize_money(amount) for name, amount in totals.items()}
        return CategoryBreakdown(
            window=window,
            totals=fold_overflow(totals, self.category_cap),
            currency=currency,
            warnings=warnings,
        )

    def fetch_category_breakdown(
        self,
        owner_id: str,
        window: DateWindow,
        *,
        currency: Optional[str] = None,
        rates: RatesLike = None,
        timeout: Optional[float] = None,
    ) -> CategoryBreakdown:
        return self._fetch(
            lambda: self.category_breakdown(owner_id, window, currency=currency, rates=rates),
            timeout,
        )

    def subscribe_category_breakdown(
        self,
        owner_id: str,
        window: DateWindow,
        callback: Callable[[CategoryBreakdown], None],
        *,
        currency: Optional[str] = None,
        rates: RatesLike = None,
    ) -> Subscription[CategoryBreakdown]:
        return self._subscribe(
            owner_id,
            lambda: self.category_breakdown(owner_id, window, currency=currency, rates=rates),
            callback,
            self._records_in(lambda: window),
            "category breakdown",
        )

    # -- daily buckets ----------------------------------------------------

    def daily_buckets(
        self,
        owner_id: str,
        days: int = 7,
        *,
        currency: Optional[str] = None,
        rates: RatesLike = None,
    ) -> DailySeries:
        """One bucket per local calendar day for the last ``days`` days, zeros included."""
        _at_least_one(days, "days")
        rates = self._rates(rates)
        window = DateWindow.last_days(days, today=self.today())
        buckets = {day: DailyBucket(date=day) for day in window.days()}
        rows = self.records.totals_by_day(
            owner_id=owner_id, start=window.start, end=window.end_exclusive
        )
        series = DailySeries(buckets=[], currency=currency)
        for day, kind, code, total in rows:
            bucket = buckets.get(day)
            if bucket is None:
                continue
            amount = (
                convert_or_keep(total, code, currency, rates, series.warnings) if currency else total
            )
            if kind == RecordKind.INCOME:
                bucket.income += amount
            else:
                bucket.expense += amount
        if currency is None:
            _mixed_currency_warning({code for _, _, code, _ in rows}, series.warnings)
        for bucket in buckets.values():
            bucket.income = quantize_money(bucket.income)
            bucket.expense = quantize_money(bucket.expense)
        series.buckets = [buckets[day] for day in sorted(buckets)]
        return series

    def fetch_daily_buckets(
        self,
        owner_id: str,
        days: int = 7,
        *,
        currency: Optional[str] = None,
        rates: RatesLike = None,
        timeout: Optional[float] = None,
    ) -> DailySeries:
        return self._fetch(
            lambda: self.daily_buckets(owner_id, days, currency=currency, rates=rates), timeout
        )

    def subscribe_daily_buckets(
        self,
        owner_id: str,
        days: int,
        callback: Callable[[DailySeries], None],
        *,
        currency: Optional[str] = None,
        rates: RatesLike = None,
    ) -> Subscription[DailySeries]:
        _at_least_one(days, "days")
        return self._subscribe(
            owner_id,
            lambda: self.daily_buckets(owner_id, days, currency=currency, rates=rates),
            callback,
            self._records_in(lambda: DateWindow.last_days(days, today=self.today())),
            "daily buckets",
            follow_today=True,
        )

    # -- record listings --------------------------------------------------

    def list_records(
        self,
        owner_id: str,
        *,
        window: Optional[DateWindow] = None,
        kind: Optional[RecordKind] = None,
        category: Optional[str] = None,
    ) -> list[Record]:
        """Every matching record, newest first by date and then creation time.

        Without ``window`` this is the owner's full history.
        """
        window = window or DateWindow()
        return self.records.search(
            owner_id=owner_id,
            start=window.start,
            end=window.end_exclusive,
            kind=kind,
            category=category,
        )

    def fetch_records(
        self,
        owner_id: str,
        *,
        window: Optional[DateWindow] = None,
        kind: Optional[RecordKind] = None,
        category: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> list[Record]:
        return self._fetch(
            lambda: self.list_records(owner_id, window=window, kind=kind, category=category),
            timeout,
        )

    def subscribe_records(
        self,
        owner_id: str,
        callback: Callable[[list[Record]], None],
        *,
        window: Optional[DateWindow] = None,
        kind: Optional[RecordKind] = None,
        category: Optional[str] = None,
    ) -> Subscription[list[Record]]:
        return self._subscribe(
            owner_id,
            lambda: self.list_records(owner_id, window=window, kind=kind, category=category),
            callback,
            self._records_in(lambda: window or DateWindow()),
            "records",
        )

    def top_records(
        self, owner_id: str, limit: int = 3, *, window: Optional[DateWindow] = None
    ) -> list[Record]:
        """Largest records by amount in ``window`` (default: the current year)."""
        _at_least_one(limit, "limit")
        window = window or DateWindow.year(self.today().year)
        return self.records.top_by_amount(
            owner_id=owner_id, start=window.start, end=window.end_exclusive, limit=limit
        )

    def fetch_top_records(
        self,
        owner_id: str,
        limit: int = 3,
        *,
        window: Optional[DateWindow] = None,
        timeout: Optional[float] = None,
    ) -> list[Record]:
        return self._fetch(lambda: self.top_records(owner_id, limit, window=window), timeout)

    def subscribe_top_records(
        self,
        owner_id: str,
        limit: int,
        callback: Callable[[list[Record]], None],
        *,
        window: Optional[DateWindow] = None,
    ) -> Subscription[list[Record]]:
        _at_least_one(limit, "limit")
        return self._subscribe(
            owner_id,
            lambda: self.top_records(owner_id, limit, window=window),
            callback,
            self._records_in(lambda: window or DateWindow.year(self.today().year)),
            "top records",
            follow_today=window is None,
        )

    def recent_records(self, owner_id: str, limit: int = 5) -> list[Record]:
        _at_least_one(limit, "limit")
        return self.records.recent(owner_id=owner_id, limit=limit)

    def fetch_recent_records(
        self, owner_id: str, limit: int = 5, *, timeout: Optional[float] = None
    ) -> list[Record]:
        return self._fetch(lambda: self.recent_records(owner_id, limit), timeout)

    def subscribe_recent_records(
        self, owner_id: str, limit: int, callback: Callable[[list[Record]], None]
    ) -> Subscription[list[Record]]:
        _at_least_one(limit, "limit")
        return self._subscribe(
            owner_id,
            lambda: self.recent_records(owner_id, limit),
            callback,
            lambda event: event.topic == Topic.RECORDS,
            "recent records",
        )

    # -- balance ----------------------------------------------------------

    def balance(
        self, owner_id: str, *, currency: Optional[str] = None, rates: RatesLike = None
    ) -> BalanceSummary:
        """Maintained balance, totalled in ``currency`` or the owner's display currency."""
        return self.balances.balance(owner_id, currency=currency, rates=self._rates(rates))

    def fetch_balance(
        self,
        owner_id: str,
        *,
        currency: Optional[str] = None,
        rates: RatesLike = None,
        timeout: Optional[float] = None,
    ) -> BalanceSummary:
        return self._fetch(lambda: self.balance(owner_id, currency=currency, rates=rates), timeout)

    def subscribe_balance(
        self,
        owner_id: str,
        callback: Callable[[BalanceSummary], None],
        *,
        currency: Optional[str] = None,
        rates: RatesLike = None,
    ) -> Subscription[BalanceSummary]:
        return self._subscribe(
            owner_id,
            lambda: self.balance(owner_id, currency=currency, rates=rates),
            callback,
            lambda event: event.topic in (Topic.RECORDS, Topic.AGGREGATE),
            "balance",
        )

    # -- budgets ----------------------------------------------------------

    def _budget_period(self, window: Optional[DateWindow]) -> DateWindow:
        if window is not None:
            return window
        today = self.today()
        return DateWindow.month(today.year, today.month)

    def budget_statuses(
        self,
        owner_id: str,
        *,
        window: Optional[DateWindow] = None,
        currency: Optional[str] = None,
        rates: RatesLike = None,
    ) -> list[BudgetStatus]:
        """Budgets with consumption for ``window`` (default: the current month)."""
        rates = self._rates(rates)
        period = self._budget_period(window)
        return self.budgets.budget_statuses(
            owner_id, period.start, period.end_exclusive, currency=currency, rates=rates
        )

    def fetch_budget_statuses(
        self,
        owner_id: str,
        *,
        window: Optional[DateWindow] = None,
        currency: Optional[str] = None,
        rates: RatesLike = None,
        timeout: Optional[float] = None,
    ) -> list[BudgetStatus]:
        return self._fetch(
            lambda: self.budget_statuses(owner_id, window=window, currency=currency, rates=rates),
            timeout,
        )

    def subscribe_budget_statuses(
        self,
        owner_id: str,
        callback: Callable[[list[BudgetStatus]], None],
        *,
        window: Optional[DateWindow] = None,
        currency: Optional[str] = None,
        rates: RatesLike = None,
    ) -> Subscription[list[BudgetStatus]]:
        in_period = self._records_in(lambda: self._budget_period(window))

        def relevant(event: ChangeEvent) -> bool:
            return event.topic in (Topic.BUDGETS, Topic.AGGREGATE) or in_period(event)

        return self._subscribe(
            owner_id,
            lambda: self.budget_statuses(owner_id, window=window, currency=currency, rates=rates),
            callback,
            relevant,
            "budget statuses",
            follow_today=window is None,
        )
