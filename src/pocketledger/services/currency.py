"""Currency normalization against a read-only exchange-rate snapshot."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Callable, Mapping, Optional, Union

from ..errors import RateUnavailable
from ..logging_config import get_logger

logger = get_logger("services.currency")

CENT = Decimal("0.01")
DEFAULT_BASE = "INR"

# Offline fallback, 1 INR expressed in each currency.
DEFAULT_RATES: dict[str, float] = {
    "INR": 1.0,
    "USD": 0.012,
    "EUR": 0.011,
    "GBP": 0.0095,
    "JPY": 1.89,
    "AUD": 0.018,
}


def quantize_money(value: Decimal) -> Decimal:
    """Round to hundredths for display and comparison."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor(amount: Decimal) -> int:
    """Convert a two-decimal amount into an integer count of hundredths."""
    return int(quantize_money(amount) * 100)


def from_minor(minor: int) -> Decimal:
    return (Decimal(minor) / 100).quantize(CENT)


@dataclass(frozen=True)
class RateTable:
    """Immutable snapshot of ``{code: units of code per one unit of base}``."""

    rates: Mapping[str, Decimal]
    base: str = DEFAULT_BASE
    fetched_at: Optional[datetime] = None

    @classmethod
    def from_mapping(
        cls,
        mapping: Mapping[str, Union[float, int, str, Decimal]],
        *,
        base: Optional[str] = None,
        fetched_at: Optional[datetime] = None,
    ) -> "RateTable":
        """Build a snapshot, skipping entries that are missing, zero, or malformed."""

        rates: dict[str, Decimal] = {}
        for code, raw in (mapping or {}).items():
            try:
                rate = Decimal(str(raw))
            except (InvalidOperation, ValueError, TypeError):
                logger.warning("Ignoring malformed exchange rate", extra={"currency": code})
                continue
            if not rate.is_finite() or rate <= 0:
                logger.warning("Ignoring non-positive exchange rate", extra={"currency": code})
                continue
            rates[str(code).upper()] = rate
        if base is None:
            base = next((code for code, rate in rates.items() if rate == 1), DEFAULT_BASE)
        return cls(rates=rates, base=base.upper(), fetched_at=fetched_at)

    def rate_for(self, currency: str) -> Decimal:
        code = currency.upper()
        rate = self.rates.get(code)
        if rate is not None:
            return rate
        if code == self.base:
            return Decimal(1)
        raise RateUnavailable(code)

    def __contains__(self, currency: object) -> bool:
        return isinstance(currency, str) and (
            currency.upper() in self.rates or currency.upper() == self.base
        )

    def is_stale(self, max_age: timedelta, *, now: Optional[datetime] = None) -> bool:
        if self.fetched_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now - self.fetched_at > max_age


RatesLike = Union[RateTable, Mapping[str, Union[float, int, str, Decimal]], None]


def _as_table(rates: RatesLike) -> Optional[RateTable]:
    if rates is None or isinstance(rates, RateTable):
        return rates
    return RateTable.from_mapping(rates)


def convert(amount: Decimal, from_currency: str, to_currency: str, rates: RatesLike) -> Decimal:
    """Convert ``amount`` between currencies through the table's base.

    Identity conversions never consult ``rates``. Raises :class:`RateUnavailable`
    when either code is missing from the table.
    """

    source = from_currency.upper()
    target = to_currency.upper()
    if source == target:
        return amount
    table = _as_table(rates)
    if table is None:
        raise RateUnavailable(source)
    in_base = Decimal(amount) / table.rate_for(source)
    return in_base * table.rate_for(target)


def convert_or_keep(
    amount: Decimal,
    from_currency: str,
    to_currency: str,
    rates: RatesLike,
    warnings: list[str],
) -> Decimal:
    """Convert, or return ``amount`` unchanged and record why.

    This is the aggregation policy: a missing rate never fails a query; the
    unconverted figure is used and a warning is surfaced to the caller.
    """

    try:
        return convert(amount, from_currency, to_currency, rates)
    except RateUnavailable as exc:
        message = (
            f"{exc} Showing {from_currency.upper()} amounts unconverted in {to_currency.upper()} totals."
        )
        if message not in warnings:
            warnings.append(message)
        return amount


@dataclass
class RateProvider:
    """Holds the latest good rate snapshot supplied by an external rate source.

    ``refresh`` swaps in a freshly fetched table; when the fetch fails or
    returns nothing usable the previous snapshot stays in place and the error
    is kept in ``last_error``.
    """

    table: RateTable = field(
        default_factory=lambda: RateTable.from_mapping(DEFAULT_RATES, base=DEFAULT_BASE)
    )
    last_error: Optional[str] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def snapshot(self) -> RateTable:
        with self._lock:
            return self.table

    def refresh(
        self,
        fetch: Callable[[], Mapping[str, Union[float, int, str, Decimal]]],
        *,
        base: Optional[str] = None,
    ) -> RateTable:
        try:
            mapping = fetch()
        except Exception as exc:  # external collaborator; keep serving the last snapshot
            logger.warning("Exchange-rate refresh failed; keeping previous rates", exc_info=True)
            with self._lock:
                self.last_error = f"Failed to fetch exchange rates: {exc}. Using previous rates."
                return self.table

        table = RateTable.from_mapping(
            mapping, base=base, fetched_at=datetime.now(timezone.utc)
        )
        with self._lock:
            if not table.rates:
                self.last_error = "Exchange-rate source returned no usable rates."
                logger.warning(self.last_error)
                return self.table
            self.table = table
            self.last_error = None
        logger.info("Exchange rates refreshed", extra={"base": table.base, "count": len(table.rates)})
        return table
