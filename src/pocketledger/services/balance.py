"""Running-balance maintenance.

Balances are kept per currency (one ``ledger_balance`` row per owner and
currency) and changed only through an atomic upsert-increment, so concurrent
mutations never lose an update and the very first write for an owner cannot
overwrite a concurrently created row. Normalization to a display currency
happens at read time.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Protocol

from sqlmodel import Session

from ..domain.repositories import AggregateRepository, RecordRepository
from ..logging_config import get_logger
from ..models.record import RecordKind
from .currency import RatesLike, convert_or_keep, from_minor, quantize_money, to_minor

logger = get_logger("services.balance")


class _Signed(Protocol):
    kind: RecordKind
    amount: Decimal


def signed_amount(record: _Signed) -> Decimal:
    """Income counts positive, expense negative."""
    return record.amount if record.kind == RecordKind.INCOME else -record.amount


@dataclass(frozen=True)
class Entry:
    """Detached view of the balance-relevant fields of a record."""

    owner_id: str
    kind: RecordKind
    amount: Decimal
    currency: str
    occurred_on: date

    @classmethod
    def of(cls, record: Any) -> "Entry":
        return cls(
            owner_id=record.owner_id,
            kind=record.kind,
            amount=record.amount,
            currency=record.currency,
            occurred_on=record.occurred_on,
        )

    def patched(self, changes: dict[str, Any]) -> "Entry":
        relevant = {k: changes[k] for k in ("kind", "amount", "currency", "occurred_on") if k in changes}
        return replace(self, **relevant)

    @property
    def signed_amount(self) -> Decimal:
        return signed_amount(self)


@dataclass
class BalanceSummary:
    """Per-currency balances plus their total in the display currency."""

    owner_id: str
    by_currency: dict[str, Decimal]
    currency: Optional[str] = None
    total: Optional[Decimal] = None
    warnings: list[str] = field(default_factory=list)


class BalanceMaintainer:
    """Applies signed deltas for record mutations inside the caller's transaction."""

    def __init__(
        self,
        aggregates: AggregateRepository,
        records: RecordRepository,
        *,
        default_currency: str = "INR",
    ) -> None:
        self.aggregates = aggregates
        self.records = records
        self.default_currency = default_currency

    def apply_delta(self, owner_id: str, currency: str, delta: Decimal, *, session: Session) -> None:
        """Upsert the owner's aggregate and atomically add ``delta`` in ``currency``."""
        self.aggregates.ensure(owner_id, default_currency=self.default_currency, session=session)
        delta_minor = to_minor(delta)
        if delta_minor == 0:
            return
        self.aggregates.increment_balance(owner_id, currency, delta_minor, session=session)
        logger.debug(
            "Balance delta applied",
            extra={"owner_id": owner_id, "currency": currency, "delta_minor": delta_minor},
        )

    def record_created(self, entry: Entry, *, session: Session) -> None:
        self.apply_delta(entry.owner_id, entry.currency, entry.signed_amount, session=session)

    def record_deleted(self, entry: Entry, *, session: Session) -> None:
        self.apply_delta(entry.owner_id, entry.currency, -entry.signed_amount, session=session)

    def record_edited(self, old: Entry, new: Entry, *, session: Session) -> None:
        if old.currency == new.currency:
            delta = new.signed_amount - old.signed_amount
            self.apply_delta(new.owner_id, new.currency, delta, session=session)
            return
        # Currency changed: move the amount between currency rows.
        self.apply_delta(old.owner_id, old.currency, -old.signed_amount, session=session)
        self.apply_delta(new.owner_id, new.currency, new.signed_amount, session=session)

    def balance(
        self,
        owner_id: str,
        *,
        currency: Optional[str] = None,
        rates: RatesLike = None,
        session: Optional[Session] = None,
    ) -> BalanceSummary:
        """Read the per-currency balances and a total normalized into ``currency``.

        Without ``currency`` the owner's display currency is used, or the
        configured default when the owner has no aggregate yet.
        """
        by_currency = {
            code: from_minor(minor)
            for code, minor in sorted(self.aggregates.balances(owner_id, session=session).items())
        }
        summary = BalanceSummary(owner_id=owner_id, by_currency=by_currency)
        if currency is None:
            aggregate = self.aggregates.get(owner_id, session=session)
            currency = aggregate.default_currency if aggregate else self.default_currency
        summary.currency = currency.upper()
        total = Decimal("0")
        for code, amount in by_currency.items():
            total += convert_or_keep(amount, code, summary.currency, rates, summary.warnings)
        summary.total = quantize_money(total)
        return summary

    def drift(self, owner_id: str, *, session: Optional[Session] = None) -> dict[str, Decimal]:
        """Compare maintained balances with a full re-scan; non-empty means inconsistency.

        Diagnostic only: this is the one place that reads every record of an owner.
        """
        maintained = {
            code: from_minor(minor)
            for code, minor in self.aggregates.balances(owner_id, session=session).items()
        }
        scanned = self.records.signed_totals_by_currency(owner_id=owner_id, session=session)
        drift: dict[str, Decimal] = {}
        for code in set(maintained) | set(scanned):
            difference = maintained.get(code, Decimal("0")) - quantize_money(
                scanned.get(code, Decimal("0"))
            )
            if difference != 0:
                drift[code] = difference
        return drift
