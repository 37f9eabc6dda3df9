from __future__ import annotations

from datetime import date
from decimal import Decimal

from pocketledger.models import RecordKind


def _seed(expense, income):
    expense("100", occurred_on="2024-06-01", name="first")
    income("500", occurred_on="2024-06-02", name="salary")
    expense("50", occurred_on="2024-06-01", name="second")
    expense("20", category="Transport", occurred_on="2024-05-31", name="may")
    expense("5", occurred_on="2024-07-01", name="july")


def test_search_orders_by_occurred_on_then_created_at(ctx, expense, income) -> None:
    _seed(expense, income)

    rows = ctx.record_repo.search(owner_id="alice")

    # Same day: the later creation comes first.
    assert [row.name for row in rows] == ["july", "salary", "second", "first", "may"]


def test_search_window_is_half_open(ctx, expense, income) -> None:
    _seed(expense, income)

    rows = ctx.record_repo.search(
        owner_id="alice", start=date(2024, 6, 1), end=date(2024, 7, 1)
    )

    assert {row.name for row in rows} == {"first", "second", "salary"}


def test_search_filters_kind_and_category(ctx, expense, income) -> None:
    _seed(expense, income)

    incomes = ctx.record_repo.search(owner_id="alice", kind=RecordKind.INCOME)
    transport = ctx.record_repo.search(owner_id="alice", category="Transport")

    assert [row.name for row in incomes] == ["salary"]
    assert [row.name for row in transport] == ["may"]


def test_queries_are_scoped_to_owner(ctx, expense, record_factory) -> None:
    expense("10")
    record_factory("bob", amount="99")

    assert len(ctx.record_repo.search(owner_id="alice")) == 1
    assert ctx.record_repo.search(owner_id="bob")[0].amount == Decimal("99.00")
    first = ctx.record_repo.search(owner_id="alice")[0]
    assert ctx.record_repo.get(first.id, owner_id="bob") is None


def test_top_by_amount_breaks_ties_by_newest(ctx, expense) -> None:
    expense("30", name="older tie")
    expense("80", name="big")
    expense("30", name="newer tie")

    rows = ctx.record_repo.top_by_amount(owner_id="alice", start=None, end=None, limit=3)

    assert [row.name for row in rows] == ["big", "newer tie", "older tie"]


def test_totals_by_kind_groups_per_currency(ctx, expense, income) -> None:
    expense("10", currency="INR")
    expense("15", currency="USD")
    income("40", currency="INR")

    rows = ctx.record_repo.totals_by_kind(owner_id="alice", start=None, end=None)

    totals = {(kind, currency): total for kind, currency, total in rows}
    assert totals == {
        (RecordKind.EXPENSE, "INR"): Decimal("10"),
        (RecordKind.EXPENSE, "USD"): Decimal("15"),
        (RecordKind.INCOME, "INR"): Decimal("40"),
    }


def test_totals_by_day_returns_calendar_dates(ctx, expense) -> None:
    expense("10", occurred_on="2024-06-03")
    expense("5", occurred_on="2024-06-03")

    rows = ctx.record_repo.totals_by_day(
        owner_id="alice", start=date(2024, 6, 1), end=date(2024, 6, 8)
    )

    assert rows == [(date(2024, 6, 3), RecordKind.EXPENSE, "INR", Decimal("15"))]


def test_update_if_version_rejects_stale_version(ctx, expense) -> None:
    record = expense("10")

    with ctx.session_factory() as session:
        applied = ctx.record_repo.update_if_version(
            record.id,
            owner_id="alice",
            expected_version=record.version + 1,
            changes={"name": "stale"},
            session=session,
        )

    assert applied is False
    assert ctx.record_repo.get(record.id, owner_id="alice").name == record.name
