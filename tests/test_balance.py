"""Balance maintenance: invariant, concurrency, currency moves."""

from __future__ import annotations

import random
import threading
import time
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlmodel import select

from pocketledger.errors import RecordNotFound
from pocketledger.models import LedgerBalance, Record, RecordKind
from pocketledger.services.balance import Entry


def _balance(ctx, owner_id: str = "alice") -> dict[str, Decimal]:
    return ctx.balances.balance(owner_id).by_currency


def test_create_edit_delete_keep_balance(ctx, expense, income) -> None:
    salary = income("500")
    food = expense("150")
    assert _balance(ctx) == {"INR": Decimal("350.00")}

    ctx.ledger.edit_record("alice", food.id, {"amount": "100"})
    assert _balance(ctx) == {"INR": Decimal("400.00")}

    ctx.ledger.edit_record("alice", food.id, {"kind": RecordKind.INCOME})
    assert _balance(ctx) == {"INR": Decimal("600.00")}

    ctx.ledger.delete_record("alice", salary.id)
    assert _balance(ctx) == {"INR": Decimal("100.00")}
    assert ctx.balances.drift("alice") == {}


@pytest.mark.parametrize("seed", [1, 7, 42])
def test_random_mutation_sequence_matches_rescan(ctx, record_factory, seed) -> None:
    rng = random.Random(seed)
    live: dict[int, Decimal] = {}

    for _ in range(40):
        action = rng.choice(["create", "create", "edit", "delete"])
        if action == "create" or not live:
            kind = rng.choice([RecordKind.INCOME, RecordKind.EXPENSE])
            amount = Decimal(rng.randint(1, 50_000)) / 100
            record = record_factory(amount=amount, kind=kind)
            live[record.id] = record.signed_amount
        elif action == "edit":
            record_id = rng.choice(sorted(live))
            amount = Decimal(rng.randint(1, 50_000)) / 100
            record = ctx.ledger.edit_record("alice", record_id, {"amount": amount})
            live[record_id] = record.signed_amount
        else:
            record_id = rng.choice(sorted(live))
            assert ctx.ledger.delete_record("alice", record_id) is True
            del live[record_id]

        expected = sum(live.values(), Decimal("0"))
        assert _balance(ctx).get("INR", Decimal("0")) == expected
    assert ctx.balances.drift("alice") == {}


def test_delete_is_idempotent(ctx, expense) -> None:
    record = expense("25")

    assert ctx.ledger.delete_record("alice", record.id) is True
    assert ctx.ledger.delete_record("alice", record.id) is False
    assert _balance(ctx) == {"INR": Decimal("0.00")}


def test_currency_change_moves_amount_between_rows(ctx, expense, income) -> None:
    income("100", currency="USD")
    food = expense("40", currency="USD")

    ctx.ledger.edit_record("alice", food.id, {"currency": "eur"})

    assert _balance(ctx) == {"EUR": Decimal("-40.00"), "USD": Decimal("100.00")}
    assert ctx.balances.drift("alice") == {}


def test_balance_normalizes_when_currency_requested(ctx, expense, income) -> None:
    income("1000", currency="INR")
    expense("12", currency="USD")

    summary = ctx.balances.balance("alice", currency="INR", rates={"INR": 1, "USD": 0.012})

    assert summary.total == Decimal("0.00")
    assert summary.warnings == []


def test_balance_without_target_uses_owner_display_currency(ctx, expense, income) -> None:
    income("1000", currency="INR")
    expense("6", currency="USD")
    ctx.ledger.set_default_currency("alice", "USD")

    summary = ctx.balances.balance("alice", rates={"INR": 1, "USD": 0.012})

    assert summary.currency == "USD"
    assert summary.total == Decimal("6.00")
    assert summary.by_currency == {"INR": Decimal("1000.00"), "USD": Decimal("-6.00")}
    assert summary.warnings == []


def test_balance_without_rates_keeps_amounts_and_warns(ctx, expense, income) -> None:
    income("10", currency="INR")
    expense("1", currency="USD")

    summary = ctx.balances.balance("alice")

    assert summary.currency == "INR"
    assert summary.total == Decimal("9.00")
    assert len(summary.warnings) == 1
    assert "USD" in summary.warnings[0]


def test_balance_of_owner_without_records_uses_preferred_currency(ctx) -> None:
    ctx.ledger.set_default_currency("zed", "eur")

    summary = ctx.balances.balance("zed")

    assert summary.currency == "EUR"
    assert summary.total == Decimal("0.00")
    assert ctx.balances.balance("nobody").currency == "INR"


def test_first_writes_for_new_owner_race_without_losing_updates(ctx, record_factory) -> None:
    workers = 8
    barrier = threading.Barrier(workers)
    errors: list[BaseException] = []

    def create() -> None:
        try:
            barrier.wait()
            record_factory("carol", amount="10", kind=RecordKind.INCOME)
        except BaseException as exc:  # surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=create) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert _balance(ctx, "carol") == {"INR": Decimal("80.00")}
    with ctx.session_factory() as session:
        rows = session.exec(select(LedgerBalance).where(LedgerBalance.owner_id == "carol")).all()
        assert len(rows) == 1


def test_concurrent_income_and_expense_stress(ctx, record_factory) -> None:
    pairs = 10
    errors: list[BaseException] = []

    def worker(kind: RecordKind, amount: str) -> None:
        try:
            for _ in range(pairs):
                record_factory("dave", amount=amount, kind=kind)
        except BaseException as exc:
            errors.append(exc)

    threads = [
        threading.Thread(target=worker, args=(RecordKind.INCOME, "10")),
        threading.Thread(target=worker, args=(RecordKind.EXPENSE, "3")),
        threading.Thread(target=worker, args=(RecordKind.INCOME, "10")),
        threading.Thread(target=worker, args=(RecordKind.EXPENSE, "3")),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert _balance(ctx, "dave") == {"INR": Decimal("140.00")}
    assert ctx.balances.drift("dave") == {}


def test_concurrent_deletes_of_same_record_apply_once(ctx, income) -> None:
    record = income("30")
    results: list[bool] = []
    barrier = threading.Barrier(4)

    def delete() -> None:
        barrier.wait()
        results.append(ctx.ledger.delete_record("alice", record.id))

    threads = [threading.Thread(target=delete) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == [False, False, False, True]
    assert _balance(ctx) == {"INR": Decimal("0.00")}


def _race(*jobs, rng: random.Random) -> list[BaseException]:
    """Start every job behind a barrier, each after a small seeded delay."""
    barrier = threading.Barrier(len(jobs))
    errors: list[BaseException] = []

    def run(job, delay: float) -> None:
        try:
            barrier.wait()
            time.sleep(delay)
            job()
        except BaseException as exc:  # surfaced to the test
            errors.append(exc)

    threads = [threading.Thread(target=run, args=(job, rng.random() / 100)) for job in jobs]
    rng.shuffle(threads)
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return errors


@pytest.mark.parametrize("seed", range(10))
def test_concurrent_edits_apply_every_delta(ctx, expense, income, seed) -> None:
    salary = income("5")
    food = expense("5")
    assert _balance(ctx) == {"INR": Decimal("0.00")}

    errors = _race(
        lambda: ctx.ledger.edit_record("alice", salary.id, {"amount": "15"}),
        lambda: ctx.ledger.edit_record("alice", food.id, {"amount": "8"}),
        rng=random.Random(seed),
    )

    assert errors == []
    assert _balance(ctx) == {"INR": Decimal("7.00")}
    assert ctx.balances.drift("alice") == {}


@pytest.mark.parametrize("seed", [3, 11, 29, 57])
def test_concurrent_edits_of_one_record_keep_balance_in_step(ctx, expense, seed) -> None:
    rng = random.Random(seed)
    record = expense("100")
    amounts = [Decimal(rng.randint(1, 50_000)) / 100 for _ in range(6)]

    errors = _race(
        *[
            (lambda amount=amount: ctx.ledger.edit_record("alice", record.id, {"amount": amount}))
            for amount in amounts
        ],
        rng=rng,
    )

    assert errors == []
    final = ctx.ledger.get_record("alice", record.id)
    assert final.amount in amounts
    assert _balance(ctx) == {"INR": -final.amount}
    assert ctx.balances.drift("alice") == {}


@pytest.mark.parametrize("seed", [2, 5, 13, 21, 34])
def test_concurrent_edit_and_delete_resolve_to_one_winner(ctx, expense, income, seed) -> None:
    income("50")
    record = expense("20")
    outcomes: dict[str, object] = {}

    def edit() -> None:
        try:
            ctx.ledger.edit_record("alice", record.id, {"amount": "35", "category": "Travel"})
            outcomes["edit"] = "applied"
        except RecordNotFound:
            outcomes["edit"] = "not found"

    def delete() -> None:
        outcomes["delete"] = ctx.ledger.delete_record("alice", record.id)

    errors = _race(edit, delete, rng=random.Random(seed))

    assert errors == []
    assert outcomes["delete"] is True
    assert outcomes["edit"] in {"applied", "not found"}
    with pytest.raises(RecordNotFound):
        ctx.ledger.get_record("alice", record.id)
    assert _balance(ctx) == {"INR": Decimal("50.00")}
    assert ctx.balances.drift("alice") == {}


def test_edit_retries_when_version_moves_underneath(ctx, expense, monkeypatch) -> None:
    record = expense("40")
    guarded_update = ctx.record_repo.update_if_version
    seen_versions: list[int] = []

    def update_after_interference(record_id, *, owner_id, expected_version, changes, session):
        seen_versions.append(expected_version)
        if len(seen_versions) == 1:
            session.exec(  # type: ignore[call-overload]
                update(Record).where(Record.id == record_id).values(version=Record.version + 1)
            )
        return guarded_update(
            record_id,
            owner_id=owner_id,
            expected_version=expected_version,
            changes=changes,
            session=session,
        )

    monkeypatch.setattr(ctx.record_repo, "update_if_version", update_after_interference)

    edited = ctx.ledger.edit_record("alice", record.id, {"amount": "55"})

    assert seen_versions == [1, 1]
    assert edited.amount == Decimal("55.00")
    assert _balance(ctx) == {"INR": Decimal("-55.00")}
    assert ctx.balances.drift("alice") == {}


def test_delete_retries_when_version_moves_underneath(ctx, expense, monkeypatch) -> None:
    record = expense("40")
    guarded_delete = ctx.record_repo.delete_if_version
    attempts: list[int] = []

    def delete_after_interference(record_id, *, owner_id, expected_version, session):
        attempts.append(expected_version)
        if len(attempts) == 1:
            session.exec(  # type: ignore[call-overload]
                update(Record).where(Record.id == record_id).values(version=Record.version + 1)
            )
        return guarded_delete(
            record_id, owner_id=owner_id, expected_version=expected_version, session=session
        )

    monkeypatch.setattr(ctx.record_repo, "delete_if_version", delete_after_interference)

    assert ctx.ledger.delete_record("alice", record.id) is True
    assert len(attempts) == 2
    assert _balance(ctx) == {"INR": Decimal("0.00")}


def test_entry_patched_only_takes_balance_fields(expense) -> None:
    entry = Entry.of(expense("10"))

    patched = entry.patched({"amount": Decimal("4"), "name": "ignored"})

    assert patched.amount == Decimal("4")
    assert patched.signed_amount == Decimal("-4")
    assert entry.amount == Decimal("10.00")
