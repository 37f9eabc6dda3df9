"""Pytest configuration and shared fixtures for the ledger core tests.

Every test gets its own temp-file SQLite database (WAL, BEGIN IMMEDIATE) wired
into a full ``AppContext``, plus a controllable clock for window queries.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

import pytest

from pocketledger.config import TestingConfig
from pocketledger.context import create_app_context
from pocketledger.models import Record, RecordKind


class FixedClock:
    """Stand-in for ``date.today`` that tests can move."""

    def __init__(self, today: date) -> None:
        self.today = today

    def __call__(self) -> date:
        return self.today


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def config(tmp_path, monkeypatch) -> TestingConfig:
    """Testing configuration pointing at an isolated data directory."""

    monkeypatch.setenv("POCKETLEDGER_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("POCKETLEDGER_DATABASE_URL", raising=False)
    return TestingConfig(database_url=f"sqlite:///{tmp_path / 'ledger.db'}")


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(date(2024, 6, 7))


@pytest.fixture(scope="function")
def ctx(config, clock):
    """Fully wired application context; disposed after the test."""

    context = create_app_context(config, today=clock)
    yield context
    context.close()


@pytest.fixture
def session_factory(ctx):
    return ctx.session_factory


# =============================================================================
# Test Data Factories
# =============================================================================


@pytest.fixture
def record_factory(ctx):
    """Create records through the ledger facade so balances stay maintained."""

    def _create_record(
        owner_id: str = "alice",
        *,
        amount: str | Decimal = "10.00",
        kind: RecordKind = RecordKind.EXPENSE,
        category: str = "Food",
        occurred_on: str | date = "2024-06-01",
        currency: str = "INR",
        name: str | None = None,
        **extra: Any,
    ) -> Record:
        payload = {
            "name": name or f"{category} {amount}",
            "amount": Decimal(str(amount)),
            "kind": kind,
            "category": category,
            "occurred_on": occurred_on,
            "currency": currency,
            **extra,
        }
        return ctx.ledger.create_record(owner_id, payload)

    return _create_record


@pytest.fixture
def expense(record_factory):
    def _expense(amount, category="Food", occurred_on="2024-06-01", **kwargs) -> Record:
        return record_factory(amount=amount, category=category, occurred_on=occurred_on, **kwargs)

    return _expense


@pytest.fixture
def income(record_factory):
    def _income(amount, category="Salary", occurred_on="2024-06-02", **kwargs) -> Record:
        return record_factory(
            amount=amount,
            kind=RecordKind.INCOME,
            category=category,
            occurred_on=occurred_on,
            **kwargs,
        )

    return _income
