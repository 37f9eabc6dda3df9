"""Inbound facade: record and budget mutations for an authenticated owner.

Every mutation runs in a single store transaction together with the balance
delta it implies, and the change event is published after commit but before
the call returns.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping, Optional, TypeVar, Union

from pydantic import ValidationError as PydanticValidationError
from sqlmodel import Session, SQLModel

from ..domain.repositories import AggregateRepository, RecordRepository
from ..errors import RecordNotFound, ValidationError
from ..infra.database import ConflictDetected, SessionFactory, run_in_transaction
from ..logging_config import get_logger
from ..models.budget import Budget, BudgetCreate, BudgetUpdate
from ..models.record import Record, RecordCreate, RecordUpdate, normalize_currency
from .balance import BalanceMaintainer, Entry
from .budgeting import BudgetTracker
from .live import ChangeBus, Topic

logger = get_logger("services.ledger")

M = TypeVar("M", bound=SQLModel)


def _validated(model: type[M], data: Union[M, Mapping[str, Any]]) -> M:
    """Validate ``data`` into ``model``, translating pydantic errors to ours."""

    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        message = first.get("msg", "Invalid value")
        if field:
            message = f"{field}: {message}"
        raise ValidationError(message, field=field) from exc


def _require_owner(owner_id: str) -> str:
    if not isinstance(owner_id, str) or not owner_id.strip():
        raise ValidationError("An owner id is required.", field="owner_id")
    return owner_id


class LedgerService:
    """Create, edit and delete records and budgets, keeping balances consistent."""

    def __init__(
        self,
        session_factory: SessionFactory,
        records: RecordRepository,
        aggregates: AggregateRepository,
        balances: BalanceMaintainer,
        budgets: BudgetTracker,
        bus: ChangeBus,
        *,
        default_currency: str = "INR",
        attempts: int = 5,
        backoff: float = 0.05,
    ) -> None:
        self.session_factory = session_factory
        self.records = records
        self.aggregates = aggregates
        self.balances = balances
        self.budgets = budgets
        self.bus = bus
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

    # Records

    def create_record(self, owner_id: str, data: Union[RecordCreate, Mapping[str, Any]]) -> Record:
        _require_owner(owner_id)
        payload = _validated(RecordCreate, data)

        def work(session: Session) -> Record:
            record = self.records.create(
                Record(owner_id=owner_id, **payload.model_dump()),
                owner_id=owner_id,
                session=session,
            )
            self.balances.record_created(Entry.of(record), session=session)
            return record

        record = self._transaction(work, operation="create record")
        logger.info(
            "Record created",
            extra={
                "owner_id": owner_id,
                "record_id": record.id,
                "kind": record.kind.value,
                "delta": str(record.signed_amount),
                "currency": record.currency,
            },
        )
        self.bus.publish(owner_id, Topic.RECORDS, action="create", dates=[record.occurred_on])
        return record

    def edit_record(
        self,
        owner_id: str,
        record_id: int,
        patch: Union[RecordUpdate, Mapping[str, Any]],
    ) -> Record:
        """Apply a partial update; ``RecordNotFound`` if the record is gone."""

        _require_owner(owner_id)
        changes = _validated(RecordUpdate, patch).changes()

        def work(session: Session) -> tuple[Record, Entry]:
            current = self.records.get(record_id, owner_id=owner_id, session=session)
            if current is None:
                raise RecordNotFound(record_id)
            before = Entry.of(current)
            if not changes:
                return current, before
            if not self.records.update_if_version(
                record_id,
                owner_id=owner_id,
                expected_version=current.version,
                changes=changes,
                session=session,
            ):
                raise ConflictDetected(f"record {record_id} changed concurrently")
            self.balances.record_edited(before, before.patched(changes), session=session)
            session.refresh(current)
            return current, before

        record, before = self._transaction(work, operation="edit record")
        if not changes:
            return record
        logger.info(
            "Record updated",
            extra={
                "owner_id": owner_id,
                "record_id": record_id,
                "fields": sorted(changes),
                "delta": str(record.signed_amount - before.signed_amount),
            },
        )
        self.bus.publish(
            owner_id,
            Topic.RECORDS,
            action="update",
            dates={before.occurred_on, record.occurred_on},
        )
        return record

    def delete_record(self, owner_id: str, record_id: int) -> bool:
        """Delete a record; deleting an absent record is a no-op returning False."""

        _require_owner(owner_id)

        def work(session: Session) -> Optional[Entry]:
            current = self.records.get(record_id, owner_id=owner_id, session=session)
            if current is None:
                return None
            entry = Entry.of(current)
            if not self.records.delete_if_version(
                record_id, owner_id=owner_id, expected_version=current.version, session=session
            ):
                raise ConflictDetected(f"record {record_id} changed concurrently")
            self.balances.record_deleted(entry, session=session)
            return entry

        entry = self._transaction(work, operation="delete record")
        if entry is None:
            logger.info(
                "Record delete ignored; not found",
                extra={"owner_id": owner_id, "record_id": record_id},
            )
            return False
        logger.info(
            "Record deleted",
            extra={"owner_id": owner_id, "record_id": record_id, "delta": str(-entry.signed_amount)},
        )
        self.bus.publish(owner_id, Topic.RECORDS, action="delete", dates=[entry.occurred_on])
        return True

    def get_record(self, owner_id: str, record_id: int) -> Record:
        _require_owner(owner_id)
        record = self.records.get(record_id, owner_id=owner_id)
        if record is None:
            raise RecordNotFound(record_id)
        return record

    # Budgets

    def create_budget(
        self, owner_id: str, data: Union[BudgetCreate, Mapping[str, Any]]
    ) -> Budget:
        _require_owner(owner_id)
        payload = _validated(BudgetCreate, data)
        budget = self.budgets.create_budget(owner_id, payload.category, payload.amount)
        self.bus.publish(owner_id, Topic.BUDGETS, action="create")
        return budget

    def edit_budget(
        self, owner_id: str, budget_id: int, patch: Union[BudgetUpdate, Mapping[str, Any]]
    ) -> Budget:
        _require_owner(owner_id)
        changes = _validated(BudgetUpdate, patch).changes()
        budget = self.budgets.update_budget(owner_id, budget_id, changes)
        self.bus.publish(owner_id, Topic.BUDGETS, action="update")
        return budget

    def delete_budget(self, owner_id: str, budget_id: int) -> bool:
        _require_owner(owner_id)
        deleted = self.budgets.delete_budget(owner_id, budget_id)
        if deleted:
            self.bus.publish(owner_id, Topic.BUDGETS, action="delete")
        return deleted

    def pin_budget(self, owner_id: str, budget_id: int) -> None:
        _require_owner(owner_id)
        self.budgets.pin(owner_id, budget_id)
        self.bus.publish(owner_id, Topic.AGGREGATE, action="pin")

    def unpin_budget(self, owner_id: str) -> None:
        _require_owner(owner_id)
        self.budgets.unpin(owner_id)
        self.bus.publish(owner_id, Topic.AGGREGATE, action="unpin")

    def pinned_budget(self, owner_id: str) -> Optional[Budget]:
        return self.budgets.pinned_budget(_require_owner(owner_id))

    def list_budgets(self, owner_id: str) -> list[Budget]:
        return self.budgets.list_budgets(_require_owner(owner_id))

    # Preferences

    def set_default_currency(self, owner_id: str, currency: str) -> str:
        _require_owner(owner_id)
        try:
            code = normalize_currency(currency)
        except ValueError as exc:
            raise ValidationError(str(exc), field="currency") from exc
        if not isinstance(code, str):
            raise ValidationError("Currency must be a 3-letter code", field="currency")

        def work(session: Session) -> None:
            self.aggregates.ensure(owner_id, default_currency=code, session=session)
            self.aggregates.set_default_currency(owner_id, code, session=session)

        self._transaction(work, operation="set default currency")
        logger.info("Default currency set", extra={"owner_id": owner_id, "currency": code})
        self.bus.publish(owner_id, Topic.AGGREGATE, action="currency")
        return code

    def default_currency_for(self, owner_id: str) -> str:
        aggregate = self.aggregates.get(_require_owner(owner_id))
        return aggregate.default_currency if aggregate else self.default_currency

    def balance_drift(self, owner_id: str) -> dict[str, Decimal]:
        """Maintained-vs-rescanned balance differences; empty when consistent."""
        return self.balances.drift(_require_owner(owner_id))
