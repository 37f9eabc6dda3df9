"""Database infrastructure: engine, sessions, and the transactional retry loop."""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Callable, ContextManager, Iterator, Tuple, TypeVar

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from ..config import BaseConfig
from ..errors import StoreUnavailable, TransientFailure
from ..logging_config import get_logger

logger = get_logger("infra.database")

T = TypeVar("T")
SessionFactory = Callable[[], ContextManager[Session]]

_TRANSIENT_MARKERS = (
    "database is locked",
    "database table is locked",
    "deadlock detected",
    "could not serialize access",
)
_TRANSIENT_PGCODES = {"40001", "40P01"}


class ConflictDetected(Exception):
    """Raised inside a unit of work when an optimistic version check fails."""


def _install_sqlite_hooks(engine: Engine, pragmas: dict[str, str]) -> None:
    """Apply pragmas per connection and open every transaction with BEGIN IMMEDIATE.

    pysqlite's own transaction handling is switched off so that SQLAlchemy's
    ``begin`` event controls the lock mode; writers then queue on the busy
    timeout instead of failing on a read-to-write lock upgrade.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # noqa: ARG001
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        for key, value in pragmas.items():
            cursor.execute(f"PRAGMA {key}={value}")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(config: BaseConfig) -> Engine:
    """Create SQLModel engine from configuration."""
    engine_options = config.sqlalchemy_engine_options()
    url = config.DATABASE_URL
    if config.is_sqlite and (url in {"sqlite://", "sqlite:///:memory:"}):
        engine_options["poolclass"] = StaticPool
    engine = create_engine(url, **engine_options)
    if engine.dialect.name == "sqlite":
        _install_sqlite_hooks(engine, config.SQLITE_PRAGMAS)
    return engine


def init_database(engine: Engine) -> None:
    """Initialize database schema."""
    # Import all models to ensure they're registered
    from .. import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def create_session_factory(engine: Engine) -> SessionFactory:
    """Create a session factory function."""

    @contextmanager
    def factory() -> Iterator[Session]:
        """Create a new session that commits on success and rolls back on error."""
        session = Session(engine, expire_on_commit=False)
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return factory


def bootstrap_database(config: BaseConfig | None = None) -> Tuple[Engine, SessionFactory]:
    """Convenience bootstrap for engine + session_factory with schema init.

    Returns (engine, session_factory).
    """

    cfg = config or BaseConfig()
    engine = create_db_engine(cfg)
    init_database(engine)
    return engine, create_session_factory(engine)


def is_transient_db_error(exc: DBAPIError) -> bool:
    """Return True for lock/serialization failures worth retrying."""

    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if pgcode in _TRANSIENT_PGCODES:
        return True
    message = str(orig if orig is not None else exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


def run_in_transaction(
    session_factory: SessionFactory,
    work: Callable[[Session], T],
    *,
    attempts: int = 5,
    backoff: float = 0.05,
    operation: str = "ledger operation",
) -> T:
    """Run ``work`` in one transaction, retrying conflicts a bounded number of times.

    Lock contention and optimistic version conflicts are retried with linear
    backoff; exhausting the attempts raises :class:`TransientFailure`. Any other
    driver-level failure is reported as :class:`StoreUnavailable`.
    """

    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            with session_factory() as session:
                return work(session)
        except ConflictDetected as exc:
            last_error = exc
        except OperationalError as exc:
            if not is_transient_db_error(exc):
                logger.error("Store failure during %s", operation, exc_info=True)
                raise StoreUnavailable() from exc
            last_error = exc
        except DBAPIError as exc:
            if not exc.connection_invalidated:
                raise
            logger.error("Lost store connection during %s", operation, exc_info=True)
            raise StoreUnavailable() from exc

        logger.warning(
            "Conflict during %s, retrying",
            operation,
            extra={"attempt": attempt, "max_attempts": attempts, "reason": str(last_error)},
        )
        if attempt < attempts:
            time.sleep(backoff * attempt)

    raise TransientFailure() from last_error
