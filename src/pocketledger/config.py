"""Application configuration objects and helpers."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    """Interpret environment variable values as booleans."""

    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


class BaseConfig:
    """Base configuration shared across environments."""

    APP_NAME = "PocketLedger"
    DB_FILENAME = "pocketledger.db"
    SQLITE_PRAGMAS = {"journal_mode": "wal", "foreign_keys": "on"}

    def __init__(self) -> None:
        self.DEV_MODE = _env_bool("POCKETLEDGER_DEV_MODE", default=True)
        self.DATA_DIR = self._resolve_data_dir()
        self.DATABASE_URL = os.getenv("POCKETLEDGER_DATABASE_URL", self._build_sqlite_url())
        self.DEFAULT_CURRENCY = os.getenv("POCKETLEDGER_DEFAULT_CURRENCY", "INR").strip().upper()
        self.RETRY_ATTEMPTS = _env_int("POCKETLEDGER_RETRY_ATTEMPTS", 5)
        self.RETRY_BACKOFF = _env_float("POCKETLEDGER_RETRY_BACKOFF", 0.05)
        self.SQLITE_TIMEOUT = _env_float("POCKETLEDGER_SQLITE_TIMEOUT", 30.0)
        self.RESUME_INTERVAL = _env_float("POCKETLEDGER_RESUME_INTERVAL", 1.0)
        self.ROLLOVER_INTERVAL = _env_float("POCKETLEDGER_ROLLOVER_INTERVAL", 60.0)
        self.CATEGORY_CAP = _env_int("POCKETLEDGER_CATEGORY_CAP", 9)
        if self.RETRY_ATTEMPTS < 1:
            raise ValueError("POCKETLEDGER_RETRY_ATTEMPTS must be at least 1.")
        if self.CATEGORY_CAP < 2:
            raise ValueError("POCKETLEDGER_CATEGORY_CAP must be at least 2.")
        if len(self.DEFAULT_CURRENCY) != 3 or not self.DEFAULT_CURRENCY.isalpha():
            raise ValueError("POCKETLEDGER_DEFAULT_CURRENCY must be a 3-letter code.")

    def _resolve_data_dir(self) -> Path:
        """Return the directory where the SQLite file and logs live."""

        data_root = os.getenv("POCKETLEDGER_DATA_DIR", "instance")
        path = Path(data_root).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _build_sqlite_url(self) -> str:
        db_path = self.DATA_DIR / self.DB_FILENAME
        return f"sqlite:///{db_path}"

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    def sqlalchemy_engine_options(self) -> dict[str, Any]:
        """Expose engine kwargs for SQLModel to consume."""

        if not self.is_sqlite:
            return {"pool_pre_ping": True}
        connect_args: dict[str, Any] = {
            "check_same_thread": False,
            "timeout": self.SQLITE_TIMEOUT,
        }
        return {"connect_args": connect_args}


class DevConfig(BaseConfig):
    """Development configuration using local SQLite."""

    DEBUG = True
    TESTING = False


class TestingConfig(BaseConfig):
    """Configuration for the test-suite: short backoff, fast resume."""

    DEBUG = False
    TESTING = True

    def __init__(self, database_url: str | None = None) -> None:
        super().__init__()
        if database_url is not None:
            self.DATABASE_URL = database_url
        self.RETRY_BACKOFF = 0.001
        self.RESUME_INTERVAL = 0.05
        self.ROLLOVER_INTERVAL = 0.05
