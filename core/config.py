"""
Shared configuration for LifecycleGate core.
"""

from __future__ import annotations

import logging
import os

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").strip().upper()

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger("lifecyclegate")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _derive_effective_backend(db_backend: str) -> str:
    return db_backend if db_backend in {"postgres", "sqlite"} else "postgres"


# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "postgres").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/lifecyclegate.db")
DATABASE_URL = os.environ.get("DATABASE_URL")
DB_BACKEND_EFFECTIVE = _derive_effective_backend(DB_BACKEND)

# Database initialization controls
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Transaction behaviour
DB_ISOLATION_LEVEL = os.environ.get("DB_ISOLATION_LEVEL", "READ COMMITTED").strip().upper()
DB_STATEMENT_TIMEOUT_MS = _get_int("DB_STATEMENT_TIMEOUT_MS", 15000)
SQLITE_BUSY_TIMEOUT_SECONDS = _get_float("SQLITE_BUSY_TIMEOUT_SECONDS", 30.0)
TX_MAX_ATTEMPTS = _get_int("TX_MAX_ATTEMPTS", 3)
TX_RETRY_BACKOFF_SECONDS = _get_float("TX_RETRY_BACKOFF_SECONDS", 0.05)
TX_RETRY_JITTER_SECONDS = _get_float("TX_RETRY_JITTER_SECONDS", 0.05)

# Request/input limits
MAX_RESULT_LIMIT = _get_int("LIFECYCLEGATE_MAX_RESULT_LIMIT", 100)
MAX_NAME_LENGTH = _get_int("LIFECYCLEGATE_MAX_NAME_LENGTH", 255)
MAX_CONTENT_LENGTH = _get_int("LIFECYCLEGATE_MAX_CONTENT_LENGTH", 100000)
MAX_DESCRIPTION_LENGTH = _get_int("LIFECYCLEGATE_MAX_DESCRIPTION_LENGTH", 2000)
MAX_ID_LENGTH = _get_int("LIFECYCLEGATE_MAX_ID_LENGTH", 100)
MAX_REGULAR_PROMPTS = _get_int("LIFECYCLEGATE_MAX_REGULAR_PROMPTS", 50)

ALLOWED_ISOLATION_LEVELS = {"READ COMMITTED", "REPEATABLE READ", "SERIALIZABLE"}


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL, DB_BACKEND_EFFECTIVE

    errors = []
    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("DB_BACKEND must be 'postgres' or 'sqlite'")

    if DB_ISOLATION_LEVEL not in ALLOWED_ISOLATION_LEVELS:
        errors.append(
            "DB_ISOLATION_LEVEL must be 'READ COMMITTED', 'REPEATABLE READ', or 'SERIALIZABLE'"
        )

    if TX_MAX_ATTEMPTS < 1:
        errors.append("TX_MAX_ATTEMPTS must be at least 1")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("DATABASE_URL environment variable is required")
    else:
        url_lower = DATABASE_URL.lower()
        is_sqlite_url = url_lower.startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("DATABASE_URL must be a sqlite URL when DB_BACKEND=sqlite")
        if DB_BACKEND == "postgres" and is_sqlite_url:
            errors.append("DATABASE_URL must be a postgres URL when DB_BACKEND=postgres")

    DB_BACKEND_EFFECTIVE = _derive_effective_backend(DB_BACKEND)

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
