"""
Transaction coordinator: scoped atomic sessions, driver error translation,
and a bounded retry loop for serialization conflicts.
"""

from __future__ import annotations

import random
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

import core.config as config
from core.errors import ConflictRetryableError, StoreUnavailableError

logger = config.logger

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_SQLSTATES = {"40001", "40P01", "55P03"}
# query_canceled (statement_timeout), admin_shutdown, crash_shutdown, cannot_connect_now
UNAVAILABLE_SQLSTATES = {"57014", "57P01", "57P02", "57P03"}
SQLITE_RETRYABLE_MESSAGES = (
    "database is locked",
    "database is busy",
    "database table is locked",
)


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    # psycopg2 exposes pgcode, psycopg 3 exposes sqlstate
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def translate_db_error(exc: Exception) -> Exception:
    """Map a driver error onto the engine's error kinds.

    Returns ``exc`` unchanged when it is not a transport or concurrency
    failure (integrity errors, programming errors).
    """
    if isinstance(exc, PoolTimeoutError):
        return StoreUnavailableError("timed out waiting for a database connection")
    if not isinstance(exc, DBAPIError):
        return exc
    if exc.connection_invalidated:
        return StoreUnavailableError("database connection lost")

    code = _sqlstate(exc)
    if code in RETRYABLE_SQLSTATES:
        return ConflictRetryableError(f"transaction conflict (sqlstate {code})")
    if code in UNAVAILABLE_SQLSTATES or (code and code.startswith("08")):
        return StoreUnavailableError(f"database unavailable (sqlstate {code})")

    message = str(getattr(exc, "orig", exc)).lower()
    if any(token in message for token in SQLITE_RETRYABLE_MESSAGES):
        return ConflictRetryableError("database is locked by another writer")

    if isinstance(exc, (OperationalError, InterfaceError)):
        return StoreUnavailableError("database unavailable")
    return exc


class TransactionCoordinator:
    """Hands out one transaction per operation and retries retryable conflicts."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 0.05,
        jitter_seconds: float = 0.05,
        write_execution_options: Optional[dict] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self._max_attempts = max(1, max_attempts)
        self._backoff_seconds = max(0.0, backoff_seconds)
        self._jitter_seconds = max(0.0, jitter_seconds)
        self._write_execution_options = dict(write_execution_options or {})
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @contextmanager
    def transaction(self, *, write: bool = True) -> Iterator[Session]:
        """Yield a session inside one transaction.

        Commits when the block exits normally and rolls back on any
        exception. Driver errors leave as ConflictRetryableError or
        StoreUnavailableError where they map onto one.
        """
        db = self._session_factory()
        try:
            with db.begin():
                if write and self._write_execution_options:
                    db.connection(execution_options=self._write_execution_options)
                yield db
        except (DBAPIError, PoolTimeoutError) as exc:
            translated = translate_db_error(exc)
            if translated is exc:
                raise
            raise translated from exc
        finally:
            db.close()

    def run(
        self,
        operation: Callable[[Session], T],
        *,
        write: bool = True,
        name: Optional[str] = None,
    ) -> T:
        """Run ``operation(db)`` in a fresh transaction, retrying the whole
        operation on ConflictRetryableError up to ``max_attempts`` times."""
        label = name or getattr(operation, "__name__", "operation")
        for attempt in range(1, self._max_attempts + 1):
            try:
                with self.transaction(write=write) as db:
                    return operation(db)
            except ConflictRetryableError as exc:
                payload = {"operation": label, "attempt": attempt, "detail": str(exc)}
                if attempt >= self._max_attempts:
                    logger.warning("transaction_retry_exhausted", extra=payload)
                    raise
                logger.warning("transaction_retry", extra=payload)
                self._sleep_backoff(attempt)
        raise AssertionError("unreachable")

    def _sleep_backoff(self, attempt: int) -> None:
        base = self._backoff_seconds * (2 ** (attempt - 1))
        jitter = random.uniform(0, self._jitter_seconds) if self._jitter_seconds else 0.0
        self._sleep(base + jitter)


__all__ = [
    "TransactionCoordinator",
    "translate_db_error",
    "RETRYABLE_SQLSTATES",
    "UNAVAILABLE_SQLSTATES",
]
