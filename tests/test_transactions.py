import os

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")

from sqlalchemy.exc import IntegrityError, OperationalError

from core.db import DB
from core.errors import ConflictRetryableError, StoreUnavailableError
from core.models import Organization
from core.transactions import TransactionCoordinator, translate_db_error


class _DriverError(Exception):
    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


def _operational(message, pgcode=None, **kwargs):
    return OperationalError("SELECT 1", {}, _DriverError(message, pgcode), **kwargs)


@pytest.mark.parametrize("pgcode", ["40001", "40P01", "55P03"])
def test_serialization_failures_are_retryable(pgcode):
    assert isinstance(translate_db_error(_operational("conflict", pgcode)), ConflictRetryableError)


@pytest.mark.parametrize("pgcode", ["57014", "57P01", "08006"])
def test_timeouts_and_shutdowns_are_unavailable(pgcode):
    assert isinstance(translate_db_error(_operational("gone", pgcode)), StoreUnavailableError)


def test_sqlite_lock_is_retryable():
    assert isinstance(
        translate_db_error(_operational("database is locked")), ConflictRetryableError
    )


def test_invalidated_connection_is_unavailable():
    exc = _operational("server closed the connection", connection_invalidated=True)
    assert isinstance(translate_db_error(exc), StoreUnavailableError)


def test_integrity_errors_pass_through():
    exc = IntegrityError("INSERT", {}, _DriverError("duplicate key", "23505"))
    assert translate_db_error(exc) is exc


def test_run_retries_conflicts_with_backoff(server_db):
    sleeps = []
    coordinator = TransactionCoordinator(
        DB.SessionLocal,
        max_attempts=3,
        backoff_seconds=0.05,
        jitter_seconds=0,
        sleep=sleeps.append,
    )
    attempts = []

    def _op(db):
        attempts.append(1)
        if len(attempts) < 3:
            raise ConflictRetryableError("try again")
        return "done"

    assert coordinator.run(_op) == "done"
    assert len(attempts) == 3
    assert sleeps == [0.05, 0.1]


def test_run_gives_up_after_max_attempts(server_db):
    coordinator = TransactionCoordinator(DB.SessionLocal, max_attempts=3, sleep=lambda _: None)
    attempts = []

    def _op(db):
        attempts.append(1)
        raise _operational("database is locked")

    with pytest.raises(ConflictRetryableError):
        coordinator.run(_op)
    assert len(attempts) == 3


def test_run_does_not_retry_unavailable_store(server_db):
    coordinator = TransactionCoordinator(DB.SessionLocal, max_attempts=3, sleep=lambda _: None)
    attempts = []

    def _op(db):
        attempts.append(1)
        raise _operational("statement timeout", "57014")

    with pytest.raises(StoreUnavailableError):
        coordinator.run(_op)
    assert len(attempts) == 1


def test_transaction_rolls_back_on_error(server_db):
    with pytest.raises(RuntimeError):
        with server_db.transaction() as db:
            db.add(Organization(name="Rollback", slug="rollback"))
            db.flush()
            raise RuntimeError("abort")

    with DB.SessionLocal() as db:
        assert db.query(Organization).count() == 0


def test_transaction_commits_on_success(server_db):
    with server_db.transaction() as db:
        db.add(Organization(name="Commit", slug="commit"))

    with DB.SessionLocal() as db:
        assert db.query(Organization).filter_by(slug="commit").count() == 1
