"""
Database initialization and migration helpers.
"""

from __future__ import annotations

import os
from typing import Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

import core.config as config
from core.transactions import TransactionCoordinator

# Execution option read by the SQLite "begin" hook; write transactions set it
# to "IMMEDIATE" so they take the database write lock up front.
SQLITE_BEGIN_MODE_OPTION = "sqlite_begin_mode"


class DB:
    """Database state holder (avoids global scoping issues)."""

    engine = None
    SessionLocal = None
    coordinator: Optional[TransactionCoordinator] = None


def _install_sqlite_transaction_hooks(engine: Engine) -> None:
    """Hand transaction control to SQLAlchemy instead of the pysqlite driver.

    pysqlite defers BEGIN until the first DML statement, which leaves SELECTs
    outside any transaction. Emitting BEGIN ourselves gives every session a
    real transaction and lets writers ask for BEGIN IMMEDIATE.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute(f"PRAGMA busy_timeout={int(config.SQLITE_BUSY_TIMEOUT_SECONDS * 1000)}")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        mode = conn.get_execution_options().get(SQLITE_BEGIN_MODE_OPTION)
        conn.exec_driver_sql(f"BEGIN {mode}" if mode else "BEGIN")


def build_engine(database_url: str) -> Engine:
    """Create an engine with the transaction semantics the services rely on."""
    engine_kwargs = {"pool_pre_ping": True}
    if database_url.lower().startswith("sqlite"):
        engine_kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": config.SQLITE_BUSY_TIMEOUT_SECONDS,
        }
        engine = create_engine(database_url, **engine_kwargs)
        _install_sqlite_transaction_hooks(engine)
        return engine

    engine_kwargs["isolation_level"] = config.DB_ISOLATION_LEVEL
    if config.DB_STATEMENT_TIMEOUT_MS > 0:
        engine_kwargs["connect_args"] = {
            "options": f"-c statement_timeout={config.DB_STATEMENT_TIMEOUT_MS}",
        }
    return create_engine(database_url, **engine_kwargs)


def build_session_factory(engine: Engine) -> sessionmaker:
    # Services hand detached rows back to callers after commit.
    return sessionmaker(bind=engine, expire_on_commit=False)


def build_coordinator(session_factory: sessionmaker) -> TransactionCoordinator:
    return TransactionCoordinator(
        session_factory,
        max_attempts=config.TX_MAX_ATTEMPTS,
        backoff_seconds=config.TX_RETRY_BACKOFF_SECONDS,
        jitter_seconds=config.TX_RETRY_JITTER_SECONDS,
        write_execution_options={SQLITE_BEGIN_MODE_OPTION: "IMMEDIATE"},
    )


def _get_alembic_config():
    try:
        from alembic.config import Config
    except ImportError as exc:
        raise RuntimeError("Alembic is required for migrations") from exc

    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    alembic_cfg = Config(os.path.join(base_dir, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", os.path.join(base_dir, "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", config.DATABASE_URL)
    return alembic_cfg


def _get_schema_revisions(engine) -> tuple[Optional[str], Optional[str]]:
    from alembic.runtime.migration import MigrationContext
    from alembic.script import ScriptDirectory

    alembic_cfg = _get_alembic_config()
    script = ScriptDirectory.from_config(alembic_cfg)
    head_revision = script.get_current_head()
    with engine.connect() as conn:
        context = MigrationContext.configure(conn)
        current_revision = context.get_current_revision()
    return current_revision, head_revision


def _ensure_schema_up_to_date(engine) -> None:
    from alembic import command

    current_rev, head_rev = _get_schema_revisions(engine)
    if current_rev == head_rev:
        return

    if config.AUTO_MIGRATE_ON_STARTUP:
        alembic_cfg = _get_alembic_config()
        command.upgrade(alembic_cfg, "head")
        new_current, _ = _get_schema_revisions(engine)
        if new_current != head_rev:
            raise RuntimeError("Database migration did not reach expected revision")
    else:
        raise RuntimeError(
            f"Database schema out of date (current={current_rev}, expected={head_rev}). "
            "Run 'alembic upgrade head' or set AUTO_MIGRATE_ON_STARTUP=true for dev."
        )


def bind(engine: Engine) -> TransactionCoordinator:
    """Point the process-wide holder at an engine and return its coordinator."""
    DB.engine = engine
    DB.SessionLocal = build_session_factory(engine)
    DB.coordinator = build_coordinator(DB.SessionLocal)
    return DB.coordinator


def init_db() -> TransactionCoordinator:
    """Initialize database connection and verify the schema revision."""
    config.validate_and_prepare_config()

    config.logger.info("Connecting to database...")
    coordinator = bind(build_engine(config.DATABASE_URL))

    with DB.engine.connect() as conn:
        conn.execute(text("SELECT 1"))

    _ensure_schema_up_to_date(DB.engine)

    config.logger.info("Database initialized")
    return coordinator


def dispose_db() -> None:
    """Release pooled connections at shutdown."""
    if DB.engine is not None:
        DB.engine.dispose()
        config.logger.info("Database connections disposed")
    DB.engine = None
    DB.SessionLocal = None
    DB.coordinator = None
