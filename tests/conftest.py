import os
import uuid
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest

from core.db import DB, bind, build_engine
from core.models import Account, Base, Member, Organization, User, UserSession


@pytest.fixture
def server_db(tmp_path):
    """File-backed SQLite database wired exactly like production; yields the coordinator."""
    engine = build_engine(f"sqlite:///{tmp_path / 'lifecyclegate.sqlite'}")
    Base.metadata.create_all(engine)
    previous = (DB.engine, DB.SessionLocal, DB.coordinator)
    coordinator = bind(engine)
    try:
        yield coordinator
    finally:
        DB.engine, DB.SessionLocal, DB.coordinator = previous
        engine.dispose()


@pytest.fixture
def db_session(server_db):
    db = DB.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def org_id(make_org):
    return make_org("Tenant")


@pytest.fixture
def make_org(server_db):
    def _make(name: str = "Acme") -> str:
        with DB.SessionLocal.begin() as db:
            org = Organization(name=name, slug=f"{name.lower()}-{uuid.uuid4().hex[:8]}")
            db.add(org)
            db.flush()
            return str(org.id)

    return _make


@pytest.fixture
def make_user(server_db):
    def _make(sessions: int = 0, accounts: int = 0) -> str:
        with DB.SessionLocal.begin() as db:
            user = User(email=f"{uuid.uuid4().hex}@example.com", name="Test User")
            db.add(user)
            db.flush()
            for _ in range(sessions):
                db.add(
                    UserSession(
                        user_id=user.id,
                        token=uuid.uuid4().hex,
                        expires_at=datetime.now(timezone.utc) + timedelta(days=1),
                        ip_address="127.0.0.1",
                        user_agent="pytest",
                    )
                )
            for index in range(accounts):
                db.add(
                    Account(
                        user_id=user.id,
                        provider_id="credential" if index == 0 else f"oauth-{index}",
                        account_id=uuid.uuid4().hex,
                    )
                )
            return str(user.id)

    return _make


@pytest.fixture
def add_membership(server_db):
    def _add(organization_id: str, user_id: str, role: str = "member") -> str:
        with DB.SessionLocal.begin() as db:
            member = Member(organization_id=organization_id, user_id=user_id, role=role)
            db.add(member)
            db.flush()
            return str(member.id)

    return _add
