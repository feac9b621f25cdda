import os
import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")

from core.context import AuthContext, RequestContext
from core.db import DB
from core.errors import DuplicateKeyError, NotFoundError, ValidationIssue
from core.models import Account, AuditEvent, Member, User, UserSession
from core.services import memberships


def _counts(user_id):
    with DB.SessionLocal() as db:
        return {
            "user": db.query(User).filter_by(id=user_id).count(),
            "members": db.query(Member).filter_by(user_id=user_id).count(),
            "sessions": db.query(UserSession).filter_by(user_id=user_id).count(),
            "accounts": db.query(Account).filter_by(user_id=user_id).count(),
        }


def _audit_types():
    with DB.SessionLocal() as db:
        return [row.event_type for row in db.query(AuditEvent).order_by(AuditEvent.created_at)]


def test_last_membership_deletes_user_and_dependents(
    server_db, make_org, make_user, add_membership
):
    org = make_org()
    user_id = make_user(sessions=2, accounts=1)
    member_id = add_membership(org, user_id)

    deleted = memberships.delete_member(server_db, member_id, org)

    assert deleted.id == member_id
    assert deleted.user_id == user_id
    assert _counts(user_id) == {"user": 0, "members": 0, "sessions": 0, "accounts": 0}
    assert sorted(_audit_types()) == ["member.removed", "user.deleted"]


def test_remaining_membership_keeps_user(server_db, make_org, make_user, add_membership):
    first_org = make_org("First")
    second_org = make_org("Second")
    user_id = make_user(sessions=1, accounts=1)
    member_id = add_membership(first_org, user_id)
    add_membership(second_org, user_id)

    memberships.delete_member(server_db, member_id, first_org)

    assert _counts(user_id) == {"user": 1, "members": 1, "sessions": 1, "accounts": 1}
    assert _audit_types() == ["member.removed"]


def test_user_id_resolves_within_organization(server_db, make_org, make_user, add_membership):
    org = make_org()
    user_id = make_user(sessions=1)
    member_id = add_membership(org, user_id)

    deleted = memberships.delete_member(server_db, user_id, org)

    assert deleted.id == member_id
    assert _counts(user_id)["user"] == 0


def test_user_id_from_another_organization_is_not_found(
    server_db, make_org, make_user, add_membership
):
    home = make_org("Home")
    elsewhere = make_org("Elsewhere")
    user_id = make_user()
    member_id = add_membership(home, user_id)

    with pytest.raises(NotFoundError):
        memberships.delete_member(server_db, user_id, elsewhere)
    with pytest.raises(NotFoundError):
        memberships.delete_member(server_db, member_id, elsewhere)
    assert _counts(user_id)["members"] == 1


def test_unknown_and_malformed_identifiers(server_db, make_org):
    org = make_org()
    with pytest.raises(NotFoundError):
        memberships.delete_member(server_db, str(uuid.uuid4()), org)
    with pytest.raises(ValidationIssue):
        memberships.delete_member(server_db, "member-1", org)


def test_delete_records_acting_user(server_db, make_org, make_user, add_membership):
    org = make_org()
    admin_id = make_user()
    add_membership(org, admin_id, role="admin")
    user_id = make_user()
    member_id = add_membership(org, user_id)
    context = RequestContext(
        auth=AuthContext(user_id=admin_id, organization_id=org),
        request_id="req-1",
    )

    memberships.delete_member(server_db, member_id, org, context=context)

    with DB.SessionLocal() as db:
        event = db.query(AuditEvent).filter_by(event_type="member.removed").one()
        assert event.actor_type == "user"
        assert event.actor_id == admin_id
        assert event.request_id == "req-1"
        assert event.target_ids == [member_id]


def test_concurrent_removal_of_last_two_links(server_db, make_org, make_user, add_membership):
    first_org = make_org("First")
    second_org = make_org("Second")
    user_id = make_user(sessions=1, accounts=1)
    first_member = add_membership(first_org, user_id)
    second_member = add_membership(second_org, user_id)

    def _remove(args):
        member_id, org = args
        return memberships.delete_member(server_db, member_id, org)

    with ThreadPoolExecutor(max_workers=2) as executor:
        results = list(executor.map(_remove, [(first_member, first_org), (second_member, second_org)]))

    assert sorted(row.id for row in results) == sorted([first_member, second_member])
    assert _counts(user_id) == {"user": 0, "members": 0, "sessions": 0, "accounts": 0}
    assert _audit_types().count("user.deleted") == 1


def test_concurrent_removal_of_same_link(server_db, make_org, make_user, add_membership):
    org = make_org()
    user_id = make_user()
    member_id = add_membership(org, user_id)

    def _remove(_):
        try:
            return memberships.delete_member(server_db, member_id, org)
        except NotFoundError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=2) as executor:
        results = list(executor.map(_remove, range(2)))

    assert sum(isinstance(result, Member) for result in results) == 1
    assert sum(isinstance(result, NotFoundError) for result in results) == 1
    assert _audit_types().count("user.deleted") == 1


def test_add_member(server_db, make_org, make_user):
    org = make_org()
    user_id = make_user()

    member = memberships.add_member(server_db, org, user_id, role="admin")

    assert member.role == "admin"
    assert memberships.serialize_member(member)["user_id"] == user_id
    with pytest.raises(DuplicateKeyError):
        memberships.add_member(server_db, org, user_id)
    with pytest.raises(NotFoundError):
        memberships.add_member(server_db, org, str(uuid.uuid4()))
    with pytest.raises(NotFoundError):
        memberships.add_member(server_db, str(uuid.uuid4()), user_id)


def test_failed_owner_cascade_rolls_back_link_removal(
    server_db, make_org, make_user, add_membership, monkeypatch
):
    org = make_org()
    user_id = make_user(sessions=1, accounts=1)
    member_id = add_membership(org, user_id)

    def _boom(db, user, context):
        raise RuntimeError("cascade failed")

    monkeypatch.setattr(memberships, "_delete_user_cascade", _boom)

    with pytest.raises(RuntimeError):
        memberships.delete_member(server_db, member_id, org)

    assert _counts(user_id) == {"user": 1, "members": 1, "sessions": 1, "accounts": 1}
    assert _audit_types() == []


def test_schema_cascade_removes_dependents_on_its_own(
    server_db, make_org, make_user, add_membership, monkeypatch
):
    org = make_org()
    user_id = make_user(sessions=2, accounts=1)
    member_id = add_membership(org, user_id)

    monkeypatch.setattr(memberships, "USER_DEPENDENT_MODELS", ())

    memberships.delete_member(server_db, member_id, org)

    assert _counts(user_id) == {"user": 0, "members": 0, "sessions": 0, "accounts": 0}
