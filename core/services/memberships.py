"""
Organization membership services.

A user exists only while they belong to at least one organization. Removing
the last membership removes the user and every row that lives and dies with
the user (sessions, linked accounts) in the same transaction as the
membership delete.

Concurrency: every membership write locks the owning user row first. Two
removals of the same user's last two memberships therefore run one after the
other and exactly one of them sees zero remaining memberships.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

import core.config as config
from core.audit import log_event
from core.audit_constants import (
    EVENT_MEMBER_ADDED,
    EVENT_MEMBER_REMOVED,
    EVENT_USER_DELETED,
)
from core.context import RequestContext, actor_fields
from core.errors import DuplicateKeyError, NotFoundError
from core.models import Member, Organization, User, USER_DEPENDENT_MODELS
from core.transactions import TransactionCoordinator
from core.validators import coerce_id, validate_required_text

logger = config.logger


def serialize_member(member: Member) -> dict:
    return {
        "id": str(member.id),
        "organization_id": str(member.organization_id),
        "user_id": str(member.user_id),
        "role": member.role,
        "created_at": member.created_at.isoformat() if member.created_at else None,
    }


def _lock_user(db, user_id) -> Optional[User]:
    return (
        db.query(User)
        .filter(User.id == user_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def _resolve_member(db, identifier, organization_id) -> Optional[Member]:
    """Find a membership by its own id, falling back to the user id."""
    by_member_id = (
        db.query(Member)
        .filter(Member.organization_id == organization_id)
        .filter(Member.id == identifier)
        .first()
    )
    if by_member_id is not None:
        return by_member_id
    return (
        db.query(Member)
        .filter(Member.organization_id == organization_id)
        .filter(Member.user_id == identifier)
        .first()
    )


def _count_memberships(db, user_id) -> int:
    return (
        db.query(func.count(Member.id))
        .filter(Member.user_id == user_id)
        .scalar()
    ) or 0


def _delete_user_cascade(db, user: User, context: Optional[RequestContext]) -> dict:
    """Delete a user and everything exclusively owned by them."""
    removed = {}
    for model in USER_DEPENDENT_MODELS:
        removed[model.__tablename__] = (
            db.query(model)
            .filter(model.user_id == user.id)
            .delete(synchronize_session=False)
        )
    db.delete(user)
    db.flush()
    logger.info(
        "owner_deleted",
        extra={"user_id": str(user.id), "dependents_removed": removed},
    )

    log_event(
        db,
        event_type=EVENT_USER_DELETED,
        user_id=user.id,
        target_type="user",
        target_ids=[user.id],
        count_affected=sum(removed.values()),
        reason="last membership removed",
        metadata={"dependents_removed": removed},
        **actor_fields(context),
    )
    return removed


def add_member(
    coordinator: TransactionCoordinator,
    organization_id,
    user_id,
    role: str = "member",
    context: Optional[RequestContext] = None,
) -> Member:
    """Add a user to an organization."""
    validate_required_text(role, "role", 50)
    org_id = coerce_id(organization_id, "organization_id")
    user_pk = coerce_id(user_id, "user_id")

    def _add(db) -> Member:
        user = _lock_user(db, user_pk)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        if db.get(Organization, org_id) is None:
            raise NotFoundError(f"Organization not found: {organization_id}")

        existing = (
            db.query(Member.id)
            .filter(Member.organization_id == org_id)
            .filter(Member.user_id == user_pk)
            .first()
        )
        if existing is not None:
            raise DuplicateKeyError("User is already a member of this organization")

        member = Member(organization_id=org_id, user_id=user_pk, role=role.strip())
        db.add(member)
        try:
            db.flush()
        except IntegrityError as exc:
            raise DuplicateKeyError("User is already a member of this organization") from exc

        log_event(
            db,
            event_type=EVENT_MEMBER_ADDED,
            org_id=org_id,
            user_id=user_pk,
            target_type="member",
            target_ids=[member.id],
            metadata={"role": member.role},
            **actor_fields(context),
        )
        return member

    return coordinator.run(_add, name="add_member")


def delete_member(
    coordinator: TransactionCoordinator,
    member_or_user_id,
    organization_id,
    context: Optional[RequestContext] = None,
) -> Member:
    """Remove a membership, and the user too if it was their last one.

    ``member_or_user_id`` may be the membership id or the id of the user,
    scoped to ``organization_id``. Returns the deleted membership.
    """
    org_id = coerce_id(organization_id, "organization_id")
    identifier = coerce_id(member_or_user_id, "member_or_user_id")

    def _delete(db) -> tuple[Member, bool]:
        member = _resolve_member(db, identifier, org_id)
        if member is None:
            raise NotFoundError(f"Member not found: {member_or_user_id}")
        member_id = member.id
        owner_id = member.user_id

        owner = _lock_user(db, owner_id)
        # Re-read under the owner lock; a concurrent removal may have won.
        member = (
            db.query(Member)
            .filter(Member.id == member_id)
            .populate_existing()
            .first()
        )
        if member is None:
            raise NotFoundError(f"Member not found: {member_or_user_id}")

        db.delete(member)
        db.flush()
        remaining = _count_memberships(db, owner_id)

        log_event(
            db,
            event_type=EVENT_MEMBER_REMOVED,
            org_id=org_id,
            user_id=owner_id,
            target_type="member",
            target_ids=[member_id],
            metadata={"remaining_memberships": remaining},
            **actor_fields(context),
        )

        if remaining > 0:
            return member, False
        if owner is None:
            logger.info("member_owner_already_deleted", extra={"user_id": str(owner_id)})
            return member, False
        _delete_user_cascade(db, owner, context)
        return member, True

    member, owner_deleted = coordinator.run(_delete, name="delete_member")
    logger.info(
        "member_removed",
        extra={
            "member_id": str(member.id),
            "user_id": str(member.user_id),
            "owner_deleted": owner_deleted,
        },
    )
    return member


__all__ = [
    "serialize_member",
    "add_member",
    "delete_member",
]
