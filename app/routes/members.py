"""
Organization membership endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from core.context import RequestContext
from core.services import memberships
from core.transactions import TransactionCoordinator
from app.deps import get_coordinator, get_request_context
from app.schemas import MemberCreateIn


router = APIRouter(prefix="/api/organization/members", tags=["members"])


@router.post("", status_code=201)
def add_member(
    body: MemberCreateIn,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    context: RequestContext = Depends(get_request_context),
):
    member = memberships.add_member(
        coordinator,
        context.auth.organization_id,
        body.user_id,
        role=body.role,
        context=context,
    )
    return memberships.serialize_member(member)


@router.delete("/{member_or_user_id}")
def remove_member(
    member_or_user_id: str,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    context: RequestContext = Depends(get_request_context),
):
    """Remove a member by membership id or user id.

    The user is deleted along with their sessions and accounts when this was
    their last organization.
    """
    member = memberships.delete_member(
        coordinator,
        member_or_user_id,
        context.auth.organization_id,
        context=context,
    )
    return {"member": memberships.serialize_member(member)}
