"""
Request-scoped context objects for core services.

The identity layer in front of this service has already authenticated the
caller and attached the organization scope; nothing here re-verifies it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from core.errors import ValidationIssue


@dataclass(frozen=True)
class AuthContext:
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    actor: Optional[str] = None


@dataclass(frozen=True)
class RequestContext:
    auth: AuthContext
    request_id: Optional[str] = None
    source: Optional[str] = None


def resolve_organization_id(context: Optional["RequestContext"]) -> str:
    organization_id = None
    if context is not None and context.auth is not None:
        organization_id = context.auth.organization_id
    if not organization_id:
        raise ValidationIssue(
            "organization_id is required for this operation",
            field="organization_id",
            error_type="required",
        )
    return organization_id


def actor_fields(context: Optional["RequestContext"]) -> dict:
    """Audit actor columns for the caller in ``context``."""
    if context is None or context.auth is None or context.auth.user_id is None:
        return {"actor_type": "system", "actor_id": None, "request_id": None}
    return {
        "actor_type": "user",
        "actor_id": str(context.auth.user_id),
        "request_id": context.request_id,
    }


__all__ = [
    "AuthContext",
    "RequestContext",
    "resolve_organization_id",
    "actor_fields",
]
