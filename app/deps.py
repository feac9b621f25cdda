"""
Dependency helpers for the standalone FastAPI app.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Header

from core.context import AuthContext, RequestContext, resolve_organization_id
from core.db import DB
from core.errors import StoreUnavailableError
from core.transactions import TransactionCoordinator


def get_coordinator() -> TransactionCoordinator:
    if DB.coordinator is None:
        raise StoreUnavailableError("Database not initialized - coordinator is None")
    return DB.coordinator


async def get_request_context(
    x_organization_id: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
    x_request_id: Optional[str] = Header(default=None),
) -> RequestContext:
    # Identity headers are set by the upstream auth layer and trusted as-is.
    auth = AuthContext(
        user_id=x_user_id,
        organization_id=x_organization_id,
        actor=x_user_id or "anonymous",
    )
    context = RequestContext(auth=auth, request_id=x_request_id, source="http")
    resolve_organization_id(context)
    return context
