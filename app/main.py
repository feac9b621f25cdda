"""
Standalone FastAPI app wiring for LifecycleGate.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import core.config as config
from core.db import dispose_db, init_db
from core.errors import (
    ConflictRetryableError,
    DuplicateKeyError,
    LifecycleError,
    NotFoundError,
    StoreUnavailableError,
    ValidationIssue,
)
from app.routes.agents import router as agents_router
from app.routes.health import router as health_router
from app.routes.members import router as members_router
from app.routes.prompts import router as prompts_router


ERROR_STATUS = {
    NotFoundError: 404,
    DuplicateKeyError: 409,
    ConflictRetryableError: 503,
    StoreUnavailableError: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, cleanup on shutdown."""
    init_db()
    try:
        yield
    finally:
        dispose_db()


app = FastAPI(title="LifecycleGate", redirect_slashes=False, lifespan=lifespan)


@app.exception_handler(ValidationIssue)
async def _validation_issue_handler(request: Request, exc: ValidationIssue):
    config.logger.warning(
        "request_validation_failed",
        extra={"path": request.url.path, "field": exc.field, "error_type": exc.error_type},
    )
    return JSONResponse(
        status_code=400,
        content={
            "error": exc.error_type,
            "message": str(exc),
            "field": exc.field,
            "retryable": False,
        },
    )


@app.exception_handler(LifecycleError)
async def _lifecycle_error_handler(request: Request, exc: LifecycleError):
    status_code = 500
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code >= 500:
        config.logger.warning(
            "request_failed",
            extra={"path": request.url.path, "error_code": exc.error_code, "detail": str(exc)},
        )
    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.error_code,
            "message": str(exc),
            "retryable": isinstance(exc, ConflictRetryableError),
        },
    )


app.include_router(health_router)
app.include_router(prompts_router)
app.include_router(agents_router)
app.include_router(members_router)
