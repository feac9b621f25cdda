"""
Versioned prompt store.

A prompt is identified by (organization, name, type) and is the union of its
immutable version rows. Editing a prompt never rewrites a row: it forks
version N+1, deactivates version N and moves every agent assignment onto the
new row, all inside one transaction.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.exc import IntegrityError

import core.config as config
from core.audit import log_event
from core.audit_constants import (
    EVENT_PROMPT_CREATED,
    EVENT_PROMPT_VERSIONED,
    EVENT_PROMPT_VERSION_DELETED,
)
from core.context import RequestContext, actor_fields
from core.errors import (
    ConflictRetryableError,
    DuplicateKeyError,
    NotFoundError,
    ValidationIssue,
    VersionHistoryExistsError,
)
from core.models import AgentPrompt, Prompt, PromptType
from core.services import prompt_migration
from core.transactions import TransactionCoordinator
from core.validators import (
    coerce_id,
    normalize_prompt_type,
    validate_limit,
    validate_optional_text,
    validate_required_text,
)

logger = config.logger

ALLOWED_DELTA_FIELDS = ("content", "description")


def serialize_prompt(row: Prompt, agents: Optional[list] = None) -> dict:
    payload = {
        "id": str(row.id),
        "organization_id": str(row.organization_id),
        "name": row.name,
        "type": row.type.value if isinstance(row.type, PromptType) else row.type,
        "version": row.version,
        "content": row.content,
        "description": row.description,
        "is_active": row.is_active,
        "parent_prompt_id": str(row.parent_prompt_id) if row.parent_prompt_id else None,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }
    if agents is not None:
        payload["agents"] = agents
    return payload


def _normalize_delta(delta: Optional[dict]) -> dict:
    if not isinstance(delta, dict):
        raise ValidationIssue("delta must be an object", field="delta", error_type="invalid_type")
    unknown = sorted(set(delta) - set(ALLOWED_DELTA_FIELDS))
    if unknown:
        raise ValidationIssue(
            f"unsupported prompt fields: {unknown}",
            field="delta",
            error_type="invalid_value",
        )
    if not delta:
        raise ValidationIssue(
            "delta must change at least one field",
            field="delta",
            error_type="required",
        )
    if "content" in delta:
        validate_required_text(delta["content"], "content", config.MAX_CONTENT_LENGTH)
    if "description" in delta:
        validate_optional_text(delta["description"], "description", config.MAX_DESCRIPTION_LENGTH)
    return dict(delta)


def _key_query(db, organization_id, name: str, prompt_type: PromptType):
    return (
        db.query(Prompt)
        .filter(Prompt.organization_id == organization_id)
        .filter(Prompt.name == name)
        .filter(Prompt.type == prompt_type)
    )


def _require_prompt(db, organization_id, prompt_id, *, lock: bool = False) -> Prompt:
    query = (
        db.query(Prompt)
        .filter(Prompt.organization_id == organization_id)
        .filter(Prompt.id == prompt_id)
    )
    if lock:
        query = query.with_for_update().populate_existing()
    row = query.first()
    if row is None:
        raise NotFoundError(f"Prompt version not found: {prompt_id}")
    return row


def _lock_active(db, organization_id, name: str, prompt_type: PromptType) -> Prompt:
    """Lock and return the active version of a prompt.

    Under READ COMMITTED a row deactivated by a concurrent fork drops out of
    the locked result once that fork commits, so an empty result is
    re-checked before it is reported as missing.
    """
    current = (
        _key_query(db, organization_id, name, prompt_type)
        .filter(Prompt.is_active.is_(True))
        .with_for_update()
        .populate_existing()
        .first()
    )
    if current is not None:
        return current

    replacement = (
        _key_query(db, organization_id, name, prompt_type)
        .filter(Prompt.is_active.is_(True))
        .first()
    )
    if replacement is not None:
        raise ConflictRetryableError(f"prompt '{name}' was versioned concurrently")
    raise NotFoundError(f"No active version of prompt '{name}' ({prompt_type.value})")


def _fork_version(
    db,
    current: Prompt,
    changes: dict,
    context: Optional[RequestContext],
) -> Prompt:
    next_version = current.version + 1

    # The partial unique index allows one active row per key, so the old row
    # is deactivated before the new one is inserted.
    current.is_active = False
    db.flush()

    forked = Prompt(
        organization_id=current.organization_id,
        name=current.name,
        type=current.type,
        version=next_version,
        content=changes.get("content", current.content),
        description=changes.get("description", current.description),
        is_active=True,
        parent_prompt_id=current.id,
    )
    db.add(forked)
    try:
        db.flush()
    except IntegrityError as exc:
        raise ConflictRetryableError(
            f"version {next_version} of prompt '{current.name}' already exists"
        ) from exc

    moved = prompt_migration.migrate_prompt_assignments(db, current.id, forked.id)

    log_event(
        db,
        event_type=EVENT_PROMPT_VERSIONED,
        org_id=current.organization_id,
        target_type="prompt",
        target_ids=[current.id, forked.id],
        count_affected=moved,
        metadata={
            "from_version": current.version,
            "to_version": next_version,
            "fields": sorted(changes),
        },
        **actor_fields(context),
    )
    logger.info(
        "prompt_version_forked",
        extra={
            "prompt_name": current.name,
            "from_version": current.version,
            "to_version": next_version,
            "assignments_migrated": moved,
        },
    )
    return forked


def create_initial(
    coordinator: TransactionCoordinator,
    organization_id,
    name: str,
    prompt_type,
    content: str,
    description: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> Prompt:
    """Create version 1 of a new prompt."""
    validate_required_text(name, "name", config.MAX_NAME_LENGTH)
    validate_required_text(content, "content", config.MAX_CONTENT_LENGTH)
    validate_optional_text(description, "description", config.MAX_DESCRIPTION_LENGTH)
    org_id = coerce_id(organization_id, "organization_id")
    ptype = normalize_prompt_type(prompt_type)
    name = name.strip()

    def _create(db) -> Prompt:
        latest = (
            _key_query(db, org_id, name, ptype)
            .order_by(Prompt.version.desc())
            .first()
        )
        if latest is not None and latest.is_active:
            raise DuplicateKeyError(f"Prompt '{name}' ({ptype.value}) already exists")
        if latest is not None:
            raise VersionHistoryExistsError(
                f"Prompt '{name}' ({ptype.value}) has no active version but older versions "
                f"(up to version {latest.version}) remain; delete each one with DELETE /api/prompts/{{id}} "
                f"(see GET /api/prompts/{latest.id}/versions) before creating it again"
            )

        prompt = Prompt(
            organization_id=org_id,
            name=name,
            type=ptype,
            version=1,
            content=content,
            description=description,
            is_active=True,
        )
        db.add(prompt)
        try:
            db.flush()
        except IntegrityError as exc:
            raise DuplicateKeyError(f"Prompt '{name}' ({ptype.value}) already exists") from exc

        log_event(
            db,
            event_type=EVENT_PROMPT_CREATED,
            org_id=org_id,
            target_type="prompt",
            target_ids=[prompt.id],
            metadata={"version": 1, "type": ptype.value},
            **actor_fields(context),
        )
        return prompt

    prompt = coordinator.run(_create, name="create_initial")
    logger.info("prompt_created", extra={"prompt_id": str(prompt.id), "prompt_name": name})
    return prompt


def create_next_version(
    coordinator: TransactionCoordinator,
    organization_id,
    name: str,
    prompt_type,
    delta: dict,
    context: Optional[RequestContext] = None,
) -> Prompt:
    """Fork the active version of a prompt, applying ``delta``.

    Fields missing from ``delta`` are inherited from the active version. The
    new row, the deactivation of the old row and the migration of its
    assignments commit together or not at all.
    """
    validate_required_text(name, "name", config.MAX_NAME_LENGTH)
    org_id = coerce_id(organization_id, "organization_id")
    ptype = normalize_prompt_type(prompt_type)
    changes = _normalize_delta(delta)
    name = name.strip()

    def _fork(db) -> Prompt:
        current = _lock_active(db, org_id, name, ptype)
        return _fork_version(db, current, changes, context)

    return coordinator.run(_fork, name="create_next_version")


def update_prompt(
    coordinator: TransactionCoordinator,
    organization_id,
    prompt_id,
    delta: dict,
    context: Optional[RequestContext] = None,
) -> Prompt:
    """Fork a new version of whichever prompt ``prompt_id`` is a version of."""
    org_id = coerce_id(organization_id, "organization_id")
    version_id = coerce_id(prompt_id, "prompt_id")
    changes = _normalize_delta(delta)

    def _update(db) -> Prompt:
        row = _require_prompt(db, org_id, version_id)
        current = _lock_active(db, org_id, row.name, row.type)
        return _fork_version(db, current, changes, context)

    return coordinator.run(_update, name="update_prompt")


def get_active(
    coordinator: TransactionCoordinator,
    organization_id,
    name: str,
    prompt_type,
) -> Prompt:
    validate_required_text(name, "name", config.MAX_NAME_LENGTH)
    org_id = coerce_id(organization_id, "organization_id")
    ptype = normalize_prompt_type(prompt_type)
    name = name.strip()

    def _get(db) -> Prompt:
        row = (
            _key_query(db, org_id, name, ptype)
            .filter(Prompt.is_active.is_(True))
            .first()
        )
        if row is None:
            raise NotFoundError(f"No active version of prompt '{name}' ({ptype.value})")
        return row

    return coordinator.run(_get, write=False, name="get_active")


def get_by_version_id(
    coordinator: TransactionCoordinator,
    organization_id,
    prompt_id,
) -> Prompt:
    """Return one version row, active or not."""
    org_id = coerce_id(organization_id, "organization_id")
    version_id = coerce_id(prompt_id, "prompt_id")
    return coordinator.run(
        lambda db: _require_prompt(db, org_id, version_id),
        write=False,
        name="get_by_version_id",
    )


def list_versions(
    coordinator: TransactionCoordinator,
    organization_id,
    name: str,
    prompt_type,
) -> list[Prompt]:
    """Full version history of a prompt, oldest first."""
    validate_required_text(name, "name", config.MAX_NAME_LENGTH)
    org_id = coerce_id(organization_id, "organization_id")
    ptype = normalize_prompt_type(prompt_type)
    name = name.strip()

    def _list(db) -> list[Prompt]:
        rows = _key_query(db, org_id, name, ptype).order_by(Prompt.version.asc()).all()
        if not rows:
            raise NotFoundError(f"Prompt not found: '{name}' ({ptype.value})")
        return rows

    return coordinator.run(_list, write=False, name="list_versions")


def list_active_prompts(
    coordinator: TransactionCoordinator,
    organization_id,
    prompt_type=None,
    limit: int = config.MAX_RESULT_LIMIT,
) -> list[Prompt]:
    validate_limit(limit, "limit", config.MAX_RESULT_LIMIT)
    org_id = coerce_id(organization_id, "organization_id")
    ptype = normalize_prompt_type(prompt_type) if prompt_type is not None else None

    def _list(db) -> list[Prompt]:
        query = (
            db.query(Prompt)
            .filter(Prompt.organization_id == org_id)
            .filter(Prompt.is_active.is_(True))
        )
        if ptype is not None:
            query = query.filter(Prompt.type == ptype)
        return query.order_by(Prompt.name.asc(), Prompt.type.asc()).limit(limit).all()

    return coordinator.run(_list, write=False, name="list_active_prompts")


def delete_version(
    coordinator: TransactionCoordinator,
    organization_id,
    prompt_id,
    context: Optional[RequestContext] = None,
) -> Prompt:
    """Delete one version row and the assignments that point at it.

    Other versions of the same prompt are left alone; removing a whole
    history means deleting each version.
    """
    org_id = coerce_id(organization_id, "organization_id")
    version_id = coerce_id(prompt_id, "prompt_id")

    def _delete(db) -> Prompt:
        row = _require_prompt(db, org_id, version_id, lock=True)
        removed = (
            db.query(AgentPrompt)
            .filter(AgentPrompt.prompt_id == row.id)
            .delete(synchronize_session=False)
        )
        db.delete(row)
        db.flush()
        log_event(
            db,
            event_type=EVENT_PROMPT_VERSION_DELETED,
            org_id=org_id,
            target_type="prompt",
            target_ids=[row.id],
            count_affected=removed,
            metadata={"version": row.version, "was_active": bool(row.is_active)},
            **actor_fields(context),
        )
        return row

    row = coordinator.run(_delete, name="delete_version")
    logger.info(
        "prompt_version_deleted",
        extra={"prompt_id": str(row.id), "prompt_name": row.name, "version": row.version},
    )
    return row


__all__ = [
    "ALLOWED_DELTA_FIELDS",
    "serialize_prompt",
    "create_initial",
    "create_next_version",
    "update_prompt",
    "get_active",
    "get_by_version_id",
    "list_versions",
    "list_active_prompts",
    "delete_version",
]
