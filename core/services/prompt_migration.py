"""
Assignment migration between prompt versions.

Moves every agent assignment that targets one version of a prompt onto
another version of the same prompt. It only ever runs on the session of the
transaction that forked the version, so the fork and the repointing commit
together.
"""

from __future__ import annotations

from sqlalchemy import func

import core.config as config
from core.errors import ConflictRetryableError, NotFoundError, ValidationIssue
from core.models import AgentPrompt, Prompt

logger = config.logger


def _count_assignments(db, prompt_id) -> int:
    return (
        db.query(func.count(AgentPrompt.id))
        .filter(AgentPrompt.prompt_id == prompt_id)
        .scalar()
    ) or 0


def _logical_key(prompt: Prompt) -> tuple:
    return (str(prompt.organization_id), prompt.name, prompt.type)


def migrate_prompt_assignments(db, old_prompt_id, new_prompt_id) -> int:
    """Repoint assignments from ``old_prompt_id`` to ``new_prompt_id``.

    Agent, slot and position of each row are left untouched. Returns the
    number of rows moved. Raises ConflictRetryableError when the assignment
    set changed underneath the update.
    """
    if not db.in_transaction():
        raise RuntimeError("migrate_prompt_assignments requires an open transaction")
    if old_prompt_id == new_prompt_id:
        raise ValidationIssue(
            "old and new prompt versions must differ",
            field="new_prompt_id",
            error_type="invalid_value",
        )

    old_prompt = db.get(Prompt, old_prompt_id)
    new_prompt = db.get(Prompt, new_prompt_id)
    if old_prompt is None or new_prompt is None:
        raise NotFoundError("Prompt version not found")
    if _logical_key(old_prompt) != _logical_key(new_prompt):
        raise ValidationIssue(
            "assignments can only move between versions of the same prompt",
            field="new_prompt_id",
            error_type="invalid_value",
        )
    if not new_prompt.is_active:
        raise ValidationIssue(
            "assignments can only move onto the active version",
            field="new_prompt_id",
            error_type="inactive_version",
        )

    before = _count_assignments(db, old_prompt_id)
    if before == 0:
        return 0

    moved = (
        db.query(AgentPrompt)
        .filter(AgentPrompt.prompt_id == old_prompt_id)
        .update({AgentPrompt.prompt_id: new_prompt_id}, synchronize_session=False)
    )
    left_behind = _count_assignments(db, old_prompt_id)
    if moved != before or left_behind:
        raise ConflictRetryableError(
            f"assignment set changed during migration (expected {before}, moved {moved})"
        )

    logger.info(
        "prompt_assignments_migrated",
        extra={
            "old_prompt_id": str(old_prompt_id),
            "new_prompt_id": str(new_prompt_id),
            "moved": moved,
        },
    )
    return moved
