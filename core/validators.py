"""
Shared validation helpers for LifecycleGate services.
"""

from __future__ import annotations

import uuid
from typing import Optional

import core.config as config
from core.errors import ValidationIssue
from core.models import PromptType


def validate_required_text(value: str, field: str, max_len: int) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationIssue(f"{field} must be a non-empty string", field=field, error_type="required")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_optional_text(value: Optional[str], field: str, max_len: int) -> None:
    if value is None:
        return
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_limit(value: int, field: str, max_value: int) -> None:
    if value <= 0 or value > max_value:
        raise ValidationIssue(f"{field} must be between 1 and {max_value}", field=field, error_type="out_of_range")


def normalize_prompt_type(value, field: str = "type") -> PromptType:
    if isinstance(value, PromptType):
        return value
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")
    try:
        return PromptType(value.strip().lower())
    except ValueError as exc:
        allowed = "|".join(member.value for member in PromptType)
        raise ValidationIssue(
            f"{field} must be one of: {allowed}",
            field=field,
            error_type="invalid_value",
        ) from exc


def coerce_id(value, field: str):
    """Return ``value`` in the form the id columns of the active backend expect.

    UUID columns are native on postgres and 36-char strings on sqlite.
    """
    if isinstance(value, uuid.UUID):
        parsed = value
    else:
        validate_required_text(value, field, config.MAX_ID_LENGTH)
        try:
            parsed = uuid.UUID(value.strip())
        except ValueError as exc:
            raise ValidationIssue(
                f"{field} must be a valid UUID",
                field=field,
                error_type="invalid_id",
            ) from exc
    return parsed if config.DB_BACKEND_EFFECTIVE == "postgres" else str(parsed)
