"""
LifecycleGate Database Models
PostgreSQL (production) / SQLite (development, tests) schema
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
import uuid
from sqlalchemy import (
    Column, Integer, String, Text, Boolean,
    DateTime, ForeignKey, Index, UniqueConstraint, Enum, JSON, event, text
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship, declarative_base

import core.config as config
from core.errors import ValidationIssue

DB_BACKEND_EFFECTIVE = config.DB_BACKEND_EFFECTIVE

JSON_TYPE = JSONB if DB_BACKEND_EFFECTIVE == "postgres" else JSON
UUID_TYPE = UUID(as_uuid=True) if DB_BACKEND_EFFECTIVE == "postgres" else String(36)


def _uuid_default() -> str | uuid.UUID:
    value = uuid.uuid4()
    return value if DB_BACKEND_EFFECTIVE == "postgres" else str(value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


Base = declarative_base()

# =============================================================================
# Enums
# =============================================================================

class PromptType(str, PyEnum):
    system = "system"
    regular = "regular"


PROMPT_TYPE_ENUM = Enum(PromptType, name="prompt_type", native_enum=False, length=20)


# =============================================================================
# Organizations (the scope every request is bound to)
# =============================================================================

class Organization(Base):
    __tablename__ = "organizations"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    members = relationship("Member", back_populates="organization", passive_deletes=True)


# =============================================================================
# Users and their exclusively-owned rows
# =============================================================================

class User(Base):
    __tablename__ = "users"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255))
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    members = relationship("Member", back_populates="user", passive_deletes=True)
    sessions = relationship("UserSession", back_populates="user", passive_deletes=True)
    accounts = relationship("Account", back_populates="user", passive_deletes=True)


class Member(Base):
    __tablename__ = "members"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    organization_id = Column(
        UUID_TYPE, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(UUID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(50), nullable=False, default="member")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    organization = relationship("Organization", back_populates="members")
    user = relationship("User", back_populates="members")

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_members_org_user"),
        Index("ix_members_user_id", "user_id"),
    )


class UserSession(Base):
    __tablename__ = "user_sessions"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    user_id = Column(UUID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token = Column(String(255), nullable=False, unique=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    ip_address = Column(String(100))
    user_agent = Column(Text)
    active_organization_id = Column(UUID_TYPE)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    user = relationship("User", back_populates="sessions")

    __table_args__ = (
        Index("ix_user_sessions_user_id", "user_id"),
    )


class Account(Base):
    __tablename__ = "accounts"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    user_id = Column(UUID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    provider_id = Column(String(100), nullable=False)  # "credential", "github", ...
    account_id = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    user = relationship("User", back_populates="accounts")

    __table_args__ = (
        UniqueConstraint("provider_id", "account_id", name="uq_accounts_provider_account"),
        Index("ix_accounts_user_id", "user_id"),
    )


# Every row type that lives and dies with its user. Deleting a user walks this
# tuple before removing the user row itself.
USER_DEPENDENT_MODELS = (UserSession, Account)


# =============================================================================
# Prompts (immutable versions of one logical prompt)
# =============================================================================

class Prompt(Base):
    __tablename__ = "prompts"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    organization_id = Column(
        UUID_TYPE, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(255), nullable=False)
    type = Column(PROMPT_TYPE_ENUM, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    content = Column(Text, nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    parent_prompt_id = Column(UUID_TYPE)  # version this one was forked from
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    assignments = relationship("AgentPrompt", back_populates="prompt", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "name", "type", "version",
            name="uq_prompts_key_version",
        ),
        Index(
            "uq_prompts_active_key",
            "organization_id", "name", "type",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
        Index("ix_prompts_organization_id", "organization_id"),
    )


# =============================================================================
# Agents and their prompt assignments
# =============================================================================

class Agent(Base):
    __tablename__ = "agents"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    organization_id = Column(
        UUID_TYPE, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    prompts = relationship(
        "AgentPrompt",
        back_populates="agent",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AgentPrompt.position",
    )

    __table_args__ = (
        Index("ix_agents_organization_id", "organization_id"),
    )


class AgentPrompt(Base):
    __tablename__ = "agent_prompts"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    agent_id = Column(UUID_TYPE, ForeignKey("agents.id", ondelete="CASCADE"), nullable=False)
    prompt_id = Column(UUID_TYPE, ForeignKey("prompts.id", ondelete="CASCADE"), nullable=False)
    slot = Column(PROMPT_TYPE_ENUM, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    agent = relationship("Agent", back_populates="prompts")
    prompt = relationship("Prompt", back_populates="assignments")

    __table_args__ = (
        UniqueConstraint("agent_id", "prompt_id", name="uq_agent_prompts_agent_prompt"),
        Index(
            "uq_agent_prompts_system_slot",
            "agent_id",
            unique=True,
            postgresql_where=text("slot = 'system'"),
            sqlite_where=text("slot = 'system'"),
        ),
        Index("ix_agent_prompts_prompt_id", "prompt_id"),
    )


# =============================================================================
# Audit Events
# =============================================================================

class AuditEvent(Base):
    __tablename__ = "audit_events"

    event_id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    event_type = Column(String(100), nullable=False)
    event_version = Column(Integer, default=1, nullable=False)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(String(255))
    org_id = Column(String(255))
    user_id = Column(String(255))
    target_type = Column(String(50), nullable=False)
    target_ids = Column(JSON_TYPE, nullable=False)
    count_affected = Column(Integer)
    reason = Column(Text)
    request_id = Column(String(255))
    metadata_ = Column("metadata", JSON_TYPE)

    __table_args__ = (
        Index("ix_audit_events_created_at", "created_at"),
        Index("ix_audit_events_event_type", "event_type"),
        Index("ix_audit_events_org_id", "org_id"),
        Index("ix_audit_events_user_id", "user_id"),
    )


ORGANIZATION_SCOPED_MODELS = (Prompt, Agent, Member)


@event.listens_for(Base, "before_insert", propagate=True)
def _validate_organization_id_before_insert(mapper, connection, target) -> None:
    if not isinstance(target, ORGANIZATION_SCOPED_MODELS):
        return
    if not getattr(target, "organization_id", None):
        raise ValidationIssue(
            "organization_id is required for this operation",
            field="organization_id",
            error_type="required",
        )


__all__ = [
    "Base",
    "PromptType",
    "Organization",
    "User",
    "Member",
    "UserSession",
    "Account",
    "Prompt",
    "Agent",
    "AgentPrompt",
    "AuditEvent",
    "USER_DEPENDENT_MODELS",
    "ORGANIZATION_SCOPED_MODELS",
]
