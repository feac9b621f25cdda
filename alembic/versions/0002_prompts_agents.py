"""Versioned prompts, agents and agent prompt assignments.

Revision ID: 0002_prompts_agents
Revises: 0001_identity_tables
Create Date: 2026-09-28
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0002_prompts_agents"
down_revision = "0001_identity_tables"
branch_labels = None
depends_on = None

PROMPT_TYPE = sa.Enum("system", "regular", name="prompt_type", native_enum=False, length=20)


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    uuid_type = postgresql.UUID(as_uuid=True) if is_postgres else sa.String(length=36)

    op.create_table(
        "prompts",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column(
            "organization_id",
            uuid_type,
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("type", PROMPT_TYPE, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("parent_prompt_id", uuid_type),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "organization_id", "name", "type", "version",
            name="uq_prompts_key_version",
        ),
    )
    # One active version per (organization, name, type).
    op.create_index(
        "uq_prompts_active_key",
        "prompts",
        ["organization_id", "name", "type"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active"),
    )
    op.create_index("ix_prompts_organization_id", "prompts", ["organization_id"])

    op.create_table(
        "agents",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column(
            "organization_id",
            uuid_type,
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_agents_organization_id", "agents", ["organization_id"])

    op.create_table(
        "agent_prompts",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column(
            "agent_id",
            uuid_type,
            sa.ForeignKey("agents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "prompt_id",
            uuid_type,
            sa.ForeignKey("prompts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("slot", PROMPT_TYPE, nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("agent_id", "prompt_id", name="uq_agent_prompts_agent_prompt"),
    )
    op.create_index(
        "uq_agent_prompts_system_slot",
        "agent_prompts",
        ["agent_id"],
        unique=True,
        postgresql_where=sa.text("slot = 'system'"),
        sqlite_where=sa.text("slot = 'system'"),
    )
    op.create_index("ix_agent_prompts_prompt_id", "agent_prompts", ["prompt_id"])


def downgrade() -> None:
    op.drop_index("ix_agent_prompts_prompt_id", table_name="agent_prompts")
    op.drop_index("uq_agent_prompts_system_slot", table_name="agent_prompts")
    op.drop_table("agent_prompts")
    op.drop_index("ix_agents_organization_id", table_name="agents")
    op.drop_table("agents")
    op.drop_index("ix_prompts_organization_id", table_name="prompts")
    op.drop_index("uq_prompts_active_key", table_name="prompts")
    op.drop_table("prompts")
