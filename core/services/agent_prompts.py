"""
Agent prompt assignment services.

An agent holds at most one prompt in the ``system`` slot and an ordered list
in the ``regular`` slot. Assignments always point at the active version of a
prompt; forking a version moves them (see prompt_migration).
"""

from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy.orm import joinedload

import core.config as config
from core.audit import log_event
from core.audit_constants import EVENT_AGENT_DELETED, EVENT_AGENT_PROMPTS_ASSIGNED
from core.context import RequestContext, actor_fields
from core.errors import NotFoundError, ValidationIssue
from core.models import Agent, AgentPrompt, Prompt, PromptType
from core.services.prompt_versions import serialize_prompt
from core.transactions import TransactionCoordinator
from core.validators import coerce_id, validate_required_text

logger = config.logger


def serialize_agent(agent: Agent) -> dict:
    return {
        "id": str(agent.id),
        "organization_id": str(agent.organization_id),
        "name": agent.name,
        "created_at": agent.created_at.isoformat() if agent.created_at else None,
    }


def serialize_agent_prompt(row: AgentPrompt) -> dict:
    return {
        "id": str(row.id),
        "agent_id": str(row.agent_id),
        "prompt_id": str(row.prompt_id),
        "slot": row.slot.value if isinstance(row.slot, PromptType) else row.slot,
        "position": row.position,
        "prompt": serialize_prompt(row.prompt) if row.prompt is not None else None,
    }


def _require_agent(db, organization_id, agent_id, *, lock: bool = False) -> Agent:
    query = (
        db.query(Agent)
        .filter(Agent.organization_id == organization_id)
        .filter(Agent.id == agent_id)
    )
    if lock:
        query = query.with_for_update().populate_existing()
    agent = query.first()
    if agent is None:
        raise NotFoundError(f"Agent not found: {agent_id}")
    return agent


def _require_assignable_prompt(db, organization_id, prompt_id, slot: PromptType) -> Prompt:
    # FOR SHARE: a concurrent fork must wait for this assignment to commit
    # so that its migration sees the new row.
    prompt = (
        db.query(Prompt)
        .filter(Prompt.organization_id == organization_id)
        .filter(Prompt.id == prompt_id)
        .with_for_update(read=True)
        .populate_existing()
        .first()
    )
    if prompt is None:
        raise NotFoundError(f"Prompt version not found: {prompt_id}")
    if prompt.type != slot:
        raise ValidationIssue(
            f"prompt {prompt_id} is a {prompt.type.value} prompt, not {slot.value}",
            field="prompt_id",
            error_type="invalid_type",
        )
    if not prompt.is_active:
        raise ValidationIssue(
            f"prompt {prompt_id} is not the active version (version {prompt.version})",
            field="prompt_id",
            error_type="inactive_version",
        )
    return prompt


def create_agent(
    coordinator: TransactionCoordinator,
    organization_id,
    name: str,
) -> Agent:
    validate_required_text(name, "name", config.MAX_NAME_LENGTH)
    org_id = coerce_id(organization_id, "organization_id")

    def _create(db) -> Agent:
        agent = Agent(organization_id=org_id, name=name.strip())
        db.add(agent)
        db.flush()
        return agent

    return coordinator.run(_create, name="create_agent")


def assign_prompts(
    coordinator: TransactionCoordinator,
    organization_id,
    agent_id,
    system_prompt_id=None,
    regular_prompt_ids: Optional[Sequence] = None,
    context: Optional[RequestContext] = None,
) -> list[AgentPrompt]:
    """Replace the agent's assignments with the given prompt versions."""
    org_id = coerce_id(organization_id, "organization_id")
    agent_pk = coerce_id(agent_id, "agent_id")
    system_id = coerce_id(system_prompt_id, "system_prompt_id") if system_prompt_id else None
    regular_ids = [
        coerce_id(value, "regular_prompt_ids") for value in (regular_prompt_ids or [])
    ]
    if len(regular_ids) > config.MAX_REGULAR_PROMPTS:
        raise ValidationIssue(
            f"regular_prompt_ids exceeds max items {config.MAX_REGULAR_PROMPTS}",
            field="regular_prompt_ids",
            error_type="max_items",
        )
    if len(set(regular_ids)) != len(regular_ids):
        raise ValidationIssue(
            "regular_prompt_ids must not contain duplicates",
            field="regular_prompt_ids",
            error_type="duplicate",
        )

    def _assign(db) -> list[AgentPrompt]:
        agent = _require_agent(db, org_id, agent_pk, lock=True)

        wanted: list[tuple[Prompt, PromptType, int]] = []
        if system_id is not None:
            prompt = _require_assignable_prompt(db, org_id, system_id, PromptType.system)
            wanted.append((prompt, PromptType.system, 0))
        for position, prompt_id in enumerate(regular_ids):
            prompt = _require_assignable_prompt(db, org_id, prompt_id, PromptType.regular)
            wanted.append((prompt, PromptType.regular, position))

        db.query(AgentPrompt).filter(AgentPrompt.agent_id == agent.id).delete(
            synchronize_session=False
        )
        db.flush()

        rows = []
        for prompt, slot, position in wanted:
            row = AgentPrompt(
                agent_id=agent.id,
                prompt_id=prompt.id,
                slot=slot,
                position=position,
                prompt=prompt,
            )
            db.add(row)
            rows.append(row)
        db.flush()

        log_event(
            db,
            event_type=EVENT_AGENT_PROMPTS_ASSIGNED,
            org_id=org_id,
            target_type="agent",
            target_ids=[agent.id],
            count_affected=len(rows),
            **actor_fields(context),
        )
        return rows

    rows = coordinator.run(_assign, name="assign_prompts")
    logger.info(
        "agent_prompts_assigned",
        extra={"agent_id": str(agent_pk), "assignments": len(rows)},
    )
    return rows


def delete_agent(
    coordinator: TransactionCoordinator,
    organization_id,
    agent_id,
    context: Optional[RequestContext] = None,
) -> Agent:
    """Delete an agent and its assignments. Prompt versions are left alone."""
    org_id = coerce_id(organization_id, "organization_id")
    agent_pk = coerce_id(agent_id, "agent_id")

    def _delete(db) -> tuple[Agent, int]:
        agent = _require_agent(db, org_id, agent_pk, lock=True)
        removed = (
            db.query(AgentPrompt)
            .filter(AgentPrompt.agent_id == agent.id)
            .delete(synchronize_session=False)
        )
        db.delete(agent)
        db.flush()
        log_event(
            db,
            event_type=EVENT_AGENT_DELETED,
            org_id=org_id,
            target_type="agent",
            target_ids=[agent.id],
            count_affected=removed,
            **actor_fields(context),
        )
        return agent, removed

    agent, removed = coordinator.run(_delete, name="delete_agent")
    logger.info(
        "agent_deleted",
        extra={"agent_id": str(agent.id), "assignments_removed": removed},
    )
    return agent


def list_agent_prompts(
    coordinator: TransactionCoordinator,
    organization_id,
    agent_id,
) -> list[AgentPrompt]:
    """Assignments of one agent with their prompt versions loaded."""
    org_id = coerce_id(organization_id, "organization_id")
    agent_pk = coerce_id(agent_id, "agent_id")

    def _list(db) -> list[AgentPrompt]:
        agent = _require_agent(db, org_id, agent_pk)
        return (
            db.query(AgentPrompt)
            .options(joinedload(AgentPrompt.prompt))
            .filter(AgentPrompt.agent_id == agent.id)
            .order_by(AgentPrompt.slot.asc(), AgentPrompt.position.asc())
            .all()
        )

    return coordinator.run(_list, write=False, name="list_agent_prompts")


def list_prompt_agents(
    coordinator: TransactionCoordinator,
    organization_id,
    prompt_id,
) -> list[Agent]:
    """Agents holding an assignment to one specific prompt version."""
    org_id = coerce_id(organization_id, "organization_id")
    version_id = coerce_id(prompt_id, "prompt_id")

    def _list(db) -> list[Agent]:
        return (
            db.query(Agent)
            .join(AgentPrompt, AgentPrompt.agent_id == Agent.id)
            .filter(Agent.organization_id == org_id)
            .filter(AgentPrompt.prompt_id == version_id)
            .order_by(Agent.created_at.asc(), Agent.id.asc())
            .all()
        )

    return coordinator.run(_list, write=False, name="list_prompt_agents")


__all__ = [
    "serialize_agent",
    "serialize_agent_prompt",
    "create_agent",
    "assign_prompts",
    "delete_agent",
    "list_agent_prompts",
    "list_prompt_agents",
]
