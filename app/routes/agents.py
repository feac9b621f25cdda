"""
Agent and agent prompt assignment endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from core.context import RequestContext
from core.services import agent_prompts
from core.transactions import TransactionCoordinator
from app.deps import get_coordinator, get_request_context
from app.schemas import AgentCreateIn, AgentPromptsIn


router = APIRouter(prefix="/api/agents", tags=["agents"])


def _assignments_payload(agent_id: str, rows) -> dict:
    system = None
    regular = []
    for row in rows:
        item = agent_prompts.serialize_agent_prompt(row)
        if item["slot"] == "system":
            system = item
        else:
            regular.append(item)
    regular.sort(key=lambda item: item["position"])
    return {"agent_id": agent_id, "system": system, "regular": regular}


@router.post("", status_code=201)
def create_agent(
    body: AgentCreateIn,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    context: RequestContext = Depends(get_request_context),
):
    agent = agent_prompts.create_agent(coordinator, context.auth.organization_id, body.name)
    return agent_prompts.serialize_agent(agent)


@router.put("/{agent_id}/prompts")
def put_agent_prompts(
    agent_id: str,
    body: AgentPromptsIn,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    context: RequestContext = Depends(get_request_context),
):
    """Replace every prompt assignment of the agent."""
    rows = agent_prompts.assign_prompts(
        coordinator,
        context.auth.organization_id,
        agent_id,
        system_prompt_id=body.system_prompt_id,
        regular_prompt_ids=body.regular_prompt_ids,
        context=context,
    )
    return _assignments_payload(agent_id, rows)


@router.get("/{agent_id}/prompts")
def get_agent_prompts(
    agent_id: str,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    context: RequestContext = Depends(get_request_context),
):
    rows = agent_prompts.list_agent_prompts(coordinator, context.auth.organization_id, agent_id)
    return _assignments_payload(agent_id, rows)


@router.delete("/{agent_id}")
def delete_agent(
    agent_id: str,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    context: RequestContext = Depends(get_request_context),
):
    agent = agent_prompts.delete_agent(
        coordinator,
        context.auth.organization_id,
        agent_id,
        context=context,
    )
    return {"deleted": agent_prompts.serialize_agent(agent)}
