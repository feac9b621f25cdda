"""
Prompt version endpoints.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

import core.config as config
from core.context import RequestContext
from core.services import agent_prompts, prompt_versions
from core.transactions import TransactionCoordinator
from app.deps import get_coordinator, get_request_context
from app.schemas import PromptCreateIn, PromptPatchIn


router = APIRouter(prefix="/api/prompts", tags=["prompts"])


@router.post("", status_code=201)
def create_prompt(
    body: PromptCreateIn,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    context: RequestContext = Depends(get_request_context),
):
    prompt = prompt_versions.create_initial(
        coordinator,
        context.auth.organization_id,
        body.name,
        body.type,
        body.content,
        description=body.description,
        context=context,
    )
    return prompt_versions.serialize_prompt(prompt)


@router.get("")
def list_prompts(
    prompt_type: Optional[str] = Query(None, alias="type", description="system|regular"),
    limit: int = Query(config.MAX_RESULT_LIMIT),
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    context: RequestContext = Depends(get_request_context),
):
    rows = prompt_versions.list_active_prompts(
        coordinator,
        context.auth.organization_id,
        prompt_type=prompt_type,
        limit=limit,
    )
    return {
        "prompts": [prompt_versions.serialize_prompt(row) for row in rows],
        "count": len(rows),
    }


@router.get("/{prompt_id}")
def get_prompt(
    prompt_id: str,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    context: RequestContext = Depends(get_request_context),
):
    """One prompt version with the agents currently assigned to it."""
    org_id = context.auth.organization_id
    prompt = prompt_versions.get_by_version_id(coordinator, org_id, prompt_id)
    agents = agent_prompts.list_prompt_agents(coordinator, org_id, prompt_id)
    return prompt_versions.serialize_prompt(
        prompt,
        agents=[agent_prompts.serialize_agent(agent) for agent in agents],
    )


@router.get("/{prompt_id}/versions")
def list_prompt_versions(
    prompt_id: str,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    context: RequestContext = Depends(get_request_context),
):
    org_id = context.auth.organization_id
    prompt = prompt_versions.get_by_version_id(coordinator, org_id, prompt_id)
    rows = prompt_versions.list_versions(coordinator, org_id, prompt.name, prompt.type)
    return {
        "name": prompt.name,
        "type": prompt.type.value,
        "versions": [prompt_versions.serialize_prompt(row) for row in rows],
    }


@router.patch("/{prompt_id}")
def patch_prompt(
    prompt_id: str,
    body: PromptPatchIn,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    context: RequestContext = Depends(get_request_context),
):
    prompt = prompt_versions.update_prompt(
        coordinator,
        context.auth.organization_id,
        prompt_id,
        body.model_dump(exclude_unset=True),
        context=context,
    )
    return prompt_versions.serialize_prompt(prompt)


@router.delete("/{prompt_id}")
def delete_prompt(
    prompt_id: str,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    context: RequestContext = Depends(get_request_context),
):
    prompt = prompt_versions.delete_version(
        coordinator,
        context.auth.organization_id,
        prompt_id,
        context=context,
    )
    return {"deleted": prompt_versions.serialize_prompt(prompt)}
