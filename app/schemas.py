"""
Request bodies for the HTTP surface.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from core.models import PromptType


class PromptCreateIn(BaseModel):
    name: str
    type: PromptType
    content: str
    description: Optional[str] = None


class PromptPatchIn(BaseModel):
    content: Optional[str] = None
    description: Optional[str] = None


class AgentCreateIn(BaseModel):
    name: str


class AgentPromptsIn(BaseModel):
    system_prompt_id: Optional[str] = None
    regular_prompt_ids: List[str] = Field(default_factory=list)


class MemberCreateIn(BaseModel):
    user_id: str
    role: str = "member"
