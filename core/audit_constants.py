"""
Canonical audit event type strings.
"""

EVENT_PROMPT_CREATED = "prompt.created"
EVENT_PROMPT_VERSIONED = "prompt.versioned"
EVENT_PROMPT_VERSION_DELETED = "prompt.version_deleted"
EVENT_AGENT_PROMPTS_ASSIGNED = "agent.prompts_assigned"
EVENT_AGENT_DELETED = "agent.deleted"
EVENT_MEMBER_ADDED = "member.added"
EVENT_MEMBER_REMOVED = "member.removed"
EVENT_USER_DELETED = "user.deleted"

__all__ = [
    "EVENT_PROMPT_CREATED",
    "EVENT_PROMPT_VERSIONED",
    "EVENT_PROMPT_VERSION_DELETED",
    "EVENT_AGENT_PROMPTS_ASSIGNED",
    "EVENT_AGENT_DELETED",
    "EVENT_MEMBER_ADDED",
    "EVENT_MEMBER_REMOVED",
    "EVENT_USER_DELETED",
]
