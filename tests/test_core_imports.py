import os

os.environ.setdefault("DB_BACKEND", "sqlite")


def test_core_imports():
    import core.context  # noqa: F401
    import core.models  # noqa: F401
    import core.services.agent_prompts  # noqa: F401
    import core.services.memberships  # noqa: F401
    import core.services.prompt_migration  # noqa: F401
    import core.services.prompt_versions  # noqa: F401
    import app.main  # noqa: F401


def test_core_smoke_lifecycle(server_db, org_id):
    from core.services import agent_prompts, prompt_versions

    prompt = prompt_versions.create_initial(
        server_db, org_id, "smoke", "regular", "Core import smoke prompt"
    )
    agent = agent_prompts.create_agent(server_db, org_id, "smoke-agent")
    agent_prompts.assign_prompts(server_db, org_id, agent.id, regular_prompt_ids=[prompt.id])

    forked = prompt_versions.create_next_version(
        server_db, org_id, "smoke", "regular", {"content": "Updated smoke prompt"}
    )
    assert forked.version == 2

    rows = agent_prompts.list_agent_prompts(server_db, org_id, agent.id)
    assert [row.prompt_id for row in rows] == [forked.id]

    prompt_versions.delete_version(server_db, org_id, forked.id)
    assert agent_prompts.list_agent_prompts(server_db, org_id, agent.id) == []
