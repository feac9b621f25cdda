import os
import uuid

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")

from fastapi.testclient import TestClient

from app.main import app
from core.db import DB
from core.errors import ConflictRetryableError
from core.models import User
from core.services import prompt_versions


@pytest.fixture
def client(server_db):
    # Lifespan is skipped; server_db has already bound the store.
    return TestClient(app)


@pytest.fixture
def headers(org_id):
    return {"X-Organization-Id": org_id, "X-User-Id": str(uuid.uuid4())}


def _create_prompt(client, headers, name="greeting", prompt_type="system", content="Hello"):
    response = client.post(
        "/api/prompts",
        json={"name": name, "type": prompt_type, "content": content},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_prompt_patch_creates_version_and_moves_agent(client, headers):
    prompt = _create_prompt(client, headers)
    assert prompt["version"] == 1
    assert prompt["is_active"] is True

    agent = client.post("/api/agents", json={"name": "A"}, headers=headers).json()
    response = client.put(
        f"/api/agents/{agent['id']}/prompts",
        json={"system_prompt_id": prompt["id"]},
        headers=headers,
    )
    assert response.status_code == 200, response.text

    response = client.patch(f"/api/prompts/{prompt['id']}", json={"content": "Hi"}, headers=headers)
    assert response.status_code == 200, response.text
    patched = response.json()
    assert patched["version"] == 2
    assert patched["id"] != prompt["id"]
    assert patched["content"] == "Hi"

    assigned = client.get(f"/api/agents/{agent['id']}/prompts", headers=headers).json()
    assert assigned["system"]["prompt_id"] == patched["id"]
    assert assigned["system"]["prompt"]["version"] == 2
    assert assigned["regular"] == []

    detail = client.get(f"/api/prompts/{patched['id']}", headers=headers).json()
    assert [item["id"] for item in detail["agents"]] == [agent["id"]]

    history = client.get(f"/api/prompts/{prompt['id']}/versions", headers=headers).json()
    assert [item["version"] for item in history["versions"]] == [1, 2]
    assert [item["is_active"] for item in history["versions"]] == [False, True]


def test_list_prompts_by_type(client, headers):
    _create_prompt(client, headers, name="persona", prompt_type="system")
    _create_prompt(client, headers, name="rule", prompt_type="regular")

    response = client.get("/api/prompts", params={"type": "regular"}, headers=headers)

    assert response.status_code == 200
    assert [item["name"] for item in response.json()["prompts"]] == ["rule"]


def test_delete_prompt_version(client, headers):
    prompt = _create_prompt(client, headers)

    response = client.delete(f"/api/prompts/{prompt['id']}", headers=headers)

    assert response.status_code == 200
    assert response.json()["deleted"]["id"] == prompt["id"]
    assert client.get(f"/api/prompts/{prompt['id']}", headers=headers).status_code == 404


def test_recreate_with_remaining_history_names_recovery(client, headers):
    first = _create_prompt(client, headers)
    second = client.patch(
        f"/api/prompts/{first['id']}", json={"content": "Hi"}, headers=headers
    ).json()
    assert client.delete(f"/api/prompts/{second['id']}", headers=headers).status_code == 200

    response = client.post(
        "/api/prompts",
        json={"name": "greeting", "type": "system", "content": "Hello"},
        headers=headers,
    )

    assert response.status_code == 409
    assert response.json()["error"] == "version_history_exists"
    assert f"/api/prompts/{first['id']}/versions" in response.json()["message"]


def test_delete_agent(client, headers):
    prompt = _create_prompt(client, headers)
    agent = client.post("/api/agents", json={"name": "A"}, headers=headers).json()
    client.put(
        f"/api/agents/{agent['id']}/prompts",
        json={"system_prompt_id": prompt["id"]},
        headers=headers,
    )

    response = client.delete(f"/api/agents/{agent['id']}", headers=headers)

    assert response.status_code == 200
    assert response.json()["deleted"]["id"] == agent["id"]
    assert client.get(f"/api/agents/{agent['id']}/prompts", headers=headers).status_code == 404
    kept = client.get(f"/api/prompts/{prompt['id']}", headers=headers).json()
    assert kept["is_active"] is True
    assert kept["agents"] == []
    assert client.delete(f"/api/agents/{agent['id']}", headers=headers).status_code == 404


def test_error_statuses(client, headers):
    _create_prompt(client, headers)

    duplicate = client.post(
        "/api/prompts",
        json={"name": "greeting", "type": "system", "content": "Again"},
        headers=headers,
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "duplicate_key"

    missing = client.get(f"/api/prompts/{uuid.uuid4()}", headers=headers)
    assert missing.status_code == 404

    malformed = client.get("/api/prompts/not-a-uuid", headers=headers)
    assert malformed.status_code == 400
    assert malformed.json()["error"] == "invalid_id"

    empty_patch = client.patch(f"/api/prompts/{uuid.uuid4()}", json={}, headers=headers)
    assert empty_patch.status_code == 400

    no_scope = client.get("/api/prompts")
    assert no_scope.status_code == 400
    assert no_scope.json()["field"] == "organization_id"


def test_conflict_surfaces_as_retryable(client, headers, monkeypatch):
    def _conflict(*args, **kwargs):
        raise ConflictRetryableError("prompt was versioned concurrently")

    monkeypatch.setattr(prompt_versions, "update_prompt", _conflict)

    response = client.patch(f"/api/prompts/{uuid.uuid4()}", json={"content": "Hi"}, headers=headers)

    assert response.status_code == 503
    assert response.json()["retryable"] is True


def test_member_routes(client, make_org, make_user, add_membership):
    org = make_org()
    user_id = make_user(sessions=1)
    other_org = make_org("Other")
    add_membership(other_org, user_id)
    headers = {"X-Organization-Id": org}

    added = client.post("/api/organization/members", json={"user_id": user_id}, headers=headers)
    assert added.status_code == 201, added.text
    assert client.post(
        "/api/organization/members", json={"user_id": user_id}, headers=headers
    ).status_code == 409

    removed = client.delete(f"/api/organization/members/{user_id}", headers=headers)
    assert removed.status_code == 200
    assert removed.json()["member"]["id"] == added.json()["id"]
    with DB.SessionLocal() as db:
        assert db.get(User, user_id) is not None

    gone = client.delete(
        f"/api/organization/members/{user_id}", headers={"X-Organization-Id": other_org}
    )
    assert gone.status_code == 200
    with DB.SessionLocal() as db:
        assert db.get(User, user_id) is None

    assert client.delete(
        f"/api/organization/members/{user_id}", headers=headers
    ).status_code == 404


def test_health(client, monkeypatch):
    import app.routes.health as health_routes

    monkeypatch.setattr(health_routes, "_get_schema_revisions", lambda engine: ("0003", "0003"))
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["database"]["schema_up_to_date"] is True

    monkeypatch.setattr(health_routes, "_get_schema_revisions", lambda engine: (None, "0003"))
    assert client.get("/health").status_code == 503
