"""Tests for the JSON API router."""

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from taskgate.interface.principal_resolver import issue_principal_token
from taskgate.main import app


@pytest.fixture
def client(db):
    with TestClient(app) as test_client:
        yield test_client


def _auth(user) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_principal_token(user.id)}"}


@pytest.mark.unit
class TestAuthentication:
    async def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    async def test_missing_token(self, client):
        assert client.get("/tasks").status_code == 401

    async def test_tampered_token(self, client, admin):
        token = issue_principal_token(admin.id) + "x"

        assert client.get("/tasks", headers={"Authorization": f"Bearer {token}"}).status_code == 401

    async def test_bootstrap_registration_without_token(self, client):
        response = client.post(
            "/users",
            json={"email": "root@example.com", "first_name": "Root", "last_name": "Admin", "roles": ["Administrator"]},
        )

        assert response.status_code == 201
        assert response.json()["value"]["roles"] == ["Administrator"]


@pytest.mark.unit
class TestTaskRoutes:
    async def test_create_and_list(self, client, manager, member, group):
        response = client.post(
            "/tasks",
            json={"title": "Launch", "group_id": group.id, "assigned_user_id": member.id},
            headers=_auth(manager),
        )

        assert response.status_code == 201
        task_id = response.json()["value"]["id"]
        listed = client.get("/tasks", headers=_auth(member)).json()["value"]
        assert [task["id"] for task in listed] == [task_id]

    async def test_invalid_due_date_is_422(self, client, admin, group):
        response = client.post(
            "/tasks",
            json={"title": "Old", "group_id": group.id, "due_date": (date.today() - timedelta(days=1)).isoformat()},
            headers=_auth(admin),
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "ERR_INVALID_INPUT"

    async def test_user_priority_change_is_ignored(self, client, member, task):
        response = client.patch(f"/tasks/{task.id}", json={"priority": "Critical"}, headers=_auth(member))

        assert response.status_code == 200
        assert response.json()["value"]["priority"] == "Medium"

    async def test_stale_version_is_409(self, client, manager, task):
        response = client.patch(
            f"/tasks/{task.id}?expected_version=7", json={"title": "Late"}, headers=_auth(manager)
        )

        assert response.status_code == 409
        assert response.json()["rejected_at"] == "applied"

    async def test_missing_task_is_404(self, client, admin):
        assert client.get("/tasks/404", headers=_auth(admin)).status_code == 404


@pytest.mark.unit
class TestGroupAndUserRoutes:
    async def test_other_manager_cannot_delete_group(self, client, other_manager, group):
        response = client.delete(f"/groups/{group.id}", headers=_auth(other_manager))

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "ERR_FORBIDDEN"

    async def test_active_tasks_block_deletion(self, client, manager, group, task):
        info = client.get(f"/groups/{group.id}/deletion-info", headers=_auth(manager)).json()["value"]
        response = client.delete(f"/groups/{group.id}", headers=_auth(manager))

        assert info["active_task_count"] == 1
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "ERR_INVARIANT_VIOLATION"

    async def test_last_admin_role_removal_is_rejected(self, client, admin):
        response = client.delete(f"/users/{admin.id}/roles/Administrator", headers=_auth(admin))

        assert response.status_code == 403
        assert response.json()["status"] == "invariant_violation"

    async def test_membership_replace(self, client, admin, member, other_group):
        response = client.put(
            f"/users/{member.id}/groups", json={"group_ids": [int(other_group.id)]}, headers=_auth(admin)
        )

        assert response.status_code == 200
        assert response.json()["value"] == [other_group.id]

    async def test_duplicate_email_with_apostrophe_is_422(self, client, admin):
        body = {"email": "o'brien@example.com", "first_name": "Aoife", "last_name": "O'Brien"}

        created = client.post("/users", json=body, headers=_auth(admin))
        duplicate = client.post("/users", json=body, headers=_auth(admin))

        assert created.status_code == 201
        assert duplicate.status_code == 422
        assert duplicate.json()["error"]["code"] == "ERR_INVALID_INPUT"
