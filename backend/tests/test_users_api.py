"""
Tests for the user endpoints (/api/users).

Tests cover:
- User search rules
- Dashboard and assigned task list
- Avatar update, account deactivation and public profile lookup
"""

import logging
from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import models
from tests.conftest import make_user
from time_utils import utc_now

logger = logging.getLogger(__name__)


# ============== Search ==============


def test_search_users(
    client: TestClient,
    owner_user: models.User,
    member_user: models.User,
    owner_headers: dict,
    test_db: Session
):
    make_user(test_db, "Member Retired", "retired@test.com", is_active=False)

    response = client.get("/api/users/search?q=MEMBER", headers=owner_headers)

    assert response.status_code == 200
    assert [u["id"] for u in response.json()] == [member_user.id]


def test_search_excludes_caller(client: TestClient, owner_user: models.User, owner_headers: dict):
    response = client.get("/api/users/search?q=owner", headers=owner_headers)

    assert response.status_code == 200
    assert response.json() == []


def test_search_requires_two_characters(client: TestClient, owner_headers: dict):
    response = client.get("/api/users/search?q=a", headers=owner_headers)

    assert response.status_code == 400
    assert response.json()["code"] == "ValidationFailed"


# ============== Dashboard ==============


def test_dashboard(
    client: TestClient,
    project: models.Project,
    owner_headers: dict,
    member_headers: dict,
    member_user: models.User
):
    due_soon = (utc_now() + timedelta(days=2)).isoformat()
    client.post(
        f"/api/tasks/project/{project.id}",
        json={"title": "Soon", "assignee_id": member_user.id, "due_date": due_soon},
        headers=owner_headers
    )
    client.post(
        f"/api/tasks/project/{project.id}",
        json={"title": "Shipped", "assignee_id": member_user.id, "status": "Done"},
        headers=owner_headers
    )

    response = client.get("/api/users/me/dashboard", headers=member_headers)

    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    body = response.json()
    assert body["task_stats"] == {"total": 2, "todo": 1, "in_progress": 0, "review": 0, "done": 1, "overdue": 0}
    assert [t["title"] for t in body["upcoming_tasks"]] == ["Soon"]
    assert {t["title"] for t in body["recent_activity"]} == {"Soon", "Shipped"}


def test_my_tasks(
    client: TestClient,
    project: models.Project,
    owner_headers: dict,
    member_headers: dict,
    member_user: models.User
):
    for title in ("One", "Two", "Three"):
        client.post(
            f"/api/tasks/project/{project.id}",
            json={"title": title, "assignee_id": member_user.id},
            headers=owner_headers
        )

    response = client.get("/api/users/me/tasks?limit=2", headers=member_headers)

    assert response.status_code == 200
    body = response.json()
    assert len(body["items"]) == 2
    assert body["pagination"] == {"current": 1, "pages": 2, "total": 3}

    filtered = client.get(f"/api/users/me/tasks?projectId={project.id}&status=To%20Do", headers=member_headers)
    assert filtered.json()["pagination"]["total"] == 3


# ============== Account ==============


def test_update_avatar(client: TestClient, owner_headers: dict):
    response = client.put("/api/users/me/avatar", json={"avatar": "https://cdn.example.com/a.png"}, headers=owner_headers)

    assert response.status_code == 200
    assert response.json()["avatar"] == "https://cdn.example.com/a.png"


def test_deactivate_account(client: TestClient, owner_user: models.User, owner_headers: dict):
    response = client.post("/api/users/me/deactivate", headers=owner_headers)
    assert response.status_code == 200

    response = client.get("/api/auth/me", headers=owner_headers)
    assert response.status_code == 401
    assert response.json()["code"] == "AccountDeactivated"
    logger.info("✓ Deactivated account can no longer authenticate")


def test_get_user(client: TestClient, member_user: models.User, owner_headers: dict):
    response = client.get(f"/api/users/{member_user.id}", headers=owner_headers)

    assert response.status_code == 200
    assert response.json() == {
        "id": member_user.id,
        "name": "Member User",
        "email": "member@test.com",
        "avatar": None,
    }

    assert client.get("/api/users/nobody", headers=owner_headers).status_code == 404
