"""Tests for the Notifications router."""
import pytest
from tests.conftest import get_auth_headers


async def _assign(client, admin_user, project, assignee, title="Assigned work"):
    resp = await client.post(
        "/api/v1/tasks",
        json={"projectId": project.id, "title": title, "assigneeId": assignee.id},
        headers=get_auth_headers(admin_user),
    )
    assert resp.status_code == 201
    return resp.json()["data"]


@pytest.mark.asyncio
async def test_list_notifications_empty(client, developer):
    resp = await client.get("/api/v1/notifications", headers=get_auth_headers(developer))
    assert resp.status_code == 200
    assert resp.json()["data"] == []


@pytest.mark.asyncio
async def test_assignment_creates_notification(client, admin_user, developer, project):
    task = await _assign(client, admin_user, project, developer)
    resp = await client.get("/api/v1/notifications", headers=get_auth_headers(developer))
    notif = resp.json()["data"][0]
    assert notif["title"] == "New Task Assigned"
    assert notif["message"] == 'You have been assigned to task "Assigned work"'
    assert notif["isRead"] is False
    assert notif["data"]["task_id"] == task["id"]


@pytest.mark.asyncio
async def test_notifications_are_private(client, admin_user, developer, other_developer, project):
    await _assign(client, admin_user, project, developer)
    resp = await client.get("/api/v1/notifications", headers=get_auth_headers(other_developer))
    assert resp.json()["data"] == []


@pytest.mark.asyncio
async def test_unread_count_and_mark_read(client, admin_user, developer, project):
    await _assign(client, admin_user, project, developer, title="One")
    await _assign(client, admin_user, project, developer, title="Two")
    headers = get_auth_headers(developer)

    resp = await client.get("/api/v1/notifications/unread-count", headers=headers)
    assert resp.json()["data"] == {"count": 2}

    first = (await client.get("/api/v1/notifications", headers=headers)).json()["data"][0]
    resp = await client.patch(f"/api/v1/notifications/{first['id']}/read", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["isRead"] is True

    resp = await client.get("/api/v1/notifications?unreadOnly=true", headers=headers)
    assert len(resp.json()["data"]) == 1


@pytest.mark.asyncio
async def test_mark_all_read(client, admin_user, developer, project):
    await _assign(client, admin_user, project, developer, title="One")
    await _assign(client, admin_user, project, developer, title="Two")
    headers = get_auth_headers(developer)

    resp = await client.patch("/api/v1/notifications/read-all", headers=headers)
    assert resp.json()["data"] == {"marked": 2}

    resp = await client.get("/api/v1/notifications/unread-count", headers=headers)
    assert resp.json()["data"]["count"] == 0


@pytest.mark.asyncio
async def test_cannot_mark_someone_elses_notification(client, admin_user, developer, other_developer, project):
    await _assign(client, admin_user, project, developer)
    notif = (await client.get(
        "/api/v1/notifications", headers=get_auth_headers(developer),
    )).json()["data"][0]

    resp = await client.patch(
        f"/api/v1/notifications/{notif['id']}/read", headers=get_auth_headers(other_developer),
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_review_notifies_assignee(client, qc_user, developer, review_task):
    await client.post(
        f"/api/v1/tasks/{review_task.id}/review",
        json={"reviewStatus": "REJECTED", "hasBugs": True},
        headers=get_auth_headers(qc_user),
    )
    resp = await client.get("/api/v1/notifications", headers=get_auth_headers(developer))
    notif = resp.json()["data"][0]
    assert notif["type"] == "TASK_REVIEWED"
    assert notif["message"] == 'Task "Needs QC" has been rejected (bugs found)'
