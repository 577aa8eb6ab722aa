# tests/test_tasks.py — Task router tests, including QC review
import pytest
from httpx import AsyncClient

from models import ReviewStatus, TaskStatus
from tests.conftest import get_auth_headers, make_task


@pytest.mark.asyncio
async def test_admin_creates_task_and_assignee_is_notified(client: AsyncClient, admin_user, developer, project):
    resp = await client.post(
        "/api/v1/tasks",
        json={"projectId": project.id, "title": "Build login", "assigneeId": developer.id, "priority": "HIGH"},
        headers=get_auth_headers(admin_user),
    )
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["title"] == "Build login"
    assert data["status"] == "TODO"
    assert data["priority"] == "HIGH"
    assert data["assignee"]["id"] == developer.id

    resp = await client.get("/api/v1/notifications", headers=get_auth_headers(developer))
    notifications = resp.json()["data"]
    assert len(notifications) == 1
    assert notifications[0]["type"] == "TASK_ASSIGNED"


@pytest.mark.asyncio
async def test_contributor_cannot_create_or_delete(client: AsyncClient, developer, project, task_t):
    headers = get_auth_headers(developer)
    resp = await client.post("/api/v1/tasks", json={"projectId": project.id, "title": "x"}, headers=headers)
    assert resp.status_code == 403
    resp = await client.delete(f"/api/v1/tasks/{task_t.id}", headers=headers)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_invalid_priority_is_rejected(client: AsyncClient, admin_user, project):
    resp = await client.post(
        "/api/v1/tasks",
        json={"projectId": project.id, "title": "x", "priority": "SOMEDAY"},
        headers=get_auth_headers(admin_user),
    )
    assert resp.status_code == 400
    assert "priority" in resp.json()["errors"]


@pytest.mark.asyncio
async def test_contributor_sees_only_assigned_tasks(
    client: AsyncClient, db_session, project, admin_user, developer, other_developer, task_t,
):
    await make_task(db_session, project, admin_user, other_developer, title="Theirs")

    resp = await client.get("/api/v1/tasks", headers=get_auth_headers(developer))
    titles = [t["title"] for t in resp.json()["data"]["tasks"]]
    assert titles == ["Task T"]

    resp = await client.get("/api/v1/tasks", headers=get_auth_headers(admin_user))
    assert resp.json()["data"]["pagination"]["total"] == 2


@pytest.mark.asyncio
async def test_update_records_one_activity_per_field(client: AsyncClient, developer, task_t):
    headers = get_auth_headers(developer)
    resp = await client.patch(
        f"/api/v1/tasks/{task_t.id}",
        json={"status": "IN_PROGRESS", "priority": "MEDIUM", "description": "details"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "IN_PROGRESS"

    resp = await client.get(f"/api/v1/tasks/{task_t.id}/activity", headers=headers)
    actions = sorted(a["action"] for a in resp.json()["data"])
    # priority was already MEDIUM so it leaves no row
    assert actions == ["DESCRIPTION_CHANGED", "STATUS_CHANGED"]


@pytest.mark.asyncio
async def test_contributor_cannot_reassign(client: AsyncClient, developer, other_developer, task_t):
    resp = await client.patch(
        f"/api/v1/tasks/{task_t.id}",
        json={"assigneeId": other_developer.id},
        headers=get_auth_headers(developer),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_contributor_cannot_touch_unassigned_task(
    client: AsyncClient, db_session, project, admin_user, developer, other_developer,
):
    theirs = await make_task(db_session, project, admin_user, other_developer, title="Theirs")
    headers = get_auth_headers(developer)
    assert (await client.get(f"/api/v1/tasks/{theirs.id}", headers=headers)).status_code == 403
    resp = await client.patch(f"/api/v1/tasks/{theirs.id}", json={"title": "mine"}, headers=headers)
    assert resp.status_code == 403


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["status", "title", "priority"])
async def test_null_for_required_field_is_rejected(client: AsyncClient, developer, task_t, field):
    headers = get_auth_headers(developer)
    resp = await client.patch(f"/api/v1/tasks/{task_t.id}", json={field: None}, headers=headers)
    assert resp.status_code == 400
    assert field in resp.json()["errors"]

    data = (await client.get(f"/api/v1/tasks/{task_t.id}", headers=headers)).json()["data"]
    assert data["title"] == "Task T"
    assert data["status"] == "TODO"


@pytest.mark.asyncio
async def test_nullable_fields_can_be_cleared(client: AsyncClient, developer, task_t):
    headers = get_auth_headers(developer)
    await client.patch(f"/api/v1/tasks/{task_t.id}", json={"description": "details"}, headers=headers)
    resp = await client.patch(f"/api/v1/tasks/{task_t.id}", json={"description": None}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["description"] is None


@pytest.mark.asyncio
async def test_qc_changes_only_status_of_assigned_task(
    client: AsyncClient, db_session, project, admin_user, qc_user,
):
    task = await make_task(db_session, project, admin_user, qc_user, title="QC checklist")
    headers = get_auth_headers(qc_user)

    resp = await client.patch(f"/api/v1/tasks/{task.id}", json={"status": "IN_PROGRESS"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "IN_PROGRESS"

    for body in ({"title": "Renamed"}, {"priority": "URGENT"}, {"status": "COMPLETED", "description": "x"}):
        resp = await client.patch(f"/api/v1/tasks/{task.id}", json=body, headers=headers)
        assert resp.status_code == 403

    data = (await client.get(f"/api/v1/tasks/{task.id}", headers=headers)).json()["data"]
    assert data["title"] == "QC checklist"
    assert data["status"] == "IN_PROGRESS"


@pytest.mark.asyncio
async def test_task_detail_includes_comments(client: AsyncClient, developer, task_t):
    headers = get_auth_headers(developer)
    resp = await client.post(f"/api/v1/tasks/{task_t.id}/comments", json={"content": "On it"}, headers=headers)
    assert resp.status_code == 201

    resp = await client.get(f"/api/v1/tasks/{task_t.id}", headers=headers)
    data = resp.json()["data"]
    assert data["comments"][0]["content"] == "On it"
    assert data["activities"][0]["action"] == "COMMENTED"


@pytest.mark.asyncio
async def test_activity_has_no_write_routes(client: AsyncClient, admin_user, task_t):
    headers = get_auth_headers(admin_user)
    assert (await client.delete(f"/api/v1/tasks/{task_t.id}/activity", headers=headers)).status_code == 405
    assert (await client.patch(f"/api/v1/tasks/{task_t.id}/activity", json={}, headers=headers)).status_code == 405


@pytest.mark.asyncio
async def test_unknown_task(client: AsyncClient, admin_user):
    resp = await client.get("/api/v1/tasks/does-not-exist", headers=get_auth_headers(admin_user))
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "message": "Task not found", "code": "TL-DB-002"}


# ============================================================
# REVIEW
# ============================================================

@pytest.mark.asyncio
async def test_qc_review_needs_changes(client: AsyncClient, qc_user, review_task):
    resp = await client.post(
        f"/api/v1/tasks/{review_task.id}/review",
        json={"reviewStatus": "NEEDS_CHANGES", "reviewComment": "add tests"},
        headers=get_auth_headers(qc_user),
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "IN_PROGRESS"
    assert data["reviewStatus"] == "NEEDS_CHANGES"
    assert data["reviewComment"] == "add tests"
    assert data["reviewedById"] == qc_user.id


@pytest.mark.asyncio
async def test_developer_cannot_review(client: AsyncClient, developer, review_task):
    resp = await client.post(
        f"/api/v1/tasks/{review_task.id}/review",
        json={"reviewStatus": "APPROVED"},
        headers=get_auth_headers(developer),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_reviewing_todo_task_is_invalid(client: AsyncClient, qc_user, task_t):
    resp = await client.post(
        f"/api/v1/tasks/{task_t.id}/review",
        json={"reviewStatus": "APPROVED"},
        headers=get_auth_headers(qc_user),
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "TL-REVIEW-001"


@pytest.mark.asyncio
async def test_pending_review_queue(
    client: AsyncClient, db_session, project, admin_user, qc_user, developer, review_task,
):
    await make_task(db_session, project, admin_user, developer, title="Done",
                    status=TaskStatus.IN_REVIEW, review_status=ReviewStatus.APPROVED)

    resp = await client.get(
        f"/api/v1/tasks/review/pending?projectId={project.id}", headers=get_auth_headers(qc_user),
    )
    assert resp.status_code == 200
    assert [t["id"] for t in resp.json()["data"]] == [review_task.id]

    resp = await client.get("/api/v1/tasks/review/pending", headers=get_auth_headers(developer))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_resubmitting_resets_review(client: AsyncClient, qc_user, developer, review_task):
    await client.post(
        f"/api/v1/tasks/{review_task.id}/review",
        json={"reviewStatus": "REJECTED"},
        headers=get_auth_headers(qc_user),
    )
    resp = await client.patch(
        f"/api/v1/tasks/{review_task.id}",
        json={"status": "IN_REVIEW"},
        headers=get_auth_headers(developer),
    )
    assert resp.json()["data"]["reviewStatus"] == "PENDING"

    resp = await client.post(
        f"/api/v1/tasks/{review_task.id}/review",
        json={"reviewStatus": "APPROVED"},
        headers=get_auth_headers(qc_user),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "COMPLETED"
    assert resp.json()["data"]["completedAt"] is not None
