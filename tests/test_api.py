"""Test the board HTTP API."""
import pytest
from fastapi.testclient import TestClient

from api.deps import BoardState, get_board
from api.main import app
from board.models.records import TaskPriority
from tests.helpers import ORG
from workflow.config import BoardConfig


@pytest.fixture
def board(store):
    state = BoardState(store=store, config=BoardConfig(enable_ai_suggestions=False))
    app.dependency_overrides[get_board] = lambda: state
    yield state
    app.dependency_overrides.clear()
    state.close()


@pytest.fixture
def client(board):
    return TestClient(app)


def as_user(user_id: str, org_id: str = ORG) -> dict:
    return {"X-Org-ID": org_id, "X-User-ID": user_id}


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_unknown_user_is_rejected(client):
    assert client.get("/api/board/tasks", headers=as_user("mallory")).status_code == 401
    assert client.get("/api/board/tasks", headers=as_user("alice", "other-org")).status_code == 401


def test_list_and_get_tasks(client, seed_task):
    task = seed_task("Listed")
    seed_task("Elsewhere", status="review")

    resp = client.get("/api/board/tasks", params={"status": "todo"}, headers=as_user("alice"))
    assert resp.status_code == 200
    assert [t["title"] for t in resp.json()["data"]] == ["Listed"]

    resp = client.get(f"/api/board/tasks/{task.id}", headers=as_user("alice"))
    assert resp.json()["id"] == task.id
    assert client.get("/api/board/tasks/missing", headers=as_user("alice")).status_code == 404


def test_create_task(client):
    resp = client.post(
        "/api/board/tasks",
        json={"title": "From the API", "project_id": "web", "assignee_ids": ["alice"]},
        headers=as_user("olivia"),
    )
    assert resp.status_code == 201
    task = resp.json()["task"]
    assert task["status"] == "todo"
    assert task["assignee_ids"] == ["alice"]

    inbox = client.get("/api/board/notifications", headers=as_user("alice")).json()
    assert [n["title"] for n in inbox] == ["New assignment"]


def test_create_task_validation(client):
    assert client.post("/api/board/tasks", json={"title": ""}, headers=as_user("olivia")).status_code == 422
    assert client.post("/api/board/tasks", json={"title": "   "}, headers=as_user("olivia")).status_code == 422


def test_edit_permissions(client, seed_task):
    task = seed_task("Draft")
    resp = client.patch(f"/api/board/tasks/{task.id}", json={"title": "Mine now"}, headers=as_user("alice"))
    assert resp.status_code == 403
    assert resp.json()["detail"]["error"] == "PermissionDenied"

    resp = client.patch(f"/api/board/tasks/{task.id}", json={"title": "Final"}, headers=as_user("olivia"))
    assert resp.status_code == 200
    assert resp.json()["task"]["title"] == "Final"


def test_high_priority_completion_conflicts(client, seed_task):
    task = seed_task("Launch", status="review", priority=TaskPriority.HIGH)
    resp = client.post(f"/api/board/tasks/{task.id}/move", json={"stage": "done"}, headers=as_user("alice"))
    assert resp.status_code == 409
    assert resp.json()["detail"]["title"] == "Approval required"

    notices = client.get("/api/board/notices", headers=as_user("alice")).json()
    assert notices[-1]["task_id"] == task.id

    resp = client.post(f"/api/board/tasks/{task.id}/approve", headers=as_user("olivia"))
    assert resp.status_code == 200
    resp = client.post(f"/api/board/tasks/{task.id}/move", json={"stage": "done"}, headers=as_user("alice"))
    assert resp.json()["task"]["status"] == "done"


def test_move_back_round_trip(client, seed_task, clock):
    task = seed_task("Shipped", status="done", completed_at=clock.now)

    resp = client.post(f"/api/board/tasks/{task.id}/status", json={"status": "review"}, headers=as_user("alice"))
    assert resp.status_code == 428
    assert resp.json()["detail"]["pending"] == {
        "task_id": task.id,
        "from_stage": "done",
        "target_stage": "review",
        "target_task_id": None,
    }

    resp = client.post("/api/board/move-back", json={"reason": "copy is wrong"}, headers=as_user("alice"))
    assert resp.status_code == 200
    assert resp.json()["task"]["moved_back_reason"] == "copy is wrong"
    assert client.post("/api/board/move-back", json={"reason": "again"}, headers=as_user("alice")).status_code == 404


def test_unknown_stage_is_unprocessable(client, seed_task):
    task = seed_task()
    resp = client.post(f"/api/board/tasks/{task.id}/move", json={"stage": "limbo"}, headers=as_user("alice"))
    assert resp.status_code == 422


def test_move_to_deleted_task_is_not_found(client, seed_task):
    task = seed_task()
    client.get("/api/board/tasks", headers=as_user("alice"))
    assert client.delete(f"/api/board/tasks/{task.id}", headers=as_user("olivia")).status_code == 200
    resp = client.post(f"/api/board/tasks/{task.id}/move", json={"stage": "review"}, headers=as_user("alice"))
    assert resp.status_code == 404


def test_bulk_update_and_undo(client, seed_task):
    plain = seed_task("Plain")
    urgent = seed_task("Urgent", priority=TaskPriority.HIGH)

    resp = client.post(
        "/api/board/tasks/bulk-update",
        json={"task_ids": [plain.id, urgent.id], "status": "done"},
        headers=as_user("alice"),
    )
    body = resp.json()
    assert body["committed"] == [plain.id]
    assert list(body["failed"]) == [urgent.id]

    resp = client.post("/api/board/history/undo", headers=as_user("alice"))
    assert resp.json() == {"committed": True, "can_undo": False}
    assert client.get(f"/api/board/tasks/{plain.id}", headers=as_user("alice")).json()["status"] == "todo"


def test_comments_and_timer(client, seed_task):
    task = seed_task()
    resp = client.post(f"/api/board/tasks/{task.id}/comments", json={"text": "On it"}, headers=as_user("alice"))
    assert resp.status_code == 201
    assert resp.json()["task"]["comments"][0]["text"] == "On it"

    resp = client.post(f"/api/board/tasks/{task.id}/timer", headers=as_user("alice"))
    assert resp.json()["task"]["is_timer_running"]


def test_ai_assist_disabled_returns_empty(client, seed_task):
    task = seed_task()
    resp = client.post(f"/api/board/tasks/{task.id}/ai-assist", headers=as_user("olivia"))
    assert resp.json() == {"steps": [], "tags": []}


def test_presence(client):
    client.post("/api/board/presence", headers=as_user("olivia"))
    online = client.post("/api/board/presence", headers=as_user("alice")).json()
    assert {e["user_id"] for e in online} == {"olivia", "alice"}


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

def test_create_and_list_projects(client):
    resp = client.post(
        "/api/board/projects",
        json={"name": "Mobile", "stages": [{"name": "Backlog"}, {"name": "Live"}]},
        headers=as_user("bob"),
    )
    assert resp.status_code == 201
    project = resp.json()["project"]
    assert project["created_by"] == "bob"
    assert [s["id"] for s in project["stages"]] == ["backlog", "live"]

    names = {p["name"] for p in client.get("/api/board/projects", headers=as_user("bob")).json()}
    assert names == {"Website", "Mobile"}


def test_project_lifecycle_routes(client):
    assert client.post("/api/board/projects/web/archive", headers=as_user("alice")).status_code == 403
    resp = client.post("/api/board/projects/web/archive", headers=as_user("olivia"))
    assert resp.json()["project"]["is_archived"]
    assert client.post("/api/board/projects/web/explode", headers=as_user("olivia")).status_code == 404


def test_stage_routes(client, seed_task):
    task = seed_task(status="review")
    resp = client.post("/api/board/projects/web/stages", json={"name": "QA"}, headers=as_user("olivia"))
    assert resp.status_code == 201
    assert [s["id"] for s in resp.json()["project"]["stages"]][-1] == "qa"

    resp = client.delete("/api/board/projects/web/stages/review", headers=as_user("olivia"))
    assert resp.json()["tasks_affected"] == 1
    assert client.get(f"/api/board/tasks/{task.id}", headers=as_user("olivia")).json()["status"] == "todo"

    resp = client.put("/api/board/projects/web/stages", json={"stages": []}, headers=as_user("olivia"))
    assert resp.status_code == 422


def test_purge_project(client, seed_task):
    seed_task()
    resp = client.delete("/api/board/projects/web", headers=as_user("olivia"))
    assert resp.json()["tasks_affected"] == 1
    assert client.get("/api/board/tasks", headers=as_user("olivia")).json()["total"] == 0
