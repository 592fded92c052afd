"""Shared fixtures: a fake clock, a seeded in-memory store and workspace factory."""
import pytest

from board.models.records import Project, Stage, Task, TaskPriority, User, UserRole
from board.store.record_store import RecordStore
from board.store.repository import InMemoryBackend
from board.sync.bus import SyncBus
from board.workspace import Workspace
from tests.helpers import ORG, FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def users():
    return {
        "ada": User(id="ada", org_id=ORG, display_name="Ada", role=UserRole.ADMIN),
        "olivia": User(id="olivia", org_id=ORG, display_name="Olivia"),
        "alice": User(id="alice", org_id=ORG, display_name="Alice"),
        "bob": User(id="bob", org_id=ORG, display_name="Bob"),
    }


@pytest.fixture
def project():
    return Project(
        id="web",
        org_id=ORG,
        name="Website",
        created_by="olivia",
        members=["olivia", "alice"],
        stages=[Stage(id="todo", name="To Do"), Stage(id="review", name="Review"), Stage(id="done", name="Done")],
    )


@pytest.fixture
def store(clock, users, project):
    store = RecordStore(InMemoryBackend(), clock=clock)
    for user in users.values():
        store.put_user(user)
    store.put_project(project)
    return store


@pytest.fixture
def bus():
    return SyncBus()


@pytest.fixture
def seed_task(store):
    """Write a task straight to the store, bypassing the workspace."""
    counter = {"order": 0}

    def _seed(title: str = "Task", **fields) -> Task:
        data = {
            "org_id": ORG,
            "project_id": "web",
            "created_by": "olivia",
            "title": title,
            "status": "todo",
            "priority": TaskPriority.MEDIUM,
            "order": counter["order"],
            "assignee_ids": ["alice"],
        }
        data.update(fields)
        counter["order"] = data["order"] + 1
        return store.put_task(Task(**data))

    return _seed


@pytest.fixture
def open_workspace(store, bus, clock, users):
    opened = []

    def _open(user_id: str, **kwargs) -> Workspace:
        workspace = Workspace(users[user_id], store, bus, clock=clock, **kwargs)
        opened.append(workspace)
        return workspace

    yield _open
    for workspace in opened:
        workspace.close()
