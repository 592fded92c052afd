"""Test project lifecycle and stage editing."""
import pytest

from board.projects import ProjectService
from tests.helpers import ORG
from workflow.errors import NotFound, PermissionDenied, StageListError


@pytest.fixture
def owner_projects(open_workspace):
    return ProjectService(open_workspace("olivia"))


def test_create_project_makes_caller_owner(open_workspace):
    service = ProjectService(open_workspace("bob"))
    result = service.create_project("Mobile", members=["alice", "bob"])
    project = result.project
    assert result.committed
    assert project.created_by == "bob"
    assert project.members == ["bob", "alice"]
    assert project.stage_ids == ["todo", "in-progress", "done"]
    assert project.id in service.workspace.projects


def test_create_project_with_custom_stages(owner_projects):
    project = owner_projects.create_project("Ops", stages=[{"name": "Backlog"}, {"name": " "}, {"name": "Shipped"}]).project
    assert project.stage_ids == ["backlog", "shipped"]
    with pytest.raises(ValueError):
        owner_projects.create_project("   ")


def test_lifecycle_flags_are_exclusive(owner_projects, store):
    assert owner_projects.archive("web").committed
    project = owner_projects.complete("web").project
    assert project.is_completed and not project.is_archived
    assert project.archived_at is None

    project = owner_projects.soft_delete("web").project
    assert project.is_deleted and not project.is_completed

    project = owner_projects.restore("web").project
    assert project.is_active
    assert store.get_project(ORG, "web").is_active


def test_unarchive_clears_only_its_own_flag(owner_projects):
    owner_projects.archive("web")
    assert owner_projects.unarchive("web").project.is_active
    owner_projects.complete("web")
    assert owner_projects.unarchive("web").project.is_completed
    assert owner_projects.reopen("web").project.is_active


def test_inactive_project_hides_its_tasks(open_workspace, seed_task):
    seed_task("Hidden")
    alice = open_workspace("alice")
    olivia = ProjectService(open_workspace("olivia"))
    olivia.archive("web")
    assert alice.tasks == []
    olivia.unarchive("web")
    assert [t.title for t in alice.tasks] == ["Hidden"]


def test_only_owner_manages_project(open_workspace):
    service = ProjectService(open_workspace("alice"))
    result = service.archive("web")
    assert isinstance(result.error, PermissionDenied)
    assert service.workspace.notices[-1].message == "Only the project owner or an admin can archive this project."
    assert isinstance(service.rename_project("missing", "x").error, NotFound)


def test_admin_can_manage_any_project(open_workspace):
    service = ProjectService(open_workspace("ada"))
    assert service.rename_project("web", "Website 2").project.name == "Website 2"


def test_add_member(owner_projects):
    assert owner_projects.add_member("web", "bob").project.members == ["olivia", "alice", "bob"]
    assert not owner_projects.add_member("web", "bob").committed


def test_removing_a_stage_moves_its_tasks(owner_projects, seed_task, store):
    task = seed_task("In review", status="review")
    result = owner_projects.remove_stage("web", "review")
    assert result.committed
    assert result.tasks_affected == 1
    assert result.project.stage_ids == ["todo", "done"]
    assert store.get_task(ORG, task.id).status == "todo"
    assert owner_projects.workspace.get_task(task.id).status == "todo"


def test_undo_cannot_return_tasks_to_a_removed_stage(owner_projects, seed_task, store):
    task = seed_task("In review", status="review")
    workspace = owner_projects.workspace
    workspace.refresh()
    assert workspace.add_comment(task.id, "Looks close").committed

    owner_projects.remove_stage("web", "review")

    assert not workspace.undo().committed
    assert store.get_task(ORG, task.id).status == "todo"
    assert store.get_task(ORG, task.id).status in store.get_project(ORG, "web").stage_ids


def test_adding_a_stage_keeps_history(owner_projects, seed_task):
    task = seed_task()
    workspace = owner_projects.workspace
    workspace.refresh()
    workspace.update_task(task.id, title="Renamed")

    owner_projects.add_stage("web", "QA")

    assert workspace.undo().committed
    assert workspace.get_task(task.id).title == "Task"


def test_last_stage_cannot_be_removed(owner_projects):
    owner_projects.update_stages("web", [{"id": "only", "name": "Only"}])
    result = owner_projects.remove_stage("web", "only")
    assert isinstance(result.error, StageListError)
    assert owner_projects.workspace.notices[-1].message == "A project must keep at least one stage."


def test_update_stages_rejects_empty_list(owner_projects, store):
    result = owner_projects.update_stages("web", [{"name": "  "}])
    assert isinstance(result.error, StageListError)
    assert store.get_project(ORG, "web").stage_ids == ["todo", "review", "done"]


def test_add_stage(owner_projects):
    project = owner_projects.add_stage("web", "QA").project
    assert project.stage_ids == ["todo", "review", "done", "qa"]
    project = owner_projects.add_stage("web", "Review", index=1).project
    assert project.stage_ids == ["todo", "review-2", "review", "done", "qa"]
    assert project.terminal_stage_id == "qa"


def test_purge_removes_tasks_and_history(owner_projects, seed_task, store):
    seed_task("A")
    seed_task("B")
    workspace = owner_projects.workspace
    workspace.refresh()
    workspace.update_task(workspace.tasks[0].id, tags=["x"])

    result = owner_projects.purge("web")

    assert result.tasks_affected == 2
    assert store.get_project(ORG, "web") is None
    assert workspace.tasks == []
    assert not workspace.history.can_undo


def test_project_changes_reach_other_sessions(open_workspace):
    alice = open_workspace("alice")
    ProjectService(open_workspace("olivia")).rename_project("web", "Site")
    assert alice.projects["web"].name == "Site"
