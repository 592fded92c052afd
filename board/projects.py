"""
Taskflow Projects — lifecycle and stage editing for workflow containers.

Every operation here is owner tier (admin or project owner), except
``create_project``, which makes the caller the owner. Each committed change
publishes PROJECTS_UPDATED so other sessions reload.

Lifecycle flags are exclusive: archive, complete and soft-delete each clear
the other two; unarchive and reopen clear only their own; restore clears
all three.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional
import logging

from board.models.records import Project, Stage, unique_ids
from board.sync.events import SyncEventType
from board.workspace import Notice, Workspace
from workflow.errors import BoardError, NotFound, StageListError
from workflow.policy import ensure_can_manage_project
from workflow.stages import sanitize_stages, slugify_stage

logger = logging.getLogger(__name__)

_LIFECYCLE_CLEARED = {
    "is_archived": False,
    "archived_at": None,
    "is_completed": False,
    "completed_at": None,
    "is_deleted": False,
    "deleted_at": None,
}


@dataclass
class ProjectResult:
    committed: bool
    project: Optional[Project] = None
    error: Optional[BoardError] = None
    tasks_affected: int = 0


class ProjectService:
    """Project operations on behalf of a workspace's actor."""

    def __init__(self, workspace: Workspace):
        self.workspace = workspace

    @property
    def actor(self):
        return self.workspace.actor

    @property
    def store(self):
        return self.workspace.store

    # -- Plumbing --

    def _run(self, name: str, fn: Callable[[], Any]) -> ProjectResult:
        try:
            result = fn()
        except NotFound as exc:
            logger.debug("%s skipped: %s", name, exc.message)
            return ProjectResult(committed=False, error=exc)
        except BoardError as exc:
            logger.warning("%s blocked for %s: %s", name, self.actor.id, exc.message)
            self.workspace.notices.append(Notice.from_error(exc))
            return ProjectResult(committed=False, error=exc)
        if isinstance(result, ProjectResult):
            return result
        return ProjectResult(committed=result is not None, project=result)

    def _get(self, project_id: str) -> Project:
        project = self.store.get_project(self.workspace.org_id, project_id)
        if project is None:
            raise NotFound(f"Project {project_id} does not exist.")
        return project

    def _managed(self, project_id: str, verb: str) -> Project:
        project = self._get(project_id)
        ensure_can_manage_project(self.actor, project, verb)
        return project

    def _save(self, project: Project, announce: bool = True) -> Project:
        written = self.store.put_project(project)
        self.workspace._reload_projects()
        self.workspace._reload_tasks()
        if announce:
            self.workspace._publish(SyncEventType.PROJECTS_UPDATED, {"project_id": written.id})
        return written

    def _update(self, project_id: str, verb: str, **updates: Any) -> ProjectResult:
        def apply() -> Project:
            project = self._managed(project_id, verb)
            return self._save(project.model_copy(update=updates))

        return self._run(f"{verb}_project", apply)

    # -- Create / rename / members --

    def create_project(
        self,
        name: str,
        description: str = "",
        color: str = "",
        members: Iterable[str] = (),
        stages: Optional[Iterable[Any]] = None,
    ) -> ProjectResult:
        def create() -> Project:
            project = Project(
                org_id=self.workspace.org_id,
                name=name.strip(),
                description=description,
                color=color,
                created_by=self.actor.id,
                members=unique_ids([self.actor.id, *members]),
                stages=sanitize_stages(stages) if stages is not None else None,
            )
            written = self._save(project)
            logger.info("project %s created by %s", written.id, self.actor.id)
            return written

        if not name or not name.strip():
            raise ValueError("project name must not be blank")
        return self._run("create_project", create)

    def rename_project(self, project_id: str, name: str) -> ProjectResult:
        if not name or not name.strip():
            raise ValueError("project name must not be blank")
        return self._update(project_id, "rename", name=name.strip())

    def add_member(self, project_id: str, user_id: str) -> ProjectResult:
        def add() -> Optional[Project]:
            project = self._managed(project_id, "add members to")
            if user_id in project.members:
                return None
            return self._save(project.model_copy(update={"members": [*project.members, user_id]}))

        return self._run("add_member", add)

    # -- Lifecycle --

    def archive(self, project_id: str) -> ProjectResult:
        now = self.workspace.clock()
        return self._update(project_id, "archive", **{**_LIFECYCLE_CLEARED, "is_archived": True, "archived_at": now})

    def unarchive(self, project_id: str) -> ProjectResult:
        return self._update(project_id, "unarchive", is_archived=False, archived_at=None)

    def complete(self, project_id: str) -> ProjectResult:
        now = self.workspace.clock()
        return self._update(project_id, "complete", **{**_LIFECYCLE_CLEARED, "is_completed": True, "completed_at": now})

    def reopen(self, project_id: str) -> ProjectResult:
        return self._update(project_id, "reopen", is_completed=False, completed_at=None)

    def soft_delete(self, project_id: str) -> ProjectResult:
        now = self.workspace.clock()
        return self._update(project_id, "delete", **{**_LIFECYCLE_CLEARED, "is_deleted": True, "deleted_at": now})

    def restore(self, project_id: str) -> ProjectResult:
        return self._update(project_id, "restore", **_LIFECYCLE_CLEARED)

    def purge(self, project_id: str) -> ProjectResult:
        """Remove a project and every task in it. Clears undo history."""
        def purge() -> ProjectResult:
            project = self._managed(project_id, "purge")
            removed = self.store.purge_project(self.workspace.org_id, project.id)
            self.workspace.history.clear()
            self.workspace._reload_projects()
            self.workspace._reload_tasks()
            self.workspace._publish(SyncEventType.PROJECTS_UPDATED, {"project_id": project.id, "purged": True})
            return ProjectResult(committed=True, project=project, tasks_affected=removed)

        return self._run("purge_project", purge)

    # -- Stages --

    def update_stages(self, project_id: str, stages: Iterable[Any]) -> ProjectResult:
        """Replace a project's stage list.

        Tasks sitting in a removed stage move to the first remaining stage
        without passing through the transition gate.
        """
        def update() -> ProjectResult:
            project = self._managed(project_id, "edit stages of")
            cleaned = sanitize_stages(stages)
            return self._replace_stages(project, cleaned)

        return self._run("update_stages", update)

    def add_stage(self, project_id: str, name: str, index: Optional[int] = None) -> ProjectResult:
        def add() -> ProjectResult:
            project = self._managed(project_id, "edit stages of")
            trimmed = (name or "").strip()
            if not trimmed:
                raise StageListError("Stage name must not be blank.")
            stage = Stage(id=slugify_stage(trimmed, project.stage_ids), name=trimmed)
            stages = list(project.stages)
            stages.insert(len(stages) if index is None else index, stage)
            return self._replace_stages(project, stages)

        return self._run("add_stage", add)

    def remove_stage(self, project_id: str, stage_id: str) -> ProjectResult:
        def remove() -> ProjectResult:
            project = self._managed(project_id, "edit stages of")
            if len(project.stages) <= 1:
                raise StageListError("A project must keep at least one stage.")
            remaining = [s for s in project.stages if s.id != stage_id]
            if len(remaining) == len(project.stages):
                return ProjectResult(committed=False, project=project)
            return self._replace_stages(project, remaining)

        return self._run("remove_stage", remove)

    def _replace_stages(self, project: Project, stages: list[Stage]) -> ProjectResult:
        kept = {s.id for s in stages}
        fallback = stages[0].id
        stranded = [
            t.model_copy(update={"status": fallback})
            for t in self.store.tasks(project.org_id, project.id)
            if t.status not in kept
        ]
        written = self._save(project.model_copy(update={"stages": stages}))
        if stranded:
            self.workspace._commit(stranded, snapshot=False)
            logger.info("moved %d task(s) of project %s to %s", len(stranded), project.id, fallback)
        if set(project.stage_ids) - kept:
            # Earlier snapshots may hold tasks in the removed stages.
            self.workspace.history.clear()
        return ProjectResult(committed=True, project=written, tasks_affected=len(stranded))
