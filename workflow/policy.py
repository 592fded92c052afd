"""Pure-function policy engine for board permissions.

Rules are stateless functions: (actor, task, context) -> RuleResult.
No storage access, no side effects. Callers resolve projects and groups up
front and pass them in.

Two permission tiers govern task actions:
- owner tier: admins and the owner of the task's project
- assignee tier: the owner tier plus anyone assigned to the task, directly
  or through a security group in scope for the task's project
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Union

from board.models.records import GroupScope, Project, SecurityGroup, Task, User
from workflow.config import GENERAL_PROJECT_ID
from workflow.errors import PermissionDenied

ProjectLookup = Union[Mapping[str, Project], Iterable[Project], None]


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class RuleResult:
    """Outcome of a single rule evaluation."""

    passed: bool
    rule_name: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class RuleSetResult:
    """Aggregate outcome of multiple rules."""

    all_passed: bool
    results: list[RuleResult]
    failed: list[RuleResult] = field(default_factory=list)

    def __post_init__(self):
        self.failed = [r for r in self.results if not r.passed]
        self.all_passed = len(self.failed) == 0

    @property
    def message(self) -> str:
        return "; ".join(r.message for r in self.failed)


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

class TaskAction(str, Enum):
    """Task operations subject to a permission check."""

    RENAME = "rename"
    DELETE = "delete"
    ASSIGN = "assign"
    EDIT_DEPENDENCIES = "edit_dependencies"
    EDIT_SUBTASKS = "edit_subtasks"
    EDIT_DESCRIPTION = "edit_description"
    FLAG_RISK = "flag_risk"
    CHANGE_ESTIMATE = "change_estimate"
    APPROVE = "approve"
    COMPLETE = "complete"
    MOVE = "move"
    LOG_TIME = "log_time"


OWNER_TIER = frozenset({
    TaskAction.RENAME,
    TaskAction.DELETE,
    TaskAction.ASSIGN,
    TaskAction.EDIT_DEPENDENCIES,
    TaskAction.EDIT_SUBTASKS,
    TaskAction.EDIT_DESCRIPTION,
    TaskAction.FLAG_RISK,
    TaskAction.CHANGE_ESTIMATE,
    TaskAction.APPROVE,
})

ASSIGNEE_TIER = frozenset({
    TaskAction.COMPLETE,
    TaskAction.MOVE,
    TaskAction.LOG_TIME,
})

_VERBS = {
    TaskAction.RENAME: "rename",
    TaskAction.DELETE: "delete",
    TaskAction.ASSIGN: "change assignees on",
    TaskAction.EDIT_DEPENDENCIES: "edit dependencies of",
    TaskAction.EDIT_SUBTASKS: "edit subtasks of",
    TaskAction.EDIT_DESCRIPTION: "edit the description of",
    TaskAction.FLAG_RISK: "flag risk on",
    TaskAction.CHANGE_ESTIMATE: "change the estimate of",
    TaskAction.APPROVE: "approve",
    TaskAction.COMPLETE: "complete or reopen",
    TaskAction.MOVE: "move",
    TaskAction.LOG_TIME: "log time on",
}


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------

def get_project_owner_id(project: Optional[Project]) -> Optional[str]:
    """Project owner: the creator, else (legacy records) the first member."""
    if project is None:
        return None
    if project.created_by:
        return project.created_by
    return project.members[0] if project.members else None


def find_project(projects: ProjectLookup, project_id: str) -> Optional[Project]:
    if projects is None:
        return None
    if isinstance(projects, Mapping):
        return projects.get(project_id)
    return next((p for p in projects if p.id == project_id), None)


def can_manage_project(actor: User, project: Optional[Project]) -> bool:
    if actor.is_admin:
        return True
    if project is None:
        return False
    return get_project_owner_id(project) == actor.id


def can_manage_task(actor: User, projects: ProjectLookup, task: Task) -> bool:
    """Admin or owner of the task's project; the task's creator when the project is unknown."""
    if actor.is_admin:
        return True
    project = find_project(projects, task.project_id)
    if project is None:
        return task.created_by == actor.id
    return get_project_owner_id(project) == actor.id


def is_assigned(actor: User, task: Task, groups: Iterable[SecurityGroup] = ()) -> bool:
    """Direct assignee, or member of a task security group in scope for the task's project."""
    if actor.id in task.assignee_ids:
        return True
    wanted = set(task.security_group_ids)
    if not wanted:
        return False
    for group in groups:
        if group.id not in wanted or group.org_id != task.org_id:
            continue
        if group.scope == GroupScope.PROJECT and group.project_id != task.project_id:
            continue
        if actor.id in group.member_ids:
            return True
    return False


def can_view_task(
    actor: User,
    task: Task,
    project: Optional[Project],
    groups: Iterable[SecurityGroup] = (),
) -> bool:
    if task.org_id != actor.org_id:
        return False
    if task.project_id == GENERAL_PROJECT_ID or actor.is_admin:
        return True
    if task.created_by == actor.id:
        return True
    if project is not None and actor.id in project.members:
        return True
    return is_assigned(actor, task, groups)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def check_task_action(
    actor: User,
    action: TaskAction,
    task: Task,
    projects: ProjectLookup = None,
    groups: Iterable[SecurityGroup] = (),
) -> RuleResult:
    """Evaluate one action against the actor's tier for this task."""
    action = TaskAction(action)
    manager = can_manage_task(actor, projects, task)
    assigned = False if manager else is_assigned(actor, task, groups)

    if action in OWNER_TIER:
        passed = manager
        denial = f"Only the project owner or an admin can {_VERBS[action]} this task."
    else:
        passed = manager or assigned
        denial = f"Only assignees, the project owner or an admin can {_VERBS[action]} this task."

    return RuleResult(
        passed=passed,
        rule_name=f"task_{action.value}",
        message="Allowed" if passed else denial,
        details={
            "actor_id": actor.id,
            "task_id": task.id,
            "tier": "owner" if action in OWNER_TIER else "assignee",
            "is_manager": manager,
            "is_assigned": assigned,
        },
    )


def ensure_task_action(
    actor: User,
    action: TaskAction,
    task: Task,
    projects: ProjectLookup = None,
    groups: Iterable[SecurityGroup] = (),
) -> RuleResult:
    """Like ``check_task_action`` but raises PermissionDenied on failure."""
    result = check_task_action(actor, action, task, projects, groups)
    if not result.passed:
        raise PermissionDenied(result.message, action=TaskAction(action).value, task_id=task.id)
    return result


def ensure_can_manage_project(actor: User, project: Optional[Project], verb: str = "change") -> None:
    if not can_manage_project(actor, project):
        raise PermissionDenied(
            f"Only the project owner or an admin can {verb} this project.",
            action=f"project_{verb.replace(' ', '_')}",
        )


# ---------------------------------------------------------------------------
# Rule composition
# ---------------------------------------------------------------------------

def evaluate_rules(*rules: RuleResult) -> RuleSetResult:
    """Compose multiple rule results into a single aggregate.

    Example::

        result = evaluate_rules(
            check_task_action(actor, TaskAction.RENAME, task, projects),
            check_task_action(actor, TaskAction.EDIT_DESCRIPTION, task, projects),
        )
        if not result.all_passed:
            raise PermissionDenied(result.message)
    """
    return RuleSetResult(
        all_passed=all(r.passed for r in rules),
        results=list(rules),
    )
