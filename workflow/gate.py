"""Stage transition gate.

Decides whether a task may move between stages and, when it may, produces
the updated record. The gate never writes: it returns a TransitionPlan and
the caller snapshots history, reorders and persists. Refusals and deferrals
are raised as BoardError subclasses and leave the task untouched.

Checks run in a fixed order; the first failure wins:

1. target stage must belong to the project's workflow
2. assignee-tier ``move`` permission
3. ``complete`` permission when entering or leaving the terminal stage
4. approval gate: High-priority tasks need ``approved_at`` to enter terminal
5. risk-estimate gate: a risky estimate needs owner sign-off to enter terminal
6. backward-from-terminal gate: deferred until a reason is supplied
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional

from opentelemetry import trace

from board.advisory.estimation import EstimationPreview, EstimationService, completion_preview
from board.models.records import Comment, Project, SecurityGroup, Task, TaskPriority, User, utcnow
from workflow.errors import (
    ApprovalRequired,
    NotFound,
    PendingMoveBack,
    ReasonRequired,
    RiskApprovalRequired,
)
from workflow.policy import ProjectLookup, TaskAction, can_manage_task, ensure_task_action
from workflow.stages import terminal_stage_for, validate_stage

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

APPROVAL_MESSAGE = "This high-priority task requires admin approval before moving to Done."
REASON_MESSAGE = "A comment is required before moving a completed task backward."

_CLEARED_MOVE_BACK = {
    "moved_back_at": None,
    "moved_back_by": None,
    "moved_back_reason": None,
    "moved_back_from_status": None,
}


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------

@dataclass
class TransitionPlan:
    """An approved transition, ready to be committed."""

    task: Task
    from_stage: str
    to_stage: str
    target_task_id: Optional[str] = None
    approval_granted: bool = False
    risk_approval_granted: bool = False
    moved_back: bool = False
    risk_preview: Optional[EstimationPreview] = None
    notes: list[str] = field(default_factory=list)

    @property
    def stage_changed(self) -> bool:
        return self.from_stage != self.to_stage


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------

class TransitionGate:
    """Fail-closed transition checks for one board."""

    def __init__(
        self,
        estimation: Optional[EstimationService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.estimation = estimation
        self.clock = clock

    @staticmethod
    def _projects(project: Optional[Project], projects: ProjectLookup) -> ProjectLookup:
        if projects is not None:
            return projects
        return [project] if project is not None else None

    def plan_move(
        self,
        actor: User,
        task: Task,
        target_stage: str,
        *,
        project: Optional[Project] = None,
        projects: ProjectLookup = None,
        groups: Iterable[SecurityGroup] = (),
        target_task_id: Optional[str] = None,
        approve: bool = False,
    ) -> TransitionPlan:
        """Check a move and return the plan, or raise the blocking BoardError.

        ``approve=True`` lets an owner-tier actor sign off a High-priority
        task in the same step that completes it.
        """
        groups = list(groups)
        projects = self._projects(project, projects)
        with tracer.start_as_current_span("gate.plan_move") as span:
            span.set_attribute("task.id", task.id)
            span.set_attribute("gate.from_stage", task.status)
            span.set_attribute("gate.to_stage", target_stage)

            validate_stage(project, target_stage, task_id=task.id)
            ensure_task_action(actor, TaskAction.MOVE, task, projects, groups)

            terminal = terminal_stage_for(project)
            entering = target_stage == terminal
            leaving = task.status == terminal and not entering
            if entering or task.status == terminal:
                ensure_task_action(actor, TaskAction.COMPLETE, task, projects, groups)

            manager = can_manage_task(actor, projects, task)
            now = self.clock()
            updates: dict = {"status": target_stage}
            plan = TransitionPlan(
                task=task,
                from_stage=task.status,
                to_stage=target_stage,
                target_task_id=target_task_id,
            )

            if entering and task.priority == TaskPriority.HIGH and task.approved_at is None:
                if not (approve and manager):
                    span.set_attribute("gate.outcome", "approval_required")
                    raise ApprovalRequired(APPROVAL_MESSAGE, task_id=task.id)
                updates.update(approved_at=now, approved_by=actor.id)
                plan.approval_granted = True
                plan.notes.append("approval granted on completion")

            if entering and task.estimate_risk_approved_at is None:
                preview = completion_preview(self.estimation, task)
                plan.risk_preview = preview
                if preview is not None and preview.requires_approval:
                    if not manager:
                        span.set_attribute("gate.outcome", "risk_approval_required")
                        raise RiskApprovalRequired(
                            "The estimate on this task is flagged as risky; the project owner "
                            f"or an admin must approve it before completion. {preview.explanation}",
                            task_id=task.id,
                        )
                    updates.update(estimate_risk_approved_at=now, estimate_risk_approved_by=actor.id)
                    plan.risk_approval_granted = True
                    plan.notes.append("estimate risk auto-approved")

            if leaving:
                span.set_attribute("gate.outcome", "reason_required")
                raise ReasonRequired(
                    REASON_MESSAGE,
                    PendingMoveBack(
                        task_id=task.id,
                        target_stage=target_stage,
                        from_stage=task.status,
                        target_task_id=target_task_id,
                    ),
                )

            if entering:
                updates.update(_CLEARED_MOVE_BACK)
                if task.status != terminal or task.completed_at is None:
                    updates["completed_at"] = now

            plan.task = task.model_copy(update=updates, deep=True)
            span.set_attribute("gate.outcome", "allowed")
            logger.debug("move %s: %s -> %s allowed", task.id, task.status, target_stage)
            return plan

    def resolve_move_back(
        self,
        actor: User,
        task: Task,
        pending: PendingMoveBack,
        reason: str,
        *,
        project: Optional[Project] = None,
        projects: ProjectLookup = None,
        groups: Iterable[SecurityGroup] = (),
    ) -> TransitionPlan:
        """Complete a deferred backward move once a justification is given."""
        if pending.task_id != task.id:
            raise NotFound(f"Pending move refers to task {pending.task_id}, not {task.id}.", task_id=task.id)
        groups = list(groups)
        projects = self._projects(project, projects)
        with tracer.start_as_current_span("gate.resolve_move_back") as span:
            span.set_attribute("task.id", task.id)
            ensure_task_action(actor, TaskAction.COMPLETE, task, projects, groups)

            reason = (reason or "").strip()
            if not reason:
                span.set_attribute("gate.outcome", "reason_required")
                raise ReasonRequired(REASON_MESSAGE, pending)
            validate_stage(project, pending.target_stage, task_id=task.id)

            now = self.clock()
            from_stage = task.status
            comment = Comment(
                user_id=actor.id,
                display_name=actor.display_name or actor.id,
                text=f"Moved backward from {from_stage} to {pending.target_stage}: {reason}",
                timestamp=now,
            )
            updated = task.model_copy(
                update={
                    "status": pending.target_stage,
                    "moved_back_at": now,
                    "moved_back_by": actor.id,
                    "moved_back_reason": reason,
                    "moved_back_from_status": from_stage,
                    "completed_at": None,
                    "comments": [*task.comments, comment],
                },
                deep=True,
            )
            span.set_attribute("gate.outcome", "moved_back")
            return TransitionPlan(
                task=updated,
                from_stage=from_stage,
                to_stage=pending.target_stage,
                target_task_id=pending.target_task_id,
                moved_back=True,
            )
