"""
Taskflow Workspace — one actor's session over the shared board.

The workspace owns the actor's visible task view and wires the pieces
together for every mutation:

1. resolve the task in the view (a missing task is a silent no-op)
2. consult the policy engine and transition gate
3. push a history snapshot of the view
4. reorder when a move changes position
5. write the changed records to the store in one batch
6. publish a change notice, or raise the pending-sync flag when offline

Gate refusals never escape: each operation returns an ActionResult and the
refusal is logged and kept in ``notices`` for the actor. Events from other
clients trigger a full reload of the affected records; the last reload wins.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Sequence
import logging

from board import ordering
from board.advisory.ai import AIAdvisoryService, RiskAssessment
from board.advisory.estimation import EstimationService, ProfileEstimationService
from board.advisory.notifications import NotificationKind, NotificationSink
from board.history import HistoryManager
from board.models.records import (
    AuditEntry,
    Comment,
    Project,
    SecurityGroup,
    Subtask,
    Task,
    TaskPriority,
    User,
    unique_ids,
    utcnow,
)
from board.observability.tracing import get_tracer
from board.store.record_store import RecordStore
from board.sync.bus import SyncBus, SyncClient
from board.sync.events import SyncEvent, SyncEventType
from board.sync.guard import SyncGuard
from workflow.config import GENERAL_PROJECT_ID, BoardConfig
from workflow.errors import BoardError, NotFound, PendingMoveBack, PermissionDenied, ReasonRequired
from workflow.gate import TransitionGate, TransitionPlan
from workflow.policy import TaskAction, can_manage_project, can_view_task, check_task_action, ensure_task_action
from workflow.stages import first_stage_for, stage_name, terminal_stage_for

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

# Fields update_task may touch, and the action each one requires.
# Fields mapped to None only need the task to be visible.
EDITABLE_FIELDS: dict[str, Optional[TaskAction]] = {
    "title": TaskAction.RENAME,
    "description": TaskAction.EDIT_DESCRIPTION,
    "priority": TaskAction.EDIT_DESCRIPTION,
    "assignee_ids": TaskAction.ASSIGN,
    "assignee_id": TaskAction.ASSIGN,
    "security_group_ids": TaskAction.ASSIGN,
    "blocked_by_ids": TaskAction.EDIT_DEPENDENCIES,
    "subtasks": TaskAction.EDIT_SUBTASKS,
    "is_at_risk": TaskAction.FLAG_RISK,
    "estimate_minutes": TaskAction.CHANGE_ESTIMATE,
    "actual_minutes": TaskAction.CHANGE_ESTIMATE,
    "tags": None,
    "due_date": None,
}


def _content(task: Optional[Task]) -> Optional[dict]:
    """A task's fields minus the bookkeeping the store stamps on every write."""
    if task is None:
        return None
    return task.model_dump(exclude={"version", "updated_at"})


@dataclass
class Notice:
    """Something the actor should be told about."""

    title: str
    message: str
    level: str = "warning"
    task_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_error(cls, error: BoardError) -> "Notice":
        return cls(title=error.title, message=error.message, task_id=error.task_id)


@dataclass
class ActionResult:
    committed: bool
    task: Optional[Task] = None
    error: Optional[BoardError] = None

    @property
    def pending(self) -> Optional[PendingMoveBack]:
        return self.error.pending if isinstance(self.error, ReasonRequired) else None


@dataclass
class BulkResult:
    committed: list[str] = field(default_factory=list)
    failed: dict[str, BoardError] = field(default_factory=dict)


@dataclass
class TypingIndicator:
    user_id: str
    display_name: str
    task_id: str
    at: datetime


@dataclass
class AISuggestions:
    steps: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)


class Workspace:
    """A single actor's view of an organization's board."""

    def __init__(
        self,
        actor: User,
        store: RecordStore,
        bus: Optional[SyncBus] = None,
        *,
        config: Optional[BoardConfig] = None,
        estimation: Optional[EstimationService] = None,
        notifier: Optional[NotificationSink] = None,
        ai: Optional[AIAdvisoryService] = None,
        guard: Optional[SyncGuard] = None,
        client_id: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
        on_settings_changed: Optional[Callable[[SyncEvent], None]] = None,
    ):
        self.actor = actor
        self.org_id = actor.org_id
        self.store = store
        self.config = config or BoardConfig.default()
        self.clock = clock
        self.estimation = estimation
        self.notifier = notifier
        self.ai = ai
        self.guard = guard or SyncGuard(clock=clock)
        self.client = SyncClient(bus or SyncBus(), client_id)
        self.history = HistoryManager(self.config.history)
        self.gate = TransitionGate(estimation, clock=clock)
        self.on_settings_changed = on_settings_changed

        self.tasks: list[Task] = []
        self.projects: dict[str, Project] = {}
        self.users: dict[str, User] = {}
        self.groups: list[SecurityGroup] = []
        self.notices: list[Notice] = []
        self.pending_move_back: Optional[PendingMoveBack] = None
        self.typing: dict[tuple[str, str], TypingIndicator] = {}
        self._due_alerts: set[str] = set()

        self._unsubscribe: Optional[Callable[[], None]] = None
        if self.config.enable_realtime:
            self._unsubscribe = self.client.subscribe(self._on_event)
        self.refresh()

    @property
    def client_id(self) -> str:
        return self.client.client_id

    def close(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    # -- Loading --

    def refresh(self) -> None:
        """Reload everything the actor can see."""
        self._reload_directory()
        self._reload_projects()
        self._reload_tasks()
        if isinstance(self.estimation, ProfileEstimationService):
            self.estimation.recompute_org_profiles(self.org_id, self.store.tasks(self.org_id))

    def _reload_directory(self) -> None:
        self.users = {u.id: u for u in self.store.users(self.org_id)}
        self.groups = self.store.groups(self.org_id)
        if self.actor.id in self.users:
            self.actor = self.users[self.actor.id]

    def _reload_projects(self) -> None:
        self.projects = {p.id: p for p in self.store.projects(self.org_id)}

    def _is_visible(self, task: Task) -> bool:
        project = self.projects.get(task.project_id)
        if project is not None and not project.is_active:
            return False
        return can_view_task(self.actor, task, project, self.groups)

    def _reload_tasks(self) -> None:
        self.tasks = [t for t in self.store.tasks(self.org_id) if self._is_visible(t)]
        if self.pending_move_back and not self._lookup(self.pending_move_back.task_id):
            self.pending_move_back = None

    # -- Lookups --

    def _lookup(self, task_id: str) -> Optional[Task]:
        return next((t for t in self.tasks if t.id == task_id), None)

    def get_task(self, task_id: str) -> Task:
        task = self._lookup(task_id)
        if task is None:
            raise NotFound(f"Task {task_id} no longer exists.", task_id=task_id)
        return task

    def project_for(self, task: Task) -> Optional[Project]:
        return self.projects.get(task.project_id)

    def stage_sequence(self, stage: str, project_id: Optional[str] = None) -> list[Task]:
        tasks = [t for t in self.tasks if project_id is None or t.project_id == project_id]
        return ordering.stage_sequence(tasks, stage)

    def _ensure(self, action: TaskAction, task: Task) -> None:
        ensure_task_action(self.actor, action, task, self.projects, self.groups)

    # -- Action plumbing --

    def run_action(self, name: str, fn: Callable[[], Any]) -> ActionResult:
        """Run a mutation, turning BoardErrors into an unsuccessful ActionResult."""
        with tracer.start_as_current_span(f"workspace.{name}") as span:
            span.set_attribute("actor.id", self.actor.id)
            try:
                result = fn()
            except NotFound as exc:
                logger.debug("%s skipped: %s", name, exc.message)
                return ActionResult(committed=False, error=exc)
            except BoardError as exc:
                if isinstance(exc, ReasonRequired):
                    self.pending_move_back = exc.pending
                logger.warning("%s blocked for %s: %s", name, self.actor.id, exc.message)
                self.notices.append(Notice.from_error(exc))
                span.set_attribute("workspace.blocked", exc.__class__.__name__)
                return ActionResult(committed=False, task=self._lookup(exc.task_id or ""), error=exc)
        if isinstance(result, ActionResult):
            return result
        return ActionResult(committed=result is not None, task=result)

    def _audit(self, action: str) -> AuditEntry:
        return AuditEntry(
            user_id=self.actor.id,
            display_name=self.actor.display_name or self.actor.id,
            action=action,
            timestamp=self.clock(),
        )

    def _publish(self, event_type: SyncEventType, payload: Optional[dict] = None) -> None:
        """Announce a local write, or mark it pending while offline."""
        if not self.guard.mark_local_mutation():
            logger.info("offline: %s kept local, sync pending", event_type.value)
            return
        if self.config.enable_realtime:
            self.client.publish(event_type, org_id=self.org_id, actor_id=self.actor.id, payload=payload)

    def _commit(
        self,
        changed: Sequence[Task],
        deleted_ids: Iterable[str] = (),
        snapshot: bool = True,
    ) -> list[Task]:
        """Snapshot the org's tasks, persist, and fold visible writes back into the view."""
        deleted = set(deleted_ids)
        if snapshot:
            self.history.push(self.store.tasks(self.org_id))
        written = self.store.put_tasks(list(changed)) if changed else []
        if deleted:
            self.store.delete_tasks(self.org_id, deleted)

        by_id = {t.id: t for t in written}
        view = [by_id.pop(t.id, t) for t in self.tasks if t.id not in deleted]
        view.extend(t for t in by_id.values() if self._is_visible(t))
        self.tasks = sorted(view, key=lambda t: t.order)
        self._publish(SyncEventType.TASKS_UPDATED, {"task_ids": [t.id for t in written] + sorted(deleted)})
        return written

    def _notify(
        self,
        user_ids: Iterable[str],
        title: str,
        message: str,
        kind: NotificationKind = NotificationKind.SYSTEM,
        link_id: Optional[str] = None,
    ) -> None:
        if self.notifier is None or not self.config.notifications.enabled:
            return
        for user_id in unique_ids(user_ids):
            if user_id == self.actor.id:
                continue
            try:
                self.notifier.notify(user_id, title, message, kind, link_id)
            except Exception:
                logger.exception("notification %r to %s failed", title, user_id)

    # -- Task creation & edits --

    def create_task(
        self,
        title: str,
        description: str = "",
        priority: TaskPriority = TaskPriority.MEDIUM,
        *,
        project_id: str = GENERAL_PROJECT_ID,
        tags: Optional[list[str]] = None,
        due_date: Optional[datetime] = None,
        assignee_ids: Optional[list[str]] = None,
        security_group_ids: Optional[list[str]] = None,
        estimate_minutes: Optional[int] = None,
    ) -> ActionResult:
        def create() -> Task:
            project = self.projects.get(project_id)
            if project_id != GENERAL_PROJECT_ID and project is None:
                raise NotFound(f"Project {project_id} does not exist.")
            assignees = unique_ids(assignee_ids)
            if assignees and not can_manage_project(self.actor, project):
                self.notices.append(Notice(
                    title="Permission denied",
                    message="Only admins or the project creator can assign task members.",
                ))
                logger.warning("%s created a task without assignees: not a project manager", self.actor.id)
                assignees = []
            now = self.clock()
            task = Task(
                org_id=self.org_id,
                project_id=project_id,
                created_by=self.actor.id,
                title=title.strip(),
                description=description,
                priority=priority,
                status=first_stage_for(project),
                order=ordering.next_order(self.store.tasks(self.org_id)),
                tags=list(tags or []),
                due_date=due_date,
                assignee_ids=assignees,
                security_group_ids=list(security_group_ids or []),
                estimate_minutes=estimate_minutes,
                audit_log=[self._audit("Created task")],
                created_at=now,
                updated_at=now,
            )
            written = self._commit([task])[0]
            self._notify(assignees, "New assignment", f"Assigned: {written.title}", NotificationKind.ASSIGNMENT, written.id)
            return written

        if not title or not title.strip():
            raise ValueError("task title must not be blank")
        return self.run_action("create_task", create)

    def _apply_changes(self, task: Task, changes: dict[str, Any]) -> Optional[Task]:
        """Validate, permission-check and apply field edits. Returns None when nothing changes."""
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"fields cannot be edited directly: {', '.join(sorted(unknown))}")

        changes = dict(changes)
        if "assignee_id" in changes:
            legacy = changes.pop("assignee_id")
            changes.setdefault("assignee_ids", [legacy] if legacy else [])
        merged = Task.model_validate({**task.model_dump(), **changes})
        updated_fields = [
            name for name in Task.model_fields
            if getattr(merged, name) != getattr(task, name)
        ]
        if not updated_fields:
            return None

        checked: set[TaskAction] = set()
        for name in updated_fields:
            action = EDITABLE_FIELDS.get(name)
            if action is not None and action not in checked:
                self._ensure(action, task)
                checked.add(action)

        extra: dict[str, Any] = {}
        if "estimate_minutes" in updated_fields:
            extra.update(
                estimate_provided_by=self.actor.id,
                estimate_risk_approved_at=None,
                estimate_risk_approved_by=None,
            )
        audit = [self._audit(f"Changed {name.replace('_', ' ')}") for name in updated_fields]
        extra["audit_log"] = [*merged.audit_log, *audit]
        return merged.model_copy(update=extra)

    def update_task(self, task_id: str, **changes: Any) -> ActionResult:
        """Edit task fields. Status and order change only through moves."""
        def update() -> Optional[Task]:
            task = self.get_task(task_id)
            updated = self._apply_changes(task, changes)
            if updated is None:
                return None
            written = self._commit([updated])[0]
            added = [uid for uid in written.assignee_ids if uid not in task.assignee_ids]
            self._notify(added, "New assignment", f"Assigned: {written.title}", NotificationKind.ASSIGNMENT, written.id)
            return written

        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"fields cannot be edited directly: {', '.join(sorted(unknown))}")
        return self.run_action("update_task", update)

    # -- Transitions --

    def _plan(self, task: Task, target_stage: str, target_task_id: Optional[str], approve: bool) -> TransitionPlan:
        return self.gate.plan_move(
            self.actor,
            task,
            target_stage,
            project=self.project_for(task),
            projects=self.projects,
            groups=self.groups,
            target_task_id=target_task_id,
            approve=approve,
        )

    def _transition_audit(self, plan: TransitionPlan) -> Task:
        project = self.projects.get(plan.task.project_id)
        entries = []
        if plan.stage_changed:
            entries.append(self._audit(
                f"Moved from {stage_name(project, plan.from_stage)} to {stage_name(project, plan.to_stage)}"
            ))
        if plan.approval_granted:
            entries.append(self._audit("Approved"))
        if plan.risk_approval_granted:
            entries.append(self._audit("Approved estimate risk"))
        if not entries:
            return plan.task
        return plan.task.model_copy(update={"audit_log": [*plan.task.audit_log, *entries]})

    def _commit_transition(self, plan: TransitionPlan, reorder: bool) -> Task:
        moved = self._transition_audit(plan)
        if reorder:
            # Order is unique across the org, including tasks the actor cannot see.
            stored = self.store.tasks(self.org_id)
            if moved.id not in {t.id for t in stored}:
                raise NotFound(f"Task {moved.id} no longer exists.", task_id=moved.id)
            before = [moved if t.id == moved.id else t for t in stored]
            after = ordering.move_task(before, moved.id, plan.to_stage, plan.target_task_id)
            changed = ordering.changed_tasks(before, after)
            if moved.id not in {t.id for t in changed}:
                changed.append(next(t for t in after if t.id == moved.id))
        else:
            changed = [moved]
        written = self._commit(changed)
        return next(t for t in written if t.id == moved.id)

    def move_task(
        self,
        task_id: str,
        target_stage: str,
        target_task_id: Optional[str] = None,
        *,
        approve: bool = False,
    ) -> ActionResult:
        """Drag/drop move: gate the transition, then place the task and renumber."""
        def move() -> Task:
            task = self.get_task(task_id)
            plan = self._plan(task, target_stage, target_task_id, approve)
            return self._commit_transition(plan, reorder=True)

        return self.run_action("move_task", move)

    def update_status(self, task_id: str, status: str, *, approve: bool = False) -> ActionResult:
        """Change stage without repositioning the task."""
        def change() -> Optional[Task]:
            task = self.get_task(task_id)
            plan = self._plan(task, status, None, approve)
            if not plan.stage_changed and plan.task == task:
                return None
            return self._commit_transition(plan, reorder=False)

        return self.run_action("update_status", change)

    def submit_move_back(self, reason: str) -> ActionResult:
        """Resolve the pending backward move with a justification."""
        pending = self.pending_move_back
        if pending is None:
            return ActionResult(committed=False)

        def resolve() -> Task:
            task = self._lookup(pending.task_id)
            if task is None:
                self.pending_move_back = None
                raise NotFound(f"Task {pending.task_id} no longer exists.", task_id=pending.task_id)
            plan = self.gate.resolve_move_back(
                self.actor,
                task,
                pending,
                reason,
                project=self.project_for(task),
                projects=self.projects,
                groups=self.groups,
            )
            written = self._commit_transition(plan, reorder=True)
            self.pending_move_back = None
            self.notices.append(Notice(
                title="Task moved backward",
                message="Reason saved on task history.",
                level="info",
                task_id=written.id,
            ))
            self._notify(
                written.assignee_ids,
                "Task reopened",
                f"{self.actor.display_name or self.actor.id} moved \"{written.title}\" back: {written.moved_back_reason}",
                NotificationKind.SYSTEM,
                written.id,
            )
            return written

        return self.run_action("submit_move_back", resolve)

    def cancel_move_back(self) -> bool:
        cancelled = self.pending_move_back is not None
        self.pending_move_back = None
        return cancelled

    # -- Approvals --

    def approve_task(self, task_id: str) -> ActionResult:
        def approve() -> Optional[Task]:
            task = self.get_task(task_id)
            self._ensure(TaskAction.APPROVE, task)
            if task.approved_at is not None:
                return None
            updated = task.model_copy(update={
                "approved_at": self.clock(),
                "approved_by": self.actor.id,
                "audit_log": [*task.audit_log, self._audit("Approved")],
            })
            written = self._commit([updated])[0]
            self._notify(written.assignee_ids, "Task approved", f"\"{written.title}\" can now be completed.", NotificationKind.APPROVAL, written.id)
            return written

        return self.run_action("approve_task", approve)

    def approve_estimate_risk(self, task_id: str) -> ActionResult:
        def approve() -> Optional[Task]:
            task = self.get_task(task_id)
            self._ensure(TaskAction.APPROVE, task)
            if task.estimate_risk_approved_at is not None:
                return None
            updated = task.model_copy(update={
                "estimate_risk_approved_at": self.clock(),
                "estimate_risk_approved_by": self.actor.id,
                "audit_log": [*task.audit_log, self._audit("Approved estimate risk")],
            })
            return self._commit([updated])[0]

        return self.run_action("approve_estimate_risk", approve)

    # -- Comments & time --

    def add_comment(self, task_id: str, text: str) -> ActionResult:
        def comment() -> Optional[Task]:
            task = self.get_task(task_id)
            body = (text or "").strip()
            if not body:
                return None
            name = self.actor.display_name or self.actor.id
            entry = Comment(user_id=self.actor.id, display_name=name, text=body, timestamp=self.clock())
            written = self._commit([task.model_copy(update={"comments": [*task.comments, entry]})])[0]
            self.typing.pop((task_id, self.actor.id), None)
            self._notify(written.assignee_ids, "New comment", f"{name} commented on \"{written.title}\"", NotificationKind.SYSTEM, written.id)
            return written

        return self.run_action("add_comment", comment)

    def toggle_timer(self, task_id: str) -> ActionResult:
        def toggle() -> Task:
            task = self.get_task(task_id)
            self._ensure(TaskAction.LOG_TIME, task)
            now = self.clock()
            if task.is_timer_running:
                started = task.timer_started_at or now
                elapsed = max(0, int((now - started).total_seconds()))
                updates = {
                    "is_timer_running": False,
                    "timer_started_at": None,
                    "time_logged_seconds": task.time_logged_seconds + elapsed,
                }
            else:
                updates = {"is_timer_running": True, "timer_started_at": now}
            return self._commit([task.model_copy(update=updates)])[0]

        return self.run_action("toggle_timer", toggle)

    # -- Deletes --

    def delete_task(self, task_id: str) -> ActionResult:
        def delete() -> ActionResult:
            task = self.get_task(task_id)
            self._ensure(TaskAction.DELETE, task)
            self._commit([], deleted_ids=[task.id])
            if self.pending_move_back and self.pending_move_back.task_id == task.id:
                self.pending_move_back = None
            return ActionResult(committed=True, task=task)

        return self.run_action("delete_task", delete)

    # -- Bulk --

    def bulk_update_tasks(
        self,
        task_ids: Sequence[str],
        *,
        status: Optional[str] = None,
        **changes: Any,
    ) -> BulkResult:
        """Apply the same edit to many tasks under a single history snapshot.

        Each task is gated on its own; refused tasks are reported in
        ``failed`` and the rest commit together.
        """
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"fields cannot be edited directly: {', '.join(sorted(unknown))}")

        result = BulkResult()
        staged: list[Task] = []
        for task_id in unique_ids(task_ids):
            task = self._lookup(task_id)
            if task is None:
                continue
            try:
                updated = self._apply_changes(task, changes) if changes else None
                current = updated or task
                if status is not None and status != task.status:
                    current = self._transition_audit(self._plan(current, status, None, False))
            except BoardError as exc:
                # Bulk edits cannot prompt, so a ReasonRequired is a refusal here.
                self._record_failure(result, task_id, exc)
                continue
            if current is not task:
                staged.append(current)

        if staged:
            with tracer.start_as_current_span("workspace.bulk_update_tasks"):
                written = self._commit(staged)
            result.committed = [t.id for t in written]
        return result

    def _record_failure(self, result: BulkResult, task_id: str, error: BoardError) -> None:
        result.failed[task_id] = error
        self.notices.append(Notice.from_error(error))
        logger.warning("bulk edit skipped %s: %s", task_id, error.message)

    def bulk_delete_tasks(self, task_ids: Sequence[str]) -> BulkResult:
        result = BulkResult()
        doomed: list[str] = []
        for task_id in unique_ids(task_ids):
            task = self._lookup(task_id)
            if task is None:
                continue
            try:
                self._ensure(TaskAction.DELETE, task)
            except PermissionDenied as exc:
                self._record_failure(result, task_id, exc)
                continue
            doomed.append(task_id)
        if doomed:
            self._commit([], deleted_ids=doomed)
            result.committed = doomed
        return result

    # -- History --

    def _restore(self, restored: Optional[list[Task]]) -> ActionResult:
        if restored is None:
            return ActionResult(committed=False)
        current = {t.id: t for t in self.store.tasks(self.org_id)}
        keep = {t.id for t in restored}
        gone = [task_id for task_id in current if task_id not in keep]
        changed = [t for t in restored if _content(current.get(t.id)) != _content(t)]
        self._commit(changed, deleted_ids=gone, snapshot=False)
        return ActionResult(committed=True)

    def undo(self) -> ActionResult:
        return self._restore(self.history.undo(self.store.tasks(self.org_id)))

    def redo(self) -> ActionResult:
        return self._restore(self.history.redo(self.store.tasks(self.org_id)))

    # -- Collaboration --

    def broadcast_typing(self, task_id: str, is_typing: bool = True) -> bool:
        """Tell other sessions the actor is typing a comment. Not sent while offline."""
        if not self.guard.online or not self.config.enable_realtime:
            return False
        self.client.publish(
            SyncEventType.COMMENT_TYPING,
            org_id=self.org_id,
            actor_id=self.actor.id,
            payload={
                "task_id": task_id,
                "display_name": self.actor.display_name,
                "is_typing": is_typing,
            },
        )
        return True

    def typing_on(self, task_id: str) -> list[TypingIndicator]:
        return [t for (tid, _), t in self.typing.items() if tid == task_id]

    def set_online(self, online: bool) -> None:
        was_pending = self.guard.has_pending
        self.guard.set_online(online)
        if online:
            if was_pending:
                self.notices.append(Notice(
                    title="Connection restored",
                    message="Pending local changes were retained.",
                    level="info",
                ))
            self.refresh()
        else:
            self.notices.append(Notice(
                title="Offline mode",
                message="Changes are saved locally and marked pending sync.",
            ))

    @property
    def has_pending_sync(self) -> bool:
        return self.guard.has_pending

    def _on_event(self, event: SyncEvent) -> None:
        if not event.is_foreign_to(self.client_id, self.org_id):
            return
        if event.type == SyncEventType.TASKS_UPDATED:
            self._reload_tasks()
        elif event.type == SyncEventType.PROJECTS_UPDATED:
            self._reload_projects()
            self._reload_tasks()
        elif event.type == SyncEventType.USERS_UPDATED:
            self._reload_directory()
            self._reload_tasks()
        elif event.type == SyncEventType.SETTINGS_UPDATED:
            if self.on_settings_changed:
                self.on_settings_changed(event)
        elif event.type == SyncEventType.COMMENT_TYPING:
            task_id = str(event.payload.get("task_id") or "")
            key = (task_id, event.actor_id or "")
            if event.payload.get("is_typing", True):
                self.typing[key] = TypingIndicator(
                    user_id=event.actor_id or "",
                    display_name=str(event.payload.get("display_name") or ""),
                    task_id=task_id,
                    at=event.sent_at,
                )
            else:
                self.typing.pop(key, None)

    # -- Due dates --

    def check_due_dates(self) -> int:
        """Send due-soon, overdue and escalation alerts once per task. Returns alerts sent."""
        now = self.clock()
        admins = [u.id for u in self.users.values() if u.is_admin]
        sent = 0
        for task in self.tasks:
            if task.due_date is None or task.status == terminal_stage_for(self.project_for(task)):
                continue
            remaining = task.due_date - now
            owner = task.assignee_id or task.created_by
            if timedelta(0) < remaining <= timedelta(hours=24) and self._first_alert(f"{task.id}:due"):
                self._alert([owner], "Due soon", f"\"{task.title}\" is due within 24 hours.", task)
                sent += 1
            if remaining <= timedelta(0) and self._first_alert(f"{task.id}:overdue"):
                self._alert([owner], "Task overdue", f"\"{task.title}\" is overdue.", task)
                sent += 1
            if (
                remaining <= timedelta(hours=-24)
                and task.priority == TaskPriority.HIGH
                and self._first_alert(f"{task.id}:escalate")
            ):
                self._alert(
                    admins,
                    "SLA escalation",
                    f"High-priority task \"{task.title}\" is overdue by more than 24 hours.",
                    task,
                    NotificationKind.SYSTEM,
                )
                sent += 1
        return sent

    def _first_alert(self, key: str) -> bool:
        if key in self._due_alerts:
            return False
        self._due_alerts.add(key)
        return True

    def _alert(
        self,
        user_ids: Sequence[str],
        title: str,
        message: str,
        task: Task,
        kind: NotificationKind = NotificationKind.DUE_DATE,
    ) -> None:
        if self.notifier is None or not self.config.notifications.enabled:
            return
        for user_id in unique_ids(user_ids):
            try:
                self.notifier.notify(user_id, title, message, kind, task.id)
            except Exception:
                logger.exception("due-date alert %r to %s failed", title, user_id)

    # -- AI assistance --

    async def assist_with_ai(self, task_id: str) -> AISuggestions:
        """Suggested subtasks and tags. Empty when AI is disabled or unavailable."""
        task = self.get_task(task_id)
        if self.ai is None or not self.config.enable_ai_suggestions:
            return AISuggestions()
        steps = await self.ai.breakdown(task.title, task.description)
        tags = await self.ai.suggest_tags(task.title, task.description)
        return AISuggestions(steps=steps, tags=[t for t in tags if t not in task.tags])

    def apply_ai_suggestions(self, task_id: str, suggestions: AISuggestions) -> ActionResult:
        task = self._lookup(task_id)
        if task is None:
            return ActionResult(committed=False)
        changes: dict[str, Any] = {}
        existing = {s.title for s in task.subtasks}
        new_steps = [Subtask(title=step) for step in suggestions.steps if step not in existing]
        if new_steps:
            changes["subtasks"] = [*task.subtasks, *new_steps]
        tags = list(dict.fromkeys([*task.tags, *suggestions.tags]))
        if tags != task.tags:
            changes["tags"] = tags
        if not changes:
            return ActionResult(committed=False, task=task)
        return self.update_task(task_id, **changes)

    async def assess_risk(self, task_id: str) -> RiskAssessment:
        """Ask the AI whether a task is at risk and flag it when the actor may."""
        task = self.get_task(task_id)
        if self.ai is None or not self.config.enable_ai_suggestions:
            return RiskAssessment()
        assessment = await self.ai.predict_risk(task)
        current = self._lookup(task_id)
        if (
            current is not None
            and assessment.is_at_risk != current.is_at_risk
            and check_task_action(self.actor, TaskAction.FLAG_RISK, current, self.projects, self.groups).passed
        ):
            self.update_task(task_id, is_at_risk=assessment.is_at_risk)
        return assessment
