"""Board API router — tasks, projects, history and collaboration.

Every mutation runs through the caller's Workspace, so the HTTP surface gets
the same permission checks, transition gate, undo history and change
notices as any other client. Refusals come back as ActionResults and are
mapped to status codes here:

- PermissionDenied → 403
- ApprovalRequired / RiskApprovalRequired → 409
- ReasonRequired → 428 (body carries the pending move-back)
- NotFound → 404
- InvalidStage / StageListError / bad field edits → 422
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from api.deps import BoardState, get_board, get_projects, get_workspace
from api.middleware import get_current_org
from api.schemas import (
    AISuggestionsResponse,
    BulkDelete,
    BulkResponse,
    BulkUpdate,
    CommentCreate,
    MemberAdd,
    MoveBackReason,
    MoveRequest,
    ProjectCreate,
    ProjectRename,
    StageCreate,
    StageList,
    StatusRequest,
    TaskCreate,
    TaskUpdate,
)
from board.advisory.notifications import InMemoryNotificationSink
from board.projects import ProjectResult, ProjectService
from board.workspace import ActionResult, AISuggestions, BulkResult, Workspace
from workflow.errors import (
    ApprovalRequired,
    BoardError,
    InvalidStage,
    NotFound,
    PermissionDenied,
    ReasonRequired,
    StageListError,
)

router = APIRouter()

_STATUS_CODES: list[tuple[type[BoardError], int]] = [
    (PermissionDenied, 403),
    (ApprovalRequired, 409),
    (ReasonRequired, 428),
    (NotFound, 404),
    (InvalidStage, 422),
    (StageListError, 422),
]


def _error_response(error: BoardError) -> HTTPException:
    status = next((code for cls, code in _STATUS_CODES if isinstance(error, cls)), 400)
    detail: dict = {"error": error.__class__.__name__, "title": error.title, "message": error.message}
    if error.task_id:
        detail["task_id"] = error.task_id
    if isinstance(error, ReasonRequired):
        pending = error.pending
        detail["pending"] = {
            "task_id": pending.task_id,
            "from_stage": pending.from_stage,
            "target_stage": pending.target_stage,
            "target_task_id": pending.target_task_id,
        }
    return HTTPException(status_code=status, detail=detail)


def _task_response(result: ActionResult) -> dict:
    if result.error is not None:
        raise _error_response(result.error)
    return {
        "committed": result.committed,
        "task": result.task.model_dump(mode="json") if result.task else None,
    }


def _project_response(result: ProjectResult) -> dict:
    if result.error is not None:
        raise _error_response(result.error)
    return {
        "committed": result.committed,
        "project": result.project.model_dump(mode="json") if result.project else None,
        "tasks_affected": result.tasks_affected,
    }


def _bulk_response(result: BulkResult) -> BulkResponse:
    return BulkResponse(
        committed=result.committed,
        failed={task_id: error.message for task_id, error in result.failed.items()},
    )


def _unprocessable(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=422, detail={"error": "ValueError", "message": str(exc)})


# ============================================================================
# Tasks
# ============================================================================

@router.get("/tasks")
async def list_tasks(
    project_id: Optional[str] = None,
    status: Optional[str] = None,
    workspace: Workspace = Depends(get_workspace),
):
    """Tasks visible to the caller, in board order."""
    tasks = [
        t for t in workspace.tasks
        if (project_id is None or t.project_id == project_id) and (status is None or t.status == status)
    ]
    return {"data": [t.model_dump(mode="json") for t in tasks], "total": len(tasks)}


@router.get("/tasks/{task_id}")
async def get_task(task_id: str, workspace: Workspace = Depends(get_workspace)):
    try:
        return workspace.get_task(task_id).model_dump(mode="json")
    except NotFound as exc:
        raise _error_response(exc)


@router.post("/tasks", status_code=201)
async def create_task(body: TaskCreate, workspace: Workspace = Depends(get_workspace)):
    try:
        return _task_response(workspace.create_task(**body.model_dump()))
    except ValueError as exc:
        raise _unprocessable(exc)


@router.patch("/tasks/{task_id}")
async def update_task(task_id: str, body: TaskUpdate, workspace: Workspace = Depends(get_workspace)):
    try:
        return _task_response(workspace.update_task(task_id, **body.changes()))
    except ValueError as exc:
        raise _unprocessable(exc)


@router.post("/tasks/{task_id}/move")
async def move_task(task_id: str, body: MoveRequest, workspace: Workspace = Depends(get_workspace)):
    return _task_response(
        workspace.move_task(task_id, body.stage, body.before_task_id, approve=body.approve)
    )


@router.post("/tasks/{task_id}/status")
async def update_status(task_id: str, body: StatusRequest, workspace: Workspace = Depends(get_workspace)):
    return _task_response(workspace.update_status(task_id, body.status, approve=body.approve))


@router.post("/move-back")
async def submit_move_back(body: MoveBackReason, workspace: Workspace = Depends(get_workspace)):
    """Resolve the caller's pending backward move with a reason."""
    if workspace.pending_move_back is None:
        raise HTTPException(status_code=404, detail="No move-back is pending")
    return _task_response(workspace.submit_move_back(body.reason))


@router.delete("/move-back")
async def cancel_move_back(workspace: Workspace = Depends(get_workspace)):
    return {"cancelled": workspace.cancel_move_back()}


@router.post("/tasks/{task_id}/approve")
async def approve_task(task_id: str, workspace: Workspace = Depends(get_workspace)):
    return _task_response(workspace.approve_task(task_id))


@router.post("/tasks/{task_id}/approve-estimate")
async def approve_estimate_risk(task_id: str, workspace: Workspace = Depends(get_workspace)):
    return _task_response(workspace.approve_estimate_risk(task_id))


@router.post("/tasks/{task_id}/comments", status_code=201)
async def add_comment(task_id: str, body: CommentCreate, workspace: Workspace = Depends(get_workspace)):
    return _task_response(workspace.add_comment(task_id, body.text))


@router.post("/tasks/{task_id}/typing")
async def broadcast_typing(task_id: str, is_typing: bool = True, workspace: Workspace = Depends(get_workspace)):
    return {"sent": workspace.broadcast_typing(task_id, is_typing)}


@router.post("/tasks/{task_id}/timer")
async def toggle_timer(task_id: str, workspace: Workspace = Depends(get_workspace)):
    return _task_response(workspace.toggle_timer(task_id))


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: str, workspace: Workspace = Depends(get_workspace)):
    return _task_response(workspace.delete_task(task_id))


@router.post("/tasks/bulk-update", response_model=BulkResponse)
async def bulk_update(body: BulkUpdate, workspace: Workspace = Depends(get_workspace)):
    try:
        result = workspace.bulk_update_tasks(body.task_ids, status=body.status, **body.changes.changes())
    except ValueError as exc:
        raise _unprocessable(exc)
    return _bulk_response(result)


@router.post("/tasks/bulk-delete", response_model=BulkResponse)
async def bulk_delete(body: BulkDelete, workspace: Workspace = Depends(get_workspace)):
    return _bulk_response(workspace.bulk_delete_tasks(body.task_ids))


# ============================================================================
# AI assistance
# ============================================================================

@router.post("/tasks/{task_id}/ai-assist", response_model=AISuggestionsResponse)
async def assist_with_ai(task_id: str, apply: bool = False, workspace: Workspace = Depends(get_workspace)):
    """Suggested subtasks and tags; ``apply=true`` writes them onto the task."""
    try:
        suggestions: AISuggestions = await workspace.assist_with_ai(task_id)
    except NotFound as exc:
        raise _error_response(exc)
    if apply:
        result = workspace.apply_ai_suggestions(task_id, suggestions)
        if result.error is not None:
            raise _error_response(result.error)
    return AISuggestionsResponse(steps=suggestions.steps, tags=suggestions.tags)


@router.post("/tasks/{task_id}/risk")
async def assess_risk(task_id: str, workspace: Workspace = Depends(get_workspace)):
    try:
        assessment = await workspace.assess_risk(task_id)
    except NotFound as exc:
        raise _error_response(exc)
    return assessment.model_dump()


# ============================================================================
# History & session
# ============================================================================

@router.post("/history/undo")
async def undo(workspace: Workspace = Depends(get_workspace)):
    return {"committed": workspace.undo().committed, "can_undo": workspace.history.can_undo}


@router.post("/history/redo")
async def redo(workspace: Workspace = Depends(get_workspace)):
    return {"committed": workspace.redo().committed, "can_redo": workspace.history.can_redo}


@router.get("/notices")
async def list_notices(workspace: Workspace = Depends(get_workspace)):
    return [
        {"title": n.title, "message": n.message, "level": n.level, "task_id": n.task_id}
        for n in workspace.notices
    ]


@router.get("/notifications")
async def list_notifications(
    unread_only: bool = False,
    workspace: Workspace = Depends(get_workspace),
    board: BoardState = Depends(get_board),
):
    if not isinstance(board.notifier, InMemoryNotificationSink):
        return []
    return [n.model_dump(mode="json") for n in board.notifier.inbox(workspace.actor.id, unread_only)]


@router.post("/presence")
async def heartbeat(workspace: Workspace = Depends(get_workspace), board: BoardState = Depends(get_board)):
    """Record a heartbeat and return who is online in the caller's organization."""
    board.presence.touch(workspace.actor)
    return [e.to_dict() for e in board.presence.list_online(get_current_org())]


# ============================================================================
# Projects
# ============================================================================

@router.get("/projects")
async def list_projects(workspace: Workspace = Depends(get_workspace)):
    return [p.model_dump(mode="json") for p in workspace.projects.values()]


@router.post("/projects", status_code=201)
async def create_project(body: ProjectCreate, projects: ProjectService = Depends(get_projects)):
    data = body.model_dump()
    return _project_response(projects.create_project(**data))


@router.patch("/projects/{project_id}")
async def rename_project(project_id: str, body: ProjectRename, projects: ProjectService = Depends(get_projects)):
    return _project_response(projects.rename_project(project_id, body.name))


@router.delete("/projects/{project_id}")
async def purge_project(project_id: str, projects: ProjectService = Depends(get_projects)):
    return _project_response(projects.purge(project_id))


@router.put("/projects/{project_id}/stages")
async def update_stages(project_id: str, body: StageList, projects: ProjectService = Depends(get_projects)):
    return _project_response(projects.update_stages(project_id, body.stages))


@router.post("/projects/{project_id}/stages", status_code=201)
async def add_stage(project_id: str, body: StageCreate, projects: ProjectService = Depends(get_projects)):
    return _project_response(projects.add_stage(project_id, body.name, body.index))


@router.delete("/projects/{project_id}/stages/{stage_id}")
async def remove_stage(project_id: str, stage_id: str, projects: ProjectService = Depends(get_projects)):
    return _project_response(projects.remove_stage(project_id, stage_id))


@router.post("/projects/{project_id}/members")
async def add_member(project_id: str, body: MemberAdd, projects: ProjectService = Depends(get_projects)):
    return _project_response(projects.add_member(project_id, body.user_id))


_LIFECYCLE = {
    "archive": ProjectService.archive,
    "unarchive": ProjectService.unarchive,
    "complete": ProjectService.complete,
    "reopen": ProjectService.reopen,
    "delete": ProjectService.soft_delete,
    "restore": ProjectService.restore,
}


@router.post("/projects/{project_id}/{action}")
async def change_lifecycle(project_id: str, action: str, projects: ProjectService = Depends(get_projects)):
    operation = _LIFECYCLE.get(action)
    if operation is None:
        raise HTTPException(status_code=404, detail=f"Unknown project action {action!r}")
    return _project_response(operation(projects, project_id))
