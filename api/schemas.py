"""Pydantic schemas for API request/response validation."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from board.models.records import Subtask, TaskPriority
from workflow.config import GENERAL_PROJECT_ID


# ---------------------------------------------------------------------------
# Task requests
# ---------------------------------------------------------------------------

class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    project_id: str = GENERAL_PROJECT_ID
    tags: list[str] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    assignee_ids: list[str] = Field(default_factory=list)
    security_group_ids: list[str] = Field(default_factory=list)
    estimate_minutes: Optional[int] = Field(None, gt=0)


class TaskUpdate(BaseModel):
    """Partial edit. Only fields present in the request body are applied."""

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    assignee_ids: Optional[list[str]] = None
    security_group_ids: Optional[list[str]] = None
    blocked_by_ids: Optional[list[str]] = None
    subtasks: Optional[list[Subtask]] = None
    is_at_risk: Optional[bool] = None
    estimate_minutes: Optional[int] = Field(None, gt=0)
    actual_minutes: Optional[int] = Field(None, gt=0)
    tags: Optional[list[str]] = None
    due_date: Optional[datetime] = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class MoveRequest(BaseModel):
    stage: str
    before_task_id: Optional[str] = None
    approve: bool = False


class StatusRequest(BaseModel):
    status: str
    approve: bool = False


class MoveBackReason(BaseModel):
    reason: str


class CommentCreate(BaseModel):
    text: str = Field(..., min_length=1)


class BulkUpdate(BaseModel):
    task_ids: list[str] = Field(..., min_length=1)
    status: Optional[str] = None
    changes: TaskUpdate = Field(default_factory=TaskUpdate)


class BulkDelete(BaseModel):
    task_ids: list[str] = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Project requests
# ---------------------------------------------------------------------------

class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    color: str = ""
    members: list[str] = Field(default_factory=list)
    stages: Optional[list[dict[str, Any]]] = None


class ProjectRename(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class StageList(BaseModel):
    stages: list[dict[str, Any]]


class StageCreate(BaseModel):
    name: str = Field(..., min_length=1)
    index: Optional[int] = Field(None, ge=0)


class MemberAdd(BaseModel):
    user_id: str


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class BulkResponse(BaseModel):
    committed: list[str]
    failed: dict[str, str]


class AISuggestionsResponse(BaseModel):
    steps: list[str]
    tags: list[str]
