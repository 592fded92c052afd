"""
Taskflow domain records — Task, Project and their collaborators.

Records are pydantic models so they validate on the way in from storage and
deep-copy cheaply for undo snapshots. Legacy shapes are folded into the
canonical one by ``mode="before"`` validators:
- a singular ``assignee_id`` becomes the first entry of ``assignee_ids``
- an empty stage list becomes the default workflow
- conflicting lifecycle flags collapse to a single one
"""
from __future__ import annotations
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
import uuid

from pydantic import BaseModel, Field, field_validator, model_validator

from workflow.config import DEFAULT_STAGES, DEFAULT_TERMINAL_STAGE


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def unique_ids(values: Any) -> list[str]:
    """Drop blanks and duplicates, keeping first-seen order."""
    seen: dict[str, None] = {}
    for value in values or []:
        if value:
            seen.setdefault(str(value), None)
    return list(seen)


class TaskPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class UserRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"
    GUEST = "guest"


class GroupScope(str, Enum):
    GLOBAL = "global"
    PROJECT = "project"


class Stage(BaseModel):
    id: str
    name: str


def default_stages() -> list[Stage]:
    return [Stage(id=stage_id, name=name) for stage_id, name in DEFAULT_STAGES]


class User(BaseModel):
    id: str
    org_id: str
    display_name: str = ""
    role: UserRole = UserRole.MEMBER
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 1

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class SecurityGroup(BaseModel):
    """Named set of users that can be attached to tasks."""
    id: str = Field(default_factory=new_id)
    org_id: str
    name: str
    scope: GroupScope = GroupScope.GLOBAL
    project_id: Optional[str] = None
    member_ids: list[str] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 1

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["name"] = (data.get("name") or "").strip()
        data["member_ids"] = unique_ids(data.get("member_ids"))
        if data.get("scope") != GroupScope.PROJECT.value:
            data["scope"] = GroupScope.GLOBAL
            data["project_id"] = None
        return data


class Subtask(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    is_completed: bool = False
    due_date: Optional[datetime] = None


class Comment(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    display_name: str
    text: str
    timestamp: datetime = Field(default_factory=utcnow)


class AuditEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    display_name: str
    action: str
    timestamp: datetime = Field(default_factory=utcnow)


class Task(BaseModel):
    """A card on the board.

    ``assignee_ids`` is the canonical assignee representation. The singular
    ``assignee_id`` older callers expect is derived from it and never stored.
    """
    id: str = Field(default_factory=new_id)
    org_id: str
    project_id: str
    created_by: str
    title: str
    description: str = ""
    status: str = "todo"
    priority: TaskPriority = TaskPriority.MEDIUM
    order: int = 0

    assignee_ids: list[str] = Field(default_factory=list)
    security_group_ids: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    subtasks: list[Subtask] = Field(default_factory=list)
    comments: list[Comment] = Field(default_factory=list)
    audit_log: list[AuditEntry] = Field(default_factory=list)
    blocked_by_ids: list[str] = Field(default_factory=list)
    is_at_risk: bool = False

    # Time tracking
    time_logged_seconds: int = 0
    is_timer_running: bool = False
    timer_started_at: Optional[datetime] = None

    # Estimation
    estimate_minutes: Optional[int] = None
    estimate_provided_by: Optional[str] = None
    actual_minutes: Optional[int] = None
    estimate_risk_approved_at: Optional[datetime] = None
    estimate_risk_approved_by: Optional[str] = None

    # Approval gate
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None

    # Backward move out of the terminal stage
    moved_back_at: Optional[datetime] = None
    moved_back_by: Optional[str] = None
    moved_back_reason: Optional[str] = None
    moved_back_from_status: Optional[str] = None

    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 1

    @model_validator(mode="before")
    @classmethod
    def _fold_legacy_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        legacy = data.pop("assignee_id", None)
        assignees = unique_ids(data.get("assignee_ids"))
        if not assignees and legacy:
            assignees = [legacy]
        data["assignee_ids"] = assignees
        data["security_group_ids"] = unique_ids(data.get("security_group_ids"))
        try:
            data["version"] = max(1, int(data.get("version") or 1))
        except (TypeError, ValueError):
            data["version"] = 1
        if not data.get("updated_at") and data.get("created_at"):
            data["updated_at"] = data["created_at"]
        if not data.get("estimate_provided_by"):
            data["estimate_provided_by"] = data.get("created_by")
        return data

    @field_validator("estimate_minutes", "actual_minutes", mode="before")
    @classmethod
    def _positive_minutes(cls, value: Any) -> Optional[int]:
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
            return round(value)
        return None

    @property
    def assignee_id(self) -> Optional[str]:
        """Primary assignee, kept for callers that predate multi-assignment."""
        return self.assignee_ids[0] if self.assignee_ids else None

    @property
    def has_moved_back_marker(self) -> bool:
        return bool(self.moved_back_at or self.moved_back_reason or self.moved_back_from_status)


class Project(BaseModel):
    """A workflow container. The last stage is the terminal ("done") stage."""
    id: str = Field(default_factory=new_id)
    org_id: str
    name: str
    description: str = ""
    color: str = ""
    created_by: Optional[str] = None
    members: list[str] = Field(default_factory=list)
    stages: list[Stage] = Field(default_factory=default_stages)

    is_archived: bool = False
    archived_at: Optional[datetime] = None
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 1

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        members = unique_ids(data.get("members"))
        owner = data.get("created_by") or (members[0] if members else None)
        if owner and owner not in members:
            members.insert(0, owner)
        data["created_by"] = owner
        data["members"] = members
        if not data.get("stages"):
            data["stages"] = default_stages()
        try:
            data["version"] = max(1, int(data.get("version") or 1))
        except (TypeError, ValueError):
            data["version"] = 1
        # Lifecycle flags are mutually exclusive; deleted wins over completed over archived.
        for flag, stamp in (("is_deleted", "deleted_at"), ("is_completed", "completed_at"), ("is_archived", "archived_at")):
            if data.get(flag):
                for other, other_stamp in (("is_deleted", "deleted_at"), ("is_completed", "completed_at"), ("is_archived", "archived_at")):
                    if other != flag:
                        data[other] = False
                        data[other_stamp] = None
                break
        return data

    @property
    def stage_ids(self) -> list[str]:
        return [stage.id for stage in self.stages]

    @property
    def terminal_stage_id(self) -> str:
        return self.stages[-1].id if self.stages else DEFAULT_TERMINAL_STAGE

    @property
    def is_active(self) -> bool:
        return not (self.is_archived or self.is_completed or self.is_deleted)
