"""
Taskflow records — pydantic domain models and SQLAlchemy storage rows.
"""
from board.models.records import (
    AuditEntry,
    Comment,
    GroupScope,
    Project,
    SecurityGroup,
    Stage,
    Subtask,
    Task,
    TaskPriority,
    User,
    UserRole,
    default_stages,
    new_id,
    utcnow,
)

__all__ = [
    "AuditEntry",
    "Comment",
    "GroupScope",
    "Project",
    "SecurityGroup",
    "Stage",
    "Subtask",
    "Task",
    "TaskPriority",
    "User",
    "UserRole",
    "default_stages",
    "new_id",
    "utcnow",
]
