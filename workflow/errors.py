"""Error taxonomy for board mutations.

Every gate and policy refusal is a ``BoardError``. None of them is fatal: the
workspace catches them, records a notice for the actor, and leaves state
untouched. ``ReasonRequired`` is the odd one out because the operation is
deferred rather than rejected; it carries the pending request so the caller
can prompt for a justification and resubmit.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional


class BoardError(Exception):
    """Base class for recoverable board errors."""

    title = "Action blocked"

    def __init__(self, message: str, task_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.task_id = task_id


class PermissionDenied(BoardError):
    """Actor fails a policy check."""

    title = "Permission denied"

    def __init__(self, message: str, action: str = "", task_id: Optional[str] = None):
        super().__init__(message, task_id=task_id)
        self.action = action


class ApprovalRequired(BoardError):
    """High-priority completion needs admin sign-off first."""

    title = "Approval required"


class RiskApprovalRequired(ApprovalRequired):
    """Estimate risk must be signed off by a project owner before completion."""

    title = "Estimate approval required"


@dataclass(frozen=True)
class PendingMoveBack:
    """A backward move out of the terminal stage awaiting a reason."""

    task_id: str
    target_stage: str
    from_stage: str
    target_task_id: Optional[str] = None


class ReasonRequired(BoardError):
    """Backward move out of the terminal stage is deferred until a reason is given."""

    title = "Reason required"

    def __init__(self, message: str, pending: PendingMoveBack):
        super().__init__(message, task_id=pending.task_id)
        self.pending = pending


class NotFound(BoardError):
    """Task or project id no longer exists (often deleted by another session)."""

    title = "Not found"


class InvalidStage(BoardError):
    """Target stage is not part of the project's workflow."""

    title = "Unknown stage"


class StageListError(BoardError):
    """A stage edit would leave a project without any stage."""

    title = "Invalid stages"
