"""Sync event envelope shared by every client on the bus."""
from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from board.models.records import new_id, utcnow


class SyncEventType(str, Enum):
    TASKS_UPDATED = "TASKS_UPDATED"
    PROJECTS_UPDATED = "PROJECTS_UPDATED"
    USERS_UPDATED = "USERS_UPDATED"
    SETTINGS_UPDATED = "SETTINGS_UPDATED"
    COMMENT_TYPING = "COMMENT_TYPING"
    PRESENCE_PING = "PRESENCE_PING"


class SyncEvent(BaseModel):
    """A change notice. Carries no record data: receivers re-read the store."""

    id: str = Field(default_factory=new_id)
    type: SyncEventType
    org_id: Optional[str] = None
    actor_id: Optional[str] = None
    client_id: str
    sent_at: datetime = Field(default_factory=utcnow)
    payload: dict[str, Any] = Field(default_factory=dict)

    def is_foreign_to(self, client_id: str, org_id: str) -> bool:
        """True when another client of the same organization sent this event."""
        if self.client_id == client_id:
            return False
        return self.org_id is None or self.org_id == org_id
