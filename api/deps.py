"""FastAPI dependencies: the shared board state and per-actor workspaces.

One ``BoardState`` per process holds the store, the sync bus and the
advisory services. Workspaces are cached per (org, user) so undo history and
pending move-backs survive between requests; they stay current through the
bus like any other client.
"""

from dataclasses import dataclass, field
from typing import Optional
import logging

from fastapi import Depends, Header, HTTPException

from api.middleware import get_current_org
from board.advisory.ai import AIAdvisoryService
from board.advisory.estimation import ProfileEstimationService
from board.advisory.notifications import (
    InMemoryNotificationSink,
    NotificationSink,
    WebhookNotificationSink,
)
from board.database import session_factory
from board.projects import ProjectService
from board.store.record_store import RecordStore
from board.store.sql_repository import SqlBackend
from board.sync.bus import SyncBus
from board.sync.presence import PresenceRegistry
from board.workspace import Workspace
from workflow.config import BoardConfig

logger = logging.getLogger(__name__)


@dataclass
class BoardState:
    store: RecordStore
    config: BoardConfig = field(default_factory=BoardConfig.default)
    bus: SyncBus = field(default_factory=SyncBus)
    notifier: NotificationSink = field(default_factory=InMemoryNotificationSink)
    estimation: Optional[ProfileEstimationService] = None
    ai: Optional[AIAdvisoryService] = None
    presence: Optional[PresenceRegistry] = None
    workspaces: dict[tuple[str, str], Workspace] = field(default_factory=dict)

    def __post_init__(self):
        if self.estimation is None:
            self.estimation = ProfileEstimationService(self.config.estimation)
        if self.presence is None:
            self.presence = PresenceRegistry(self.config.presence)

    @classmethod
    def from_env(cls) -> "BoardState":
        config = BoardConfig.from_env()
        notifier: NotificationSink = (
            WebhookNotificationSink.from_config(config.notifications)
            if config.notifications.webhook_url
            else InMemoryNotificationSink()
        )
        ai = AIAdvisoryService(config.ai_model) if config.enable_ai_suggestions else None
        return cls(
            store=RecordStore(SqlBackend(session_factory)),
            config=config,
            notifier=notifier,
            ai=ai,
        )

    def workspace_for(self, org_id: str, user_id: str) -> Optional[Workspace]:
        key = (org_id, user_id)
        if key not in self.workspaces:
            user = self.store.get_user(org_id, user_id)
            if user is None:
                return None
            self.workspaces[key] = Workspace(
                user,
                self.store,
                self.bus,
                config=self.config,
                estimation=self.estimation,
                notifier=self.notifier,
                ai=self.ai,
                client_id=f"http:{org_id}:{user_id}",
            )
            logger.info("opened workspace for %s in %s", user_id, org_id)
        return self.workspaces[key]

    def close(self) -> None:
        for workspace in self.workspaces.values():
            workspace.close()
        self.workspaces.clear()
        if isinstance(self.notifier, WebhookNotificationSink):
            self.notifier.close()


_state: Optional[BoardState] = None


def get_board() -> BoardState:
    """FastAPI dependency for the process-wide board state."""
    global _state
    if _state is None:
        _state = BoardState.from_env()
    return _state


def reset_board() -> None:
    global _state
    if _state is not None:
        _state.close()
    _state = None


def get_workspace(
    x_user_id: str = Header(..., alias="X-User-ID"),
    board: BoardState = Depends(get_board),
) -> Workspace:
    """FastAPI dependency resolving the acting user's workspace."""
    workspace = board.workspace_for(get_current_org(), x_user_id)
    if workspace is None:
        raise HTTPException(status_code=401, detail=f"Unknown user {x_user_id}")
    return workspace


def get_projects(workspace: Workspace = Depends(get_workspace)) -> ProjectService:
    return ProjectService(workspace)
