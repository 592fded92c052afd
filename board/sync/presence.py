"""
Taskflow Presence — who is looking at the board right now.

Every client touches a shared per-organization registry on each heartbeat
and announces itself with a PRESENCE_PING. Entries older than the TTL are
pruned whenever the registry is read. A client counts itself once it has
sent its first heartbeat.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
import asyncio
import logging

from board.models.records import User, utcnow
from board.sync.bus import SyncClient
from board.sync.events import SyncEvent, SyncEventType
from workflow.config import PresenceConfig

logger = logging.getLogger(__name__)


@dataclass
class PresenceEntry:
    user_id: str
    display_name: str
    last_seen: datetime

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "display_name": self.display_name,
            "last_seen": self.last_seen.isoformat(),
        }


class PresenceRegistry:
    """Last-seen times per organization, shared by all clients in a process."""

    def __init__(self, config: Optional[PresenceConfig] = None, clock: Callable[[], datetime] = utcnow):
        self.config = config or PresenceConfig()
        self.clock = clock
        self._orgs: dict[str, dict[str, PresenceEntry]] = {}

    def prune(self, org_id: str) -> dict[str, PresenceEntry]:
        now = self.clock()
        ttl = self.config.ttl_seconds
        current = self._orgs.get(org_id, {})
        alive = {
            user_id: entry
            for user_id, entry in current.items()
            if (now - entry.last_seen).total_seconds() <= ttl
        }
        self._orgs[org_id] = alive
        return alive

    def touch(self, user: User) -> PresenceEntry:
        entries = self.prune(user.org_id)
        entry = PresenceEntry(user_id=user.id, display_name=user.display_name, last_seen=self.clock())
        entries[user.id] = entry
        return entry

    def list_online(self, org_id: str) -> list[PresenceEntry]:
        """Live entries, most recently seen first."""
        return sorted(self.prune(org_id).values(), key=lambda e: e.last_seen, reverse=True)


class PresenceTracker:
    """Heartbeat loop for one user session."""

    def __init__(
        self,
        user: User,
        registry: PresenceRegistry,
        client: SyncClient,
        on_change: Optional[Callable[[list[PresenceEntry]], None]] = None,
    ):
        self.user = user
        self.registry = registry
        self.client = client
        self.on_change = on_change
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe = client.subscribe(self._on_event)

    @property
    def interval(self) -> float:
        return self.registry.config.heartbeat_interval_seconds

    def beat(self) -> list[PresenceEntry]:
        """Touch the registry, announce ourselves and report who is online."""
        self.registry.touch(self.user)
        self.client.publish(
            SyncEventType.PRESENCE_PING,
            org_id=self.user.org_id,
            actor_id=self.user.id,
            payload={"display_name": self.user.display_name},
        )
        return self._changed()

    def _changed(self) -> list[PresenceEntry]:
        online = self.registry.list_online(self.user.org_id)
        if self.on_change:
            self.on_change(online)
        return online

    def _on_event(self, event: SyncEvent) -> None:
        if event.type != SyncEventType.PRESENCE_PING or event.org_id != self.user.org_id:
            return
        if event.client_id == self.client.client_id:
            return
        self._changed()

    @property
    def online(self) -> list[PresenceEntry]:
        return self.registry.list_online(self.user.org_id)

    @property
    def online_count(self) -> int:
        return len(self.online)

    async def run(self) -> None:
        """Heartbeat until cancelled."""
        while True:
            self.beat()
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self) -> None:
        self._unsubscribe()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
