"""
Taskflow Sync Bus — in-process fan-out of change notices.

Delivery is synchronous, best-effort and unordered across clients: there is
no queue, no retry and no replay. A listener that raises is logged and
skipped so the remaining listeners still receive the event.
"""
from __future__ import annotations
from typing import Any, Callable, Optional
import logging

from board.models.records import new_id
from board.sync.events import SyncEvent, SyncEventType

logger = logging.getLogger(__name__)

Listener = Callable[[SyncEvent], None]


class SyncBus:
    """Shared channel every client publishes to and listens on."""

    def __init__(self):
        self._listeners: dict[int, Listener] = {}
        self._next_token = 0
        self.published = 0

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        token = self._next_token
        self._next_token += 1
        self._listeners[token] = listener

        def unsubscribe() -> None:
            self._listeners.pop(token, None)

        return unsubscribe

    def publish(self, event: SyncEvent) -> int:
        """Deliver to every current listener. Returns how many succeeded."""
        self.published += 1
        delivered = 0
        for listener in list(self._listeners.values()):
            try:
                listener(event)
                delivered += 1
            except Exception:
                logger.exception("sync listener failed on %s from %s", event.type.value, event.client_id)
        return delivered

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


class SyncClient:
    """One session's handle on the bus, stamping its own client id."""

    def __init__(self, bus: SyncBus, client_id: Optional[str] = None):
        self.bus = bus
        self.client_id = client_id or new_id()

    def publish(
        self,
        event_type: SyncEventType,
        org_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> SyncEvent:
        event = SyncEvent(
            type=event_type,
            org_id=org_id,
            actor_id=actor_id,
            client_id=self.client_id,
            payload=payload or {},
        )
        self.bus.publish(event)
        return event

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.bus.subscribe(listener)
