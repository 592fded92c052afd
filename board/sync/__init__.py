"""Cross-session synchronization: event bus, presence heartbeats and the offline guard."""

from board.sync.bus import SyncBus, SyncClient
from board.sync.events import SyncEvent, SyncEventType
from board.sync.guard import SyncGuard
from board.sync.presence import PresenceEntry, PresenceRegistry, PresenceTracker

__all__ = [
    "PresenceEntry",
    "PresenceRegistry",
    "PresenceTracker",
    "SyncBus",
    "SyncClient",
    "SyncEvent",
    "SyncEventType",
    "SyncGuard",
]
