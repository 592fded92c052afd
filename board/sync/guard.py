"""Pending-sync flag for offline editing.

Local mutations always apply. While the client is offline each mutation
raises the pending flag instead of publishing; reconnecting clears it. No
mutation is queued or replayed: other sessions catch up on their next full
reload.
"""
from __future__ import annotations
from datetime import datetime
from typing import Callable, Optional

from board.models.records import utcnow


class SyncGuard:
    def __init__(self, online: bool = True, clock: Callable[[], datetime] = utcnow):
        self.online = online
        self.clock = clock
        self._pending_since: Optional[datetime] = None

    def mark_local_mutation(self) -> bool:
        """Record a local write. Returns True when the write should be published."""
        if not self.online:
            if self._pending_since is None:
                self._pending_since = self.clock()
            return False
        self._pending_since = None
        return True

    @property
    def has_pending(self) -> bool:
        return self._pending_since is not None

    @property
    def pending_since(self) -> Optional[datetime]:
        return self._pending_since

    def clear_pending(self) -> None:
        self._pending_since = None

    def set_online(self, online: bool) -> None:
        self.online = online
        if online:
            self.clear_pending()
