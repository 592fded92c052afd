"""
Taskflow History — bounded undo/redo over the whole task collection.

Snapshots are deep copies, so later mutation of the live collection never
reaches into the stacks. The manager holds no canonical state: ``undo`` and
``redo`` are handed the current collection by the caller and return the one
to restore.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence
import logging

from board.models.records import Task, utcnow
from workflow.config import HistoryConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistorySnapshot:
    tasks: tuple[Task, ...]
    taken_at: datetime = field(default_factory=utcnow)

    @classmethod
    def capture(cls, tasks: Sequence[Task]) -> "HistorySnapshot":
        return cls(tasks=tuple(t.model_copy(deep=True) for t in tasks))

    def restore(self) -> list[Task]:
        return [t.model_copy(deep=True) for t in self.tasks]


class HistoryManager:
    """Two stacks of snapshots; the undo stack drops its oldest entry past the limit."""

    def __init__(self, config: Optional[HistoryConfig] = None):
        self.config = config or HistoryConfig()
        self._undo: list[HistorySnapshot] = []
        self._redo: list[HistorySnapshot] = []

    @property
    def limit(self) -> int:
        return self.config.undo_limit

    def push(self, tasks: Sequence[Task]) -> None:
        """Record the collection as it was before a mutation."""
        self._undo.append(HistorySnapshot.capture(tasks))
        if len(self._undo) > self.limit:
            self._undo = self._undo[-self.limit:]
        self._redo.clear()

    def undo(self, current: Sequence[Task]) -> Optional[list[Task]]:
        if not self._undo:
            return None
        snapshot = self._undo.pop()
        self._redo.append(HistorySnapshot.capture(current))
        logger.debug("undo to snapshot from %s (%d left)", snapshot.taken_at, len(self._undo))
        return snapshot.restore()

    def redo(self, current: Sequence[Task]) -> Optional[list[Task]]:
        if not self._redo:
            return None
        snapshot = self._redo.pop()
        self._undo.append(HistorySnapshot.capture(current))
        if len(self._undo) > self.limit:
            self._undo = self._undo[-self.limit:]
        return snapshot.restore()

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def depth(self) -> int:
        return len(self._undo)

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()
