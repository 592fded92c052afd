"""Record storage: repository backends, schema migrations and the versioned RecordStore."""

from board.store.record_store import RecordStore
from board.store.repository import InMemoryBackend, RecordRepository, StoreBackend

__all__ = ["InMemoryBackend", "RecordRepository", "RecordStore", "StoreBackend"]
