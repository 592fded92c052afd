"""Repository pattern for board record storage.

Provides a generic repository interface with whole-record CRUD and
organization isolation, plus an in-memory backend used by tests and
single-process deployments. The SQLAlchemy backend lives in
``sql_repository``.

Repositories deal in plain JSON-compatible dicts. Typing into pydantic
records and version stamping happen one level up, in ``RecordStore``.
"""

import copy
from abc import ABC, abstractmethod
from typing import Any, Iterable

# ---------------------------------------------------------------------------
# Record kinds
# ---------------------------------------------------------------------------

TASKS = "tasks"
PROJECTS = "projects"
USERS = "users"
GROUPS = "groups"

RECORD_KINDS = (TASKS, PROJECTS, USERS, GROUPS)


# ---------------------------------------------------------------------------
# Repository interface
# ---------------------------------------------------------------------------

class RecordRepository(ABC):
    """Whole-record storage for one record kind, keyed by (org_id, id).

    ``put`` replaces the stored record outright; there is no partial update.
    """

    kind: str

    @abstractmethod
    def get(self, org_id: str, record_id: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    def list(self, org_id: str, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    def put_many(self, org_id: str, records: Iterable[dict[str, Any]]) -> None:
        ...

    @abstractmethod
    def delete_many(self, org_id: str, record_ids: Iterable[str]) -> int:
        ...

    def put(self, org_id: str, record: dict[str, Any]) -> None:
        self.put_many(org_id, [record])

    def delete(self, org_id: str, record_id: str) -> bool:
        return self.delete_many(org_id, [record_id]) > 0

    def get_many(self, org_id: str, record_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        wanted = set(record_ids)
        return {r["id"]: r for r in self.list(org_id) if r["id"] in wanted}


class StoreBackend(ABC):
    """A set of repositories plus the per-organization schema marker."""

    @abstractmethod
    def repository(self, kind: str) -> RecordRepository:
        ...

    @abstractmethod
    def schema_version(self, org_id: str) -> int:
        ...

    @abstractmethod
    def set_schema_version(self, org_id: str, version: int) -> None:
        ...


def matches_filters(record: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    if not filters:
        return True
    return all(value is None or record.get(key) == value for key, value in filters.items())


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

class InMemoryRepository(RecordRepository):
    """Dict-backed repository. Stored records are copied on the way in and out."""

    def __init__(self, kind: str):
        self.kind = kind
        self._orgs: dict[str, dict[str, dict[str, Any]]] = {}

    def get(self, org_id: str, record_id: str) -> dict[str, Any] | None:
        record = self._orgs.get(org_id, {}).get(record_id)
        return copy.deepcopy(record) if record is not None else None

    def list(self, org_id: str, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(record)
            for record in self._orgs.get(org_id, {}).values()
            if matches_filters(record, filters)
        ]

    def put_many(self, org_id: str, records: Iterable[dict[str, Any]]) -> None:
        bucket = self._orgs.setdefault(org_id, {})
        for record in records:
            bucket[record["id"]] = copy.deepcopy(record)

    def delete_many(self, org_id: str, record_ids: Iterable[str]) -> int:
        bucket = self._orgs.get(org_id, {})
        removed = 0
        for record_id in record_ids:
            if bucket.pop(record_id, None) is not None:
                removed += 1
        return removed


class InMemoryBackend(StoreBackend):
    def __init__(self):
        self._repos = {kind: InMemoryRepository(kind) for kind in RECORD_KINDS}
        self._schema: dict[str, int] = {}

    def repository(self, kind: str) -> RecordRepository:
        return self._repos[kind]

    def schema_version(self, org_id: str) -> int:
        return self._schema.get(org_id, 0)

    def set_schema_version(self, org_id: str, version: int) -> None:
        self._schema[org_id] = version
