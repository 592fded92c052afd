"""
Record Store — typed, versioned access to an organization's records.

Wraps a StoreBackend and owns two invariants:
- every write stamps ``version = max(stored, incoming) + 1`` (first writes keep
  the incoming version), so a stale writer can never move a counter back
- ``updated_at`` never decreases for a record

Reads validate stored dicts into pydantic records. A record too damaged to
validate is logged and skipped rather than raised, so one bad row does not
take the board down.
"""
from __future__ import annotations
from collections import defaultdict
from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence, TypeVar
import logging

from pydantic import ValidationError

from board.models.records import Project, SecurityGroup, Task, User, utcnow
from board.store.migrations import run_migrations
from board.store.repository import GROUPS, PROJECTS, TASKS, USERS, InMemoryBackend, StoreBackend

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", Task, Project, User, SecurityGroup)


class RecordStore:
    def __init__(self, backend: Optional[StoreBackend] = None, clock: Callable[[], datetime] = utcnow):
        self.backend = backend or InMemoryBackend()
        self.clock = clock
        self._migrated: set[str] = set()

    # -- Migrations --

    def ensure_migrated(self, org_id: str) -> int:
        """Run pending schema migrations once per organization per process."""
        if org_id in self._migrated:
            return 0
        rewritten = run_migrations(self.backend, org_id)
        self._migrated.add(org_id)
        return rewritten

    # -- Generic helpers --

    def _load(self, model: type[RecordT], raw: dict) -> Optional[RecordT]:
        try:
            return model.model_validate(raw)
        except ValidationError as exc:
            logger.warning("skipping unreadable %s %s: %s", model.__name__, raw.get("id"), exc.errors()[:1])
            return None

    def _list(self, kind: str, model: type[RecordT], org_id: str, filters: Optional[dict] = None) -> list[RecordT]:
        self.ensure_migrated(org_id)
        records = (self._load(model, raw) for raw in self.backend.repository(kind).list(org_id, filters))
        return [r for r in records if r is not None]

    def _get(self, kind: str, model: type[RecordT], org_id: str, record_id: str) -> Optional[RecordT]:
        self.ensure_migrated(org_id)
        raw = self.backend.repository(kind).get(org_id, record_id)
        return self._load(model, raw) if raw is not None else None

    def _put_many(self, kind: str, model: type[RecordT], records: Iterable[RecordT]) -> list[RecordT]:
        by_org: dict[str, list[RecordT]] = defaultdict(list)
        for record in records:
            by_org[record.org_id].append(record)

        stamped: list[RecordT] = []
        now = self.clock()
        repo = self.backend.repository(kind)
        for org_id, batch in by_org.items():
            self.ensure_migrated(org_id)
            stored = repo.get_many(org_id, [r.id for r in batch])
            written = []
            for record in batch:
                written.append(self._stamp(model, record, stored.get(record.id), now))
            repo.put_many(org_id, [r.model_dump(mode="json") for r in written])
            stamped.extend(written)
        return stamped

    def _stamp(self, model: type[RecordT], record: RecordT, stored_raw: Optional[dict], now: datetime) -> RecordT:
        if stored_raw is None:
            return record.model_copy(update={"version": max(1, record.version), "updated_at": now}, deep=True)
        previous = self._load(model, stored_raw)
        prev_version = previous.version if previous else int(stored_raw.get("version") or 0)
        prev_updated = previous.updated_at if previous else now
        return record.model_copy(
            update={
                "version": max(prev_version, record.version) + 1,
                "updated_at": max(now, prev_updated),
            },
            deep=True,
        )

    # -- Tasks --

    def tasks(self, org_id: str, project_id: Optional[str] = None) -> list[Task]:
        tasks = self._list(TASKS, Task, org_id, {"project_id": project_id} if project_id else None)
        return sorted(tasks, key=lambda t: (t.order, t.created_at))

    def get_task(self, org_id: str, task_id: str) -> Optional[Task]:
        return self._get(TASKS, Task, org_id, task_id)

    def put_task(self, task: Task) -> Task:
        return self._put_many(TASKS, Task, [task])[0]

    def put_tasks(self, tasks: Sequence[Task]) -> list[Task]:
        """Batch write; used for reorders and history restores."""
        return self._put_many(TASKS, Task, tasks)

    def delete_task(self, org_id: str, task_id: str) -> bool:
        return self.backend.repository(TASKS).delete(org_id, task_id)

    def delete_tasks(self, org_id: str, task_ids: Iterable[str]) -> int:
        return self.backend.repository(TASKS).delete_many(org_id, task_ids)

    def delete_tasks_by_project(self, org_id: str, project_id: str) -> int:
        ids = [t.id for t in self.tasks(org_id, project_id)]
        return self.delete_tasks(org_id, ids)

    # -- Projects --

    def projects(self, org_id: str) -> list[Project]:
        return sorted(self._list(PROJECTS, Project, org_id), key=lambda p: p.created_at)

    def get_project(self, org_id: str, project_id: str) -> Optional[Project]:
        return self._get(PROJECTS, Project, org_id, project_id)

    def put_project(self, project: Project) -> Project:
        return self._put_many(PROJECTS, Project, [project])[0]

    def purge_project(self, org_id: str, project_id: str) -> int:
        """Hard-delete a project and every task in it. Returns tasks removed."""
        removed = self.delete_tasks_by_project(org_id, project_id)
        self.backend.repository(PROJECTS).delete(org_id, project_id)
        logger.info("purged project %s (%d tasks) in org %s", project_id, removed, org_id)
        return removed

    # -- Users & groups --

    def users(self, org_id: str) -> list[User]:
        return self._list(USERS, User, org_id)

    def get_user(self, org_id: str, user_id: str) -> Optional[User]:
        return self._get(USERS, User, org_id, user_id)

    def put_user(self, user: User) -> User:
        return self._put_many(USERS, User, [user])[0]

    def groups(self, org_id: str) -> list[SecurityGroup]:
        return self._list(GROUPS, SecurityGroup, org_id)

    def put_group(self, group: SecurityGroup) -> SecurityGroup:
        return self._put_many(GROUPS, SecurityGroup, [group])[0]

    def delete_group(self, org_id: str, group_id: str) -> bool:
        return self.backend.repository(GROUPS).delete(org_id, group_id)
