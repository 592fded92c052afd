"""SQLAlchemy-backed record repositories.

Each operation runs in its own session scope so a batch write commits or
rolls back as a unit. ``version``, ``updated_at`` and ``project_id`` are
lifted out of the payload into columns for indexing.
"""

from datetime import datetime
from typing import Any, Iterable

from pydantic import TypeAdapter
from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from board.database import init_db, session_scope
from board.models.db_models import GroupRow, ProjectRow, SchemaMarker, TaskRow, UserRow
from board.models.records import utcnow
from board.store.repository import (
    GROUPS,
    PROJECTS,
    TASKS,
    USERS,
    RecordRepository,
    StoreBackend,
    matches_filters,
)

_DATETIME = TypeAdapter(datetime)

_ROW_MODELS = {
    TASKS: TaskRow,
    PROJECTS: ProjectRow,
    USERS: UserRow,
    GROUPS: GroupRow,
}


class SqlRepository(RecordRepository):
    """Repository over one OrgRecordMixin table."""

    def __init__(self, kind: str, factory: sessionmaker):
        self.kind = kind
        self.model = _ROW_MODELS[kind]
        self.factory = factory

    def _columns(self, org_id: str, record: dict[str, Any]) -> dict[str, Any]:
        stamp = record.get("updated_at")
        columns = {
            "org_id": org_id,
            "version": int(record.get("version") or 1),
            "updated_at": _DATETIME.validate_python(stamp) if stamp else utcnow(),
            "payload": record,
        }
        if self.model is TaskRow:
            columns["project_id"] = record.get("project_id") or ""
        return columns

    def get(self, org_id: str, record_id: str) -> dict[str, Any] | None:
        with session_scope(self.factory) as session:
            row = session.execute(
                select(self.model).where(
                    self.model.id == record_id,
                    self.model.org_id == org_id,
                )
            ).scalar_one_or_none()
            return dict(row.payload) if row else None

    def list(self, org_id: str, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        stmt = select(self.model).where(self.model.org_id == org_id)
        if filters and self.model is TaskRow and filters.get("project_id") is not None:
            stmt = stmt.where(TaskRow.project_id == filters["project_id"])
        with session_scope(self.factory) as session:
            rows = session.execute(stmt).scalars().all()
            return [dict(row.payload) for row in rows if matches_filters(row.payload, filters)]

    def put_many(self, org_id: str, records: Iterable[dict[str, Any]]) -> None:
        with session_scope(self.factory) as session:
            for record in records:
                columns = self._columns(org_id, record)
                row = session.get(self.model, record["id"])
                if row is None:
                    session.add(self.model(id=record["id"], **columns))
                    continue
                if row.org_id != org_id:
                    raise ValueError(f"{self.kind} record {record['id']} belongs to another organization")
                for key, value in columns.items():
                    setattr(row, key, value)

    def delete_many(self, org_id: str, record_ids: Iterable[str]) -> int:
        ids = list(record_ids)
        if not ids:
            return 0
        with session_scope(self.factory) as session:
            result = session.execute(
                delete(self.model).where(
                    self.model.org_id == org_id,
                    self.model.id.in_(ids),
                )
            )
            return result.rowcount or 0


class SqlBackend(StoreBackend):
    """All board repositories over one database."""

    def __init__(self, factory: sessionmaker, create_tables: bool = True):
        self.factory = factory
        if create_tables:
            init_db(factory.kw.get("bind"))
        self._repos = {kind: SqlRepository(kind, factory) for kind in _ROW_MODELS}

    def repository(self, kind: str) -> RecordRepository:
        return self._repos[kind]

    def schema_version(self, org_id: str) -> int:
        with session_scope(self.factory) as session:
            marker = session.get(SchemaMarker, org_id)
            return marker.version if marker else 0

    def set_schema_version(self, org_id: str, version: int) -> None:
        with session_scope(self.factory) as session:
            marker = session.get(SchemaMarker, org_id)
            if marker is None:
                session.add(SchemaMarker(org_id=org_id, version=version))
            else:
                marker.version = version
