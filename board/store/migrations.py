"""
Schema migrations — one-time rewrites of stored records.

Each organization carries a schema version marker. Before records are read
for the first time, every migration newer than the marker runs over the raw
stored dicts, rewritten records are saved back with a bumped version, and
the marker moves to ``CURRENT_SCHEMA_VERSION``.

Migrations work on raw dicts, not pydantic records, so they can see legacy
keys (``assignee_id``) that the models no longer declare.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable
import logging

from board.models.records import unique_ids, utcnow
from board.store.repository import PROJECTS, TASKS, StoreBackend
from workflow.config import DEFAULT_STAGES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    version: int
    kind: str
    description: str
    apply: Callable[[dict[str, Any]], bool]


def _normalize_task_assignees(record: dict[str, Any]) -> bool:
    before = dict(record)
    legacy = record.pop("assignee_id", None)
    assignees = unique_ids(record.get("assignee_ids"))
    if not assignees and legacy:
        assignees = [legacy]
    record["assignee_ids"] = assignees
    if not isinstance(record.get("version"), int) or record["version"] < 1:
        record["version"] = 1
    if not record.get("estimate_provided_by") and record.get("created_by"):
        record["estimate_provided_by"] = record["created_by"]
    return record != before


def _default_project_shape(record: dict[str, Any]) -> bool:
    before = dict(record)
    members = unique_ids(record.get("members"))
    owner = record.get("created_by") or (members[0] if members else None)
    if owner and owner not in members:
        members.insert(0, owner)
    record["created_by"] = owner
    record["members"] = members
    if not record.get("stages"):
        record["stages"] = [{"id": stage_id, "name": name} for stage_id, name in DEFAULT_STAGES]
    return record != before


_LIFECYCLE = (
    ("is_deleted", "deleted_at"),
    ("is_completed", "completed_at"),
    ("is_archived", "archived_at"),
)


def _exclusive_lifecycle_flags(record: dict[str, Any]) -> bool:
    winner = next((flag for flag, _ in _LIFECYCLE if record.get(flag)), None)
    if winner is None:
        return False
    changed = False
    for flag, stamp in _LIFECYCLE:
        if flag != winner and (record.get(flag) or record.get(stamp)):
            record[flag] = False
            record[stamp] = None
            changed = True
    return changed


MIGRATIONS: tuple[Migration, ...] = (
    Migration(1, TASKS, "fold legacy assignee_id into assignee_ids", _normalize_task_assignees),
    Migration(2, PROJECTS, "owner fallback and default stages", _default_project_shape),
    Migration(3, PROJECTS, "mutually exclusive lifecycle flags", _exclusive_lifecycle_flags),
)

CURRENT_SCHEMA_VERSION = max(m.version for m in MIGRATIONS)


def run_migrations(backend: StoreBackend, org_id: str) -> int:
    """Apply pending migrations for one organization. Returns records rewritten."""
    current = backend.schema_version(org_id)
    if current >= CURRENT_SCHEMA_VERSION:
        return 0

    rewritten = 0
    for migration in MIGRATIONS:
        if migration.version <= current:
            continue
        repo = backend.repository(migration.kind)
        changed = []
        for record in repo.list(org_id):
            if migration.apply(record):
                record["version"] = int(record.get("version") or 1) + 1
                record["updated_at"] = utcnow().isoformat()
                changed.append(record)
        if changed:
            repo.put_many(org_id, changed)
        rewritten += len(changed)
        logger.info(
            "migration %d (%s) rewrote %d %s for org %s",
            migration.version, migration.description, len(changed), migration.kind, org_id,
        )

    backend.set_schema_version(org_id, CURRENT_SCHEMA_VERSION)
    return rewritten
