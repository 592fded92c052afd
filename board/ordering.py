"""
Taskflow Reordering — drag/drop moves over a dense total order.

A move removes the task from the collection, drops it at its new position
and renumbers the whole collection ``order = index``. Orders are therefore
always dense and unique across every stage; relative order within a stage
is the collection order.

Placement for a task moved into ``target_stage``:
1. immediately before ``target_task_id`` when that task is still present
2. otherwise right after the last task already in ``target_stage``
3. otherwise at the end of the collection
"""
from __future__ import annotations
from typing import Optional, Sequence

from board.models.records import Task


def _by_order(tasks: Sequence[Task]) -> list[Task]:
    return sorted(tasks, key=lambda t: t.order)


def move_task(
    tasks: Sequence[Task],
    task_id: str,
    target_stage: str,
    target_task_id: Optional[str] = None,
) -> list[Task]:
    """Return a new, renumbered collection with ``task_id`` moved.

    Input records are not mutated. An unknown ``task_id`` returns the
    collection unchanged (as a new list in its current order).
    """
    ordered = _by_order(tasks)
    index = next((i for i, t in enumerate(ordered) if t.id == task_id), None)
    if index is None:
        return list(ordered)

    remaining = ordered[:index] + ordered[index + 1:]
    moved = ordered[index].model_copy(update={"status": target_stage})

    insert_at = None
    if target_task_id and target_task_id != task_id:
        insert_at = next((i for i, t in enumerate(remaining) if t.id == target_task_id), None)
    if insert_at is None:
        last_in_stage = None
        for i, t in enumerate(remaining):
            if t.status == target_stage:
                last_in_stage = i
        insert_at = last_in_stage + 1 if last_in_stage is not None else len(remaining)

    remaining.insert(insert_at, moved)
    return renumber(remaining)


def renumber(tasks: Sequence[Task]) -> list[Task]:
    """Assign ``order = index``; only tasks whose order changes are copied."""
    return [t if t.order == i else t.model_copy(update={"order": i}) for i, t in enumerate(tasks)]


def stage_sequence(tasks: Sequence[Task], stage: str) -> list[Task]:
    return [t for t in _by_order(tasks) if t.status == stage]


def changed_tasks(before: Sequence[Task], after: Sequence[Task]) -> list[Task]:
    """Tasks in ``after`` whose status or order differs from ``before``."""
    previous = {t.id: (t.status, t.order) for t in before}
    return [t for t in after if previous.get(t.id) != (t.status, t.order)]


def next_order(tasks: Sequence[Task]) -> int:
    return max((t.order for t in tasks), default=-1) + 1
