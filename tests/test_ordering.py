"""Test drag/drop reordering."""
import pytest
from board.models.records import Task
from board.ordering import changed_tasks, move_task, next_order, renumber, stage_sequence


def _tasks(*specs) -> list[Task]:
    return [
        Task(id=task_id, org_id="acme", project_id="web", created_by="olivia", title=task_id, status=status, order=i)
        for i, (task_id, status) in enumerate(specs)
    ]


def _ids(tasks):
    return [t.id for t in tasks]


def _orders_are_dense(tasks):
    return sorted(t.order for t in tasks) == list(range(len(tasks)))


def test_move_before_target_within_stage():
    tasks = _tasks(("A", "todo"), ("B", "todo"), ("C", "todo"))
    result = move_task(tasks, "B", "todo", target_task_id="A")
    assert _ids(stage_sequence(result, "todo")) == ["B", "A", "C"]
    assert _orders_are_dense(result)


def test_move_to_stage_appends_after_last_in_stage():
    tasks = _tasks(("A", "todo"), ("B", "review"), ("C", "todo"), ("D", "done"))
    result = move_task(tasks, "A", "review")
    assert _ids(stage_sequence(result, "review")) == ["B", "A"]
    assert _ids(stage_sequence(result, "todo")) == ["C"]
    assert _orders_are_dense(result)


def test_move_to_empty_stage_goes_to_end():
    tasks = _tasks(("A", "todo"), ("B", "todo"))
    result = move_task(tasks, "A", "done")
    assert _ids(sorted(result, key=lambda t: t.order)) == ["B", "A"]
    assert result[-1].status == "done"


def test_missing_target_falls_back_to_append():
    tasks = _tasks(("A", "todo"), ("B", "review"), ("C", "review"))
    result = move_task(tasks, "A", "review", target_task_id="deleted")
    assert _ids(stage_sequence(result, "review")) == ["B", "C", "A"]


def test_target_in_other_stage_still_positions_task():
    tasks = _tasks(("A", "todo"), ("B", "todo"), ("C", "review"))
    result = move_task(tasks, "A", "review", target_task_id="C")
    assert _ids(stage_sequence(result, "review")) == ["A", "C"]


def test_unknown_task_leaves_collection_unchanged():
    tasks = _tasks(("A", "todo"), ("B", "todo"))
    result = move_task(tasks, "Z", "todo")
    assert result == tasks


def test_input_records_are_not_mutated():
    tasks = _tasks(("A", "todo"), ("B", "todo"))
    move_task(tasks, "B", "todo", target_task_id="A")
    assert [(t.id, t.order) for t in tasks] == [("A", 0), ("B", 1)]


def test_renumber_and_changed_tasks():
    tasks = _tasks(("A", "todo"), ("B", "todo"), ("C", "todo"))
    result = move_task(tasks, "C", "todo", target_task_id="A")
    changed = changed_tasks(tasks, result)
    assert sorted(_ids(changed)) == ["A", "B", "C"]
    assert renumber(result) == result


def test_next_order():
    assert next_order([]) == 0
    assert next_order(_tasks(("A", "todo"), ("B", "todo"))) == 2
