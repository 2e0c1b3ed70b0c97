from __future__ import annotations

import sqlite3

import pytest

from taskflow.errors import (
    CircularReferenceError,
    DepthExceededError,
    GraphCorruptionError,
    NotFoundError,
    SelfReferenceError,
)
from taskflow.graph import TaskGraph

OWNER = "alice"


def _chain(graph: TaskGraph, length: int) -> list[int]:
    """Create ``length`` tasks, each the parent of the next."""
    ids: list[int] = []
    parent_id = None
    for index in range(length):
        task = graph.create_task(OWNER, f"level {index}", parent_id=parent_id)
        ids.append(task.id)
        parent_id = task.id
    return ids


def test_set_parent_and_list_children(graph: TaskGraph) -> None:
    root = graph.create_task(OWNER, "root")
    first = graph.create_task(OWNER, "first")
    second = graph.create_task(OWNER, "second")

    moved = graph.set_parent(OWNER, first.id, root.id)
    graph.set_parent(OWNER, second.id, root.id)

    assert moved.parent_id == root.id
    assert [t.id for t in graph.list_children(OWNER, root.id)] == [first.id, second.id]
    assert graph.depth_of(OWNER, first.id) == 1
    assert graph.count_descendants(OWNER, root.id) == 2


def test_remove_parent_detaches_task(graph: TaskGraph) -> None:
    root = graph.create_task(OWNER, "root")
    child = graph.create_task(OWNER, "child", parent_id=root.id)

    detached = graph.remove_parent(OWNER, child.id)

    assert detached.parent_id is None
    assert graph.list_children(OWNER, root.id) == []


def test_depth_limit_accepts_five_links_and_rejects_sixth(graph: TaskGraph) -> None:
    ids = _chain(graph, 6)
    assert graph.depth_of(OWNER, ids[-1]) == 5

    with pytest.raises(DepthExceededError):
        graph.create_task(OWNER, "too deep", parent_id=ids[-1])

    loose = graph.create_task(OWNER, "loose")
    with pytest.raises(DepthExceededError):
        graph.set_parent(OWNER, loose.id, ids[-1])

    assert graph.get_task(OWNER, loose.id).parent_id is None


def test_moving_subtree_counts_its_height(graph: TaskGraph) -> None:
    ids = _chain(graph, 4)
    sub_root = graph.create_task(OWNER, "sub root")
    graph.create_task(OWNER, "sub child", parent_id=sub_root.id)

    # ids[-1] sits at depth 3; the moved pair would reach depth 5.
    graph.set_parent(OWNER, sub_root.id, ids[-1])
    graph.remove_parent(OWNER, sub_root.id)

    deeper = graph.create_task(OWNER, "deeper", parent_id=ids[-1])
    with pytest.raises(DepthExceededError):
        graph.set_parent(OWNER, sub_root.id, deeper.id)


def test_self_parent_is_rejected(graph: TaskGraph) -> None:
    task = graph.create_task(OWNER, "solo")
    with pytest.raises(SelfReferenceError):
        graph.set_parent(OWNER, task.id, task.id)


def test_parent_cycle_is_rejected(graph: TaskGraph) -> None:
    a, b, c = _chain(graph, 3)

    with pytest.raises(CircularReferenceError):
        graph.set_parent(OWNER, a, c)
    with pytest.raises(CircularReferenceError):
        graph.set_parent(OWNER, a, b)

    assert graph.get_task(OWNER, a).parent_id is None


def test_parent_must_exist_and_be_owned(graph: TaskGraph) -> None:
    mine = graph.create_task(OWNER, "mine")
    theirs = graph.create_task("bob", "theirs")

    with pytest.raises(NotFoundError):
        graph.set_parent(OWNER, mine.id, theirs.id)
    with pytest.raises(NotFoundError):
        graph.set_parent(OWNER, mine.id, 9999)
    with pytest.raises(NotFoundError):
        graph.set_parent("bob", mine.id, theirs.id)
    with pytest.raises(NotFoundError):
        graph.create_task(OWNER, "orphan", parent_id=theirs.id)


def test_deleted_parent_is_not_a_valid_target(graph: TaskGraph) -> None:
    parent = graph.create_task(OWNER, "parent")
    child = graph.create_task(OWNER, "child")
    graph.delete_task(OWNER, parent.id)

    with pytest.raises(NotFoundError):
        graph.set_parent(OWNER, child.id, parent.id)


def test_deletion_check_reports_subtree(graph: TaskGraph) -> None:
    root = graph.create_task(OWNER, "root")
    child = graph.create_task(OWNER, "child", parent_id=root.id)
    graph.create_task(OWNER, "grandchild", parent_id=child.id)
    waiting = graph.create_task(OWNER, "waiting")
    graph.create_dependency(OWNER, waiting.id, root.id)

    check = graph.deletion_check(OWNER, root.id)

    assert check.can_delete is True
    assert check.subtask_count == 1
    assert check.descendant_count == 2
    assert len(check.warnings) == 2

    leaf_check = graph.deletion_check(OWNER, waiting.id)
    assert leaf_check.subtask_count == 0
    assert leaf_check.warnings == ()


def test_corrupted_parent_loop_is_reported(graph: TaskGraph) -> None:
    a, b = _chain(graph, 2)
    other = graph.create_task(OWNER, "other")

    def corrupt(conn: sqlite3.Connection) -> None:
        conn.execute("UPDATE tasks SET parent_id = ? WHERE id = ?", (b, a))

    graph.store.write(OWNER, corrupt)

    with pytest.raises(GraphCorruptionError):
        graph.depth_of(OWNER, a)
    with pytest.raises(GraphCorruptionError):
        graph.set_parent(OWNER, other.id, b)
