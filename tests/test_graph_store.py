from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from taskflow.models import DependencyType
from taskflow.stores.graph import GraphStore, resolve_sort_key
from taskflow.stores.state import graph_db_path, log_dir

OWNER = "alice"
OTHER_OWNER = "bob"


def _seed(store: GraphStore) -> tuple[int, int, int]:
    def operation(conn: sqlite3.Connection) -> tuple[int, int, int]:
        a = store.insert_task(conn, owner_id=OWNER, title="A")
        b = store.insert_task(conn, owner_id=OWNER, title="B", parent_id=a)
        c = store.insert_task(conn, owner_id=OWNER, title="C", completion_percentage=100)
        return a, b, c

    return store.write(OWNER, operation)


def test_store_creates_schema_under_root(tmp_path: Path) -> None:
    store = GraphStore(tmp_path / "state")
    _seed(store)

    assert store.db_path.exists()
    with store.read() as conn:
        tables = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
    assert {"tasks", "task_dependencies"} <= tables


def test_store_without_create_requires_existing_db(tmp_path: Path) -> None:
    store = GraphStore(tmp_path / "missing", create_on_connect=False)
    with pytest.raises(FileNotFoundError):
        with store.read():
            pass


def test_fetch_task_is_owner_scoped(store: GraphStore) -> None:
    a, b, c = _seed(store)

    with store.read() as conn:
        task = store.fetch_task(conn, OWNER, b)
        assert task is not None
        assert task.parent_id == a
        assert store.fetch_task(conn, OTHER_OWNER, b) is None

        done = store.fetch_task(conn, OWNER, c)
        assert done is not None
        assert done.is_completed is True
        assert done.is_started is True


def test_write_rolls_back_when_operation_fails(store: GraphStore) -> None:
    _seed(store)

    def operation(conn: sqlite3.Connection) -> None:
        store.insert_task(conn, owner_id=OWNER, title="doomed")
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        store.write(OWNER, operation)

    with store.read() as conn:
        titles = [task.title for task in store.list_tasks(conn, OWNER)]
    assert "doomed" not in titles
    assert titles == ["A", "B", "C"]


def test_query_dependencies_sorts_and_filters(store: GraphStore) -> None:
    a, b, c = _seed(store)

    def operation(conn: sqlite3.Connection) -> None:
        store.insert_dependency(
            conn,
            owner_id=OWNER,
            dependent_task_id=a,
            prerequisite_task_id=c,
            dependency_type=DependencyType.FINISH_TO_FINISH,
            description=None,
        )
        store.insert_dependency(
            conn,
            owner_id=OWNER,
            dependent_task_id=b,
            prerequisite_task_id=c,
            dependency_type=DependencyType.FINISH_TO_START,
            description="b waits",
        )

    store.write(OWNER, operation)

    with store.read() as conn:
        by_type = store.query_dependencies(
            conn, OWNER, sort_by="dependency_type", ascending=True
        )
        assert [dep.dependency_type for dep in by_type] == [
            DependencyType.FINISH_TO_START,
            DependencyType.FINISH_TO_FINISH,
        ]

        only_b = store.query_dependencies(conn, OWNER, dependent_task_id=b)
        assert [dep.description for dep in only_b] == ["b waits"]

        assert store.query_dependencies(conn, OTHER_OWNER) == []

        by_dependent = store.query_dependencies(
            conn, OWNER, sort_by="DependentTaskId", ascending=True
        )
        assert [dep.dependent_task_id for dep in by_dependent] == [a, b]

        newest_first = store.query_dependencies(conn, OWNER, sort_by="title")
        assert [dep.dependent_task_id for dep in newest_first] == [b, a]

        joined = by_dependent[0]
        assert joined.dependent_title == "A"
        assert joined.prerequisite_title == "C"
        assert joined.prerequisite_completed is True


def test_incoming_edges_carry_prerequisite_state(store: GraphStore) -> None:
    a, _b, c = _seed(store)

    def operation(conn: sqlite3.Connection) -> None:
        store.insert_dependency(
            conn,
            owner_id=OWNER,
            dependent_task_id=a,
            prerequisite_task_id=c,
            dependency_type=DependencyType.START_TO_START,
            description=None,
        )

    store.write(OWNER, operation)

    with store.read() as conn:
        edges = store.incoming_edges(conn, OWNER, a)
    assert len(edges) == 1
    assert edges[0].prerequisite_task_id == c
    assert edges[0].prerequisite_completed is True
    assert edges[0].prerequisite_started is True


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("created_at", "created_at"),
        ("CreatedAt", "created_at"),
        ("dependenttaskid", "dependent_task_id"),
        ("PrerequisiteTaskId", "prerequisite_task_id"),
        ("dependencytype", "dependency_type"),
        ("type", "dependency_type"),
        ("title", "created_at"),
        ("", "created_at"),
        (None, "created_at"),
    ],
)
def test_resolve_sort_key(raw: str | None, expected: str) -> None:
    assert resolve_sort_key(raw) == expected


def test_state_layout_paths(tmp_path: Path) -> None:
    store = GraphStore(tmp_path)
    assert store.db_path == graph_db_path(tmp_path) == tmp_path / "graph.sqlite3"
    assert log_dir(tmp_path) == tmp_path / "logs"
