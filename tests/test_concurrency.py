from __future__ import annotations

import gc
import sqlite3
import threading
from pathlib import Path

import pytest

from taskflow.config import GraphConfig
from taskflow.errors import CircularDependencyError, ConflictError
from taskflow.graph import TaskGraph
from taskflow.locks import OwnerLocks
from taskflow.stores.graph import GraphStore

OWNER = "alice"


def test_opposite_edges_race_yields_exactly_one(graph: TaskGraph) -> None:
    for _ in range(5):
        a = graph.create_task(OWNER, "A")
        b = graph.create_task(OWNER, "B")
        barrier = threading.Barrier(2)
        results: list[str] = []
        guard = threading.Lock()

        def attempt(dependent_id: int, prerequisite_id: int) -> None:
            barrier.wait()
            try:
                graph.create_dependency(OWNER, dependent_id, prerequisite_id)
                outcome = "ok"
            except CircularDependencyError:
                outcome = "cycle"
            with guard:
                results.append(outcome)

        threads = [
            threading.Thread(target=attempt, args=(a.id, b.id)),
            threading.Thread(target=attempt, args=(b.id, a.id)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(results) == ["cycle", "ok"]
        edges = graph.list_dependencies(OWNER, dependent_task_id=a.id) + graph.list_dependencies(
            OWNER, dependent_task_id=b.id
        )
        assert len(edges) == 1


def test_parallel_writers_for_one_owner_all_commit(graph: TaskGraph) -> None:
    root = graph.create_task(OWNER, "root")
    errors: list[Exception] = []

    def worker(index: int) -> None:
        try:
            graph.create_task(OWNER, f"child {index}", parent_id=root.id)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert graph.count_descendants(OWNER, root.id) == 8


def test_store_contention_exhausts_retries(tmp_path: Path) -> None:
    store = GraphStore(
        tmp_path / "state",
        config=GraphConfig(busy_timeout_ms=0, conflict_retries=2),
    )
    graph = TaskGraph(store)
    graph.create_task(OWNER, "seed")

    blocker = sqlite3.connect(store.db_path, isolation_level=None)
    try:
        blocker.execute("BEGIN IMMEDIATE")
        with pytest.raises(ConflictError):
            graph.create_task(OWNER, "blocked")
        blocker.execute("ROLLBACK")
    finally:
        blocker.close()

    graph.create_task(OWNER, "after release")
    assert [t.title for t in graph.list_tasks(OWNER)] == ["seed", "after release"]


def test_owner_locks_are_per_owner() -> None:
    locks = OwnerLocks()
    lock_a = locks.for_owner("a")
    lock_b = locks.for_owner("b")

    assert locks.for_owner("a") is lock_a
    assert lock_a is not lock_b
    assert len(locks) == 2


def test_owner_locks_forget_idle_owners() -> None:
    locks = OwnerLocks()
    lock = locks.for_owner("a")
    assert len(locks) == 1

    del lock
    gc.collect()
    assert len(locks) == 0


def test_first_writers_on_fresh_store_for_many_owners(tmp_path: Path) -> None:
    for round_index in range(10):
        graph = TaskGraph(GraphStore(tmp_path / f"state-{round_index}"))
        barrier = threading.Barrier(8)
        errors: list[Exception] = []
        guard = threading.Lock()

        def worker(owner_id: str) -> None:
            barrier.wait()
            try:
                graph.create_task(owner_id, "first")
            except Exception as exc:
                with guard:
                    errors.append(exc)

        threads = [
            threading.Thread(target=worker, args=(f"owner-{i}",)) for i in range(8)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        for i in range(8):
            assert [t.title for t in graph.list_tasks(f"owner-{i}")] == ["first"]
