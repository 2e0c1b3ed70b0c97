"""Single-parent subtask tree over ``tasks.parent_id``.

The tree is never materialized; every check walks ``parent_id`` pointers
inside the caller's transaction. Walks carry an explicit iteration cap
(``GraphConfig.ancestor_walk_cap``) that is independent of the depth limit, so
a corrupted store produces :class:`GraphCorruptionError` instead of a hang.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from .config import GraphConfig
from .errors import (
    CircularReferenceError,
    DepthExceededError,
    GraphCorruptionError,
    GraphError,
    NotFoundError,
    SelfReferenceError,
)
from .models import DeletionCheck, Task
from .stores.graph import GraphStore

logger = logging.getLogger(__name__)


@dataclass
class HierarchyManager:
    store: GraphStore

    @property
    def config(self) -> GraphConfig:
        return self.store.config

    # -- traversal ----------------------------------------------------------

    def _ancestor_links(
        self,
        conn: sqlite3.Connection,
        start_id: int,
        *,
        forbidden_id: int | None = None,
    ) -> int:
        """Number of parent links from ``start_id`` up to its root.

        Raises :class:`CircularReferenceError` when ``forbidden_id`` is met on
        the way up (``start_id`` itself included).
        """
        cap = self.config.ancestor_walk_cap
        seen: set[int] = set()
        current = start_id
        links = 0
        for _ in range(cap):
            if forbidden_id is not None and current == forbidden_id:
                raise CircularReferenceError(
                    f"task {forbidden_id} is an ancestor of task {start_id}; "
                    "the move would create a cycle"
                )
            if current in seen:
                logger.error("parent cycle detected at task %s", current)
                raise GraphCorruptionError(
                    f"parent chain of task {start_id} loops back to task {current}"
                )
            seen.add(current)
            parent_id = self.store.parent_id_of(conn, current)
            if parent_id is None:
                return links
            links += 1
            current = parent_id

        logger.error("ancestor walk from task %s exceeded %d steps", start_id, cap)
        raise GraphCorruptionError(
            f"ancestor walk from task {start_id} exceeded {cap} steps"
        )

    def _subtree_height(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        task_id: int,
    ) -> int:
        """Levels below ``task_id``, counting soft-deleted descendants too."""
        cap = self.config.ancestor_walk_cap
        seen: set[int] = {task_id}
        level: list[int] = [task_id]
        height = 0
        while True:
            next_level: list[int] = []
            for node_id in level:
                for child_id in self.store.child_ids(
                    conn, owner_id, node_id, active_only=False
                ):
                    if child_id in seen:
                        logger.error("parent cycle detected below task %s", task_id)
                        raise GraphCorruptionError(
                            f"subtree of task {task_id} revisits task {child_id}"
                        )
                    seen.add(child_id)
                    next_level.append(child_id)
            if not next_level:
                return height
            height += 1
            if height > cap:
                logger.error("subtree walk from task %s exceeded %d levels", task_id, cap)
                raise GraphCorruptionError(
                    f"subtree of task {task_id} is deeper than {cap} levels"
                )
            level = next_level

    def validate_parent(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        parent_id: int,
        *,
        task_id: int | None = None,
    ) -> Task:
        """Check that ``task_id`` (or a new task when ``None``) may hang below
        ``parent_id``. Returns the parent row."""
        if task_id is not None and parent_id == task_id:
            raise SelfReferenceError(f"task {task_id} cannot be its own parent")

        parent = self.store.fetch_task(conn, owner_id, parent_id, active_only=True)
        if parent is None:
            raise NotFoundError(f"parent task not found: {parent_id}")

        parent_links = self._ancestor_links(conn, parent.id, forbidden_id=task_id)
        height = 0
        if task_id is not None:
            height = self._subtree_height(conn, owner_id, task_id)

        max_depth = self.config.max_depth
        deepest = parent_links + 1 + height
        if deepest > max_depth:
            raise DepthExceededError(
                f"task hierarchy cannot be deeper than {max_depth} levels "
                f"(parent {parent.id} is at depth {parent_links}"
                + (f", moved subtree adds {height + 1}" if task_id is not None else "")
                + ")"
            )
        return parent

    # -- operations ---------------------------------------------------------

    def set_parent(
        self,
        owner_id: str,
        task_id: int,
        new_parent_id: int | None,
    ) -> Task:
        """Attach ``task_id`` below ``new_parent_id``, or detach it with ``None``."""

        def operation(conn: sqlite3.Connection) -> Task:
            if new_parent_id is not None and new_parent_id == task_id:
                raise SelfReferenceError(f"task {task_id} cannot be its own parent")
            task = self.store.fetch_task(conn, owner_id, task_id, active_only=True)
            if task is None:
                raise NotFoundError(f"task not found: {task_id}")
            if new_parent_id is not None:
                self.validate_parent(conn, owner_id, new_parent_id, task_id=task.id)
            self.store.update_parent(conn, task.id, new_parent_id)
            updated = self.store.fetch_task(conn, owner_id, task.id)
            if updated is None:
                raise RuntimeError("updated task could not be loaded")
            return updated

        try:
            task = self.store.write(owner_id, operation)
        except GraphError as exc:
            logger.info(
                "rejected set_parent owner=%s task=%s parent=%s: %s",
                owner_id,
                task_id,
                new_parent_id,
                exc,
            )
            raise
        logger.info(
            "set parent owner=%s task=%s parent=%s", owner_id, task_id, new_parent_id
        )
        return task

    def remove_parent(self, owner_id: str, task_id: int) -> Task:
        return self.set_parent(owner_id, task_id, None)

    def _require_task(
        self, conn: sqlite3.Connection, owner_id: str, task_id: int
    ) -> Task:
        task = self.store.fetch_task(conn, owner_id, task_id)
        if task is None:
            raise NotFoundError(f"task not found: {task_id}")
        return task

    def depth_of(self, owner_id: str, task_id: int) -> int:
        with self.store.read() as conn:
            task = self._require_task(conn, owner_id, task_id)
            return self._ancestor_links(conn, task.id)

    def list_children(self, owner_id: str, task_id: int) -> list[Task]:
        with self.store.read() as conn:
            task = self._require_task(conn, owner_id, task_id)
            return self.store.child_tasks(conn, owner_id, task.id)

    def _active_descendant_ids(
        self, conn: sqlite3.Connection, owner_id: str, task_id: int
    ) -> list[int]:
        cap = self.config.ancestor_walk_cap
        found: list[int] = []
        seen: set[int] = {task_id}
        level = [task_id]
        depth = 0
        while level:
            depth += 1
            if depth > cap:
                logger.error("descendant walk from task %s exceeded %d levels", task_id, cap)
                raise GraphCorruptionError(
                    f"subtree of task {task_id} is deeper than {cap} levels"
                )
            next_level: list[int] = []
            for node_id in level:
                for child_id in self.store.child_ids(conn, owner_id, node_id):
                    if child_id in seen:
                        raise GraphCorruptionError(
                            f"subtree of task {task_id} revisits task {child_id}"
                        )
                    seen.add(child_id)
                    found.append(child_id)
                    next_level.append(child_id)
            level = next_level
        return found

    def count_descendants(self, owner_id: str, task_id: int) -> int:
        with self.store.read() as conn:
            task = self._require_task(conn, owner_id, task_id)
            return len(self._active_descendant_ids(conn, owner_id, task.id))

    def deletion_check(self, owner_id: str, task_id: int) -> DeletionCheck:
        """Describe what soft-deleting ``task_id`` would take down with it."""
        with self.store.read() as conn:
            task = self.store.fetch_task(conn, owner_id, task_id, active_only=True)
            if task is None:
                raise NotFoundError(f"task not found: {task_id}")
            subtask_count = len(self.store.child_ids(conn, owner_id, task.id))
            descendant_count = len(self._active_descendant_ids(conn, owner_id, task.id))
            dependents = self.store.query_dependencies(
                conn, owner_id, prerequisite_task_id=task.id
            )

        warnings: list[str] = []
        if subtask_count > 0:
            warnings.append(
                f"task has {subtask_count} subtask(s); deleting it also deletes "
                f"all {descendant_count} descendant task(s)"
            )
        if dependents and not task.is_completed:
            warnings.append(
                f"task is an unfinished prerequisite of {len(dependents)} "
                "dependency edge(s); those dependents stay blocked after deletion"
            )
        return DeletionCheck(
            task_id=task.id,
            can_delete=True,
            subtask_count=subtask_count,
            descendant_count=descendant_count,
            warnings=tuple(warnings),
        )
