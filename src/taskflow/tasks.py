from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass

from .errors import NotFoundError
from .hierarchy import HierarchyManager
from .models import Task
from .stores.graph import GraphStore

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200


def _check_title(title: str) -> str:
    cleaned = str(title).strip()
    if not cleaned:
        raise ValueError("title is required")
    if len(cleaned) > MAX_TITLE_LENGTH:
        raise ValueError(f"title must be at most {MAX_TITLE_LENGTH} characters")
    return cleaned


def _check_percentage(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("completion percentage must be an integer")
    if value < 0 or value > 100:
        raise ValueError(f"completion percentage must be between 0 and 100 (got {value})")
    return value


@dataclass
class TaskService:
    """Task lifecycle around the graph: creation, lookup and completion state."""

    store: GraphStore
    hierarchy: HierarchyManager

    def create_task(
        self,
        owner_id: str,
        title: str,
        *,
        parent_id: int | None = None,
        completion_percentage: int = 0,
    ) -> Task:
        title = _check_title(title)
        completion_percentage = _check_percentage(completion_percentage)
        limit = self.store.config.max_tasks_per_user

        def operation(conn: sqlite3.Connection) -> Task:
            if self.store.count_active_tasks(conn, owner_id) >= limit:
                raise ValueError(f"task limit reached ({limit} active tasks)")
            if parent_id is not None:
                self.hierarchy.validate_parent(conn, owner_id, parent_id)
            task_id = self.store.insert_task(
                conn,
                owner_id=owner_id,
                title=title,
                parent_id=parent_id,
                completion_percentage=completion_percentage,
            )
            task = self.store.fetch_task(conn, owner_id, task_id)
            if task is None:
                raise RuntimeError("created task could not be loaded")
            return task

        task = self.store.write(owner_id, operation)
        logger.info("created task %s owner=%s parent=%s", task.id, owner_id, parent_id)
        return task

    def get_task(self, owner_id: str, task_id: int) -> Task:
        with self.store.read() as conn:
            task = self.store.fetch_task(conn, owner_id, task_id)
        if task is None:
            raise NotFoundError(f"task not found: {task_id}")
        return task

    def list_tasks(
        self,
        owner_id: str,
        *,
        roots_only: bool = False,
        include_inactive: bool = False,
        limit: int | None = None,
    ) -> list[Task]:
        with self.store.read() as conn:
            return self.store.list_tasks(
                conn,
                owner_id,
                roots_only=roots_only,
                include_inactive=include_inactive,
                limit=limit,
            )

    def _set_percentage(
        self, owner_id: str, task_id: int, resolve: Callable[[Task], int]
    ) -> Task:
        def operation(conn: sqlite3.Connection) -> Task:
            task = self.store.fetch_task(conn, owner_id, task_id, active_only=True)
            if task is None:
                raise NotFoundError(f"task not found: {task_id}")
            self.store.update_completion(conn, task.id, resolve(task))
            updated = self.store.fetch_task(conn, owner_id, task.id)
            if updated is None:
                raise RuntimeError("updated task could not be loaded")
            return updated

        return self.store.write(owner_id, operation)

    def update_progress(
        self, owner_id: str, task_id: int, completion_percentage: int
    ) -> Task:
        """Set progress; reaching 100 completes the task, dropping below reopens it."""
        value = _check_percentage(completion_percentage)
        task = self._set_percentage(owner_id, task_id, lambda _task: value)
        logger.info("task %s owner=%s progress=%d", task_id, owner_id, value)
        return task

    def complete_task(
        self, owner_id: str, task_id: int, *, completed: bool = True
    ) -> Task:
        """Mark done (100%) or reopen. Reopening a 100% task resets it to 0%,
        a partially done task keeps its progress."""

        def resolve(task: Task) -> int:
            if completed:
                return 100
            return 0 if task.completion_percentage >= 100 else task.completion_percentage

        task = self._set_percentage(owner_id, task_id, resolve)
        logger.info(
            "task %s owner=%s %s",
            task_id,
            owner_id,
            "completed" if completed else "reopened",
        )
        return task
