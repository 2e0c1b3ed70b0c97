from __future__ import annotations

import logging
import sqlite3
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass

from .config import GraphConfig
from .errors import (
    CircularDependencyError,
    DuplicateDependencyError,
    GraphCorruptionError,
    GraphError,
    NotFoundError,
    SelfReferenceError,
)
from .models import Dependency, DependencyType
from .stores.graph import GraphStore

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 500


@dataclass(frozen=True)
class DependencySpec:
    """One requested edge for :meth:`DependencyManager.create_dependencies`."""

    dependent_task_id: int
    prerequisite_task_id: int
    dependency_type: DependencyType | str = DependencyType.FINISH_TO_START
    description: str | None = None


def _check_description(description: str | None) -> str | None:
    if description is None:
        return None
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValueError(
            f"description must be at most {MAX_DESCRIPTION_LENGTH} characters"
        )
    return description


@dataclass
class DependencyManager:
    store: GraphStore

    @property
    def config(self) -> GraphConfig:
        return self.store.config

    def _reaches(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        *,
        start_id: int,
        target_id: int,
    ) -> bool:
        """Whether ``target_id`` is a transitive prerequisite of ``start_id``.

        BFS over the owner's active edges read as dependent -> prerequisite.
        Edge expansions are bounded by the number of active edges.
        """
        edges = self.store.active_edges(conn, owner_id)
        prerequisites: dict[int, list[int]] = {}
        for dependent_id, prerequisite_id in edges:
            prerequisites.setdefault(dependent_id, []).append(prerequisite_id)

        budget = len(edges)
        expansions = 0
        seen = {start_id}
        queue = deque([start_id])
        while queue:
            node = queue.popleft()
            if node == target_id:
                return True
            for nxt in prerequisites.get(node, ()):
                expansions += 1
                if expansions > budget:
                    logger.error(
                        "dependency walk for owner=%s exceeded %d expansions",
                        owner_id,
                        budget,
                    )
                    raise GraphCorruptionError(
                        f"dependency walk from task {start_id} exceeded "
                        f"{budget} edge expansions"
                    )
                if nxt in seen:
                    continue
                seen.add(nxt)
                queue.append(nxt)
        return False

    def create_dependency(
        self,
        owner_id: str,
        dependent_task_id: int,
        prerequisite_task_id: int,
        dependency_type: DependencyType | str = DependencyType.FINISH_TO_START,
        description: str | None = None,
    ) -> Dependency:
        """Add the edge "``dependent_task_id`` waits on ``prerequisite_task_id``"."""
        dep_type = DependencyType.parse(dependency_type)
        description = _check_description(description)

        def operation(conn: sqlite3.Connection) -> Dependency:
            if dependent_task_id == prerequisite_task_id:
                raise SelfReferenceError(
                    f"task {dependent_task_id} cannot depend on itself"
                )
            for role, task_id in (
                ("dependent", dependent_task_id),
                ("prerequisite", prerequisite_task_id),
            ):
                if self.store.fetch_task(conn, owner_id, task_id, active_only=True) is None:
                    raise NotFoundError(f"{role} task not found: {task_id}")

            if self.store.active_edge_exists(
                conn, owner_id, dependent_task_id, prerequisite_task_id
            ):
                raise DuplicateDependencyError(
                    f"task {dependent_task_id} already depends on task "
                    f"{prerequisite_task_id}"
                )
            if self._reaches(
                conn,
                owner_id,
                start_id=prerequisite_task_id,
                target_id=dependent_task_id,
            ):
                raise CircularDependencyError(
                    f"task {prerequisite_task_id} already depends on task "
                    f"{dependent_task_id}; the new edge would create a cycle"
                )

            dependency_id = self.store.insert_dependency(
                conn,
                owner_id=owner_id,
                dependent_task_id=dependent_task_id,
                prerequisite_task_id=prerequisite_task_id,
                dependency_type=dep_type,
                description=description,
            )
            created = self.store.fetch_dependency(conn, owner_id, dependency_id)
            if created is None:
                raise RuntimeError("created dependency could not be loaded")
            return created

        try:
            dependency = self.store.write(owner_id, operation)
        except GraphError as exc:
            logger.info(
                "rejected dependency owner=%s %s -> %s: %s",
                owner_id,
                dependent_task_id,
                prerequisite_task_id,
                exc,
            )
            raise
        logger.info(
            "created dependency %s owner=%s %s -> %s (%s)",
            dependency.id,
            owner_id,
            dependent_task_id,
            prerequisite_task_id,
            dep_type.value,
        )
        return dependency

    def update_dependency(
        self,
        owner_id: str,
        dependency_id: int,
        *,
        dependency_type: DependencyType | str | None = None,
        description: str | None = None,
        clear_description: bool = False,
    ) -> Dependency:
        """Change type and/or description. Endpoints are immutable, so the
        graph invariants cannot be affected and nothing is re-validated.

        ``description=None`` leaves the note alone; ``clear_description``
        removes it.
        """
        dep_type = (
            DependencyType.parse(dependency_type) if dependency_type is not None else None
        )
        if clear_description and description is not None:
            raise ValueError("cannot set and clear the description at once")
        description = _check_description(description)

        def operation(conn: sqlite3.Connection) -> Dependency:
            current = self.store.fetch_dependency(conn, owner_id, dependency_id)
            if current is None:
                raise NotFoundError(f"dependency not found: {dependency_id}")
            if dep_type is not None or description is not None or clear_description:
                self.store.update_dependency_fields(
                    conn,
                    current.id,
                    dependency_type=dep_type,
                    description=description,
                    clear_description=clear_description,
                )
            updated = self.store.fetch_dependency(conn, owner_id, current.id)
            if updated is None:
                raise RuntimeError("updated dependency could not be loaded")
            return updated

        dependency = self.store.write(owner_id, operation)
        logger.info("updated dependency %s owner=%s", dependency_id, owner_id)
        return dependency

    def delete_dependency(self, owner_id: str, dependency_id: int) -> bool:
        """Deactivate one edge. ``False`` when it is missing or not owned."""

        def operation(conn: sqlite3.Connection) -> bool:
            current = self.store.fetch_dependency(conn, owner_id, dependency_id)
            if current is None:
                return False
            self.store.deactivate_dependency(conn, current.id)
            return True

        deleted = self.store.write(owner_id, operation)
        if deleted:
            logger.info("deleted dependency %s owner=%s", dependency_id, owner_id)
        return deleted

    def get_dependency(self, owner_id: str, dependency_id: int) -> Dependency:
        with self.store.read() as conn:
            dependency = self.store.fetch_dependency(conn, owner_id, dependency_id)
        if dependency is None:
            raise NotFoundError(f"dependency not found: {dependency_id}")
        return dependency

    def list_dependencies(
        self,
        owner_id: str,
        *,
        dependent_task_id: int | None = None,
        prerequisite_task_id: int | None = None,
        dependency_type: DependencyType | str | None = None,
        sort_by: str = "created_at",
        ascending: bool = False,
    ) -> list[Dependency]:
        dep_type = (
            DependencyType.parse(dependency_type) if dependency_type is not None else None
        )
        with self.store.read() as conn:
            return self.store.query_dependencies(
                conn,
                owner_id,
                dependent_task_id=dependent_task_id,
                prerequisite_task_id=prerequisite_task_id,
                dependency_type=dep_type,
                sort_by=sort_by,
                ascending=ascending,
            )

    def _adjacent(self, owner_id: str, task_id: int, *, as_dependent: bool) -> list[Dependency]:
        with self.store.read() as conn:
            if self.store.fetch_task(conn, owner_id, task_id) is None:
                raise NotFoundError(f"task not found: {task_id}")
            if as_dependent:
                return self.store.query_dependencies(
                    conn, owner_id, dependent_task_id=task_id, ascending=True
                )
            return self.store.query_dependencies(
                conn, owner_id, prerequisite_task_id=task_id, ascending=True
            )

    def list_prerequisites(self, owner_id: str, task_id: int) -> list[Dependency]:
        """Active edges that ``task_id`` waits on."""
        return self._adjacent(owner_id, task_id, as_dependent=True)

    def list_dependents(self, owner_id: str, task_id: int) -> list[Dependency]:
        """Active edges that wait on ``task_id``."""
        return self._adjacent(owner_id, task_id, as_dependent=False)

    # -- bulk ---------------------------------------------------------------

    def create_dependencies(
        self, owner_id: str, specs: Iterable[DependencySpec]
    ) -> list[Dependency]:
        """Create each edge in its own transaction; rejected ones are skipped."""
        created: list[Dependency] = []
        for spec in specs:
            try:
                created.append(
                    self.create_dependency(
                        owner_id,
                        spec.dependent_task_id,
                        spec.prerequisite_task_id,
                        spec.dependency_type,
                        spec.description,
                    )
                )
            except ValueError as exc:
                logger.warning(
                    "skipped dependency owner=%s %s -> %s: %s",
                    owner_id,
                    spec.dependent_task_id,
                    spec.prerequisite_task_id,
                    exc,
                )
        return created

    def delete_dependencies(self, owner_id: str, dependency_ids: Iterable[int]) -> int:
        deleted = 0
        for dependency_id in dependency_ids:
            try:
                if self.delete_dependency(owner_id, dependency_id):
                    deleted += 1
                else:
                    logger.warning(
                        "skipped delete of dependency %s owner=%s: not found",
                        dependency_id,
                        owner_id,
                    )
            except GraphError as exc:
                logger.warning(
                    "skipped delete of dependency %s owner=%s: %s",
                    dependency_id,
                    owner_id,
                    exc,
                )
        return deleted
