from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from .cascade import CascadeExecutor
from .config import GraphConfig, load_config
from .dependencies import DependencyManager, DependencySpec
from .hierarchy import HierarchyManager
from .models import DeletionCheck, Dependency, DependencyType, Gate, IncomingEdge, Task
from .readiness import ReadinessEvaluator
from .stores.graph import GraphStore
from .stores.state import resolve_state_dir
from .tasks import TaskService


@dataclass
class TaskGraph:
    """One owner-partitioned task graph: every component shares one store,
    one config and one lock registry."""

    store: GraphStore
    hierarchy: HierarchyManager = field(init=False)
    dependencies: DependencyManager = field(init=False)
    readiness: ReadinessEvaluator = field(init=False)
    cascade: CascadeExecutor = field(init=False)
    tasks: TaskService = field(init=False)

    def __post_init__(self) -> None:
        self.hierarchy = HierarchyManager(self.store)
        self.dependencies = DependencyManager(self.store)
        self.readiness = ReadinessEvaluator(self.store)
        self.cascade = CascadeExecutor(self.store)
        self.tasks = TaskService(self.store, self.hierarchy)

    @classmethod
    def from_workdir(
        cls,
        cwd: Path | None = None,
        *,
        create: bool = True,
    ) -> "TaskGraph":
        state_dir = resolve_state_dir(cwd, create=create)
        config = load_config(state_dir)
        return cls(GraphStore(state_dir, config=config, create_on_connect=create))

    @property
    def config(self) -> GraphConfig:
        return self.store.config

    # -- tasks --------------------------------------------------------------

    def create_task(
        self,
        owner_id: str,
        title: str,
        *,
        parent_id: int | None = None,
        completion_percentage: int = 0,
    ) -> Task:
        return self.tasks.create_task(
            owner_id,
            title,
            parent_id=parent_id,
            completion_percentage=completion_percentage,
        )

    def get_task(self, owner_id: str, task_id: int) -> Task:
        return self.tasks.get_task(owner_id, task_id)

    def list_tasks(
        self,
        owner_id: str,
        *,
        roots_only: bool = False,
        include_inactive: bool = False,
        limit: int | None = None,
    ) -> list[Task]:
        return self.tasks.list_tasks(
            owner_id,
            roots_only=roots_only,
            include_inactive=include_inactive,
            limit=limit,
        )

    def update_progress(
        self, owner_id: str, task_id: int, completion_percentage: int
    ) -> Task:
        return self.tasks.update_progress(owner_id, task_id, completion_percentage)

    def complete_task(
        self, owner_id: str, task_id: int, *, completed: bool = True
    ) -> Task:
        return self.tasks.complete_task(owner_id, task_id, completed=completed)

    def delete_task(self, owner_id: str, task_id: int) -> list[int]:
        return self.cascade.soft_delete(owner_id, task_id)

    # -- hierarchy ----------------------------------------------------------

    def set_parent(self, owner_id: str, task_id: int, parent_id: int | None) -> Task:
        return self.hierarchy.set_parent(owner_id, task_id, parent_id)

    def remove_parent(self, owner_id: str, task_id: int) -> Task:
        return self.hierarchy.remove_parent(owner_id, task_id)

    def depth_of(self, owner_id: str, task_id: int) -> int:
        return self.hierarchy.depth_of(owner_id, task_id)

    def list_children(self, owner_id: str, task_id: int) -> list[Task]:
        return self.hierarchy.list_children(owner_id, task_id)

    def count_descendants(self, owner_id: str, task_id: int) -> int:
        return self.hierarchy.count_descendants(owner_id, task_id)

    def deletion_check(self, owner_id: str, task_id: int) -> DeletionCheck:
        return self.hierarchy.deletion_check(owner_id, task_id)

    # -- dependencies -------------------------------------------------------

    def create_dependency(
        self,
        owner_id: str,
        dependent_task_id: int,
        prerequisite_task_id: int,
        dependency_type: DependencyType | str = DependencyType.FINISH_TO_START,
        description: str | None = None,
    ) -> Dependency:
        return self.dependencies.create_dependency(
            owner_id,
            dependent_task_id,
            prerequisite_task_id,
            dependency_type,
            description,
        )

    def update_dependency(
        self,
        owner_id: str,
        dependency_id: int,
        *,
        dependency_type: DependencyType | str | None = None,
        description: str | None = None,
        clear_description: bool = False,
    ) -> Dependency:
        return self.dependencies.update_dependency(
            owner_id,
            dependency_id,
            dependency_type=dependency_type,
            description=description,
            clear_description=clear_description,
        )

    def delete_dependency(self, owner_id: str, dependency_id: int) -> bool:
        return self.dependencies.delete_dependency(owner_id, dependency_id)

    def get_dependency(self, owner_id: str, dependency_id: int) -> Dependency:
        return self.dependencies.get_dependency(owner_id, dependency_id)

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
        return self.dependencies.list_dependencies(
            owner_id,
            dependent_task_id=dependent_task_id,
            prerequisite_task_id=prerequisite_task_id,
            dependency_type=dependency_type,
            sort_by=sort_by,
            ascending=ascending,
        )

    def list_prerequisites(self, owner_id: str, task_id: int) -> list[Dependency]:
        return self.dependencies.list_prerequisites(owner_id, task_id)

    def list_dependents(self, owner_id: str, task_id: int) -> list[Dependency]:
        return self.dependencies.list_dependents(owner_id, task_id)

    def create_dependencies(
        self, owner_id: str, specs: Iterable[DependencySpec]
    ) -> list[Dependency]:
        return self.dependencies.create_dependencies(owner_id, specs)

    def delete_dependencies(self, owner_id: str, dependency_ids: Iterable[int]) -> int:
        return self.dependencies.delete_dependencies(owner_id, dependency_ids)

    # -- readiness ----------------------------------------------------------

    def is_blocked(self, owner_id: str, task_id: int) -> bool:
        return self.readiness.is_blocked(owner_id, task_id)

    def can_start(self, owner_id: str, task_id: int) -> bool:
        return self.readiness.can_start(owner_id, task_id)

    def can_finish(self, owner_id: str, task_id: int) -> bool:
        return self.readiness.can_finish(owner_id, task_id)

    def blockers(
        self, owner_id: str, task_id: int, *, gate: Gate = Gate.START
    ) -> list[IncomingEdge]:
        return self.readiness.blockers(owner_id, task_id, gate=gate)
