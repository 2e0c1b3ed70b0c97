from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Gate(str, Enum):
    """Which transition of the dependent task an edge constrains."""

    START = "start"
    FINISH = "finish"


class DependencyType(str, Enum):
    FINISH_TO_START = "FinishToStart"
    START_TO_START = "StartToStart"
    FINISH_TO_FINISH = "FinishToFinish"
    START_TO_FINISH = "StartToFinish"

    @classmethod
    def parse(cls, value: object) -> "DependencyType":
        """Accept an enum member, its value, its name, or the legacy ordinal."""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValueError(f"invalid dependency type: {value!r}")
        members = list(cls)
        if isinstance(value, int):
            if 0 <= value < len(members):
                return members[value]
            raise ValueError(f"invalid dependency type: {value!r}")
        text = str(value).strip()
        if text.isdigit():
            return cls.parse(int(text))
        key = text.replace("_", "").replace("-", "").lower()
        for member in members:
            if key in (member.value.lower(), member.name.replace("_", "").lower()):
                return member
        choices = ", ".join(member.value for member in members)
        raise ValueError(f"invalid dependency type: {value!r} (expected one of: {choices})")

    @property
    def gate(self) -> Gate:
        if self in (DependencyType.FINISH_TO_START, DependencyType.START_TO_START):
            return Gate.START
        if self in (DependencyType.FINISH_TO_FINISH, DependencyType.START_TO_FINISH):
            return Gate.FINISH
        raise AssertionError(f"unhandled dependency type: {self!r}")

    def is_satisfied(self, *, completed: bool, started: bool) -> bool:
        """Whether a prerequisite in the given state releases this edge's gate."""
        if self in (DependencyType.FINISH_TO_START, DependencyType.FINISH_TO_FINISH):
            return completed
        if self in (DependencyType.START_TO_START, DependencyType.START_TO_FINISH):
            return started
        raise AssertionError(f"unhandled dependency type: {self!r}")


DEPENDENCY_TYPE_CHOICES = tuple(member.value for member in DependencyType)


@dataclass(frozen=True)
class Task:
    id: int
    owner_id: str
    title: str
    parent_id: int | None
    is_completed: bool
    is_active: bool
    completion_percentage: int
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Task":
        return cls(
            id=int(row["id"]),
            owner_id=str(row["owner_id"]),
            title=str(row["title"]),
            parent_id=(int(row["parent_id"]) if row["parent_id"] is not None else None),
            is_completed=bool(row["is_completed"]),
            is_active=bool(row["is_active"]),
            completion_percentage=int(row["completion_percentage"]),
            created_at=int(row["created_at"]),
            updated_at=int(row["updated_at"]),
        )

    @property
    def is_started(self) -> bool:
        # Untouched tasks sit at 0% and are not completed.
        return self.is_completed or self.completion_percentage > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "title": self.title,
            "parent_id": self.parent_id,
            "is_completed": self.is_completed,
            "is_active": self.is_active,
            "completion_percentage": self.completion_percentage,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class Dependency:
    id: int
    owner_id: str
    dependent_task_id: int
    prerequisite_task_id: int
    dependency_type: DependencyType
    description: str | None
    is_active: bool
    created_at: int
    updated_at: int
    dependent_title: str = ""
    prerequisite_title: str = ""
    prerequisite_completed: bool = False
    prerequisite_started: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Dependency":
        completed = bool(row["prerequisite_completed"])
        return cls(
            id=int(row["id"]),
            owner_id=str(row["owner_id"]),
            dependent_task_id=int(row["dependent_task_id"]),
            prerequisite_task_id=int(row["prerequisite_task_id"]),
            dependency_type=DependencyType(str(row["dependency_type"])),
            description=(
                str(row["description"]) if row["description"] is not None else None
            ),
            is_active=bool(row["is_active"]),
            created_at=int(row["created_at"]),
            updated_at=int(row["updated_at"]),
            dependent_title=str(row["dependent_title"]),
            prerequisite_title=str(row["prerequisite_title"]),
            prerequisite_completed=completed,
            prerequisite_started=completed or int(row["prerequisite_percentage"]) > 0,
        )

    def as_edge(self) -> "IncomingEdge":
        return IncomingEdge(
            dependency_id=self.id,
            prerequisite_task_id=self.prerequisite_task_id,
            dependency_type=self.dependency_type,
            prerequisite_completed=self.prerequisite_completed,
            prerequisite_started=self.prerequisite_started,
        )

    @property
    def blocks_start(self) -> bool:
        return self.as_edge().blocks(Gate.START)

    @property
    def blocks_finish(self) -> bool:
        return self.as_edge().blocks(Gate.FINISH)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "dependent_task_id": self.dependent_task_id,
            "dependent_title": self.dependent_title,
            "prerequisite_task_id": self.prerequisite_task_id,
            "prerequisite_title": self.prerequisite_title,
            "dependency_type": self.dependency_type.value,
            "description": self.description,
            "is_active": self.is_active,
            "prerequisite_completed": self.prerequisite_completed,
            "blocks_start": self.blocks_start,
            "blocks_finish": self.blocks_finish,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class IncomingEdge:
    """An active dependency edge joined with its prerequisite's current state."""

    dependency_id: int
    prerequisite_task_id: int
    dependency_type: DependencyType
    prerequisite_completed: bool
    prerequisite_started: bool

    def blocks(self, gate: Gate) -> bool:
        if self.dependency_type.gate is not gate:
            return False
        return not self.dependency_type.is_satisfied(
            completed=self.prerequisite_completed,
            started=self.prerequisite_started,
        )


@dataclass(frozen=True)
class DeletionCheck:
    task_id: int
    can_delete: bool
    subtask_count: int
    descendant_count: int
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "can_delete": self.can_delete,
            "subtask_count": self.subtask_count,
            "descendant_count": self.descendant_count,
            "warnings": list(self.warnings),
        }
