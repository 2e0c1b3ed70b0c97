from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, TypeVar

from ..config import GraphConfig
from ..errors import ConflictError
from ..locks import OwnerLocks
from ..models import Dependency, DependencyType, IncomingEdge, Task
from .state import graph_db_path, now_ms, resolve_state_dir

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEPENDENCY_SORT_KEYS = (
    "created_at",
    "dependent_task_id",
    "prerequisite_task_id",
    "dependency_type",
)

# Spellings accepted for each sort key, compared without "_" and case.
_SORT_ALIASES = {key.replace("_", ""): key for key in DEPENDENCY_SORT_KEYS} | {
    "dependent": "dependent_task_id",
    "prerequisite": "prerequisite_task_id",
    "type": "dependency_type",
}

_RETRY_BACKOFF_SECONDS = 0.05

_SCHEMA = """
PRAGMA journal_mode=WAL;
CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    parent_id INTEGER,
    title TEXT NOT NULL,
    is_completed INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    completion_percentage INTEGER NOT NULL DEFAULT 0,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    FOREIGN KEY(parent_id) REFERENCES tasks(id)
);
CREATE TABLE IF NOT EXISTS task_dependencies (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    dependent_task_id INTEGER NOT NULL,
    prerequisite_task_id INTEGER NOT NULL,
    dependency_type TEXT NOT NULL,
    description TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    FOREIGN KEY(dependent_task_id) REFERENCES tasks(id),
    FOREIGN KEY(prerequisite_task_id) REFERENCES tasks(id)
);
CREATE INDEX IF NOT EXISTS idx_tasks_owner_active ON tasks(owner_id, is_active);
CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(parent_id, is_active);
CREATE INDEX IF NOT EXISTS idx_deps_owner_active ON task_dependencies(owner_id, is_active);
CREATE INDEX IF NOT EXISTS idx_deps_dependent ON task_dependencies(dependent_task_id, is_active);
CREATE INDEX IF NOT EXISTS idx_deps_prerequisite ON task_dependencies(prerequisite_task_id, is_active);
"""

_TASK_COLUMNS = """
    id, owner_id, parent_id, title, is_completed, is_active,
    completion_percentage, created_at, updated_at
"""

_DEPENDENCY_SELECT = """
    SELECT
        d.id, d.owner_id, d.dependent_task_id, d.prerequisite_task_id,
        d.dependency_type, d.description, d.is_active, d.created_at, d.updated_at,
        dt.title AS dependent_title,
        pt.title AS prerequisite_title,
        pt.is_completed AS prerequisite_completed,
        pt.completion_percentage AS prerequisite_percentage
    FROM task_dependencies d
    JOIN tasks dt ON dt.id = d.dependent_task_id
    JOIN tasks pt ON pt.id = d.prerequisite_task_id
"""


def resolve_sort_key(sort_by: str | None) -> str:
    """Map a sort spelling onto a column; anything unrecognized sorts by creation."""
    raw = (sort_by or "").strip()
    key = _SORT_ALIASES.get(raw.replace("_", "").lower())
    if key is None:
        if raw:
            logger.debug("unknown dependency sort key %r, using created_at", raw)
        return "created_at"
    return key


def _is_busy(exc: sqlite3.OperationalError) -> bool:
    text = str(exc).lower()
    return "database is locked" in text or "database is busy" in text


@dataclass
class GraphStore:
    """SQLite-backed task graph: tasks (nodes), ``parent_id`` (tree edges)
    and ``task_dependencies`` (DAG edges).

    Mutations go through :meth:`write`, which serializes one owner's writers
    behind a process-local lock and runs the whole check-then-write callback in
    a single ``BEGIN IMMEDIATE`` transaction. Reads use :meth:`read` and only
    ever see committed state.
    """

    root: Path
    config: GraphConfig = field(default_factory=GraphConfig)
    locks: OwnerLocks = field(default_factory=OwnerLocks)
    create_on_connect: bool = True
    _schema_ready: bool = field(default=False, init=False, repr=False)
    _schema_lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False
    )

    @classmethod
    def from_workdir(
        cls,
        cwd: Path | None = None,
        *,
        config: GraphConfig | None = None,
        create: bool = True,
    ) -> "GraphStore":
        return cls(
            resolve_state_dir(cwd, create=create),
            config=config or GraphConfig(),
            create_on_connect=create,
        )

    @property
    def db_path(self) -> Path:
        return graph_db_path(self.root)

    def _connect(self) -> sqlite3.Connection:
        if self.create_on_connect:
            self.root.mkdir(parents=True, exist_ok=True)
        elif not self.db_path.exists():
            raise FileNotFoundError(str(self.db_path))
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.config.busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys=ON")
            self._ensure_schema(conn)
        except BaseException:
            conn.close()
            raise
        return conn

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        # Switching to WAL needs the database to itself; first callers queue here.
        if self._schema_ready:
            return
        with self._schema_lock:
            if self._schema_ready:
                return
            conn.executescript(_SCHEMA)
            self._migrate_schema(conn)
            self._schema_ready = True

    def _migrate_schema(self, conn: sqlite3.Connection) -> None:
        dependency_columns = {
            str(row["name"])
            for row in conn.execute("PRAGMA table_info(task_dependencies)").fetchall()
        }
        if "description" not in dependency_columns:
            conn.execute("ALTER TABLE task_dependencies ADD COLUMN description TEXT")

    # -- transactions -------------------------------------------------------

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    def write(self, owner_id: str, operation: Callable[[sqlite3.Connection], T]) -> T:
        """Run ``operation`` atomically for one owner's graph.

        Only store busy/locked errors are retried, up to
        ``config.conflict_retries`` attempts; exhausting them raises
        :class:`ConflictError`. Everything ``operation`` raises is propagated
        after rollback.
        """
        attempts = self.config.conflict_retries
        lock = self.locks.for_owner(owner_id)
        for attempt in range(1, attempts + 1):
            with lock:
                conn: sqlite3.Connection | None = None
                try:
                    conn = self._connect()
                    conn.execute("BEGIN IMMEDIATE")
                    result = operation(conn)
                    conn.execute("COMMIT")
                    return result
                except sqlite3.OperationalError as exc:
                    if conn is not None and conn.in_transaction:
                        conn.rollback()
                    if not _is_busy(exc):
                        raise
                    logger.warning(
                        "store busy for owner=%s (attempt %d/%d): %s",
                        owner_id,
                        attempt,
                        attempts,
                        exc,
                    )
                except BaseException:
                    if conn is not None and conn.in_transaction:
                        conn.rollback()
                    raise
                finally:
                    if conn is not None:
                        conn.close()
            if attempt < attempts:
                time.sleep(_RETRY_BACKOFF_SECONDS * attempt)

        logger.error("giving up after %d busy attempts for owner=%s", attempts, owner_id)
        raise ConflictError(
            f"graph for owner {owner_id} is being modified concurrently; "
            f"gave up after {attempts} attempts"
        )

    # -- tasks --------------------------------------------------------------

    def insert_task(
        self,
        conn: sqlite3.Connection,
        *,
        owner_id: str,
        title: str,
        parent_id: int | None = None,
        completion_percentage: int = 0,
    ) -> int:
        now = now_ms()
        cur = conn.execute(
            """
            INSERT INTO tasks(
                owner_id, parent_id, title, is_completed, is_active,
                completion_percentage, created_at, updated_at
            )
            VALUES(?, ?, ?, ?, 1, ?, ?, ?)
            """,
            (
                owner_id,
                parent_id,
                title,
                1 if completion_percentage >= 100 else 0,
                completion_percentage,
                now,
                now,
            ),
        )
        return int(cur.lastrowid)

    def fetch_task(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        task_id: int,
        *,
        active_only: bool = False,
    ) -> Task | None:
        query = f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = ? AND owner_id = ?"
        if active_only:
            query += " AND is_active = 1"
        row = conn.execute(query, (int(task_id), owner_id)).fetchone()
        return Task.from_row(row) if row is not None else None

    def parent_id_of(self, conn: sqlite3.Connection, task_id: int) -> int | None:
        row = conn.execute(
            "SELECT parent_id FROM tasks WHERE id = ?", (int(task_id),)
        ).fetchone()
        if row is None or row["parent_id"] is None:
            return None
        return int(row["parent_id"])

    def child_ids(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        task_id: int,
        *,
        active_only: bool = True,
    ) -> list[int]:
        query = "SELECT id FROM tasks WHERE parent_id = ? AND owner_id = ?"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY created_at ASC, id ASC"
        rows = conn.execute(query, (int(task_id), owner_id)).fetchall()
        return [int(row["id"]) for row in rows]

    def child_tasks(
        self, conn: sqlite3.Connection, owner_id: str, task_id: int
    ) -> list[Task]:
        rows = conn.execute(
            f"""
            SELECT {_TASK_COLUMNS}
            FROM tasks
            WHERE parent_id = ? AND owner_id = ? AND is_active = 1
            ORDER BY created_at ASC, id ASC
            """,
            (int(task_id), owner_id),
        ).fetchall()
        return [Task.from_row(row) for row in rows]

    def list_tasks(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        *,
        roots_only: bool = False,
        include_inactive: bool = False,
        limit: int | None = None,
    ) -> list[Task]:
        where = ["owner_id = ?"]
        params: list[Any] = [owner_id]
        if roots_only:
            where.append("parent_id IS NULL")
        if not include_inactive:
            where.append("is_active = 1")
        query = f"SELECT {_TASK_COLUMNS} FROM tasks WHERE {' AND '.join(where)}"
        query += " ORDER BY created_at ASC, id ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(max(1, int(limit)))
        rows = conn.execute(query, tuple(params)).fetchall()
        return [Task.from_row(row) for row in rows]

    def count_active_tasks(self, conn: sqlite3.Connection, owner_id: str) -> int:
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM tasks WHERE owner_id = ? AND is_active = 1",
            (owner_id,),
        ).fetchone()
        return int(row["n"])

    def update_parent(
        self, conn: sqlite3.Connection, task_id: int, parent_id: int | None
    ) -> None:
        conn.execute(
            "UPDATE tasks SET parent_id = ?, updated_at = ? WHERE id = ?",
            (parent_id, now_ms(), int(task_id)),
        )

    def update_completion(
        self, conn: sqlite3.Connection, task_id: int, completion_percentage: int
    ) -> None:
        conn.execute(
            """
            UPDATE tasks
            SET completion_percentage = ?, is_completed = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                completion_percentage,
                1 if completion_percentage >= 100 else 0,
                now_ms(),
                int(task_id),
            ),
        )

    def deactivate_task(self, conn: sqlite3.Connection, task_id: int) -> None:
        conn.execute(
            "UPDATE tasks SET is_active = 0, updated_at = ? WHERE id = ?",
            (now_ms(), int(task_id)),
        )

    # -- dependencies -------------------------------------------------------

    def insert_dependency(
        self,
        conn: sqlite3.Connection,
        *,
        owner_id: str,
        dependent_task_id: int,
        prerequisite_task_id: int,
        dependency_type: DependencyType,
        description: str | None,
    ) -> int:
        now = now_ms()
        cur = conn.execute(
            """
            INSERT INTO task_dependencies(
                owner_id, dependent_task_id, prerequisite_task_id,
                dependency_type, description, is_active, created_at, updated_at
            )
            VALUES(?, ?, ?, ?, ?, 1, ?, ?)
            """,
            (
                owner_id,
                int(dependent_task_id),
                int(prerequisite_task_id),
                dependency_type.value,
                description,
                now,
                now,
            ),
        )
        return int(cur.lastrowid)

    def fetch_dependency(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        dependency_id: int,
        *,
        active_only: bool = True,
    ) -> Dependency | None:
        query = f"{_DEPENDENCY_SELECT} WHERE d.id = ? AND d.owner_id = ?"
        if active_only:
            query += " AND d.is_active = 1"
        row = conn.execute(query, (int(dependency_id), owner_id)).fetchone()
        return Dependency.from_row(row) if row is not None else None

    def active_edge_exists(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        dependent_task_id: int,
        prerequisite_task_id: int,
    ) -> bool:
        row = conn.execute(
            """
            SELECT 1 FROM task_dependencies
            WHERE owner_id = ? AND dependent_task_id = ? AND prerequisite_task_id = ?
              AND is_active = 1
            LIMIT 1
            """,
            (owner_id, int(dependent_task_id), int(prerequisite_task_id)),
        ).fetchone()
        return row is not None

    def active_edges(
        self, conn: sqlite3.Connection, owner_id: str
    ) -> list[tuple[int, int]]:
        """All active ``(dependent, prerequisite)`` pairs for one owner."""
        rows = conn.execute(
            """
            SELECT dependent_task_id, prerequisite_task_id
            FROM task_dependencies
            WHERE owner_id = ? AND is_active = 1
            ORDER BY dependent_task_id ASC, prerequisite_task_id ASC
            """,
            (owner_id,),
        ).fetchall()
        return [
            (int(row["dependent_task_id"]), int(row["prerequisite_task_id"]))
            for row in rows
        ]

    def update_dependency_fields(
        self,
        conn: sqlite3.Connection,
        dependency_id: int,
        *,
        dependency_type: DependencyType | None = None,
        description: str | None = None,
        clear_description: bool = False,
    ) -> None:
        set_parts: list[str] = []
        params: list[Any] = []
        if dependency_type is not None:
            set_parts.append("dependency_type = ?")
            params.append(dependency_type.value)
        if clear_description:
            set_parts.append("description = NULL")
        elif description is not None:
            set_parts.append("description = ?")
            params.append(description)
        params.extend((now_ms(), int(dependency_id)))
        assignments = "".join(f"{part}, " for part in set_parts)
        conn.execute(
            f"UPDATE task_dependencies SET {assignments}updated_at = ? WHERE id = ?",
            tuple(params),
        )

    def deactivate_dependency(self, conn: sqlite3.Connection, dependency_id: int) -> None:
        conn.execute(
            "UPDATE task_dependencies SET is_active = 0, updated_at = ? WHERE id = ?",
            (now_ms(), int(dependency_id)),
        )

    def query_dependencies(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        *,
        dependent_task_id: int | None = None,
        prerequisite_task_id: int | None = None,
        dependency_type: DependencyType | None = None,
        sort_by: str = "created_at",
        ascending: bool = False,
    ) -> list[Dependency]:
        where = ["d.owner_id = ?", "d.is_active = 1"]
        params: list[Any] = [owner_id]
        if dependent_task_id is not None:
            where.append("d.dependent_task_id = ?")
            params.append(int(dependent_task_id))
        if prerequisite_task_id is not None:
            where.append("d.prerequisite_task_id = ?")
            params.append(int(prerequisite_task_id))
        if dependency_type is not None:
            where.append("d.dependency_type = ?")
            params.append(dependency_type.value)

        key = resolve_sort_key(sort_by)
        if key == "dependency_type":
            # Ordinal order of the enum, not alphabetical.
            order_expr = "CASE d.dependency_type " + " ".join(
                f"WHEN '{member.value}' THEN {index}"
                for index, member in enumerate(DependencyType)
            ) + " END"
        else:
            order_expr = f"d.{key}"
        direction = "ASC" if ascending else "DESC"

        rows = conn.execute(
            f"""
            {_DEPENDENCY_SELECT}
            WHERE {' AND '.join(where)}
            ORDER BY {order_expr} {direction}, d.id {direction}
            """,
            tuple(params),
        ).fetchall()
        return [Dependency.from_row(row) for row in rows]

    def incoming_edges(
        self, conn: sqlite3.Connection, owner_id: str, task_id: int
    ) -> list[IncomingEdge]:
        """Active edges where ``task_id`` is the dependent, with prerequisite state."""
        rows = conn.execute(
            """
            SELECT
                d.id,
                d.prerequisite_task_id,
                d.dependency_type,
                p.is_completed AS prerequisite_completed,
                p.completion_percentage AS prerequisite_percentage
            FROM task_dependencies d
            JOIN tasks p ON p.id = d.prerequisite_task_id
            WHERE d.dependent_task_id = ? AND d.owner_id = ? AND d.is_active = 1
            ORDER BY d.created_at ASC, d.id ASC
            """,
            (int(task_id), owner_id),
        ).fetchall()

        edges: list[IncomingEdge] = []
        for row in rows:
            completed = bool(row["prerequisite_completed"])
            edges.append(
                IncomingEdge(
                    dependency_id=int(row["id"]),
                    prerequisite_task_id=int(row["prerequisite_task_id"]),
                    dependency_type=DependencyType(str(row["dependency_type"])),
                    prerequisite_completed=completed,
                    prerequisite_started=(
                        completed or int(row["prerequisite_percentage"]) > 0
                    ),
                )
            )
        return edges
