from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from .errors import GraphCorruptionError, NotFoundError
from .stores.graph import GraphStore

logger = logging.getLogger(__name__)


@dataclass
class CascadeExecutor:
    store: GraphStore

    def _deactivate_subtree(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        task_id: int,
        deactivated: list[int],
        *,
        level: int,
    ) -> None:
        cap = self.store.config.ancestor_walk_cap
        if level > cap:
            logger.error("cascade below task %s exceeded %d levels", task_id, cap)
            raise GraphCorruptionError(
                f"cascade delete reached task {task_id} more than {cap} levels down"
            )
        self.store.deactivate_task(conn, task_id)
        deactivated.append(task_id)
        # Already-deactivated tasks are skipped, so a corrupt parent loop ends here.
        for child_id in self.store.child_ids(conn, owner_id, task_id):
            self._deactivate_subtree(
                conn, owner_id, child_id, deactivated, level=level + 1
            )

    def soft_delete(self, owner_id: str, task_id: int) -> list[int]:
        """Deactivate ``task_id`` and every active descendant in one transaction.

        Dependency edges touching the removed tasks are left as they are.
        Returns the deactivated ids, the requested task first.
        """

        def operation(conn: sqlite3.Connection) -> list[int]:
            task = self.store.fetch_task(conn, owner_id, task_id, active_only=True)
            if task is None:
                raise NotFoundError(f"task not found: {task_id}")
            deactivated: list[int] = []
            self._deactivate_subtree(conn, owner_id, task.id, deactivated, level=0)
            return deactivated

        deactivated = self.store.write(owner_id, operation)
        logger.info(
            "soft-deleted task %s owner=%s (%d task(s) deactivated)",
            task_id,
            owner_id,
            len(deactivated),
        )
        return deactivated
