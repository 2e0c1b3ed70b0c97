"""One-hop readiness checks over a task's incoming dependency edges.

A task's start is gated by its ``FinishToStart`` and ``StartToStart`` edges;
its finish is gated by ``FinishToFinish`` and ``StartToFinish`` edges. Only the
direct prerequisites are consulted: transitive readiness follows from each
prerequisite's own state.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import NotFoundError
from .models import Gate, IncomingEdge
from .stores.graph import GraphStore


@dataclass
class ReadinessEvaluator:
    store: GraphStore

    def _incoming(self, owner_id: str, task_id: int) -> list[IncomingEdge]:
        with self.store.read() as conn:
            if self.store.fetch_task(conn, owner_id, task_id) is None:
                raise NotFoundError(f"task not found: {task_id}")
            return self.store.incoming_edges(conn, owner_id, task_id)

    def blockers(
        self, owner_id: str, task_id: int, *, gate: Gate = Gate.START
    ) -> list[IncomingEdge]:
        """Every incoming edge currently holding ``gate`` closed."""
        return [edge for edge in self._incoming(owner_id, task_id) if edge.blocks(gate)]

    def is_blocked(self, owner_id: str, task_id: int) -> bool:
        return any(edge.blocks(Gate.START) for edge in self._incoming(owner_id, task_id))

    def can_start(self, owner_id: str, task_id: int) -> bool:
        return not self.is_blocked(owner_id, task_id)

    def is_finish_blocked(self, owner_id: str, task_id: int) -> bool:
        return any(edge.blocks(Gate.FINISH) for edge in self._incoming(owner_id, task_id))

    def can_finish(self, owner_id: str, task_id: int) -> bool:
        return not self.is_finish_blocked(owner_id, task_id)
