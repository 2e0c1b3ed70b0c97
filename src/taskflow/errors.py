"""Typed failures raised by the task graph engine.

Every rejected mutation names the invariant it would have broken through a
stable ``kind`` string, so callers (CLI, HTTP API) can render an actionable
message without parsing text. All graph errors subclass ``ValueError`` so the
plain ``except ValueError`` handling used for input problems also catches them.
"""

from __future__ import annotations


class GraphError(ValueError):
    kind = "graph_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind, "message": self.message}


class NotFoundError(GraphError):
    """Task or dependency is missing, inactive, or owned by someone else."""

    kind = "not_found"


class SelfReferenceError(GraphError):
    kind = "self_reference"


class CircularReferenceError(GraphError):
    kind = "circular_reference"


class CircularDependencyError(GraphError):
    kind = "circular_dependency"


class DepthExceededError(GraphError):
    kind = "depth_exceeded"


class DuplicateDependencyError(GraphError):
    kind = "duplicate_dependency"


class GraphCorruptionError(GraphError):
    """A traversal bound was exceeded; the stored graph is inconsistent.

    Never retried.
    """

    kind = "graph_corruption"


class ConflictError(GraphError):
    """Concurrent writers kept the store busy past the retry budget."""

    kind = "conflict"


class UnauthorizedError(GraphError):
    """The caller did not say which owner's graph it is acting on."""

    kind = "unauthorized"
