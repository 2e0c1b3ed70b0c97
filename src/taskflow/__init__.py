from __future__ import annotations

from typing import TYPE_CHECKING

__all__ = [
    "__version__",
    "DependencyType",
    "GraphConfig",
    "GraphError",
    "GraphStore",
    "TaskGraph",
]

__version__ = "0.1.0"

if TYPE_CHECKING:
    from .config import GraphConfig
    from .errors import GraphError
    from .graph import TaskGraph
    from .models import DependencyType
    from .stores.graph import GraphStore


def __getattr__(name: str):
    if name == "TaskGraph":
        from .graph import TaskGraph

        return TaskGraph
    if name == "GraphStore":
        from .stores.graph import GraphStore

        return GraphStore
    if name == "GraphConfig":
        from .config import GraphConfig

        return GraphConfig
    if name == "GraphError":
        from .errors import GraphError

        return GraphError
    if name == "DependencyType":
        from .models import DependencyType

        return DependencyType
    raise AttributeError(f"module 'taskflow' has no attribute {name!r}")
