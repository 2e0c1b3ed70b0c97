from __future__ import annotations

from .graph import DEPENDENCY_SORT_KEYS, GraphStore
from .state import graph_db_path, now_ms, resolve_state_dir

__all__ = [
    "DEPENDENCY_SORT_KEYS",
    "GraphStore",
    "graph_db_path",
    "now_ms",
    "resolve_state_dir",
]
