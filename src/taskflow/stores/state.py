"""Where a task graph lives on disk.

A state directory holds ``graph.sqlite3``, the optional ``taskflow.toml`` and
the server's ``logs/``. It is found from ``TASKFLOW_STATE_DIR`` or by walking up
from the working directory to the nearest ``.taskflow/``.
"""

from __future__ import annotations

import os
import time
from pathlib import Path

STATE_DIR_ENV = "TASKFLOW_STATE_DIR"
STATE_DIR_NAME = ".taskflow"
GRAPH_DB_FILENAME = "graph.sqlite3"
LOG_DIRNAME = "logs"


def now_ms() -> int:
    return int(time.time() * 1000)


def find_state_dir(start: Path) -> Path | None:
    """Nearest existing ``.taskflow/`` at or above ``start``."""
    for base in (start, *start.parents):
        candidate = base / STATE_DIR_NAME
        if candidate.is_dir():
            return candidate
    return None


def resolve_state_dir(cwd: Path | None = None, *, create: bool = True) -> Path:
    override = os.environ.get(STATE_DIR_ENV, "").strip()
    if override:
        state_dir = Path(override).expanduser().resolve()
    else:
        start = (cwd or Path.cwd()).resolve()
        state_dir = find_state_dir(start) or start / STATE_DIR_NAME

    if create:
        state_dir.mkdir(parents=True, exist_ok=True)
    return state_dir


def graph_db_path(state_dir: Path) -> Path:
    return state_dir / GRAPH_DB_FILENAME


def log_dir(state_dir: Path) -> Path:
    return state_dir / LOG_DIRNAME
