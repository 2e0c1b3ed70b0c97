from __future__ import annotations

from pathlib import Path

import pytest

from taskflow.graph import TaskGraph
from taskflow.stores.graph import GraphStore


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("TASKFLOW_STATE_DIR", "TASKFLOW_OWNER", "TASKFLOW_OUTPUT"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store(tmp_path: Path) -> GraphStore:
    return GraphStore(tmp_path / "state")


@pytest.fixture
def graph(store: GraphStore) -> TaskGraph:
    return TaskGraph(store)
