from __future__ import annotations

import logging
from pathlib import Path

import pytest

from taskflow.config import CONFIG_FILENAME, ConfigValidationError, GraphConfig, load_config
from taskflow.graph import TaskGraph
from taskflow.logging_setup import _ConsoleNoiseFilter
from taskflow.stores.state import resolve_state_dir


def _write_config(state_dir: Path, body: str) -> Path:
    state_dir.mkdir(parents=True, exist_ok=True)
    path = state_dir / CONFIG_FILENAME
    path.write_text(body.strip() + "\n", encoding="utf-8")
    return path


def test_missing_config_yields_defaults(tmp_path: Path) -> None:
    cfg = load_config(tmp_path)
    assert cfg == GraphConfig()
    assert cfg.max_depth == 5
    assert cfg.ancestor_walk_cap == 10
    assert cfg.conflict_retries == 3
    assert cfg.max_tasks_per_user == 1000


def test_config_overrides_graph_table(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path,
        """
[graph]
max_depth = 3
conflict_retries = 5
""",
    )

    cfg = load_config(tmp_path)
    assert cfg.max_depth == 3
    assert cfg.conflict_retries == 5
    assert cfg.ancestor_walk_cap == 10
    assert cfg.source_path == path


@pytest.mark.parametrize(
    ("body", "message"),
    [
        ("[graph]\nmax_depth = 'deep'", "must be an integer"),
        ("[graph]\nmax_depth = 0", "between 1 and 64"),
        ("[graph]\nmax_detph = 4", "unknown [graph] keys: max_detph"),
        ("[graph]\nmax_depth = 12", "ancestor_walk_cap must be greater"),
        ("graph = 3", "[graph] must be a table"),
        ("[graph\nmax_depth = 3", "invalid TOML"),
    ],
)
def test_invalid_config_is_rejected(tmp_path: Path, body: str, message: str) -> None:
    _write_config(tmp_path, body)
    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(tmp_path)
    assert message in str(excinfo.value)


def test_state_dir_resolution(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    nested = tmp_path / "project" / "src"
    nested.mkdir(parents=True)
    (tmp_path / "project" / ".taskflow").mkdir()

    assert resolve_state_dir(nested) == (tmp_path / "project" / ".taskflow").resolve()

    override = tmp_path / "elsewhere"
    monkeypatch.setenv("TASKFLOW_STATE_DIR", str(override))
    assert resolve_state_dir(nested) == override.resolve()
    assert override.is_dir()


def test_graph_from_workdir_applies_config(tmp_path: Path) -> None:
    _write_config(tmp_path / ".taskflow", "[graph]\nmax_depth = 1")
    graph = TaskGraph.from_workdir(tmp_path)

    assert graph.config.max_depth == 1
    root = graph.create_task("alice", "root")
    child = graph.create_task("alice", "child", parent_id=root.id)
    with pytest.raises(ValueError):
        graph.create_task("alice", "grandchild", parent_id=child.id)


def test_console_filter_keeps_own_logs_and_quiets_others() -> None:
    noise = _ConsoleNoiseFilter()

    def record(name: str, level: int) -> logging.LogRecord:
        return logging.LogRecord(name, level, __file__, 1, "msg", None, None)

    assert noise.filter(record("taskflow.hierarchy", logging.DEBUG)) is True
    assert noise.filter(record("uvicorn.error", logging.INFO)) is False
    assert noise.filter(record("uvicorn.error", logging.WARNING)) is True
    assert noise.filter(record("httpx", logging.WARNING)) is False
    assert noise.filter(record("httpx", logging.ERROR)) is True
