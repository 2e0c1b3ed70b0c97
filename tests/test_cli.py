from __future__ import annotations

import json
from pathlib import Path

import pytest

from taskflow import __version__, cli


@pytest.fixture(autouse=True)
def _state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    state_dir = tmp_path / "state"
    monkeypatch.setenv("TASKFLOW_STATE_DIR", str(state_dir))
    monkeypatch.setenv("TASKFLOW_OWNER", "alice")
    monkeypatch.chdir(tmp_path)
    return state_dir


def _run(capsys: pytest.CaptureFixture[str], *argv: str) -> str:
    cli.main(list(argv))
    return capsys.readouterr().out


def _new_task(capsys: pytest.CaptureFixture[str], title: str, *extra: str) -> int:
    return int(_run(capsys, "task", "new", title, *extra).strip())


def test_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--version"])
    assert excinfo.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_help_lists_command_groups(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main([])
    assert excinfo.value.code == 0
    out = capsys.readouterr().out
    assert "taskflow task" in out
    assert "taskflow dep" in out
    assert "taskflow serve" in out


def test_task_new_and_show_json(capsys: pytest.CaptureFixture[str]) -> None:
    root = _new_task(capsys, "Plan release")
    child = _new_task(capsys, "Write notes", "--parent", str(root))

    payload = json.loads(_run(capsys, "task", "show", str(child), "--json"))

    assert payload["id"] == child
    assert payload["parent_id"] == root
    assert payload["depth"] == 1
    assert payload["can_start"] is True
    assert "created_at_iso" in payload


def test_task_list_plain(capsys: pytest.CaptureFixture[str]) -> None:
    assert "(no tasks)" in _run(capsys, "task", "list", "--output", "plain")
    assert "(no dependencies)" in _run(capsys, "dep", "list", "--output", "plain")

    _new_task(capsys, "Alpha")
    out = _run(capsys, "task", "list", "--output", "plain")
    assert "TITLE" in out
    assert "Alpha" in out


def test_task_parent_errors_exit_nonzero(capsys: pytest.CaptureFixture[str]) -> None:
    task_id = _new_task(capsys, "Solo")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["task", "parent", str(task_id), str(task_id)])
    assert excinfo.value.code == 1
    assert "cannot be its own parent" in capsys.readouterr().err


def test_task_delete_requires_confirmation(capsys: pytest.CaptureFixture[str]) -> None:
    root = _new_task(capsys, "Root")
    child = _new_task(capsys, "Child", "--parent", str(root))

    out = _run(capsys, "task", "delete", str(root), "--check")
    assert "1 subtask(s)" in out

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["task", "delete", str(root)])
    assert excinfo.value.code == 1
    assert "refusing to delete without --yes" in capsys.readouterr().err

    out = _run(capsys, "task", "delete", str(root), "--yes")
    assert out.splitlines() == [f"deleted: {root}", f"deleted: {child}"]


def test_dependency_flow(capsys: pytest.CaptureFixture[str]) -> None:
    a = _new_task(capsys, "Design")
    b = _new_task(capsys, "Build")

    dep_id = int(_run(capsys, "dep", "add", str(b), str(a)).strip())
    assert _run(capsys, "dep", "can-start", str(b)).strip() == "no"

    blocked = _run(capsys, "dep", "blocked", str(b))
    assert f"dependency {dep_id}: waits on task {a}" in blocked

    rows = json.loads(_run(capsys, "dep", "prereqs", str(b), "--json"))
    assert [row["id"] for row in rows] == [dep_id]

    _run(capsys, "task", "complete", str(a))
    assert _run(capsys, "dep", "can-start", str(b)).strip() == "yes"

    updated = json.loads(_run(capsys, "dep", "update", str(dep_id), "-t", "StartToStart", "--json"))
    assert updated["dependency_type"] == "StartToStart"

    assert _run(capsys, "dep", "rm", str(dep_id)).strip() == "removed: 1/1"
    assert "(no dependencies)" in _run(capsys, "dep", "list", "--output", "plain")


def test_dependency_cycle_is_reported(capsys: pytest.CaptureFixture[str]) -> None:
    a = _new_task(capsys, "A")
    b = _new_task(capsys, "B")
    _run(capsys, "dep", "add", str(b), str(a))

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["dep", "add", str(a), str(b)])
    assert excinfo.value.code == 1
    assert "would create a cycle" in capsys.readouterr().err


def test_owner_is_required(
    capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("TASKFLOW_OWNER")
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["task", "new", "Nobody's"])
    assert excinfo.value.code == 1
    assert "owner is required" in capsys.readouterr().err


def test_owners_do_not_see_each_other(capsys: pytest.CaptureFixture[str]) -> None:
    task_id = _new_task(capsys, "Private")

    with pytest.raises(SystemExit):
        cli.main(["task", "show", str(task_id), "--owner", "bob"])
    assert f"task not found: {task_id}" in capsys.readouterr().err


def test_dependency_description_can_be_cleared(capsys: pytest.CaptureFixture[str]) -> None:
    a = _new_task(capsys, "A")
    b = _new_task(capsys, "B")
    dep_id = int(_run(capsys, "dep", "add", str(b), str(a), "-d", "why").strip())

    shown = _run(capsys, "dep", "show", str(dep_id))
    assert "state: blocking" in shown
    assert "why" in shown

    cleared = json.loads(
        _run(capsys, "dep", "update", str(dep_id), "--clear-description", "--json")
    )
    assert cleared["description"] is None
    assert cleared["prerequisite_title"] == "A"
