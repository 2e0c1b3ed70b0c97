from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import tomllib


CONFIG_FILENAME = "taskflow.toml"


@dataclass(frozen=True)
class GraphConfig:
    max_depth: int = 5
    ancestor_walk_cap: int = 10
    conflict_retries: int = 3
    max_tasks_per_user: int = 1000
    busy_timeout_ms: int = 5000
    source_path: Path | None = None


class ConfigValidationError(ValueError):
    pass


_INT_BOUNDS: dict[str, tuple[int, int]] = {
    "max_depth": (1, 64),
    "ancestor_walk_cap": (2, 1024),
    "conflict_retries": (1, 20),
    "max_tasks_per_user": (1, 10_000_000),
    "busy_timeout_ms": (0, 600_000),
}


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigValidationError(f"[graph].{field} must be an integer")
    low, high = _INT_BOUNDS[field]
    if value < low or value > high:
        raise ConfigValidationError(
            f"[graph].{field} must be between {low} and {high} (got {value})"
        )
    return value


def _parse_graph(raw: object, *, source_path: Path | None) -> GraphConfig:
    if raw is None:
        return GraphConfig(source_path=source_path)
    if not isinstance(raw, dict):
        raise ConfigValidationError("[graph] must be a table")

    known = {f.name for f in fields(GraphConfig)} - {"source_path"}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigValidationError(f"unknown [graph] keys: {', '.join(unknown)}")

    values: dict[str, Any] = {
        key: _as_int(value, field=key) for key, value in raw.items()
    }
    cfg = replace(GraphConfig(source_path=source_path), **values)
    if cfg.ancestor_walk_cap <= cfg.max_depth:
        raise ConfigValidationError(
            "[graph].ancestor_walk_cap must be greater than [graph].max_depth"
        )
    return cfg


def load_config(state_dir: Path) -> GraphConfig:
    """Load ``<state_dir>/taskflow.toml``; a missing file yields defaults."""
    path = state_dir / CONFIG_FILENAME
    if not path.exists():
        return GraphConfig()

    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigValidationError(f"invalid TOML in {path}: {exc}") from exc

    try:
        return _parse_graph(raw.get("graph"), source_path=path)
    except ConfigValidationError as exc:
        raise ConfigValidationError(f"{path}: {exc}") from exc
