from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, Literal

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

OUTPUT_CHOICES = ("auto", "plain", "rich")
OutputMode = Literal["plain", "rich"]


def add_output_mode_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output",
        choices=OUTPUT_CHOICES,
        help=(
            "Output mode: auto (default), plain, or rich. "
            "Defaults to TASKFLOW_OUTPUT when set."
        ),
    )


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--owner",
        help="Owner id of the task graph (default: TASKFLOW_OWNER)",
    )
    parser.add_argument("--json", action="store_true", help="Output JSON")
    add_output_mode_argument(parser)


def resolve_owner(requested: str | None) -> str:
    owner = (requested or os.environ.get("TASKFLOW_OWNER", "")).strip()
    if not owner:
        raise ValueError("owner is required (pass --owner or set TASKFLOW_OWNER)")
    return owner


def _normalize_choice(raw: str | None, *, source: str) -> str | None:
    if raw is None:
        return None
    value = raw.strip().lower()
    if not value:
        return None
    if value not in OUTPUT_CHOICES:
        expected = ", ".join(OUTPUT_CHOICES)
        raise ValueError(f"invalid {source} value {raw!r}; expected one of: {expected}")
    return value


def _stream_is_tty(stream: object) -> bool:
    probe = getattr(stream, "isatty", None)
    if not callable(probe):
        return False
    try:
        return bool(probe())
    except (OSError, ValueError):
        return False


def resolve_output_mode(
    requested: str | None = None,
    *,
    is_tty: bool | None = None,
) -> OutputMode:
    selected = _normalize_choice(requested, source="--output")
    if selected is None:
        selected = _normalize_choice(
            os.environ.get("TASKFLOW_OUTPUT"), source="TASKFLOW_OUTPUT"
        )
    if selected is None:
        selected = "auto"

    if selected == "auto":
        tty = _stream_is_tty(sys.stdout) if is_tty is None else bool(is_tty)
        return "rich" if tty else "plain"
    return "rich" if selected == "rich" else "plain"


def make_console(mode: OutputMode, *, stderr: bool = False) -> Console:
    return Console(
        file=sys.stderr if stderr else sys.stdout,
        force_terminal=mode == "rich",
        no_color=mode != "rich",
        highlight=False,
    )


def render_table(
    console: Console,
    *,
    headers: Sequence[str],
    rows: Sequence[Sequence[object]],
    title: str | None = None,
    no_wrap_columns: Sequence[int] = (),
) -> None:
    table = Table(title=title)
    no_wrap = set(no_wrap_columns)
    for idx, header in enumerate(headers):
        table.add_column(str(header), no_wrap=idx in no_wrap)
    for row in rows:
        table.add_row(*(str(value if value is not None else "") for value in row))
    console.print(table)


def render_panel(console: Console, body: str, *, title: str | None = None) -> None:
    console.print(Panel(body, title=title))


def print_rows(
    output_mode: OutputMode,
    *,
    headers: Sequence[str],
    rows: Sequence[Sequence[str]],
    title: str,
    empty: str,
) -> None:
    """Plain aligned columns, or a rich table, or ``empty`` when there are no rows."""
    if output_mode == "rich":
        console = make_console("rich")
        if not rows:
            render_panel(console, empty, title=title)
            return
        render_table(
            console,
            title=title,
            headers=headers,
            rows=rows,
            no_wrap_columns=tuple(range(len(headers) - 1)),
        )
        return

    if not rows:
        print(empty)
        return
    widths = [len(item) for item in headers]
    for row in rows:
        for idx, col in enumerate(row):
            widths[idx] = max(widths[idx], len(col))
    print("  ".join(headers[idx].ljust(widths[idx]) for idx in range(len(headers))))
    print("  ".join("-" * widths[idx] for idx in range(len(headers))))
    for row in rows:
        print("  ".join(row[idx].ljust(widths[idx]) for idx in range(len(headers))))


# -- JSON / formatting helpers ---------------------------------------------


def _iso_from_epoch_ms(value: object) -> str | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    try:
        dt = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def with_iso_timestamps(payload: Any) -> Any:
    if isinstance(payload, dict):
        out: dict[str, Any] = {}
        for key, value in payload.items():
            out[key] = with_iso_timestamps(value)
            if key.endswith("_at"):
                iso = _iso_from_epoch_ms(value)
                if iso:
                    out[f"{key}_iso"] = iso
        return out
    if isinstance(payload, list):
        return [with_iso_timestamps(item) for item in payload]
    return payload


def emit_json(payload: Any) -> None:
    print(json.dumps(with_iso_timestamps(payload), ensure_ascii=False, indent=2))


def format_time(value: object) -> str:
    return _iso_from_epoch_ms(value) or "-"


def truncate(value: object, limit: int) -> str:
    text = str(value or "").strip()
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]
    return text[: limit - 3] + "..."
