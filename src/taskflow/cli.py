"""CLI entry point for taskflow."""

from __future__ import annotations

import argparse
import logging
import sys

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import __version__
from .logging_setup import setup_logging
from .stores.state import log_dir, resolve_state_dir


def _print_help(console: Console) -> None:
    help_text = Text()
    help_text.append("taskflow", style="bold")
    help_text.append(f" {__version__}", style="dim")
    help_text.append(": subtask hierarchy and dependency graph for tasks")
    console.print(help_text)
    console.print()

    cmds = Table(show_header=False, expand=False, show_edge=False, pad_edge=False, box=None)
    cmds.add_column("Command", style="bold cyan")
    cmds.add_column("Description")
    cmds.add_row("taskflow task new|show|list|children", "Create and inspect tasks")
    cmds.add_row("taskflow task parent|progress|complete|delete", "Change tasks")
    cmds.add_row("taskflow dep add|update|rm|show|list", "Manage dependency edges")
    cmds.add_row("taskflow dep prereqs|dependents|blocked|can-start", "Readiness queries")
    cmds.add_row("taskflow serve", "Start the JSON HTTP API")
    console.print(cmds)
    console.print()

    opts = Table(show_header=False, expand=False, show_edge=False, pad_edge=False, box=None)
    opts.add_column("Option", style="bold")
    opts.add_column("Description", style="dim")
    opts.add_row("--owner ID", "Graph owner (default: TASKFLOW_OWNER)")
    opts.add_row("--json", "JSON output")
    opts.add_row("--output auto|plain|rich", "Output mode (default: TASKFLOW_OUTPUT or auto)")
    opts.add_row("-v, --verbose", "Log engine activity to stderr")
    opts.add_row("--version", "Show version")
    console.print(opts)
    console.print()
    console.print(
        "[dim]State lives in TASKFLOW_STATE_DIR, or the nearest .taskflow/ directory.[/dim]"
    )


def cmd_serve(argv: list[str], console: Console) -> int:
    p = argparse.ArgumentParser(
        prog="taskflow serve",
        description="Start the taskflow JSON API.",
    )
    p.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    p.add_argument("--port", type=int, default=8430, help="Bind port (default: 8430)")
    p.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    args = p.parse_args(argv)

    import uvicorn

    state_dir = resolve_state_dir()
    setup_logging(log_dir=log_dir(state_dir), console_level=logging.INFO)

    console.print(
        Panel(
            f"Starting API at [bold]http://{args.host}:{args.port}/api[/bold]\n"
            f"state: {state_dir}",
            title="taskflow serve",
            style="cyan",
            expand=False,
        )
    )

    uvicorn.run(
        "taskflow.web:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_config=None,
    )
    return 0


def main(argv: list[str] | None = None) -> None:
    raw = list(argv) if argv is not None else sys.argv[1:]
    console = Console()

    if "--version" in raw:
        console.print(Text(f"taskflow {__version__}", style="bold"))
        sys.exit(0)

    verbose = False
    while raw and raw[0] in ("-v", "--verbose"):
        verbose = True
        raw = raw[1:]

    if not raw or raw == ["--help"] or raw == ["-h"]:
        _print_help(console)
        sys.exit(0)

    if raw[0] == "serve":
        sys.exit(cmd_serve(raw[1:], console))

    setup_logging(console_level=logging.INFO if verbose else logging.WARNING)

    if raw[0] == "task":
        from .task_cmd import main as task_main

        task_main(raw[1:])
        return

    if raw[0] == "dep":
        from .dep_cmd import main as dep_main

        dep_main(raw[1:])
        return

    print(f"error: unknown command: {raw[0]}", file=sys.stderr)
    _print_help(console)
    sys.exit(2)


if __name__ == "__main__":
    main()
