from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .graph import TaskGraph
from .models import DEPENDENCY_TYPE_CHOICES, Dependency, Gate
from .stores.graph import DEPENDENCY_SORT_KEYS
from .ui import (
    OutputMode,
    add_common_arguments,
    emit_json,
    format_time,
    print_rows,
    resolve_output_mode,
    resolve_owner,
    truncate,
)

_DEPENDENCY_HEADERS = (
    "ID",
    "DEPENDENT",
    "TYPE",
    "PREREQUISITE",
    "STATE",
    "CREATED",
    "DESCRIPTION",
)
_TYPE_HELP = f"Dependency type ({', '.join(DEPENDENCY_TYPE_CHOICES)})"


def _edge_state(dep: Dependency) -> str:
    if dep.blocks_start or dep.blocks_finish:
        return "blocking"
    return "done" if dep.prerequisite_completed else "clear"


def _dependency_columns(dep: Dependency) -> tuple[str, ...]:
    return (
        str(dep.id),
        f"{dep.dependent_task_id} {truncate(dep.dependent_title, 24)}",
        dep.dependency_type.value,
        f"{dep.prerequisite_task_id} {truncate(dep.prerequisite_title, 24)}",
        _edge_state(dep),
        format_time(dep.created_at),
        truncate(dep.description, 48),
    )


def _print_dependency(dep: Dependency) -> None:
    print(
        f"{dep.id}  {dep.dependent_task_id} waits on {dep.prerequisite_task_id} "
        f"({dep.dependency_type.value})"
    )
    print(f"  state: {_edge_state(dep)}")


def _print_dependencies(
    output_mode: OutputMode, rows: list[Dependency], *, title: str
) -> None:
    print_rows(
        output_mode,
        headers=_DEPENDENCY_HEADERS,
        rows=[_dependency_columns(dep) for dep in rows],
        title=title,
        empty="(no dependencies)",
    )


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="taskflow dep",
        description="Manage prerequisite/dependent edges between tasks.",
    )
    sub = p.add_subparsers(dest="command", required=True, metavar="command")

    add = sub.add_parser("add", help="Make a task wait on a prerequisite")
    add.add_argument("dependent", type=int, help="Dependent (blocked) task id")
    add.add_argument("prerequisite", type=int, help="Prerequisite task id")
    add.add_argument("-t", "--type", default="FinishToStart", help=_TYPE_HELP)
    add.add_argument("-d", "--description", help="Free-text note (max 500 chars)")
    add_common_arguments(add)

    update = sub.add_parser("update", help="Change a dependency's type or description")
    update.add_argument("id", type=int, help="Dependency id")
    update.add_argument("-t", "--type", help=_TYPE_HELP)
    update.add_argument("-d", "--description", help="New description")
    update.add_argument(
        "--clear-description",
        action="store_true",
        help="Remove the description",
    )
    add_common_arguments(update)

    rm = sub.add_parser("rm", help="Remove dependencies")
    rm.add_argument("id", type=int, nargs="+", help="Dependency id(s)")
    add_common_arguments(rm)

    show = sub.add_parser("show", help="Show one dependency")
    show.add_argument("id", type=int, help="Dependency id")
    add_common_arguments(show)

    ls = sub.add_parser("list", help="List dependencies")
    ls.add_argument("--dependent", type=int, help="Filter by dependent task id")
    ls.add_argument("--prerequisite", type=int, help="Filter by prerequisite task id")
    ls.add_argument("-t", "--type", help=_TYPE_HELP)
    ls.add_argument(
        "--sort",
        default="created_at",
        choices=DEPENDENCY_SORT_KEYS,
        help="Sort key (default: created_at)",
    )
    ls.add_argument("--asc", action="store_true", help="Sort ascending")
    add_common_arguments(ls)

    prereqs = sub.add_parser("prereqs", help="Edges a task waits on")
    prereqs.add_argument("task", type=int, help="Task id")
    add_common_arguments(prereqs)

    dependents = sub.add_parser("dependents", help="Edges waiting on a task")
    dependents.add_argument("task", type=int, help="Task id")
    add_common_arguments(dependents)

    blocked = sub.add_parser("blocked", help="Show what keeps a task from starting")
    blocked.add_argument("task", type=int, help="Task id")
    blocked.add_argument(
        "--finish",
        action="store_true",
        help="Check the finish gate instead of the start gate",
    )
    add_common_arguments(blocked)

    can_start = sub.add_parser("can-start", help="Print yes/no: may the task start")
    can_start.add_argument("task", type=int, help="Task id")
    add_common_arguments(can_start)

    return p


def main(argv: list[str] | None = None) -> None:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    args = _build_parser().parse_args(raw_argv)

    try:
        output_mode = resolve_output_mode(args.output)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(2)

    try:
        owner_id = resolve_owner(args.owner)
        graph = TaskGraph.from_workdir(Path.cwd())

        if args.command == "add":
            dep = graph.create_dependency(
                owner_id,
                args.dependent,
                args.prerequisite,
                args.type,
                args.description,
            )
            if args.json:
                emit_json(dep.to_dict())
            else:
                print(dep.id)
            return

        if args.command == "update":
            dep = graph.update_dependency(
                owner_id,
                args.id,
                dependency_type=args.type,
                description=args.description,
                clear_description=args.clear_description,
            )
            if args.json:
                emit_json(dep.to_dict())
            else:
                _print_dependency(dep)
            return

        if args.command == "rm":
            if len(args.id) == 1:
                if not graph.delete_dependency(owner_id, args.id[0]):
                    print(
                        f"error: dependency not found: {args.id[0]}", file=sys.stderr
                    )
                    raise SystemExit(1)
                removed = 1
            else:
                removed = graph.delete_dependencies(owner_id, args.id)
            if args.json:
                emit_json({"requested": len(args.id), "removed": removed})
            else:
                print(f"removed: {removed}/{len(args.id)}")
            return

        if args.command == "show":
            dep = graph.get_dependency(owner_id, args.id)
            if args.json:
                emit_json(dep.to_dict())
            else:
                _print_dependency(dep)
                if dep.description:
                    print(f"  {dep.description}")
            return

        if args.command == "list":
            rows = graph.list_dependencies(
                owner_id,
                dependent_task_id=args.dependent,
                prerequisite_task_id=args.prerequisite,
                dependency_type=args.type,
                sort_by=args.sort,
                ascending=args.asc,
            )
            if args.json:
                emit_json([dep.to_dict() for dep in rows])
            else:
                _print_dependencies(output_mode, rows, title="Dependencies")
            return

        if args.command in {"prereqs", "dependents"}:
            if args.command == "prereqs":
                rows = graph.list_prerequisites(owner_id, args.task)
                title = f"Prerequisites of {args.task}"
            else:
                rows = graph.list_dependents(owner_id, args.task)
                title = f"Dependents of {args.task}"
            if args.json:
                emit_json([dep.to_dict() for dep in rows])
            else:
                _print_dependencies(output_mode, rows, title=title)
            return

        if args.command == "blocked":
            gate = Gate.FINISH if args.finish else Gate.START
            edges = graph.blockers(owner_id, args.task, gate=gate)
            if args.json:
                emit_json(
                    {
                        "task_id": args.task,
                        "gate": gate.value,
                        "blocked": bool(edges),
                        "blocking_dependencies": [edge.dependency_id for edge in edges],
                    }
                )
                return
            if not edges:
                print(f"task {args.task}: not blocked ({gate.value})")
                return
            print(f"task {args.task}: blocked ({gate.value})")
            for edge in edges:
                print(
                    f"  dependency {edge.dependency_id}: waits on task "
                    f"{edge.prerequisite_task_id} ({edge.dependency_type.value})"
                )
            return

        if args.command == "can-start":
            ok = graph.can_start(owner_id, args.task)
            if args.json:
                emit_json({"task_id": args.task, "can_start": ok})
            else:
                print("yes" if ok else "no")
            return
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
