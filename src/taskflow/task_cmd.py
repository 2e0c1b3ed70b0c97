from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any

from .graph import TaskGraph
from .models import Task
from .ui import (
    OutputMode,
    add_common_arguments,
    emit_json,
    format_time,
    make_console,
    print_rows,
    render_panel,
    resolve_output_mode,
    resolve_owner,
    truncate,
)

_TASK_HEADERS = ("ID", "PARENT", "PROGRESS", "STATE", "UPDATED", "TITLE")


def _task_columns(task: Task) -> tuple[str, str, str, str, str, str]:
    if not task.is_active:
        state = "deleted"
    elif task.is_completed:
        state = "done"
    elif task.is_started:
        state = "started"
    else:
        state = "open"
    return (
        str(task.id),
        str(task.parent_id) if task.parent_id is not None else "-",
        f"{task.completion_percentage}%",
        state,
        format_time(task.updated_at),
        truncate(task.title, 56),
    )


def _print_task(task: Task) -> None:
    row = _task_columns(task)
    print(f"{row[0]}  {row[1]:<6}  {row[2]:>4}  {row[3]:<7}  {row[4]}  {row[5]}")


def _print_tasks(output_mode: OutputMode, tasks: list[Task], *, title: str, empty: str) -> None:
    print_rows(
        output_mode,
        headers=_TASK_HEADERS,
        rows=[_task_columns(task) for task in tasks],
        title=title,
        empty=empty,
    )


def _task_details(graph: TaskGraph, owner_id: str, task_id: int) -> dict[str, Any]:
    task = graph.get_task(owner_id, task_id)
    payload = task.to_dict()
    payload["depth"] = graph.depth_of(owner_id, task.id)
    payload["children"] = [child.id for child in graph.list_children(owner_id, task.id)]
    payload["descendant_count"] = graph.count_descendants(owner_id, task.id)
    payload["can_start"] = graph.can_start(owner_id, task.id)
    payload["can_finish"] = graph.can_finish(owner_id, task.id)
    return payload


def _print_task_details(output_mode: OutputMode, details: dict[str, Any]) -> None:
    lines = [
        f"title: {details['title']}",
        f"parent: {details['parent_id'] if details['parent_id'] is not None else '-'}",
        f"depth: {details['depth']}",
        f"progress: {details['completion_percentage']}%",
        f"completed: {'yes' if details['is_completed'] else 'no'}",
        f"active: {'yes' if details['is_active'] else 'no'}",
        f"children: {', '.join(str(c) for c in details['children']) or '(none)'}",
        f"descendants: {details['descendant_count']}",
        f"can start: {'yes' if details['can_start'] else 'no'}",
        f"can finish: {'yes' if details['can_finish'] else 'no'}",
        f"created: {format_time(details['created_at'])}",
        f"updated: {format_time(details['updated_at'])}",
    ]
    if output_mode == "rich":
        render_panel(make_console("rich"), "\n".join(lines), title=f"Task {details['id']}")
        return
    print(f"task {details['id']}")
    for line in lines:
        print(f"  {line}")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="taskflow task",
        description="Create, inspect and restructure tasks.",
    )
    sub = p.add_subparsers(dest="command", required=True, metavar="command")

    new = sub.add_parser("new", help="Create a task")
    new.add_argument("title", help="Task title")
    new.add_argument("--parent", type=int, help="Parent task id")
    new.add_argument(
        "--progress", type=int, default=0, help="Initial completion percentage 0-100"
    )
    add_common_arguments(new)

    show = sub.add_parser("show", help="Show one task with hierarchy and readiness")
    show.add_argument("id", type=int, help="Task id")
    add_common_arguments(show)

    ls = sub.add_parser("list", help="List tasks")
    ls.add_argument("--roots", action="store_true", help="Only top-level tasks")
    ls.add_argument("--all", action="store_true", help="Include deleted tasks")
    ls.add_argument("--limit", type=int, help="Max rows")
    add_common_arguments(ls)

    children = sub.add_parser("children", help="List the direct subtasks of a task")
    children.add_argument("id", type=int, help="Task id")
    add_common_arguments(children)

    parent = sub.add_parser("parent", help="Move a task under a new parent")
    parent.add_argument("id", type=int, help="Task id")
    parent.add_argument("parent", type=int, nargs="?", help="New parent task id")
    parent.add_argument(
        "--clear", action="store_true", help="Detach the task into a top-level task"
    )
    add_common_arguments(parent)

    progress = sub.add_parser("progress", help="Set completion percentage")
    progress.add_argument("id", type=int, help="Task id")
    progress.add_argument("value", type=int, help="Completion percentage 0-100")
    add_common_arguments(progress)

    complete = sub.add_parser("complete", help="Mark task(s) completed")
    complete.add_argument("id", type=int, nargs="+", help="Task id(s)")
    complete.add_argument("--reopen", action="store_true", help="Mark not completed")
    add_common_arguments(complete)

    delete = sub.add_parser("delete", help="Delete a task and all its subtasks")
    delete.add_argument("id", type=int, help="Task id")
    delete.add_argument(
        "--check",
        action="store_true",
        help="Only report what would be deleted",
    )
    delete.add_argument("--yes", action="store_true", help="Confirm delete operation")
    add_common_arguments(delete)

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

        if args.command == "new":
            task = graph.create_task(
                owner_id,
                args.title,
                parent_id=args.parent,
                completion_percentage=args.progress,
            )
            if args.json:
                emit_json(task.to_dict())
            else:
                print(task.id)
            return

        if args.command == "show":
            details = _task_details(graph, owner_id, args.id)
            if args.json:
                emit_json(details)
            else:
                _print_task_details(output_mode, details)
            return

        if args.command == "list":
            tasks = graph.list_tasks(
                owner_id,
                roots_only=args.roots,
                include_inactive=args.all,
                limit=args.limit,
            )
            if args.json:
                emit_json([task.to_dict() for task in tasks])
            else:
                _print_tasks(output_mode, tasks, title="Tasks", empty="(no tasks)")
            return

        if args.command == "children":
            tasks = graph.list_children(owner_id, args.id)
            if args.json:
                emit_json([task.to_dict() for task in tasks])
            else:
                _print_tasks(
                    output_mode,
                    tasks,
                    title=f"Subtasks of {args.id}",
                    empty="(no subtasks)",
                )
            return

        if args.command == "parent":
            if args.clear == (args.parent is not None):
                raise ValueError("pass either a parent id or --clear")
            if args.clear:
                task = graph.remove_parent(owner_id, args.id)
            else:
                task = graph.set_parent(owner_id, args.id, args.parent)
            if args.json:
                emit_json(task.to_dict())
            else:
                _print_task(task)
            return

        if args.command == "progress":
            task = graph.update_progress(owner_id, args.id, args.value)
            if args.json:
                emit_json(task.to_dict())
            else:
                _print_task(task)
            return

        if args.command == "complete":
            tasks = [
                graph.complete_task(owner_id, task_id, completed=not args.reopen)
                for task_id in args.id
            ]
            if args.json:
                emit_json([task.to_dict() for task in tasks])
            else:
                for task in tasks:
                    _print_task(task)
            return

        if args.command == "delete":
            check = graph.deletion_check(owner_id, args.id)
            if args.check:
                if args.json:
                    emit_json(check.to_dict())
                else:
                    print(
                        f"task {check.task_id}: {check.subtask_count} subtask(s), "
                        f"{check.descendant_count} descendant(s)"
                    )
                    for warning in check.warnings:
                        print(f"warning: {warning}")
                return
            if not args.yes:
                for warning in check.warnings:
                    print(f"warning: {warning}", file=sys.stderr)
                print("error: refusing to delete without --yes", file=sys.stderr)
                raise SystemExit(1)
            deleted = graph.delete_task(owner_id, args.id)
            if args.json:
                emit_json({"task_id": args.id, "deactivated": deleted})
            else:
                for task_id in deleted:
                    print(f"deleted: {task_id}")
            return
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
