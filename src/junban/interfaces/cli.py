# ruff: noqa: C901, T201

import argparse
import sys
from contextlib import closing
from typing import Any

from pyresults import Err, Ok

from junban.api.server import run as run_server
from junban.core.errors import OpsError, ValidationError
from junban.core.models import STATES
from junban.core.ops import Board
from junban.core.sort import task_sort_key, topo_sort
from junban.core.state import derive_state
from junban.core.validate import detect_deadlocks, detect_inconsistencies
from junban.interfaces import LENGTH_SHORTEND_ID
from junban.io.json_io import export_json, import_json
from junban.io.std_io import print_task
from junban.services.ticker import RecomputeTicker
from junban.util.dirs import load_env
from junban.util.ids import parse_id, parse_ids
from junban.util.logger import setup_logger, setup_mode
from junban.util.meta_parser import parse_payload
from junban.util.time import format_due_status, now

logger = setup_logger("junban", is_stream=True, is_file=True)

STATE_MARKS = {
    "Waiting": "W",
    "Ready": "R",
    "InProgress": "I",
    "Blocked": "B",
    "Suspended": "S",
    "Done": "D",
}


def get_board() -> Board:
    return Board.from_env()


def _resolve_id(raw: str, board: Board) -> str:
    """短縮 ID を含む入力を完全な ID に解決する。"""
    match parse_id(raw, source_ids=[t.id for t in board.list_tasks()]):
        case Ok(tid):
            return tid  # type: ignore[no-any-return]
        case Err(e):
            raise ValidationError(e)
    _msg = f"Unknown ID: {raw}"
    raise ValidationError(_msg)


def _parse_recurrence(raw: str | None) -> dict[str, Any] | None:
    if raw is None:
        return None
    match parse_payload(raw):
        case Ok(d):
            return d  # type: ignore[no-any-return]
        case Err(e):
            raise ValidationError(e)
    return None


def _parse_limit(raw: str) -> tuple[str, int | None]:
    key, sep, value = raw.partition("=")
    if not sep:
        _msg = f"Expected STATE=LIMIT: {raw}"
        raise ValidationError(_msg)
    if value.strip().lower() in ("", "none", "null"):
        return key.strip(), None
    try:
        return key.strip(), int(value)
    except ValueError as e:
        _msg = f"Invalid WIP limit: {raw}"
        raise ValidationError(_msg) from e


def _line(t: Any, effective: str) -> str:
    _id = t.id[:LENGTH_SHORTEND_ID].ljust(LENGTH_SHORTEND_ID)
    marks = [STATE_MARKS[effective]]
    if t.deadlock:
        marks.append("!")
    if t.recurrence:
        marks.append("~")
    tag = "[" + ",".join(marks) + "]"
    picker = f" -> {t.picker}" if t.picker else ""
    due = format_due_status(t)
    extra = f" ({due.unwrap()})" if due.is_ok() and due.unwrap() else ""
    if due.is_err():
        extra = f" ({due.unwrap_err()})"
    return f"{tag} {_id} | p={t.priority:>3} | {effective}{picker}{extra} | {t.title}"


def cmd_add(args: argparse.Namespace) -> int:
    try:
        with closing(get_board()) as board:
            deps = [_resolve_id(d, board) for d in args.depends_on or []]
            t = board.create_task(
                args.title,
                description=args.description or "",
                deadline=args.deadline,
                scheduled_due_at=args.due,
                lead_time_days=args.lead_time_days,
                dependencies=deps,
                recurrence=_parse_recurrence(args.recurrence),
                created_by=load_env()["USERNAME"],
            )
        print(t.id)
    except OpsError as e:
        _msg = f"An error occurred while adding a task: {e!s}"
        logger.exception(_msg)
        return 1
    else:
        return 0


def cmd_list(args: argparse.Namespace) -> int:
    try:
        with closing(get_board()) as board:
            tasks = {t.id: t for t in board.list_tasks()}
        current = now()
        ordered = topo_sort(tasks) if args.topo else sorted(tasks.values(), key=task_sort_key)

        for t in ordered:
            eff = derive_state(t, tasks, current)
            if args.state and eff.effective_state != args.state:
                continue
            if args.query:
                q = args.query.lower()
                if q not in t.title.lower() and q not in (t.description or "").lower():
                    continue
            if args.details:
                print_task(t, eff)
                print("-" * 76)
                continue
            print(_line(t, eff.effective_state))
    except OpsError as e:
        _msg = f"An error occurred while listing tasks: {e!s}"
        logger.exception(_msg)
        return 1
    else:
        return 0


def cmd_show(args: argparse.Namespace) -> int:
    try:
        with closing(get_board()) as board:
            tid = _resolve_id(args.id, board)
            print_task(board.get_task(tid), board.effective_state(tid))
    except OpsError as e:
        _msg = f"An error occurred while showing a task: {e!s}"
        logger.exception(_msg)
        return 1
    else:
        return 0


def cmd_state(args: argparse.Namespace) -> int:
    try:
        with closing(get_board()) as board:
            tid = _resolve_id(args.id, board)
            t = board.change_state(
                tid,
                args.state,
                picker=args.picker,
                unclaim=args.unclaim,
                note=args.note or "",
                actor=load_env()["USERNAME"],
            )
        print(f"{t.state}: {t.id}")
    except OpsError as e:
        _msg = f"An error occurred while changing the state of a task: {e!s}"
        logger.exception(_msg)
        return 1
    else:
        return 0


def cmd_block(args: argparse.Namespace) -> int:
    try:
        with closing(get_board()) as board:
            t = board.block_task(_resolve_id(args.id, board), args.note or "")
        print(f"blocked: {t.id}")
    except OpsError as e:
        _msg = f"An error occurred while blocking a task: {e!s}"
        logger.exception(_msg)
        return 1
    else:
        return 0


def cmd_suspend(args: argparse.Namespace) -> int:
    try:
        with closing(get_board()) as board:
            t = board.suspend_task(_resolve_id(args.id, board))
        print(f"suspended: {t.id}")
    except OpsError as e:
        _msg = f"An error occurred while suspending a task: {e!s}"
        logger.exception(_msg)
        return 1
    else:
        return 0


def cmd_depend(args: argparse.Namespace) -> int:
    try:
        with closing(get_board()) as board:
            tid = _resolve_id(args.id, board)
            for raw in args.on:
                board.add_dependency(tid, _resolve_id(raw, board))
        print(f"updated: {tid}")
    except OpsError as e:
        _msg = f"An error occurred while adding a dependency: {e!s}"
        logger.exception(_msg)
        return 1
    else:
        return 0


def cmd_remedy(args: argparse.Namespace) -> int:
    try:
        with closing(get_board()) as board:
            blocked, remedy = board.create_remedy(
                _resolve_id(args.id, board),
                title=args.title,
                description=args.description,
                deadline=args.deadline,
                created_by=load_env()["USERNAME"],
            )
        print(f"suspended: {blocked.id}")
        print(remedy.id)
    except OpsError as e:
        _msg = f"An error occurred while creating a remedy task: {e!s}"
        logger.exception(_msg)
        return 1
    else:
        return 0


def cmd_edit(args: argparse.Namespace) -> int:
    try:
        with closing(get_board()) as board:
            tid = _resolve_id(args.id, board)
            deps = None
            if args.dependencies is not None:
                match parse_ids(args.dependencies, source_ids=[t.id for t in board.list_tasks()]):
                    case Ok(ids):
                        deps = ids
                    case Err(e):
                        raise ValidationError(e)
            board.update_task(
                tid,
                title=args.title,
                description=args.description,
                scheduled_due_at=args.due,
                clear_scheduled_due_at=args.clear_due,
                deadline=args.deadline,
                clear_deadline=args.clear_deadline,
                lead_time_days=args.lead_time_days,
                recurrence=_parse_recurrence(args.recurrence),
                dependencies=deps,
            )
        print(f"updated: {tid}")
    except OpsError as e:
        _msg = f"An error occurred while updating a task: {e!s}"
        logger.exception(_msg)
        return 1
    else:
        return 0


def cmd_delete(args: argparse.Namespace) -> int:
    try:
        with closing(get_board()) as board:
            result = board.delete_task(_resolve_id(args.id, board), confirm=args.yes)
    except OpsError as e:
        for d in e.details.get("dependents", []):
            print(f"  depended on by: {d['id'][:LENGTH_SHORTEND_ID]} | {d['state']} | {d['title']}")
        _msg = f"An error occurred while deleting a task: {e!s}"
        logger.exception(_msg)
        return 1
    print("deleted:")
    for i in result["deleted"]:
        print(" ", i)
    for a in result["adjusted"]:
        print(f"  -> {a['state']}: {a['id']}")
    return 0


def cmd_recompute(args: argparse.Namespace) -> int:  # noqa: ARG001
    try:
        with closing(get_board()) as board:
            changes = board.recompute()
        for c in changes:
            print(f"{c['id'][:LENGTH_SHORTEND_ID]}: p={c['before']['priority']} -> {c['after']['priority']}")
        print(f"{len(changes)} task(s) changed")
    except OpsError as e:
        _msg = f"An error occurred while recomputing priorities: {e!s}"
        logger.exception(_msg)
        return 1
    else:
        return 0


def cmd_active(args: argparse.Namespace) -> int:
    try:
        with closing(get_board()) as board:
            tasks = board.active_tasks()
        for t in tasks[: args.limit] if args.limit else tasks:
            print(_line(t, t.state))
    except OpsError as e:
        _msg = f"An error occurred while listing active tasks: {e!s}"
        logger.exception(_msg)
        return 1
    else:
        return 0


def cmd_wip(args: argparse.Namespace) -> int:
    try:
        with closing(get_board()) as board:
            limits = board.set_wip_limits(dict(_parse_limit(s) for s in args.set)) if args.set else board.wip_limits()
        for state, limit in limits.items():
            print(f"{state}: {'-' if limit is None else limit}")
    except OpsError as e:
        _msg = f"An error occurred while handling WIP limits: {e!s}"
        logger.exception(_msg)
        return 1
    else:
        return 0


def cmd_export(args: argparse.Namespace) -> int:
    try:
        with closing(get_board()) as board:
            tasks = {t.id: t for t in board.list_tasks()}
        export_json(tasks, args.path)
    except (OpsError, FileExistsError) as e:
        _msg = f"An error occurred while exporting tasks: {e!s}"
        logger.exception(_msg)
        return 1
    print(f"exported to {args.path}")
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    try:
        incoming = import_json(args.path)
        with closing(get_board()) as board:
            existing = set() if args.replace else {t.id for t in board.list_tasks()}
            fresh = []
            for tid, t in incoming.items():
                if tid in existing:
                    # 衝突ポリシー: ID重複は上書きせずスキップ
                    print(f"skip (exists): {tid}")
                    continue
                fresh.append(t)
            count = board.import_tasks(fresh, replace=args.replace)
    except (OpsError, FileNotFoundError, ValueError) as e:
        _msg = f"An error occurred while importing tasks: {e!s}"
        logger.exception(_msg)
        return 1
    print(f"imported {count} task(s) from {args.path}")
    return 0


def cmd_check(args: argparse.Namespace) -> int:  # noqa: ARG001
    try:
        with closing(get_board()) as board:
            tasks = {t.id: t for t in board.list_tasks()}
    except OpsError as e:
        print(f"Error: {e!s}")
        return 1

    has_errors = False

    deadlocks = detect_deadlocks(tasks)
    if deadlocks:
        has_errors = True
        print("Deadlocked tasks (dependency cycle):")
        for tid in deadlocks:
            print(f"  {tid} | {tasks[tid].title}")
    else:
        print("No cycles detected.")

    inconsistencies = detect_inconsistencies(tasks)
    if inconsistencies:
        has_errors = True
        print("\nInconsistencies detected:")
        for tid, issue_type, related_id in inconsistencies:
            match issue_type:
                case "self_dependency":
                    print(f"  {tid} depends on itself")
                case "missing_dependency":
                    print(f"  {tid} depends on {related_id}, which doesn't exist")
                case "duplicate_dependency":
                    print(f"  {tid} lists {related_id} more than once")
                case "missing_remedy_target":
                    print(f"  {tid} is a remedy for {related_id}, which doesn't exist")
    else:
        print("\nNo inconsistencies detected.")

    if has_errors:
        return 1
    print("\nBoard is valid.")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    env = load_env()
    host = args.host or env["HOST"]
    port = args.port or int(env["PORT"])
    board = Board.from_env(env)
    ticker = RecomputeTicker(board.recompute, float(env["RECOMPUTE_INTERVAL_SECONDS"]))
    ticker.start()
    try:
        run_server(board, host, port)
    finally:
        ticker.stop(timeout=5)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="junban", description="Priority-ranked task board")
    sub = p.add_subparsers(dest="cmd", required=True)

    # log (debug mode)
    p.add_argument("--debug", action="store_true", help="debug mode")

    # add
    sp = sub.add_parser("add", help="add a task")
    sp.add_argument("title")
    sp.add_argument("--description")
    sp.add_argument("--due", help="scheduled due date in ISO format")
    sp.add_argument("--deadline", help="hard deadline in ISO format")
    sp.add_argument("--lead-time-days", type=float, default=0)
    sp.add_argument("--depends-on", nargs="*", help="dependency task IDs")
    sp.add_argument("--recurrence", help="recurrence in JSON or YAML format")
    sp.set_defaults(func=cmd_add)

    # list
    sp = sub.add_parser("list", help="list tasks")
    sp.add_argument("--state", choices=STATES, help="filter by effective state")
    sp.add_argument("--query")
    sp.add_argument("--details", action="store_true", help="show detailed information")
    sp.add_argument("--topo", action="store_true", help="dependencies first")
    sp.set_defaults(func=cmd_list)

    # show
    sp = sub.add_parser("show", help="show task")
    sp.add_argument("id")
    sp.set_defaults(func=cmd_show)

    # state
    sp = sub.add_parser("state", help="change the stored state of a task")
    sp.add_argument("id")
    sp.add_argument("state", choices=STATES)
    sp.add_argument("--picker")
    sp.add_argument("--unclaim", action="store_true")
    sp.add_argument("--note")
    sp.set_defaults(func=cmd_state)

    # block / suspend
    sp = sub.add_parser("block", help="mark blocked")
    sp.add_argument("id")
    sp.add_argument("--note")
    sp.set_defaults(func=cmd_block)

    sp = sub.add_parser("suspend", help="mark suspended")
    sp.add_argument("id")
    sp.set_defaults(func=cmd_suspend)

    # depend
    sp = sub.add_parser("depend", help="make a task depend on others")
    sp.add_argument("id")
    sp.add_argument("--on", nargs="+", required=True, help="dependency task IDs")
    sp.set_defaults(func=cmd_depend)

    # remedy
    sp = sub.add_parser("remedy", help="create a remedy task for a stuck task")
    sp.add_argument("id")
    sp.add_argument("--title")
    sp.add_argument("--description")
    sp.add_argument("--deadline")
    sp.set_defaults(func=cmd_remedy)

    # edit
    sp = sub.add_parser("edit", help="update fields of a task")
    sp.add_argument("id")
    sp.add_argument("--title")
    sp.add_argument("--description")
    sp.add_argument("--due", help="scheduled due date in ISO format")
    sp.add_argument("--clear-due", action="store_true")
    sp.add_argument("--deadline", help="hard deadline in ISO format")
    sp.add_argument("--clear-deadline", action="store_true")
    sp.add_argument("--lead-time-days", type=float)
    sp.add_argument("--recurrence", help="recurrence patch in JSON or YAML ('type: none' removes it)")
    sp.add_argument("--dependencies", help="comma separated IDs replacing dependencies ('' clears)")
    sp.set_defaults(func=cmd_edit)

    # delete
    sp = sub.add_parser("delete", help="delete a task and what only it depends on")
    sp.add_argument("id")
    sp.add_argument("--yes", action="store_true", help="delete even if other tasks depend on it")
    sp.set_defaults(func=cmd_delete)

    # recompute / active
    sp = sub.add_parser("recompute", help="recompute priorities")
    sp.set_defaults(func=cmd_recompute)

    sp = sub.add_parser("active", help="list Ready / InProgress tasks by priority")
    sp.add_argument("--limit", type=int)
    sp.set_defaults(func=cmd_active)

    # wip
    sp = sub.add_parser("wip", help="show or set WIP limits")
    sp.add_argument("--set", nargs="*", metavar="STATE=LIMIT", help="'none' removes the limit")
    sp.set_defaults(func=cmd_wip)

    # export / import
    sp = sub.add_parser("export", help="export to json")
    sp.add_argument("path")
    sp.set_defaults(func=cmd_export)

    sp = sub.add_parser("import", help="import from json")
    sp.add_argument("path")
    sp.add_argument("--replace", action="store_true", help="replace all tasks")
    sp.set_defaults(func=cmd_import)

    # check
    sp = sub.add_parser("check", help="check the board for cycles and broken references")
    sp.set_defaults(func=cmd_check)

    # serve
    sp = sub.add_parser("serve", help="run the JSON API with periodic recompute")
    sp.add_argument("--host")
    sp.add_argument("--port", type=int)
    sp.set_defaults(func=cmd_serve)

    return p


def main(argv: list[str] | None = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_mode(is_debug=args.debug)
    return args.func(args)  # type: ignore[no-any-return]


if __name__ == "__main__":
    sys.exit(main())
