"""kanbanterm command line: inspect and drive terminal sessions of a Code Kanban server."""

from __future__ import annotations

import argparse
import asyncio
import base64
import binascii
import sys
from pathlib import Path

from structlog import get_logger

from kanbanterm.api_models import ServerFrame
from kanbanterm.config import KanbanTermConfig, load_config
from kanbanterm.constants import FRAME_DATA, FRAME_EXIT
from kanbanterm.errors import KanbanTermError
from kanbanterm.logging_config import setup_logging
from kanbanterm.manager import TerminalSessionManager
from kanbanterm.models import TerminalCreateOptions, TerminalTab

logger = get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kanbanterm", description=__doc__)
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yml")
    parser.add_argument("--base-url", default=None, help="Override server.base_url")
    parser.add_argument("--log-level", default=None, help="Override log_level")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("sessions", help="List a project's terminal sessions in tab order")
    p.add_argument("project")

    sub.add_parser("counts", help="Show terminal counts per project")

    p = sub.add_parser("create", help="Create a terminal session in a worktree")
    p.add_argument("project")
    p.add_argument("worktree")
    p.add_argument("--title", default="")
    p.add_argument("--dir", dest="working_dir", default="")
    p.add_argument("--rows", type=int, default=None)
    p.add_argument("--cols", type=int, default=None)

    p = sub.add_parser("rename", help="Rename a terminal session")
    p.add_argument("project")
    p.add_argument("session")
    p.add_argument("title")

    p = sub.add_parser("close", help="Close a terminal session")
    p.add_argument("project")
    p.add_argument("session")

    p = sub.add_parser("close-all", help="Close every terminal session of a project")
    p.add_argument("project")

    p = sub.add_parser("attach", help="Stream a session's output until it exits")
    p.add_argument("project")
    p.add_argument("session")
    return parser


def _print_tabs(tabs: list[TerminalTab], active_id: str) -> None:
    if not tabs:
        print("No sessions found.")
        return
    header = f"{'':1} {'ID':<12}  {'STATUS':<10}  {'SIZE':<9}  {'CREATED':<20}  TITLE"
    print(header)
    print("-" * len(header))
    for tab in tabs:
        marker = "*" if tab.id == active_id else " "
        size = f"{tab.cols}x{tab.rows}"
        print(f"{marker} {tab.id[:12]:<12}  {tab.status or '-':<10}  {size:<9}  {tab.created_at[:19]:<20}  {tab.title}")


async def _attach(manager: TerminalSessionManager, project: str, session_id: str) -> int:
    await manager.load_sessions(project)
    if not any(tab.id == session_id for tab in manager.list_sessions(project)):
        sys.stderr.write(f"kanbanterm error: session {session_id} not found in project {project}\n")
        return 1

    done = asyncio.Event()
    out = sys.stdout.buffer

    def on_frame(frame: ServerFrame) -> None:
        if frame.type == FRAME_DATA and frame.data:
            try:
                out.write(base64.b64decode(frame.data))
            except binascii.Error:
                out.write(frame.data.encode("utf-8", errors="replace"))
            out.flush()
        elif frame.type == FRAME_EXIT:
            done.set()

    subscription = manager.subscribe(session_id, on_frame)
    try:
        await done.wait()
    finally:
        subscription.unsubscribe()
    return 0


async def _run(args: argparse.Namespace, config: KanbanTermConfig) -> int:
    async with TerminalSessionManager.from_config(config) as manager:
        if args.command == "sessions":
            await manager.load_sessions(args.project)
            _print_tabs(manager.list_sessions(args.project), manager.active_tab_id(args.project))
            return 0

        if args.command == "counts":
            counts = await manager.load_terminal_counts()
            if not counts:
                print("No terminals.")
            for project_id, count in sorted(counts.items()):
                print(f"{project_id}\t{count}")
            return 0

        if args.command == "create":
            options = TerminalCreateOptions(
                worktree_id=args.worktree,
                working_dir=args.working_dir,
                title=args.title,
                rows=args.rows if args.rows is not None else config.terminal.default_rows,
                cols=args.cols if args.cols is not None else config.terminal.default_cols,
            )
            tab = await manager.create_session(args.project, options)
            print(tab.id)
            return 0

        if args.command == "rename":
            renamed = await manager.rename_session(args.project, args.session, args.title)
            print(renamed.title if renamed else args.title.strip())
            return 0

        if args.command == "close":
            await manager.close_session(args.project, args.session)
            return 0

        if args.command == "close-all":
            await manager.load_sessions(args.project)
            failed = await manager.close_all_sessions(args.project)
            for session_id in failed:
                sys.stderr.write(f"kanbanterm error: failed to close {session_id}\n")
            return 1 if failed else 0

        if args.command == "attach":
            return await _attach(manager, args.project, args.session)

    sys.stderr.write("kanbanterm error: unsupported command\n")
    return 1


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)
    config = load_config(args.config)
    if args.base_url:
        config = config.model_copy(update={"server": config.server.model_copy(update={"base_url": args.base_url.rstrip("/")})})
    setup_logging(args.log_level or config.log_level)

    try:
        code = asyncio.run(_run(args, config))
    except KeyboardInterrupt:
        sys.exit(130)
    except KanbanTermError as e:
        sys.stderr.write(f"kanbanterm error: {e}\n")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
