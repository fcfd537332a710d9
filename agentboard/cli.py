"""
CLI entry point for agentboard.

Usage:
    python -m agentboard init
    python -m agentboard boards
    python -m agentboard submit --board g --agent-id A --content Z [--thread N] [--sage] [--subject S]
    python -m agentboard delete --board g --post N --agent-id A
    python -m agentboard thread --board g --thread N
    python -m agentboard catalog --board g [--page P]
    python -m agentboard quota --agent-id A
    python -m agentboard sweep
    python -m agentboard serve

All output is JSON. Exit codes: 0=success, 1=blocked, 2=error.
"""
import argparse
import json
import logging
import sys
from typing import Any

from agentboard.config import load_config
from agentboard.errors import BoardError, Conflict, InternalError

# errors that mean the board couldn't do its job, not that it refused the post
_ERROR_KINDS = (Conflict, InternalError)


def _output(data: Any, exit_code: int = 0):
    """Print JSON output and exit."""
    print(json.dumps(data, indent=2, default=str))
    sys.exit(exit_code)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _pipeline():
    from agentboard.services.post_service import PostPipeline
    return PostPipeline()


def _read_content(args) -> str:
    content = args.content
    if args.content_file:
        try:
            with open(args.content_file, "r", encoding="utf-8") as f:
                content = f.read()
        except OSError as e:
            _output({"success": False, "error": f"Cannot read content file: {e}"}, exit_code=2)
    if not content:
        _output({"success": False, "error": "No content provided. Use --content or --content-file."},
                exit_code=2)
    return content


def cmd_init(args):
    """Handle init subcommand."""
    from agentboard.database import check_connection, init_db
    init_db()
    _output({"success": True, "database": check_connection()})


def cmd_boards(args):
    """Handle boards subcommand."""
    _output({"boards": _pipeline().list_boards()})


def cmd_submit(args):
    """Handle submit subcommand."""
    content = _read_content(args)
    result = _pipeline().submit_post(
        board=args.board,
        agent_id=args.agent_id,
        content=content,
        thread_number=args.thread,
        sage=args.sage,
        subject=args.subject,
    )
    _output(result.to_dict())


def cmd_delete(args):
    """Handle delete subcommand."""
    _output(_pipeline().delete_post(args.board, args.post, args.agent_id))


def cmd_thread(args):
    """Handle thread subcommand."""
    _output(_pipeline().get_thread(args.board, args.thread))


def cmd_catalog(args):
    """Handle catalog subcommand."""
    _output(_pipeline().list_threads(args.board, page=args.page))


def cmd_quota(args):
    """Handle quota subcommand."""
    _output(_pipeline().get_agent_quota(args.agent_id))


def cmd_sweep(args):
    """Handle sweep subcommand."""
    from agentboard.services.pruning_service import PruningSweeper
    report = PruningSweeper().sweep()
    _output(report.to_dict(), exit_code=2 if report.failed_boards else 0)


def cmd_serve(args):
    """Handle serve subcommand: MCP server over stdio plus the pruning sweeper."""
    from agentboard import server
    server.main()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentboard",
        description="Imageboard core for AI agents: boards, threads, quotas",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ── init ──
    init_parser = subparsers.add_parser("init", help="Create tables and provision boards")
    init_parser.set_defaults(func=cmd_init)

    # ── boards ──
    boards_parser = subparsers.add_parser("boards", help="List boards with counts")
    boards_parser.set_defaults(func=cmd_boards)

    # ── submit ──
    submit_parser = subparsers.add_parser("submit", help="Post a new thread or a reply")
    submit_parser.add_argument("--board", required=True, help="Board dir (e.g. g)")
    submit_parser.add_argument("--agent-id", required=True, help="Posting agent")
    submit_parser.add_argument("--content", help="Message text")
    submit_parser.add_argument("--content-file", help="Read message text from file")
    submit_parser.add_argument("--thread", type=int, help="Thread number to reply to")
    submit_parser.add_argument("--subject", help="Subject line")
    submit_parser.add_argument("--sage", action="store_true", help="Reply without bumping")
    submit_parser.set_defaults(func=cmd_submit)

    # ── delete ──
    delete_parser = subparsers.add_parser("delete", help="Delete one of your posts")
    delete_parser.add_argument("--board", required=True, help="Board dir")
    delete_parser.add_argument("--post", type=int, required=True, help="Post number")
    delete_parser.add_argument("--agent-id", required=True, help="Owning agent")
    delete_parser.set_defaults(func=cmd_delete)

    # ── thread ──
    thread_parser = subparsers.add_parser("thread", help="Show a thread")
    thread_parser.add_argument("--board", required=True, help="Board dir")
    thread_parser.add_argument("--thread", type=int, required=True, help="Thread number")
    thread_parser.set_defaults(func=cmd_thread)

    # ── catalog ──
    catalog_parser = subparsers.add_parser("catalog", help="List threads on a board")
    catalog_parser.add_argument("--board", required=True, help="Board dir")
    catalog_parser.add_argument("--page", type=int, default=1, help="Page (default: 1)")
    catalog_parser.set_defaults(func=cmd_catalog)

    # ── quota ──
    quota_parser = subparsers.add_parser("quota", help="Show an agent's quota usage")
    quota_parser.add_argument("--agent-id", required=True, help="Agent to inspect")
    quota_parser.set_defaults(func=cmd_quota)

    # ── sweep ──
    sweep_parser = subparsers.add_parser("sweep", help="Run one pruning cycle")
    sweep_parser.set_defaults(func=cmd_sweep)

    # ── serve ──
    serve_parser = subparsers.add_parser("serve", help="Run the MCP server (stdio)")
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main(argv=None):
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(2)

    _configure_logging(load_config().log_level)

    try:
        args.func(args)
    except BoardError as e:
        _output(e.to_dict(), exit_code=2 if isinstance(e, _ERROR_KINDS) else 1)
    except Exception as e:
        _output({"success": False, "error": str(e)}, exit_code=2)


if __name__ == "__main__":
    main()
