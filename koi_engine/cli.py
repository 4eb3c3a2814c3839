"""``koi-engine`` command line: inspect running tasks and task history."""

import argparse
import sys
from typing import List, Optional

from rich.console import Console

from koi_engine import __version__
from koi_engine.core.state import read_history, read_running_tasks
from koi_engine.observability import configure_logging
from koi_engine.report import render_history, render_running_tasks
from koi_engine.settings import get_settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="koi-engine",
        description="Koi Engine - bounded plan/execute/evaluate iteration",
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"{__version__}",
        help="Show version and exit",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("status", help="Show the tasks currently running")

    history = subparsers.add_parser("history", help="Show recently finished tasks")
    history.add_argument(
        "--limit",
        "-n",
        type=int,
        default=20,
        help="Number of entries to show (default: 20)",
    )
    return parser


def main(argv: Optional[List[str]] = None, console: Optional[Console] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    console = console or Console()

    settings = get_settings()
    configure_logging(settings.logging)

    if args.command == "status":
        render_running_tasks(read_running_tasks(settings.paths.tasks_dir), console)
        return 0
    if args.command == "history":
        if args.limit < 1:
            parser.error("--limit must be at least 1")
        render_history(read_history(args.limit, settings.paths.task_history_file), console)
        return 0

    parser.print_help()
    return 1


def main_entry() -> None:
    """Entry point for the installed CLI tool."""
    sys.exit(main())
