"""cronq CLI"""

import argparse
import asyncio
import sys
from typing import Awaitable, Callable, TypeVar

from common.config import AppConfig, ConfigError, load_config
from common.logging import setup_logging
from cronq import __version__
from database import DatabaseError
from dispatcher import CatchUpDetector, ScheduledTask, TaskRegistry

T = TypeVar("T")


def _format_time(value) -> str:
    return value.isoformat(timespec="seconds") if value else "-"


def _print_tasks(tasks: list[ScheduledTask]) -> None:
    if not tasks:
        print("No tasks registered")
        return

    header = f"{'NAME':<24} {'CRON':<16} {'ENABLED':<8} {'STATUS':<8} {'LAST RUN':<26} {'NEXT RUN':<26}"
    print(header)
    print("-" * len(header))
    for task in tasks:
        print(
            f"{task.name:<24} {task.cron_expression:<16} "
            f"{'yes' if task.enabled else 'no':<8} {task.last_run_status.value:<8} "
            f"{_format_time(task.last_run_at):<26} {_format_time(task.next_run_at):<26}"
        )
        if task.last_run_error:
            print(f"    error: {task.last_run_error}")


async def _with_registry(config: AppConfig, action: Callable[[TaskRegistry], Awaitable[T]]) -> T:
    """저장소를 열어 action 실행 후 닫기"""
    from main import create_registry, open_database

    db = await open_database(config)
    try:
        return await action(create_registry(db, config))
    finally:
        await db.close()


def cmd_tasks(config: AppConfig, args: argparse.Namespace) -> int:
    tasks = asyncio.run(_with_registry(config, lambda r: r.list_tasks(enabled_only=args.enabled)))
    _print_tasks(tasks)
    return 0


def cmd_missed(config: AppConfig, args: argparse.Namespace) -> int:
    missed = asyncio.run(_with_registry(config, lambda r: CatchUpDetector(r).find_missed()))
    if not missed:
        print("No missed tasks")
        return 0

    for task in missed:
        print(f"{task.name:<24} {task.cron_expression:<16} last_run_at={_format_time(task.last_run_at)}")
    return 0


def cmd_set_enabled(config: AppConfig, args: argparse.Namespace) -> int:
    enabled = args.command == "enable"
    changed = asyncio.run(_with_registry(config, lambda r: r.set_enabled(args.name, enabled)))
    if not changed:
        print(f"Error: task '{args.name}' not found")
        return 1

    print(f"Task '{args.name}' {'enabled' if enabled else 'disabled'}")
    return 0


def cmd_run(config: AppConfig, args: argparse.Namespace) -> int:
    from main import main as run_main

    try:
        asyncio.run(run_main(args.config))
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cronq",
        description="cronq - 크론 기반 태스크 스케줄링과 동시성 제한 디스패치"
    )
    parser.add_argument("-c", "--config", default=None, help="Config file (default: config/cronq.yaml)")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # tasks command
    tasks_parser = subparsers.add_parser("tasks", help="List scheduled tasks")
    tasks_parser.add_argument("--enabled", action="store_true", help="Only enabled tasks")

    # missed command
    subparsers.add_parser("missed", help="List tasks that missed their schedule")

    # enable / disable command
    for command in ("enable", "disable"):
        toggle_parser = subparsers.add_parser(command, help=f"{command.capitalize()} a task")
        toggle_parser.add_argument("name", help="Task name")

    # run command
    subparsers.add_parser("run", help="Run the scheduler in the foreground")

    return parser


COMMANDS: dict[str, Callable[[AppConfig, argparse.Namespace], int]] = {
    "tasks": cmd_tasks,
    "missed": cmd_missed,
    "enable": cmd_set_enabled,
    "disable": cmd_set_enabled,
    "run": cmd_run,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command not in COMMANDS:
        parser.print_help()
        return 0

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 2

    if args.command != "run":
        setup_logging(level="WARNING", json_format=False)

    try:
        return COMMANDS[args.command](config, args)
    except DatabaseError as e:
        print(f"Database error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
