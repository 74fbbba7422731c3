"""Command-line interface for the offline-first sync core.

Every command reads from the local cache; writes follow the engine's
online/offline routing.  ``--offline`` forces the offline path (optimistic
cache + queued write); otherwise the remote API is assumed reachable.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from . import __version__
from .config import Config
from .config_loader import ensure_config
from .errors import RemoteError, StoreError, SyncError
from .lifespan import engine_lifespan, resolve_config
from .logger import setup_logging
from .sync.engine import SyncEngine
from .sync.reporter import (
    format_progress,
    format_status,
    format_sync_report,
    format_users,
    records_to_json,
    report_to_json,
)
from .sync.scheduler import SyncScheduler

logger = logging.getLogger(__name__)


def _emit(data: Any, text: str, as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2))
    else:
        print(text)


def _warn(msg: str) -> None:
    print(f"Warning: {msg}", file=sys.stderr)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _users_list(engine: SyncEngine, args: argparse.Namespace) -> int:
    if args.refresh and engine.online:
        try:
            await engine.refresh_users()
        except SyncError as e:
            _warn(f"could not refresh users, showing cached data ({e})")
    users = engine.list_users()
    _emit(records_to_json(users), format_users(users), args.json)
    return 0


async def _users_create(engine: SyncEngine, args: argparse.Namespace) -> int:
    user = await engine.create_user(args.name)
    if user.pending:
        text = f"Cached user {user.id}: {user.name} (offline, queued for sync)"
    else:
        text = f"Created user {user.id}: {user.name}"
    _emit(user.model_dump(mode="json"), text, args.json)
    return 0


async def _progress_list(engine: SyncEngine, args: argparse.Namespace) -> int:
    if args.refresh and engine.online:
        try:
            await engine.refresh_progress(args.user)
        except SyncError as e:
            _warn(f"could not refresh progress, showing cached data ({e})")
    entries = engine.list_progress(args.user)
    _emit(records_to_json(entries), format_progress(entries), args.json)
    return 0


async def _progress_save(engine: SyncEngine, args: argparse.Namespace) -> int:
    entry = await engine.save_progress(args.user, args.lesson, args.score)
    if entry.pending:
        text = (
            f"Cached progress {entry.id} for user {entry.user_id} "
            "(offline, queued for sync)"
        )
    else:
        text = f"Saved progress {entry.id} for user {entry.user_id}"
    _emit(entry.model_dump(mode="json"), text, args.json)
    return 0


async def _sync(engine: SyncEngine, args: argparse.Namespace) -> int:
    if not engine.online:
        _warn("offline; nothing was sent")
        return 1
    report = await engine.reconcile_now()
    _emit(report_to_json(report), format_sync_report(report), args.json)
    return 1 if report.halted else 0


async def _status(engine: SyncEngine, args: argparse.Namespace) -> int:
    queued = engine.pending_count()
    pending_users = sum(1 for u in engine.list_users() if u.pending)
    pending_progress = sum(1 for p in engine.list_progress() if p.pending)
    data = {
        "online": engine.online,
        "queued": queued,
        "pending_users": pending_users,
        "pending_progress": pending_progress,
    }
    text = format_status(queued, pending_users, pending_progress, engine.online)
    _emit(data, text, args.json)
    return 0


async def _watch(
    engine: SyncEngine, args: argparse.Namespace, config: Config
) -> int:
    def _print_report(report):
        _emit(report_to_json(report), format_sync_report(report), args.json)
        sys.stdout.flush()

    scheduler = SyncScheduler(
        engine,
        interval=config.sync_interval,
        on_report=_print_report,
    )
    await scheduler.start()
    print(
        f"Watching; syncing every {config.sync_interval:g}s. Ctrl-C to stop.",
        file=sys.stderr,
    )
    try:
        await asyncio.Event().wait()
    finally:
        await scheduler.stop()
    return 0


_HANDLERS = {
    ("users", "list"): _users_list,
    ("users", "create"): _users_create,
    ("progress", "list"): _progress_list,
    ("progress", "save"): _progress_save,
    ("sync", None): _sync,
    ("status", None): _status,
}


async def main(args: argparse.Namespace, config: Config) -> int:
    """Run one CLI command against a freshly built engine.

    Returns:
        Process exit code.
    """
    if args.command == "init":
        path = ensure_config()
        print(f"Config file: {path}")
        return 0
    async with engine_lifespan(config, online=not args.offline) as ctx:
        engine: SyncEngine = ctx["engine"]
        if args.command == "watch":
            return await _watch(engine, args, config)
        handler = _HANDLERS[(args.command, getattr(args, "action", None))]
        return await handler(engine, args)


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="school-sync",
        description="Offline-first Users & Progress client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create a user while offline (cached and queued)
  school-sync --offline users create Amina

  # Record a score for that user's temporary id
  school-sync --offline progress save --user -1 --lesson "Math 1" --score 95

  # Push queued writes and refresh the caches
  school-sync sync

  # Keep syncing every 30 seconds
  school-sync watch
        """,
    )
    parser.add_argument(
        "--url",
        help="Override API base URL (takes precedence over SCHOOL_SYNC_API_URL and config files)",
    )
    parser.add_argument(
        "--data-dir",
        help="Directory holding the local store files",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Work from the cache only; writes are queued for the next sync",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument("--debug", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "--json", action="store_true", help="Print machine-readable JSON"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"school-sync version {__version__}",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    users = commands.add_parser("users", help="List or create users")
    users_actions = users.add_subparsers(dest="action", required=True)
    users_list = users_actions.add_parser("list", help="List cached users")
    users_list.add_argument(
        "--refresh", action="store_true", help="Refresh from the server first"
    )
    users_create = users_actions.add_parser("create", help="Create a user")
    users_create.add_argument("name")

    progress = commands.add_parser("progress", help="List or save progress")
    progress_actions = progress.add_subparsers(dest="action", required=True)
    progress_list = progress_actions.add_parser(
        "list", help="List cached progress, newest first"
    )
    progress_list.add_argument("--user", type=int, help="Only this user id")
    progress_list.add_argument(
        "--refresh", action="store_true", help="Refresh from the server first"
    )
    progress_save = progress_actions.add_parser("save", help="Save a score")
    progress_save.add_argument("--user", type=int, required=True)
    progress_save.add_argument("--lesson", required=True)
    progress_save.add_argument("--score", type=int, required=True)

    commands.add_parser("sync", help="Send queued writes and refresh caches")
    commands.add_parser("status", help="Show queued and pending counts")
    commands.add_parser("watch", help="Sync periodically until interrupted")
    commands.add_parser(
        "init", help="Create a starter config file if none exists"
    )

    return parser


def run(argv: list[str] | None = None) -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    args = build_parser().parse_args(argv)

    config_overrides: dict[str, Any] = {}
    if args.url:
        config_overrides["url"] = args.url
    if args.data_dir:
        config_overrides["data_dir"] = args.data_dir
    if args.insecure:
        config_overrides["insecure"] = True
    if args.debug:
        config_overrides["debug"] = True

    try:
        config, unified = resolve_config(config_overrides)
    except RuntimeError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(
        debug=config.debug,
        log_file=args.log_file or unified.logging.file,
        log_format=unified.logging.format,
        level=unified.logging.level,
    )

    try:
        code = asyncio.run(main(args, config))
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(2)
    except RemoteError as e:
        print(f"ERROR: remote request failed: {e}", file=sys.stderr)
        sys.exit(1)
    except (StoreError, RuntimeError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)
    sys.exit(code)


if __name__ == "__main__":
    run()
