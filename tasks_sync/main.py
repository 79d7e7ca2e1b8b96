#!/usr/bin/env python3
"""
Apple Reminders ↔ Google Tasks Sync CLI

Main command-line interface for the sync tool. `sync` runs exactly one
reconciliation pass; schedule it with launchd or cron.
"""

import argparse
import logging
import sys

from .apple_reminders import AppleReminders
from .credentials import SecretsProvider
from .exceptions import ConfigurationError
from .google_tasks import GoogleTasksClient
from .local_cache import LocalSyncCache
from .sync_engine import ReconciliationEngine
from .sync_state import MappingStore
from . import config

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Log to stderr and to LOGS_DIR/tasks-sync.log."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    try:
        config.LOGS_DIR.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.LOGS_DIR / "tasks-sync.log"))
    except OSError as e:
        print(f"Warning: file logging disabled ({e})", file=sys.stderr)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_engine(with_local: bool = True, secrets: SecretsProvider = None) -> ReconciliationEngine:
    """Wire the engine from configuration."""
    remote = GoogleTasksClient(secrets or SecretsProvider())
    local = AppleReminders() if with_local else None
    return ReconciliationEngine(remote=remote, store=MappingStore(), local=local)


def cmd_sync(args):
    """Run one reconciliation pass."""
    secrets = SecretsProvider()
    try:
        secrets.load()
        engine = build_engine(secrets=secrets)
    except (ConfigurationError, FileNotFoundError) as e:
        logger.error(str(e))
        return 1

    cache = LocalSyncCache()
    if args.reset:
        logger.info("Resetting local sync cache...")
        cache.reset()

    print("Starting sync...")
    try:
        result = engine.run_pass(force=args.force, cache=cache)
    except ConfigurationError as e:
        logger.error(str(e))
        return 1
    finally:
        engine.close()

    return 0 if not result.errors else 1


def cmd_status(args):
    """Show sync status."""
    engine = build_engine()
    try:
        status = engine.get_status()
    finally:
        engine.close()

    print("\n=== Sync Status ===\n")
    print(f"Incomplete reminders: {status['incomplete_reminders']}")
    print(f"Google task lists: {status['google_task_lists']}")
    print()
    print("Sync State:")
    for key, value in status["sync_state"].items():
        print(f"  {key}: {value}")
    print(f"  local cache entries: {len(LocalSyncCache())}")

    if status["last_logs"]:
        print("\nRecent Activity:")
        for log in status["last_logs"]:
            print(f"  [{log['timestamp']}] {log['action']}")

    return 0


def cmd_lists(args):
    """Show lists on both sides."""
    apple = AppleReminders()
    with GoogleTasksClient(SecretsProvider()) as google:
        print("\n=== Lists ===\n")

        print("Apple Reminder Lists:")
        for list_name in apple.list_lists():
            print(f"  - {list_name}")

        print("\nGoogle Task Lists:")
        for task_list in google.list_task_lists():
            print(f"  - {task_list.title} ({task_list.id[:8]}...)")

    return 0


def cmd_test(args):
    """Test connections to both systems."""
    print("\n=== Connection Test ===\n")

    print("Testing Apple Reminders...")
    try:
        apple = AppleReminders()
        if apple.test_connection():
            reminders = apple.list_incomplete()
            print(f"  ✓ Connected. Found {len(reminders)} incomplete reminders.")
        else:
            print("  ✗ Connection failed.")
    except Exception as e:
        print(f"  ✗ Error: {e}")

    print("\nTesting Google Tasks...")
    try:
        with GoogleTasksClient(SecretsProvider()) as google:
            google.check_credentials()
            lists = google.list_task_lists()
            print(f"  ✓ Connected. Found {len(lists)} task lists.")
    except Exception as e:
        print(f"  ✗ Error: {e}")

    return 0


def cmd_serve(args):
    """Run the webhook server."""
    import uvicorn

    from .server import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port)
    return 0


def cmd_clear_state(args):
    """Clear all sync state (for debugging)."""
    if not args.yes:
        response = input("This will clear all sync state. Type 'CLEAR' to confirm: ")
        if response != "CLEAR":
            print("Cancelled.")
            return 1

    MappingStore().clear_all()
    LocalSyncCache().reset()
    print("Sync state cleared.")
    return 0


def cmd_config(args):
    """Show current configuration."""
    config.print_config()
    return 0


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Apple Reminders ↔ Google Tasks Sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run one sync pass
  tasks-sync sync

  # Update already-synced reminders in Google as well
  tasks-sync sync --force

  # Forget the local cache, then sync
  tasks-sync sync --reset

  # Check sync status
  tasks-sync status

  # Run the webhook server
  tasks-sync serve --port 8080
"""
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Run one sync pass")
    sync_parser.add_argument(
        "--force",
        action="store_true",
        help="Update already-synced reminders instead of skipping them"
    )
    sync_parser.add_argument(
        "--reset",
        action="store_true",
        help="Clear the local sync cache before syncing"
    )

    # status command
    subparsers.add_parser("status", help="Show sync status")

    # lists command
    subparsers.add_parser("lists", help="Show lists on both sides")

    # test command
    subparsers.add_parser("test", help="Test connections to both systems")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the webhook server")
    serve_parser.add_argument("--host", default=config.SERVER_HOST)
    serve_parser.add_argument("--port", type=int, default=config.SERVER_PORT)

    # clear-state command (hidden/debug)
    clear_parser = subparsers.add_parser("clear-state", help="Clear sync state (debug)")
    clear_parser.add_argument("--yes", "-y", action="store_true")

    # config command
    subparsers.add_parser("config", help="Show current configuration")

    args = parser.parse_args()
    setup_logging(args.verbose)

    # Dispatch to command handler
    commands = {
        "sync": cmd_sync,
        "status": cmd_status,
        "lists": cmd_lists,
        "test": cmd_test,
        "serve": cmd_serve,
        "clear-state": cmd_clear_state,
        "config": cmd_config,
    }

    handler = commands.get(args.command)
    if handler:
        sys.exit(handler(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
