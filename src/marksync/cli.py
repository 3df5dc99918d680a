"""Command-line interface for Marksync.

Commands:
    serve                   Run the sync server
    pull [-o FILE] [--full] Pull bookmarks from the server
    push FILE               Push bookmarks from a JSON file
    status                  Show device and server information
    log [--limit N]         Show the server's activity log
    stats                   Show server statistics
    sync FILE               Push bookmarks from a file, then pull everything
    config show             Show the configuration
    config set KEY VALUE    Change a setting (server.port, sync.server_url,
                            sync.merge_policy)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .core.config import Config
from .core.store import MarksyncError
from .core.sync_client import SyncClient
from .core.validation import ValidationError


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def format_bookmark(bookmark: Dict[str, Any]) -> str:
    """Format a single bookmark for display.

    Args:
        bookmark: Bookmark dictionary

    Returns:
        One-line summary: title, url and the devices that synced it
    """
    title = bookmark.get("title") or "(untitled)"
    url = bookmark.get("url", "")
    devices = ", ".join(str(d) for d in bookmark.get("syncedDevices") or [])
    line = f"{bookmark.get('id')}  {title}  {url}"
    if devices:
        line += f"  [{devices}]"
    return line


def load_bookmarks_file(path: Path) -> List[Dict[str, Any]]:
    """Read a bookmark list from a JSON file.

    The file holds either a list of bookmarks or an object with a
    "bookmarks" list (the shape returned by pull).
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ValidationError("file", f"cannot read {path}: {e}") from None
    except ValueError as e:
        raise ValidationError("file", f"{path} is not valid JSON: {e}") from None
    if isinstance(data, dict):
        data = data.get("bookmarks")
    if not isinstance(data, list):
        raise ValidationError("file", f"{path} must contain a list of bookmarks")
    return data


def cmd_serve(config: Config, args: argparse.Namespace) -> int:
    """Run the sync server until interrupted."""
    from .web import run_server

    run_server(config, host=args.host, port=args.port)
    return 0


def cmd_pull(client: SyncClient, args: argparse.Namespace) -> int:
    """Pull bookmarks and print or save them."""
    result = client.pull(full=args.full)

    if args.output:
        Path(args.output).write_text(
            json.dumps(result.bookmarks, indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
        print(f"Saved {result.pulled} bookmarks to {args.output} ({result.total} on server)")
        return 0

    if args.format == "json":
        print_json({"bookmarks": result.bookmarks, "totalCount": result.total})
    else:
        for bookmark in result.bookmarks:
            print(format_bookmark(bookmark))
        print(f"\n{result.pulled} of {result.total} bookmarks")
    return 0


def cmd_push(client: SyncClient, args: argparse.Namespace) -> int:
    """Push bookmarks read from a JSON file."""
    bookmarks = load_bookmarks_file(Path(args.file))
    result = client.push(bookmarks, action=args.action)

    if args.format == "json":
        print_json({
            "syncedCount": result.pushed,
            "totalCount": result.total,
            "syncTime": result.sync_time,
        })
    else:
        print(f"Pushed {result.pushed} bookmarks, {result.total} on server")
    return 0


def cmd_sync(client: SyncClient, args: argparse.Namespace) -> int:
    """Push bookmarks read from a JSON file, then pull the merged collection."""
    bookmarks = load_bookmarks_file(Path(args.file))
    result = client.sync(bookmarks)

    if not result.success:
        for error in result.errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    if args.output:
        Path(args.output).write_text(
            json.dumps(result.bookmarks, indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )

    if args.format == "json":
        print_json({
            "syncedCount": result.pushed,
            "totalCount": result.total,
            "syncTime": result.sync_time,
        })
    else:
        print(f"Pushed {result.pushed} bookmarks, {result.total} on server")
    return 0


def cmd_status(config: Config, client: SyncClient, args: argparse.Namespace) -> int:
    """Show device configuration and server reachability."""
    online = client.health()
    status = {
        "device_id": config.get_device_id(),
        "device_name": config.get_device_name(),
        "server_url": config.get_server_url(),
        "server_online": online,
        "merge_policy": config.get_merge_policy().value,
    }
    if args.format == "json":
        print_json(status)
    else:
        print(f"Device ID:    {status['device_id']}")
        print(f"Device name:  {status['device_name']}")
        print(f"Server:       {status['server_url']} ({'online' if online else 'offline'})")
        print(f"Merge policy: {status['merge_policy']}")
    return 0 if online else 1


def cmd_log(client: SyncClient, args: argparse.Namespace) -> int:
    """Show the server's activity log."""
    entries = client.activity(limit=args.limit)
    if args.format == "json":
        print_json(entries)
        return 0
    if not entries:
        print("No sync activity.")
        return 0
    for entry in entries:
        print(
            f"{entry.get('timestamp')}  {entry.get('deviceId')}  "
            f"{entry.get('action')}  {entry.get('count')}"
        )
    return 0


def cmd_stats(client: SyncClient, args: argparse.Namespace) -> int:
    """Show server statistics."""
    stats = client.stats()
    if args.format == "json":
        print_json(stats)
    else:
        print(f"Bookmarks:  {stats.get('totalBookmarks', 0)}")
        print(f"Devices:    {stats.get('deviceCount', 0)}")
        print(f"Users:      {stats.get('userCount', 0)}")
        print(f"Activities: {stats.get('activityCount', 0)}")
    return 0


def cmd_config(config: Config, args: argparse.Namespace) -> int:
    """Show the configuration or change one setting."""
    if args.config_command == "show":
        print_json(config.config_data)
        return 0

    if args.key == "server.port":
        try:
            port = int(args.value)
        except ValueError:
            raise ValidationError("port", f"must be an integer, got '{args.value}'") from None
        config.set_server_port(port)
    elif args.key == "sync.server_url":
        config.set_server_url(args.value)
    elif args.key == "sync.merge_policy":
        config.set_merge_policy(args.value)
    else:
        raise ValidationError("key", f"unknown setting '{args.key}'")

    print(f"{args.key} = {config.get(args.key)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="marksync",
        description="Bookmark sync server and client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "-d", "--config-dir",
        type=Path,
        default=None,
        help="Custom configuration directory (default: ~/.config/marksync)",
    )
    parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    parser.add_argument(
        "-u", "--user",
        default=None,
        help="Sync a user's collection instead of the global one",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the sync server")
    serve_parser.add_argument("--host", default=None, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to")

    pull_parser = subparsers.add_parser("pull", help="Pull bookmarks from the server")
    pull_parser.add_argument("-o", "--output", default=None, help="Write bookmarks to this file")
    pull_parser.add_argument(
        "--full",
        action="store_true",
        help="Get all bookmarks, not only those changed since the last push",
    )

    push_parser = subparsers.add_parser("push", help="Push bookmarks from a JSON file")
    push_parser.add_argument("file", help="JSON file with a list of bookmarks")
    push_parser.add_argument("--action", default="push", help="Action label for the activity log")

    subparsers.add_parser("status", help="Show device and server information")

    log_parser = subparsers.add_parser("log", help="Show the server's activity log")
    log_parser.add_argument("--limit", type=int, default=20, help="Number of entries (default: 20)")

    subparsers.add_parser("stats", help="Show server statistics")

    sync_parser = subparsers.add_parser("sync", help="Push bookmarks from a file, then pull everything")
    sync_parser.add_argument("file", help="JSON file with a list of bookmarks")
    sync_parser.add_argument("-o", "--output", default=None, help="Write the merged bookmarks to this file")

    config_parser = subparsers.add_parser("config", help="Show or change the configuration")
    config_sub = config_parser.add_subparsers(dest="config_command", required=True)
    config_sub.add_parser("show", help="Show the configuration")
    set_parser = config_sub.add_parser("set", help="Change a setting")
    set_parser.add_argument("key", help="server.port, sync.server_url or sync.merge_policy")
    set_parser.add_argument("value", help="New value")

    return parser


def run_command(config: Config, args: argparse.Namespace) -> int:
    """Dispatch a parsed command.

    Returns:
        Exit code (0 for success)
    """
    if args.command == "serve":
        return cmd_serve(config, args)
    if args.command == "config":
        return cmd_config(config, args)

    client = SyncClient(config, username=args.user)
    if args.command == "pull":
        return cmd_pull(client, args)
    if args.command == "push":
        return cmd_push(client, args)
    if args.command == "status":
        return cmd_status(config, client, args)
    if args.command == "log":
        return cmd_log(client, args)
    if args.command == "stats":
        return cmd_stats(client, args)
    if args.command == "sync":
        return cmd_sync(client, args)
    raise ValidationError("command", f"unknown command '{args.command}'")


def main(argv: Optional[List[str]] = None, config: Optional[Config] = None) -> int:
    """Run the CLI.

    Args:
        argv: Arguments (default: sys.argv[1:])
        config: Already loaded Config, overrides --config-dir

    Returns:
        Exit code (0 for success, 1 for errors)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if config is None:
            config = Config(config_dir=args.config_dir)
        logging.getLogger().setLevel(
            logging.DEBUG if args.verbose else config.get_log_level()
        )
        return run_command(config, args)
    except ValidationError as e:
        print(f"Error: Invalid {e.field}: {e.message}", file=sys.stderr)
        return 1
    except MarksyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
