# Copyright 2025 Roger Cibrian
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Command-line interface for wsusmaint.

This module provides the main CLI entry point for the wsusmaint tool. Each
maintenance step is enabled by its own switch; steps that are not requested
are skipped entirely.

Steps (always run in this order):

    --wsus-cleanup: Run the server cleanup wizard
    --wsus-sync: Synchronize and wait for completion
    --auto-decline / --decline-all: Decline unneeded (or all) updates
    --delete-declined: Delete declined updates
    --auto-approve: Approve pending updates for the target group

Example:
    Nightly maintenance on the local server:
        ```bash
        $ wsusmaint --wsus-sync --auto-decline --auto-approve
        ```

    Preview what a decline pass would do on a remote server:
        ```bash
        $ wsusmaint --server wsus01 --use-ssl true --port 8531 --auto-decline --dry-run -v
        ```

    Use a site configuration file:
        ```bash
        $ wsusmaint --config wsusmaint.yaml --auto-approve --target-group Servers
        ```

Exit Codes:

- 0: Success
- 1: Error (configuration, connection, server failure, or at least one
  update operation failed)

Note:
    Verbose mode shows full tracebacks on errors for debugging.
    Debug mode implies verbose mode and shows the merged configuration.

"""

from __future__ import annotations

import argparse
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
import sys
from typing import Any

from wsusmaint.config import load_effective_config
from wsusmaint.core import MaintenanceTasks, run_maintenance
from wsusmaint.exceptions import (
    ConfigError,
    ServerConnectionError,
    WsusMaintError,
)
from wsusmaint.logging import get_logger, set_global_logger
from wsusmaint.results import MaintenanceResult
from wsusmaint.server.powershell import PowerShellUpdateServer


def _parse_bool(value: str) -> bool:
    """argparse type for --use-ssl true/false."""
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise argparse.ArgumentTypeError(f"expected true or false, got {value!r}")


def _format_size(num_bytes: int) -> str:
    """Format a byte count for display (e.g., 1536 -> '1.5 KB')."""
    size = float(num_bytes)
    for unit in ("bytes", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "bytes" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def _tool_version() -> str:
    try:
        return version("wsusmaint")
    except PackageNotFoundError:
        from wsusmaint import __version__

        return __version__


def _build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Collect only the values the operator passed explicitly."""
    overrides: dict[str, Any] = {}
    server: dict[str, Any] = {}
    if args.server is not None:
        server["name"] = args.server
    if args.use_ssl is not None:
        server["use_ssl"] = args.use_ssl
    if args.port is not None:
        server["port"] = args.port
    if args.no_probe:
        server["probe"] = False
    if server:
        overrides["server"] = server

    if args.target_group is not None:
        overrides["approval"] = {"target_group": args.target_group}

    sync: dict[str, Any] = {}
    if args.sync_poll_interval is not None:
        sync["poll_interval"] = args.sync_poll_interval
    if args.sync_timeout is not None:
        sync["timeout"] = args.sync_timeout
    if sync:
        overrides["sync"] = sync

    if args.stop_on_error:
        overrides["on_error"] = "abort"
    return overrides


def _print_results(result: MaintenanceResult, dry_run: bool) -> None:
    print()
    print("=" * 70)
    print("MAINTENANCE RESULTS" + (" (DRY RUN)" if dry_run else ""))
    print("=" * 70)
    print(f"Server:          {result.server.name}:{result.server.port}")

    if result.cleanup is not None and not result.cleanup.dry_run:
        outcome = result.cleanup.outcome
        print(f"Space Freed:     {_format_size(outcome.disk_space_freed)}")
        print(f"Superseded:      {outcome.superseded_updates_declined} declined by cleanup")
        print(f"Expired:         {outcome.expired_updates_declined} declined by cleanup")
        print(f"Obsolete:        {outcome.obsolete_updates_deleted} update(s) deleted")
        print(f"Computers:       {outcome.obsolete_computers_deleted} stale record(s) deleted")
        print(f"Compressed:      {outcome.updates_compressed} revision(s)")

    if result.sync is not None:
        print(
            f"Sync:            {result.sync.state.value} "
            f"({result.sync.elapsed_seconds:.0f}s, {result.sync.polls} poll(s))"
        )

    if result.decline is not None:
        decline = result.decline
        print(f"Declined:        {decline.declined} of {decline.total}")
        for rule, count in sorted(decline.by_rule.items()):
            print(f"  {rule:<15}{count}")

    if result.delete is not None:
        print(f"Deleted:         {result.delete.deleted} of {result.delete.total}")

    if result.approve is not None:
        approve = result.approve
        print(
            f"Approved:        {approve.approved} of {approve.total} "
            f"for '{approve.target_group}'"
        )

    failed = result.failed
    if failed:
        print()
        print(f"Failures ({len(failed)}):")
        for update_id in failed:
            print(f"  [X] {update_id}")

    print("=" * 70)


def cmd_run(args: argparse.Namespace) -> int:
    """Run the requested maintenance steps.

    Args:
        args: Parsed command-line arguments.

    Returns:
        Exit code (0 for success, 1 for failure).

    """
    logger = get_logger(verbose=args.verbose, debug=args.debug)
    set_global_logger(logger)

    tasks = MaintenanceTasks(
        cleanup=args.wsus_cleanup,
        sync=args.wsus_sync,
        auto_decline=args.auto_decline,
        decline_all=args.decline_all,
        delete_declined=args.delete_declined,
        auto_approve=args.auto_approve,
    )

    config_path = Path(args.config) if args.config else None
    try:
        config = load_effective_config(config_path, overrides=_build_overrides(args))
    except ConfigError as err:
        print(f"Error: {err}")
        return 1

    server_cfg = config["server"]
    server = PowerShellUpdateServer(
        server_cfg["name"], use_ssl=server_cfg["use_ssl"], port=server_cfg["port"]
    )
    print(f"Connecting to WSUS server: {server_cfg['name']}:{server_cfg['port']}")
    if tasks.count == 0:
        print("No maintenance steps requested; checking connection only.")

    try:
        result = run_maintenance(server, config, tasks, dry_run=args.dry_run)
    except ServerConnectionError as err:
        print(f"Error: {err}")
        print("No changes were made.")
        if args.verbose or args.debug:
            import traceback

            traceback.print_exc()
        return 1
    except WsusMaintError as err:
        print(f"Error: {err}")
        if args.verbose or args.debug:
            import traceback

            traceback.print_exc()
        return 1

    _print_results(result, args.dry_run)

    if result.failed:
        print()
        print(f"[FAILED] {len(result.failed)} update operation(s) failed.")
        return 1

    print()
    print("[SUCCESS] Maintenance completed successfully!")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wsusmaint",
        description="Automate WSUS cleanup, synchronization, declines, and approvals",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"wsusmaint {_tool_version()}",
    )

    conn = parser.add_argument_group("connection")
    conn.add_argument(
        "--server",
        default=None,
        help="WSUS server host name (default: this computer)",
    )
    conn.add_argument(
        "--use-ssl",
        type=_parse_bool,
        default=None,
        metavar="BOOL",
        help="Connect over HTTPS: true or false (default: false)",
    )
    conn.add_argument(
        "--port",
        type=int,
        default=None,
        help="WSUS web service port (default: 8530)",
    )
    conn.add_argument(
        "--no-probe",
        action="store_true",
        help="Skip the HTTP reachability check before connecting",
    )

    steps = parser.add_argument_group("maintenance steps")
    steps.add_argument(
        "--wsus-cleanup",
        action="store_true",
        help="Run the server cleanup wizard",
    )
    steps.add_argument(
        "--wsus-sync",
        action="store_true",
        help="Synchronize with the upstream catalog and wait for completion",
    )
    steps.add_argument(
        "--auto-decline",
        action="store_true",
        help="Decline preview, superseded, ARM64, x86, obsolete, language pack and driver updates",
    )
    steps.add_argument(
        "--decline-all",
        action="store_true",
        help="Decline every update that is not already declined",
    )
    steps.add_argument(
        "--delete-declined",
        action="store_true",
        help="Delete every declined update",
    )
    steps.add_argument(
        "--auto-approve",
        action="store_true",
        help="Approve every pending update for the target group",
    )

    opts = parser.add_argument_group("options")
    opts.add_argument(
        "--config",
        default=None,
        help="YAML configuration file",
    )
    opts.add_argument(
        "--target-group",
        default=None,
        help="Computer group to approve for (default: All Computers)",
    )
    opts.add_argument(
        "--sync-poll-interval",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Seconds between synchronization status checks (default: 60)",
    )
    opts.add_argument(
        "--sync-timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Give up waiting for synchronization after this long (default: wait forever)",
    )
    opts.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would change without modifying the server",
    )
    opts.add_argument(
        "--stop-on-error",
        action="store_true",
        help="Abort on the first failed decline/approve/delete instead of continuing",
    )
    opts.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show progress and per-update details",
    )
    opts.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Show detailed debugging output (implies --verbose)",
    )
    parser.set_defaults(func=cmd_run)
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the wsusmaint CLI.

    This function is registered as the 'wsusmaint' console script in
    pyproject.toml.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    exit_code = args.func(args)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
