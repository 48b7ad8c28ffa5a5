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

"""Core orchestration for wsusmaint.

This module provides the maintenance steps and the function that runs them
in order against one update server.

Step Order:

When several steps are requested in one run they always execute as:

1. **Cleanup**: server cleanup wizard, runs to completion first
2. **Sync**: start a synchronization and block until the server is idle
3. **Decline**: classify every update and decline the matches (or decline
   everything in decline-all mode)
4. **Delete**: delete every declined update
5. **Approve**: approve every update that is neither approved nor declined

Steps that are not requested make no server calls at all.

Design Principles:

- The server handle is passed explicitly to every step
- Classification is delegated to wsusmaint.policy (pure, no server access)
- Each step returns a frozen dataclass from wsusmaint.results
- A failed decline/approve/delete is logged and recorded, and the pass
  continues, unless stop_on_error is set

Example:
    Programmatic usage:
        ```python
        from wsusmaint.config import load_effective_config
        from wsusmaint.core import MaintenanceTasks, run_maintenance
        from wsusmaint.server import PowerShellUpdateServer

        config = load_effective_config()
        server = PowerShellUpdateServer(config["server"]["name"])
        result = run_maintenance(
            server, config, MaintenanceTasks(auto_decline=True, auto_approve=True)
        )
        print(f"Declined: {result.decline.declined}")
        ```

"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Collection
from dataclasses import dataclass
import threading
from typing import Any

from wsusmaint.exceptions import ConfigError, UpdateOperationError
from wsusmaint.logging import get_global_logger
from wsusmaint.policy.classifier import DeclinePolicy, classify
from wsusmaint.results import (
    ApproveResult,
    CleanupResult,
    DeclineResult,
    DeleteResult,
    MaintenanceResult,
    SyncResult,
    SyncState,
)
from wsusmaint.server.base import (
    ApprovalState,
    CleanupOutcome,
    CleanupScope,
    ServerInfo,
    TargetGroup,
    UpdateServer,
)
from wsusmaint.server.probe import probe_server
from wsusmaint.sync import wait_for_sync


@dataclass(frozen=True)
class MaintenanceTasks:
    """Which maintenance steps to run.

    Attributes:
        cleanup: Run the server cleanup wizard.
        sync: Synchronize with the upstream catalog.
        auto_decline: Decline updates matching the decline rules.
        decline_all: Decline every update (takes precedence over auto_decline).
        delete_declined: Delete every declined update.
        auto_approve: Approve pending updates for the target group.
    """

    cleanup: bool = False
    sync: bool = False
    auto_decline: bool = False
    decline_all: bool = False
    delete_declined: bool = False
    auto_approve: bool = False

    @property
    def decline(self) -> bool:
        return self.auto_decline or self.decline_all

    @property
    def count(self) -> int:
        return sum(
            (
                self.cleanup,
                self.sync,
                self.decline,
                self.delete_declined,
                self.auto_approve,
            )
        )


# -------------------------------
# Config helpers
# -------------------------------


def policy_from_config(config: dict[str, Any], decline_all: bool = False) -> DeclinePolicy:
    """Build a DeclinePolicy from the merged configuration."""
    policy = config.get("policy", {})
    return DeclinePolicy(
        obsolete_versions=tuple(policy.get("obsolete_versions", ())),
        language_pack_markers=tuple(policy.get("language_pack_markers", ())),
        decline_all=decline_all,
    )


def cleanup_scope_from_config(config: dict[str, Any]) -> CleanupScope:
    """Build a CleanupScope from the merged configuration."""
    return CleanupScope(**config.get("cleanup", {}))


# -------------------------------
# Steps
# -------------------------------


def connect_server(server: UpdateServer, config: dict[str, Any]) -> ServerInfo:
    """Probe the web service and bind to the server.

    Args:
        server: Update server client.
        config: Merged configuration (server section is used for the probe).

    Returns:
        Identity reported by the server.

    Raises:
        ServerConnectionError: If the probe or the bind fails.
    """
    logger = get_global_logger()
    settings = config["server"]

    if settings.get("probe", True):
        probe_server(
            settings["name"],
            use_ssl=settings["use_ssl"],
            port=settings["port"],
            timeout=settings["probe_timeout"],
        )

    info = server.connect()
    logger.verbose(
        "SERVER",
        f"Connected to {info.name}:{info.port} (SSL: {info.use_ssl}, "
        f"version {info.version or 'unknown'})",
    )
    return info


def run_cleanup(
    server: UpdateServer, scope: CleanupScope, *, dry_run: bool = False
) -> CleanupResult:
    """Run the server cleanup wizard and return what it removed."""
    logger = get_global_logger()
    if dry_run:
        logger.warning("CLEANUP", "Dry run: server cleanup skipped")
        return CleanupResult(outcome=CleanupOutcome(), dry_run=True)

    outcome = server.perform_cleanup(scope)
    logger.verbose(
        "CLEANUP",
        f"Freed {outcome.disk_space_freed} bytes, declined "
        f"{outcome.superseded_updates_declined} superseded and "
        f"{outcome.expired_updates_declined} expired update(s)",
    )
    return CleanupResult(outcome=outcome)


def run_sync(
    server: UpdateServer,
    poll_interval: float,
    *,
    timeout: float | None = None,
    cancel_event: threading.Event | None = None,
    dry_run: bool = False,
) -> SyncResult:
    """Synchronize with the upstream catalog and wait for completion."""
    logger = get_global_logger()
    if dry_run:
        logger.warning("SYNC", "Dry run: synchronization skipped")
        return SyncResult(state=SyncState.IDLE)

    logger.verbose("SYNC", f"Starting synchronization (poll every {poll_interval:g}s)")
    result = wait_for_sync(
        server, poll_interval, cancel_event=cancel_event, timeout=timeout
    )
    logger.verbose("SYNC", f"Synchronization finished after {result.elapsed_seconds:.0f}s")
    return result


def _apply(
    prefix: str,
    update_id: str,
    call: Callable[[], None],
    failed: list[str],
    stop_on_error: bool,
) -> bool:
    """Run one write operation under the per-update error policy."""
    try:
        call()
    except UpdateOperationError as err:
        if stop_on_error:
            raise
        get_global_logger().warning(prefix, str(err))
        failed.append(update_id)
        return False
    return True


def decline_updates(
    server: UpdateServer,
    policy: DeclinePolicy,
    *,
    dry_run: bool = False,
    stop_on_error: bool = False,
) -> DeclineResult:
    """Classify every update and decline the ones the policy rejects.

    Args:
        server: Connected update server.
        policy: Decline policy (rules or decline-all mode).
        dry_run: Classify and count without declining.
        stop_on_error: Re-raise the first UpdateOperationError.

    Returns:
        DeclineResult with totals and a per-rule breakdown.

    Raises:
        UpdateOperationError: Only when stop_on_error is set.
    """
    logger = get_global_logger()
    updates = server.enumerate_all_updates()
    logger.verbose("DECLINE", f"Evaluating {len(updates)} update(s)")

    by_rule: Counter[str] = Counter()
    declined_ids: list[str] = []
    failed: list[str] = []
    already_declined = 0

    for update in updates:
        decision = classify(update, policy)
        if decision.skipped:
            already_declined += 1
            continue
        if not decision.should_decline:
            continue

        reason = decision.reason.value
        if dry_run or _apply(
            "DECLINE",
            update.id,
            lambda: server.decline(update.id),
            failed,
            stop_on_error,
        ):
            by_rule[reason] += 1
            declined_ids.append(update.id)
            logger.verbose("DECLINE", f"[{reason}] {update.title}")

    return DeclineResult(
        total=len(updates),
        declined=sum(by_rule.values()),
        already_declined=already_declined,
        by_rule=dict(by_rule),
        failed=failed,
        declined_ids=declined_ids,
        dry_run=dry_run,
    )


def delete_declined_updates(
    server: UpdateServer,
    *,
    dry_run: bool = False,
    stop_on_error: bool = False,
    assume_declined: Collection[str] = (),
) -> DeleteResult:
    """Delete every update currently in the declined state.

    In a dry run, ids in assume_declined (updates an earlier dry-run decline
    pass would have declined) are counted as well.
    """
    logger = get_global_logger()
    updates = [
        u
        for u in server.enumerate_updates(approval_state=ApprovalState.DECLINED)
        if u.is_declined
    ]
    logger.verbose("DELETE", f"Found {len(updates)} declined update(s)")

    deleted = 0
    failed: list[str] = []
    for update in updates:
        if dry_run or _apply(
            "DELETE",
            update.id,
            lambda: server.delete(update.id),
            failed,
            stop_on_error,
        ):
            deleted += 1
            logger.debug("DELETE", update.title)

    total = len(updates)
    if dry_run:
        pending = set(assume_declined) - {u.id for u in updates}
        total += len(pending)
        deleted += len(pending)

    return DeleteResult(
        total=total, deleted=deleted, failed=failed, dry_run=dry_run
    )


def resolve_target_group(server: UpdateServer, name: str | None = None) -> TargetGroup:
    """Find the approval target group.

    Args:
        server: Connected update server.
        name: Group name (case-insensitive). None selects the default group,
            which the server lists first ("All Computers").

    Raises:
        ConfigError: If the server has no groups or none matches name.
    """
    groups = server.enumerate_target_groups()
    if not groups:
        raise ConfigError("The update server reported no computer target groups")
    if name is None:
        return groups[0]

    for group in groups:
        if group.name.casefold() == name.casefold():
            return group

    available = ", ".join(g.name for g in groups)
    raise ConfigError(f"Unknown target group: {name!r}. Available: {available}")


def approve_updates(
    server: UpdateServer,
    target_group: str | None = None,
    *,
    dry_run: bool = False,
    stop_on_error: bool = False,
    assume_declined: Collection[str] = (),
) -> ApproveResult:
    """Approve every update that is neither approved nor declined.

    Args:
        server: Connected update server.
        target_group: Group name; None uses the default group.
        dry_run: Count without approving.
        stop_on_error: Re-raise the first UpdateOperationError.
        assume_declined: Ids to treat as declined, so a dry run following a
            dry-run decline pass does not count them.

    Returns:
        ApproveResult with totals and the group used.
    """
    logger = get_global_logger()
    group = resolve_target_group(server, target_group)
    excluded = set(assume_declined)
    updates = [
        u
        for u in server.enumerate_updates(approval_state=ApprovalState.NOT_APPROVED)
        if u.approval_state is ApprovalState.NOT_APPROVED
        and not u.is_declined
        and u.id not in excluded
    ]
    logger.verbose(
        "APPROVE", f"Approving {len(updates)} update(s) for '{group.name}'"
    )

    approved = 0
    failed: list[str] = []
    for update in updates:
        if dry_run or _apply(
            "APPROVE",
            update.id,
            lambda: server.approve(update.id, group),
            failed,
            stop_on_error,
        ):
            approved += 1
            logger.debug("APPROVE", update.title)

    return ApproveResult(
        total=len(updates),
        approved=approved,
        target_group=group.name,
        failed=failed,
        dry_run=dry_run,
    )


# -------------------------------
# Full run
# -------------------------------


def run_maintenance(
    server: UpdateServer,
    config: dict[str, Any],
    tasks: MaintenanceTasks,
    *,
    dry_run: bool = False,
    cancel_event: threading.Event | None = None,
) -> MaintenanceResult:
    """Connect to the server and run the requested steps in order.

    Args:
        server: Update server client (not yet connected).
        config: Merged configuration from load_effective_config().
        tasks: Steps to run.
        dry_run: Report what would change without mutating the server.
        cancel_event: Optional event that abandons the sync wait.

    Returns:
        MaintenanceResult with one entry per step that ran.

    Raises:
        ServerConnectionError: If the server cannot be reached; nothing else
            has been attempted at that point.
        ServerError: If a server-wide call fails.
        SyncError: If the sync wait is cancelled or times out.
        UpdateOperationError: On the first per-update failure when
            config["on_error"] is "abort".
        ConfigError: If the configured target group does not exist.
    """
    logger = get_global_logger()
    stop_on_error = config.get("on_error") == "abort"
    total = tasks.count
    step = 0

    info = connect_server(server, config)
    results: dict[str, Any] = {}

    if tasks.cleanup:
        step += 1
        logger.step(step, total, "Running server cleanup...")
        results["cleanup"] = run_cleanup(
            server, cleanup_scope_from_config(config), dry_run=dry_run
        )

    if tasks.sync:
        step += 1
        logger.step(step, total, "Synchronizing with upstream catalog...")
        results["sync"] = run_sync(
            server,
            config["sync"]["poll_interval"],
            timeout=config["sync"].get("timeout"),
            cancel_event=cancel_event,
            dry_run=dry_run,
        )

    if tasks.decline:
        step += 1
        if tasks.decline_all:
            logger.step(step, total, "Declining all updates...")
        else:
            logger.step(step, total, "Declining unneeded updates...")
        results["decline"] = decline_updates(
            server,
            policy_from_config(config, decline_all=tasks.decline_all),
            dry_run=dry_run,
            stop_on_error=stop_on_error,
        )

    # A dry-run decline pass changes nothing, so later steps are told which
    # updates it would have declined
    would_decline: list[str] = []
    if dry_run and "decline" in results:
        would_decline = results["decline"].declined_ids

    if tasks.delete_declined:
        step += 1
        logger.step(step, total, "Deleting declined updates...")
        results["delete"] = delete_declined_updates(
            server,
            dry_run=dry_run,
            stop_on_error=stop_on_error,
            assume_declined=would_decline,
        )

    if tasks.auto_approve:
        step += 1
        logger.step(step, total, "Approving pending updates...")
        results["approve"] = approve_updates(
            server,
            config["approval"].get("target_group"),
            dry_run=dry_run,
            stop_on_error=stop_on_error,
            assume_declined=would_decline,
        )

    return MaintenanceResult(server=info, **results)
