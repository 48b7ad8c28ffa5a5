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

"""Public API return types for wsusmaint.

This module defines dataclasses for return values from the maintenance
steps in wsusmaint.core and the sync watcher.

All dataclasses are frozen (immutable) to prevent accidental mutation of
return values.

Example:
    Using result types:
        ```python
        from wsusmaint.core import decline_updates

        result = decline_updates(server, policy)
        print(f"Declined {result.declined} of {result.total}")
        ```

Note:
    Only public API return types belong in this module. Domain records
    (like UpdateRecord) stay in wsusmaint.server.base.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from wsusmaint.server.base import CleanupOutcome, ServerInfo


class SyncState(str, Enum):
    """States of the synchronization watcher."""

    IDLE = "idle"
    SYNCING = "syncing"
    DONE = "done"


@dataclass(frozen=True)
class CleanupResult:
    """Result from running the server cleanup wizard.

    Attributes:
        outcome: Counts reported by the server.
        dry_run: True if cleanup was skipped because of dry-run mode.
    """

    outcome: CleanupOutcome
    dry_run: bool = False


@dataclass(frozen=True)
class SyncResult:
    """Result from waiting on a synchronization.

    Attributes:
        state: Final watcher state (DONE on success, IDLE if skipped).
        polls: Number of status polls made.
        elapsed_seconds: Time spent waiting.
    """

    state: SyncState
    polls: int = 0
    elapsed_seconds: float = 0.0


@dataclass(frozen=True)
class DeclineResult:
    """Result from a decline pass.

    Attributes:
        total: Number of updates evaluated.
        declined: Number of updates declined in this pass.
        already_declined: Number of updates skipped as already declined.
        by_rule: Declines per rule name; sums to declined.
        failed: Ids of updates whose decline call failed.
        declined_ids: Ids declined in this pass (in a dry run, the ids
            that would have been declined).
        dry_run: True if no decline calls were made.
    """

    total: int
    declined: int
    already_declined: int
    by_rule: dict[str, int] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)
    declined_ids: list[str] = field(default_factory=list)
    dry_run: bool = False


@dataclass(frozen=True)
class DeleteResult:
    """Result from deleting declined updates.

    Attributes:
        total: Number of declined updates found.
        deleted: Number of updates deleted.
        failed: Ids of updates whose delete call failed.
        dry_run: True if no delete calls were made.
    """

    total: int
    deleted: int
    failed: list[str] = field(default_factory=list)
    dry_run: bool = False


@dataclass(frozen=True)
class ApproveResult:
    """Result from approving pending updates.

    Attributes:
        total: Number of updates neither approved nor declined.
        approved: Number of updates approved.
        target_group: Name of the group approvals were made for.
        failed: Ids of updates whose approve call failed.
        dry_run: True if no approve calls were made.
    """

    total: int
    approved: int
    target_group: str
    failed: list[str] = field(default_factory=list)
    dry_run: bool = False


@dataclass(frozen=True)
class MaintenanceResult:
    """Combined result of a maintenance run.

    Steps that were not requested are None.
    """

    server: ServerInfo
    cleanup: CleanupResult | None = None
    sync: SyncResult | None = None
    decline: DeclineResult | None = None
    delete: DeleteResult | None = None
    approve: ApproveResult | None = None

    @property
    def failed(self) -> list[str]:
        """Ids of every update whose write operation failed."""
        failed: list[str] = []
        for step in (self.decline, self.delete, self.approve):
            if step is not None:
                failed.extend(step.failed)
        return failed
