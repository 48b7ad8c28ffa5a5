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

"""Update server protocol and domain records for wsusmaint.

This module defines the foundational components for talking to a WSUS
server:

- Domain records exchanged with the server (UpdateRecord, TargetGroup,
    CleanupScope, CleanupOutcome, ServerInfo)
- Enums for approval state and synchronization phase
- UpdateServer protocol: the administrative operations orchestration needs

Design Philosophy:
    - The server is a Protocol class (structural subtyping, not inheritance)
    - Records are frozen dataclasses; the server owns the real state and the
      tool only changes it through decline/approve/delete calls
    - A server instance is an explicit handle passed to every step, never a
      module-level global

Example:
    Implementing an in-memory server for tests:
        ```python
        from wsusmaint.server.base import UpdateRecord, UpdateServer

        class FakeServer:
            def enumerate_all_updates(self) -> list[UpdateRecord]:
                ...
            def decline(self, update_id: str) -> None:
                ...
        ```

"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol


class ApprovalState(str, Enum):
    """Server-side approval state of an update."""

    NOT_APPROVED = "NotApproved"
    APPROVED = "Approved"
    DECLINED = "Declined"


class SyncPhase(str, Enum):
    """Synchronization status reported by the server.

    NOT_PROCESSING is the terminal idle phase.
    """

    NOT_PROCESSING = "NotProcessing"
    RUNNING = "Running"
    STOPPING = "Stopping"


@dataclass(frozen=True)
class UpdateRecord:
    """A single update as reported by the server.

    Attributes:
        id: Update identifier (WSUS update GUID as a string).
        title: Update title (e.g., "2024-03 Cumulative Update for ...").
        classification: Classification title (e.g., "Drivers").
        is_beta: True if the server flags the update as beta.
        is_superseded: True if a newer update supersedes this one.
        is_declined: True if the update is currently declined.
        approval_state: Current approval state on the server.
        arrival_date: When the update arrived on the server, if known.

    """

    id: str
    title: str
    classification: str = ""
    is_beta: bool = False
    is_superseded: bool = False
    is_declined: bool = False
    approval_state: ApprovalState = ApprovalState.NOT_APPROVED
    arrival_date: datetime | None = None


@dataclass(frozen=True)
class TargetGroup:
    """Computer target group that approvals apply to.

    Attributes:
        id: Group identifier (GUID string).
        name: Display name (e.g., "All Computers").

    """

    id: str
    name: str


@dataclass(frozen=True)
class ServerInfo:
    """Identity of the server a client is bound to."""

    name: str
    port: int
    use_ssl: bool
    version: str = ""


@dataclass(frozen=True)
class CleanupScope:
    """Options passed to the server cleanup wizard."""

    remove_local_content_files: bool = True
    remove_obsolete_computers: bool = True
    remove_obsolete_updates: bool = True
    remove_unneeded_content_files: bool = True
    compress_revisions: bool = True
    decline_expired: bool = True
    decline_superseded: bool = True


@dataclass(frozen=True)
class CleanupOutcome:
    """Counts returned by the server after a cleanup run.

    Attributes:
        disk_space_freed: Bytes freed on the content store.
        superseded_updates_declined: Superseded updates declined by cleanup.
        expired_updates_declined: Expired updates declined by cleanup.
        obsolete_updates_deleted: Obsolete updates removed.
        obsolete_computers_deleted: Stale computer records removed.
        updates_compressed: Update revisions compressed.

    """

    disk_space_freed: int = 0
    superseded_updates_declined: int = 0
    expired_updates_declined: int = 0
    obsolete_updates_deleted: int = 0
    obsolete_computers_deleted: int = 0
    updates_compressed: int = 0


class UpdateServer(Protocol):
    """Protocol for update server clients.

    Implementations raise ServerConnectionError from connect(),
    UpdateOperationError from the per-update write operations, and
    ServerError from every other call.
    """

    def connect(self) -> ServerInfo:
        """Bind to the server and return its identity."""
        ...

    def enumerate_all_updates(self) -> list[UpdateRecord]:
        """Return every update known to the server."""
        ...

    def enumerate_updates(
        self,
        approval_state: ApprovalState | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> list[UpdateRecord]:
        """Return updates filtered by approval state and arrival date range.

        Args:
            approval_state: Only return updates in this state (None for any).
            from_date: Only return updates that arrived on or after this time.
            to_date: Only return updates that arrived on or before this time.

        """
        ...

    def decline(self, update_id: str) -> None:
        ...

    def approve(self, update_id: str, target_group: TargetGroup) -> None:
        ...

    def delete(self, update_id: str) -> None:
        ...

    def start_synchronization(self) -> None:
        ...

    def get_synchronization_phase(self) -> SyncPhase:
        ...

    def perform_cleanup(self, scope: CleanupScope) -> CleanupOutcome:
        ...

    def enumerate_target_groups(self) -> list[TargetGroup]:
        """Return computer target groups; the default group comes first."""
        ...
