"""
Pytest configuration and shared fixtures for wsusmaint tests.

This module provides reusable fixtures and test utilities used across
the test suite, including an in-memory update server.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any

import pytest
import yaml

from wsusmaint.exceptions import ServerConnectionError, UpdateOperationError
from wsusmaint.logging import SilentLogger, set_global_logger
from wsusmaint.server.base import (
    ApprovalState,
    CleanupOutcome,
    CleanupScope,
    ServerInfo,
    SyncPhase,
    TargetGroup,
    UpdateRecord,
)
from wsusmaint.server.powershell import ALL_COMPUTERS_GROUP_ID

MUTATING_CALLS = {
    "decline",
    "approve",
    "delete",
    "start_synchronization",
    "perform_cleanup",
}


class FakeUpdateServer:
    """In-memory UpdateServer that records every call made against it."""

    def __init__(
        self,
        updates: list[UpdateRecord] | None = None,
        groups: list[TargetGroup] | None = None,
        phases: list[SyncPhase] | None = None,
        fail_ids: set[str] | None = None,
        connect_error: Exception | None = None,
    ) -> None:
        self.updates = {u.id: u for u in updates or []}
        self.groups = groups or [
            TargetGroup(id=ALL_COMPUTERS_GROUP_ID, name="All Computers"),
            TargetGroup(id="b3c1e2d4-0000-0000-0000-000000000002", name="Servers"),
        ]
        self.phases = list(phases or [SyncPhase.NOT_PROCESSING])
        self.fail_ids = fail_ids or set()
        self.connect_error = connect_error
        self.calls: list[tuple[Any, ...]] = []

    @property
    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    @property
    def mutating_calls(self) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] in MUTATING_CALLS]

    def _fail(self, update_id: str, operation: str) -> None:
        if update_id in self.fail_ids:
            raise UpdateOperationError(update_id, operation, "access denied")

    def connect(self) -> ServerInfo:
        self.calls.append(("connect",))
        if self.connect_error is not None:
            raise self.connect_error
        return ServerInfo(name="wsus01", port=8530, use_ssl=False, version="10.0.17763")

    def enumerate_all_updates(self) -> list[UpdateRecord]:
        self.calls.append(("enumerate_all_updates",))
        return list(self.updates.values())

    def enumerate_updates(self, approval_state=None, from_date=None, to_date=None):
        self.calls.append(("enumerate_updates", approval_state))
        return [
            u
            for u in self.updates.values()
            if approval_state is None or u.approval_state is approval_state
        ]

    def decline(self, update_id: str) -> None:
        self.calls.append(("decline", update_id))
        self._fail(update_id, "decline")
        self.updates[update_id] = replace(
            self.updates[update_id],
            is_declined=True,
            approval_state=ApprovalState.DECLINED,
        )

    def approve(self, update_id: str, target_group: TargetGroup) -> None:
        self.calls.append(("approve", update_id, target_group.name))
        self._fail(update_id, "approve")
        self.updates[update_id] = replace(
            self.updates[update_id], approval_state=ApprovalState.APPROVED
        )

    def delete(self, update_id: str) -> None:
        self.calls.append(("delete", update_id))
        self._fail(update_id, "delete")
        del self.updates[update_id]

    def start_synchronization(self) -> None:
        self.calls.append(("start_synchronization",))

    def get_synchronization_phase(self) -> SyncPhase:
        self.calls.append(("get_synchronization_phase",))
        if len(self.phases) > 1:
            return self.phases.pop(0)
        return self.phases[0]

    def perform_cleanup(self, scope: CleanupScope) -> CleanupOutcome:
        self.calls.append(("perform_cleanup", scope))
        return CleanupOutcome(
            disk_space_freed=5 * 1024 * 1024,
            superseded_updates_declined=4,
            expired_updates_declined=1,
        )

    def enumerate_target_groups(self) -> list[TargetGroup]:
        self.calls.append(("enumerate_target_groups",))
        return list(self.groups)


def make_update(update_id: str, title: str = "Security Update", **kwargs: Any) -> UpdateRecord:
    """Build an UpdateRecord with sensible defaults."""
    if kwargs.get("is_declined"):
        kwargs.setdefault("approval_state", ApprovalState.DECLINED)
    return UpdateRecord(id=update_id, title=title, **kwargs)


@pytest.fixture(autouse=True)
def silent_global_logger():
    """Restore the silent global logger after each test."""
    yield
    set_global_logger(SilentLogger())


@pytest.fixture
def tmp_test_dir(tmp_path: Path) -> Path:
    """
    Provide a temporary directory for test artifacts.

    Automatically cleaned up after test completion.
    """
    return tmp_path


@pytest.fixture
def sample_updates() -> list[UpdateRecord]:
    """
    Provide a mixed set of updates covering every decline rule.

    Ids are chosen so the expected rule is obvious from the id.
    """
    return [
        make_update("beta", "2024-01 Cumulative Update Preview for Windows 10 Version 1809"),
        make_update("superseded", "2023-11 Cumulative Update for Windows 11", is_superseded=True),
        make_update("arm64", "2024-03 Security Update for ARM64-based Systems"),
        make_update("x86", "2024-03 Security Update for Windows 10 for x86-based Systems"),
        make_update("obsolete", "Security Update for Windows Server 2012 R2"),
        make_update("langpack", "Windows 11 Language Pack (de-DE)"),
        make_update("driver", "Realtek Audio Driver", classification="Drivers"),
        make_update("keep", "2024-03 Cumulative Update for Windows 11 Version 23H2 for x64-based Systems",
                    classification="Security Updates"),
        make_update("declined", "Old Beta Driver", classification="Drivers", is_declined=True),
        make_update("approved", "Microsoft Defender Antivirus platform update",
                    classification="Definition Updates", approval_state=ApprovalState.APPROVED),
    ]


@pytest.fixture
def fake_server(sample_updates) -> FakeUpdateServer:
    """Provide an in-memory server loaded with sample_updates."""
    return FakeUpdateServer(updates=sample_updates)


@pytest.fixture
def update_factory():
    """Provide make_update() for building UpdateRecord instances."""
    return make_update


@pytest.fixture
def make_server():
    """
    Factory fixture for building FakeUpdateServer instances.

    Usage:
        server = make_server(updates=[...], fail_ids={"u1"})
    """
    return FakeUpdateServer


@pytest.fixture
def unreachable_server() -> FakeUpdateServer:
    """Provide a server whose connect() fails."""
    return FakeUpdateServer(
        updates=[make_update("u1", "Realtek Audio Driver", classification="Drivers")],
        connect_error=ServerConnectionError("Cannot connect to WSUS server wsus01:8530"),
    )


@pytest.fixture
def create_yaml_file(tmp_test_dir: Path):
    """
    Factory fixture for creating temporary YAML files.

    Usage:
        yaml_path = create_yaml_file("wsusmaint.yaml", {"key": "value"})
    """

    def _create(filename: str, data: dict[str, Any]) -> Path:
        path = tmp_test_dir / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            yaml.dump(data, f)
        return path

    return _create
