"""
Tests for wsusmaint.server.powershell module.

Tests the PowerShell-backed update server including:
- PowerShell literal formatting and script encoding
- JSON parsing of update, group and cleanup output
- Approval state derivation
- Error translation (ServerError, UpdateOperationError, ServerConnectionError)
"""

from __future__ import annotations

import base64
from datetime import UTC, datetime
import json
import subprocess
from unittest.mock import patch

import pytest

from wsusmaint.exceptions import (
    ServerConnectionError,
    ServerError,
    UpdateOperationError,
)
from wsusmaint.server.base import (
    ApprovalState,
    CleanupScope,
    SyncPhase,
    TargetGroup,
)
from wsusmaint.server.powershell import (
    ALL_COMPUTERS_GROUP_ID,
    PowerShellUpdateServer,
    _format_powershell_value,
)

pytestmark = pytest.mark.unit

RUN = "wsusmaint.server.powershell.subprocess.run"


def _completed(stdout: str = "", returncode: int = 0) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr="")


def _json_output(data) -> subprocess.CompletedProcess:
    return _completed(json.dumps(data))


def _script(mock_run) -> str:
    """Decode the -EncodedCommand script from the last subprocess.run call."""
    cmd = mock_run.call_args[0][0]
    return base64.b64decode(cmd[-1]).decode("utf-16-le")


@pytest.fixture
def server() -> PowerShellUpdateServer:
    return PowerShellUpdateServer("wsus01", use_ssl=False, port=8530)


class TestFormatPowerShellValue:
    """Tests for _format_powershell_value."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            (True, "$true"),
            (False, "$false"),
            ("wsus01", "'wsus01'"),
            ("O'Brien's server", "'O''Brien''s server'"),
            (8530, "8530"),
            (None, "$null"),
        ],
    )
    def test_literals(self, value, expected):
        assert _format_powershell_value(value) == expected

    def test_datetime_is_utc(self):
        value = datetime(2024, 3, 1, 12, 30, tzinfo=UTC)

        assert _format_powershell_value(value) == (
            "[datetime]::SpecifyKind([datetime]'2024-03-01T12:30:00', 'Utc')"
        )

    def test_unsupported_type_raises(self):
        with pytest.raises(TypeError, match="Cannot format list"):
            _format_powershell_value(["a"])


class TestCommandLine:
    """Tests for the PowerShell invocation."""

    def test_encoded_command(self, server):
        with patch(RUN, return_value=_completed()) as mock_run:
            server.start_synchronization()

        cmd = mock_run.call_args[0][0]
        assert cmd[:6] == [
            "powershell.exe",
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy",
            "Bypass",
            "-EncodedCommand",
        ]
        kwargs = mock_run.call_args[1]
        assert kwargs["capture_output"] is True
        assert kwargs["check"] is True
        assert kwargs["timeout"] == 600

    def test_preamble_binds_to_server(self, server):
        with patch(RUN, return_value=_completed()) as mock_run:
            server.start_synchronization()

        script = _script(mock_run)
        assert "$ErrorActionPreference = 'Stop'" in script
        assert (
            "AdminProxy]::GetUpdateServer('wsus01', $false, 8530)" in script
        )
        assert "StartSynchronization()" in script

    def test_name_is_quoted(self):
        server = PowerShellUpdateServer("wsus'; Remove-Item C:\\", use_ssl=True, port=8531)

        with patch(RUN, return_value=_completed()) as mock_run:
            server.start_synchronization()

        assert "GetUpdateServer('wsus''; Remove-Item C:\\', $true, 8531)" in _script(mock_run)

    def test_custom_executable(self):
        server = PowerShellUpdateServer("wsus01", executable="pwsh", timeout=30)

        with patch(RUN, return_value=_completed()) as mock_run:
            server.start_synchronization()

        assert mock_run.call_args[0][0][0] == "pwsh"
        assert mock_run.call_args[1]["timeout"] == 30


class TestProcessErrors:
    """Tests for translating process failures."""

    def test_missing_executable(self, server):
        with patch(RUN, side_effect=FileNotFoundError()):
            with pytest.raises(ServerError, match="PowerShell executable not found"):
                server.start_synchronization()

    def test_non_zero_exit_includes_stderr(self, server):
        error = subprocess.CalledProcessError(
            1, ["powershell.exe"], output="", stderr="Access is denied.\n"
        )

        with patch(RUN, side_effect=error):
            with pytest.raises(ServerError, match="exit code 1") as excinfo:
                server.start_synchronization()

        assert "Access is denied." in str(excinfo.value)

    def test_timeout(self, server):
        with patch(RUN, side_effect=subprocess.TimeoutExpired(["powershell.exe"], 600)):
            with pytest.raises(ServerError, match="timed out after 600s"):
                server.start_synchronization()

    def test_invalid_json(self, server):
        with patch(RUN, return_value=_completed("WARNING: something")):
            with pytest.raises(ServerError, match="invalid JSON"):
                server.enumerate_all_updates()


class TestConnect:
    """Tests for connect()."""

    def test_returns_server_info(self, server):
        output = {"Name": "WSUS01", "Version": "10.0.17763.1", "Port": 8530, "UseSsl": False}

        with patch(RUN, return_value=_json_output(output)):
            info = server.connect()

        assert info.name == "WSUS01"
        assert info.port == 8530
        assert info.use_ssl is False
        assert info.version == "10.0.17763.1"

    def test_failure_is_connection_error(self, server):
        error = subprocess.CalledProcessError(
            1, ["powershell.exe"], output="", stderr="The request failed with HTTP status 503"
        )

        with patch(RUN, side_effect=error):
            with pytest.raises(ServerConnectionError, match="Cannot connect to WSUS server wsus01:8530"):
                server.connect()

    def test_empty_output_is_connection_error(self, server):
        with patch(RUN, return_value=_completed("")):
            with pytest.raises(ServerConnectionError, match="Unexpected response"):
                server.connect()


class TestEnumerateUpdates:
    """Tests for update enumeration and parsing."""

    def test_parses_update_list(self, server):
        output = [
            {
                "Id": "0b5b5b4e-0000-4000-8000-000000000001",
                "Title": "2024-03 Cumulative Update for Windows 11",
                "Classification": "Security Updates",
                "IsBeta": False,
                "IsSuperseded": True,
                "IsDeclined": False,
                "IsApproved": True,
                "ArrivalDate": "2024-03-12T18:00:00Z",
            },
            {
                "Id": "0b5b5b4e-0000-4000-8000-000000000002",
                "Title": "Realtek Audio Driver",
                "Classification": "Drivers",
                "IsBeta": False,
                "IsSuperseded": False,
                "IsDeclined": True,
                "IsApproved": False,
                "ArrivalDate": None,
            },
            {
                "Id": "0b5b5b4e-0000-4000-8000-000000000003",
                "Title": None,
                "IsApproved": False,
            },
        ]

        with patch(RUN, return_value=_json_output(output)):
            updates = server.enumerate_all_updates()

        assert [u.approval_state for u in updates] == [
            ApprovalState.APPROVED,
            ApprovalState.DECLINED,
            ApprovalState.NOT_APPROVED,
        ]
        assert updates[0].is_superseded is True
        assert updates[0].arrival_date == datetime(2024, 3, 12, 18, 0, tzinfo=UTC)
        assert updates[1].is_declined is True
        assert updates[1].classification == "Drivers"
        assert updates[1].arrival_date is None
        assert updates[2].title == ""

    def test_single_object_output(self, server):
        """Test that a lone object from ConvertTo-Json is treated as one update."""
        output = {"Id": "abc", "Title": "Only one", "IsDeclined": False}

        with patch(RUN, return_value=_json_output(output)):
            updates = server.enumerate_all_updates()

        assert len(updates) == 1
        assert updates[0].id == "abc"

    def test_empty_output(self, server):
        with patch(RUN, return_value=_completed("")):
            assert server.enumerate_all_updates() == []

    def test_scope_filters(self, server):
        with patch(RUN, return_value=_json_output([])) as mock_run:
            server.enumerate_updates(
                approval_state=ApprovalState.DECLINED,
                from_date=datetime(2024, 1, 1, tzinfo=UTC),
            )

        script = _script(mock_run)
        assert "$scope.ApprovedStates = 'Declined'" in script
        assert "$scope.FromArrivalDate = [datetime]::SpecifyKind([datetime]'2024-01-01T00:00:00', 'Utc')" in script
        assert "ToArrivalDate" not in script
        assert "$wsus.GetUpdates($scope)" in script

    def test_no_filters(self, server):
        with patch(RUN, return_value=_json_output([])) as mock_run:
            server.enumerate_updates()

        script = _script(mock_run)
        assert "ApprovedStates" not in script
        assert "FromArrivalDate" not in script


class TestWriteOperations:
    """Tests for decline, approve and delete."""

    def test_decline(self, server):
        with patch(RUN, return_value=_completed()) as mock_run:
            server.decline("0b5b5b4e-0000-4000-8000-000000000001")

        script = _script(mock_run)
        assert "[guid]'0b5b5b4e-0000-4000-8000-000000000001'" in script
        assert "$u.Decline()" in script

    def test_approve_uses_group_id(self, server):
        group = TargetGroup(id=ALL_COMPUTERS_GROUP_ID, name="All Computers")

        with patch(RUN, return_value=_completed()) as mock_run:
            server.approve("u1", group)

        script = _script(mock_run)
        assert f"GetComputerTargetGroup([guid]'{ALL_COMPUTERS_GROUP_ID}')" in script
        assert "UpdateApprovalAction]::Install, $group)" in script

    def test_approve_accepts_license_first(self, server):
        """Test that a pending license agreement is accepted before Approve()."""
        group = TargetGroup(id=ALL_COMPUTERS_GROUP_ID, name="All Computers")

        with patch(RUN, return_value=_completed()) as mock_run:
            server.approve("u1", group)

        script = _script(mock_run)
        accept = "if ($u.RequiresLicenseAgreementAcceptance) { $u.AcceptLicenseAgreement() }"
        assert accept in script
        assert script.index(accept) < script.index("$u.Approve(")

    def test_delete(self, server):
        with patch(RUN, return_value=_completed()) as mock_run:
            server.delete("u1")

        assert "$wsus.DeleteUpdate([guid]'u1')" in _script(mock_run)

    @pytest.mark.parametrize("operation", ["decline", "delete"])
    def test_failure_is_update_operation_error(self, server, operation):
        error = subprocess.CalledProcessError(1, ["powershell.exe"], output="", stderr="denied")

        with patch(RUN, side_effect=error):
            with pytest.raises(UpdateOperationError) as excinfo:
                getattr(server, operation)("u1")

        assert excinfo.value.update_id == "u1"
        assert excinfo.value.operation == operation
        assert str(excinfo.value).startswith(f"{operation} failed for update u1")


class TestSynchronization:
    """Tests for synchronization status."""

    @pytest.mark.parametrize(
        "status, phase",
        [
            ("NotProcessing", SyncPhase.NOT_PROCESSING),
            ("Running", SyncPhase.RUNNING),
            ("Stopping", SyncPhase.STOPPING),
        ],
    )
    def test_phase(self, server, status, phase):
        with patch(RUN, return_value=_json_output(status)):
            assert server.get_synchronization_phase() is phase

    def test_unknown_status(self, server):
        with patch(RUN, return_value=_json_output("Exploding")):
            with pytest.raises(ServerError, match="Unknown synchronization status"):
                server.get_synchronization_phase()


class TestCleanup:
    """Tests for perform_cleanup()."""

    def test_outcome_and_scope(self, server):
        output = {
            "DiskSpaceFreed": 1073741824,
            "SupersededUpdatesDeclined": 12,
            "ExpiredUpdatesDeclined": 3,
            "ObsoleteUpdatesDeleted": 40,
            "ObsoleteComputersDeleted": 2,
            "UpdatesCompressed": 7,
        }

        with patch(RUN, return_value=_json_output(output)) as mock_run:
            outcome = server.perform_cleanup(CleanupScope(compress_revisions=False))

        assert outcome.disk_space_freed == 1073741824
        assert outcome.superseded_updates_declined == 12
        assert outcome.expired_updates_declined == 3
        assert outcome.obsolete_updates_deleted == 40
        assert outcome.obsolete_computers_deleted == 2
        assert outcome.updates_compressed == 7
        script = _script(mock_run)
        assert "$scope.CompressUpdates = $false" in script
        assert "$scope.DeclineSupersededUpdates = $true" in script
        assert mock_run.call_args[1]["timeout"] is None

    def test_empty_output_is_zero(self, server):
        with patch(RUN, return_value=_completed("")):
            outcome = server.perform_cleanup(CleanupScope())

        assert outcome.disk_space_freed == 0


class TestTargetGroups:
    """Tests for enumerate_target_groups()."""

    def test_all_computers_first(self, server):
        output = [
            {"Id": "11111111-0000-0000-0000-000000000001", "Name": "Servers"},
            {"Id": ALL_COMPUTERS_GROUP_ID.upper(), "Name": "All Computers"},
            {"Id": "11111111-0000-0000-0000-000000000002", "Name": "Workstations"},
        ]

        with patch(RUN, return_value=_json_output(output)):
            groups = server.enumerate_target_groups()

        assert [g.name for g in groups] == ["All Computers", "Servers", "Workstations"]
