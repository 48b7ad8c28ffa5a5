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

"""WSUS administration through Windows PowerShell.

This module implements the UpdateServer protocol by running short PowerShell
scripts against the WSUS administration API
(Microsoft.UpdateServices.Administration). Each call starts a PowerShell
process, binds to the server with AdminProxy.GetUpdateServer, performs one
operation, and writes its result as JSON on stdout.

Design Principles:
    - Scripts are passed with -EncodedCommand so quoting never leaks
    - Every interpolated value is formatted as a PowerShell literal
    - Dates cross the boundary as UTC ISO-8601 strings
    - Process failures are translated into wsusmaint exceptions with the
      PowerShell error text attached

Example:
    Basic usage:
        ```python
        from wsusmaint.server.powershell import PowerShellUpdateServer

        server = PowerShellUpdateServer("wsus01", use_ssl=False, port=8530)
        info = server.connect()
        updates = server.enumerate_all_updates()
        print(f"{info.name}: {len(updates)} update(s)")
        ```
"""

from __future__ import annotations

import base64
from datetime import UTC, datetime
import json
import subprocess
from typing import Any

from wsusmaint.exceptions import (
    ServerConnectionError,
    ServerError,
    UpdateOperationError,
)
from wsusmaint.logging import get_global_logger
from wsusmaint.server.base import (
    ApprovalState,
    CleanupOutcome,
    CleanupScope,
    ServerInfo,
    SyncPhase,
    TargetGroup,
    UpdateRecord,
)

POWERSHELL_EXE = "powershell.exe"
ADMIN_NAMESPACE = "Microsoft.UpdateServices.Administration"

# Well-known id of the built-in "All Computers" target group
ALL_COMPUTERS_GROUP_ID = "a0a08746-4dbe-4a37-9adf-9e7652c0b421"

_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
_PS_DATE_FORMAT = "yyyy-MM-dd'T'HH:mm:ss'Z'"

# ApprovedStates flag names used in an UpdateScope filter
_APPROVED_STATES = {
    ApprovalState.NOT_APPROVED: "NotApproved",
    ApprovalState.APPROVED: "LatestRevisionApproved, HasStaleUpdateApprovals",
    ApprovalState.DECLINED: "Declined",
}

_UPDATE_PROJECTION = f"""
$items = foreach ($u in $updates) {{
    [pscustomobject]@{{
        Id = $u.Id.UpdateId.ToString()
        Title = $u.Title
        Classification = $u.UpdateClassificationTitle
        IsBeta = $u.IsBeta
        IsSuperseded = $u.IsSuperseded
        IsDeclined = $u.IsDeclined
        IsApproved = $u.IsApproved
        ArrivalDate = $u.ArrivalDate.ToUniversalTime().ToString("{_PS_DATE_FORMAT}")
    }}
}}
ConvertTo-Json -InputObject @($items) -Depth 3 -Compress
"""


def _format_powershell_value(value: Any) -> str:
    """Format a Python value as a PowerShell literal.

    Args:
        value: Python value to convert.

    Returns:
        PowerShell literal representation.

    Example:
        >>> _format_powershell_value("wsus'01")
        "'wsus''01'"
        >>> _format_powershell_value(True)
        '$true'
    """
    if isinstance(value, bool):
        return "$true" if value else "$false"
    elif isinstance(value, str):
        escaped = value.replace("'", "''")
        return f"'{escaped}'"
    elif isinstance(value, int):
        return str(value)
    elif isinstance(value, datetime):
        stamp = value.astimezone(UTC).strftime(_DATE_FORMAT)
        return f"[datetime]::SpecifyKind([datetime]'{stamp[:-1]}', 'Utc')"
    elif value is None:
        return "$null"
    else:
        raise TypeError(f"Cannot format {type(value).__name__} as PowerShell")


def _parse_date(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.strptime(value, _DATE_FORMAT).replace(tzinfo=UTC)
    except (TypeError, ValueError):
        return None


def _as_list(data: Any) -> list[dict[str, Any]]:
    """Normalize ConvertTo-Json output to a list of objects."""
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return list(data)


def _parse_update(item: dict[str, Any]) -> UpdateRecord:
    is_declined = bool(item.get("IsDeclined"))
    if is_declined:
        state = ApprovalState.DECLINED
    elif item.get("IsApproved"):
        state = ApprovalState.APPROVED
    else:
        state = ApprovalState.NOT_APPROVED

    return UpdateRecord(
        id=str(item["Id"]),
        title=item.get("Title") or "",
        classification=item.get("Classification") or "",
        is_beta=bool(item.get("IsBeta")),
        is_superseded=bool(item.get("IsSuperseded")),
        is_declined=is_declined,
        approval_state=state,
        arrival_date=_parse_date(item.get("ArrivalDate")),
    )


class PowerShellUpdateServer:
    """UpdateServer implementation backed by the WSUS PowerShell API.

    Args:
        name: WSUS server host name.
        use_ssl: Connect over HTTPS.
        port: WSUS web service port (8530 for HTTP, 8531 for HTTPS).
        executable: PowerShell executable to run. Default is powershell.exe.
        timeout: Seconds to wait for ordinary calls. Cleanup has no timeout.

    """

    def __init__(
        self,
        name: str,
        use_ssl: bool = False,
        port: int = 8530,
        *,
        executable: str = POWERSHELL_EXE,
        timeout: float = 600,
    ) -> None:
        self.name = name
        self.use_ssl = use_ssl
        self.port = port
        self.executable = executable
        self.timeout = timeout

    def __repr__(self) -> str:
        return (
            f"PowerShellUpdateServer(name={self.name!r}, "
            f"use_ssl={self.use_ssl!r}, port={self.port!r})"
        )

    # -------------------------------
    # Process plumbing
    # -------------------------------

    def _preamble(self) -> str:
        return (
            "$ErrorActionPreference = 'Stop'\n"
            "[Console]::OutputEncoding = [System.Text.Encoding]::UTF8\n"
            f"[void][System.Reflection.Assembly]::LoadWithPartialName("
            f"{_format_powershell_value(ADMIN_NAMESPACE)})\n"
            f"$wsus = [{ADMIN_NAMESPACE}.AdminProxy]::GetUpdateServer("
            f"{_format_powershell_value(self.name)}, "
            f"{_format_powershell_value(self.use_ssl)}, "
            f"{_format_powershell_value(self.port)})\n"
        )

    def _build_command(self, body: str) -> list[str]:
        script = self._preamble() + body
        encoded = base64.b64encode(script.encode("utf-16-le")).decode("ascii")
        return [
            self.executable,
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy",
            "Bypass",
            "-EncodedCommand",
            encoded,
        ]

    def _run(self, action: str, body: str, timeout: float | None = -1) -> Any:
        """Run a script body against the server and decode its JSON output.

        Args:
            action: Short description used in log and error messages.
            body: PowerShell statements run after binding to the server.
            timeout: Seconds to wait; -1 uses the instance default and None
                waits indefinitely.

        Returns:
            Decoded JSON output, or None when the script printed nothing.

        Raises:
            ServerError: If PowerShell is missing, exits non-zero, times out,
                or prints something that is not JSON.
        """
        logger = get_global_logger()
        if timeout == -1:
            timeout = self.timeout

        cmd = self._build_command(body)
        logger.debug("SERVER", f"Running PowerShell: {action}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                check=True,
                timeout=timeout,
            )
        except FileNotFoundError as err:
            raise ServerError(
                f"PowerShell executable not found: {self.executable}"
            ) from err
        except subprocess.CalledProcessError as err:
            error_msg = f"{action} failed (exit code {err.returncode})"
            if err.stderr:
                error_msg += f"\n{err.stderr.strip()}"
            raise ServerError(error_msg) from err
        except subprocess.TimeoutExpired as err:
            raise ServerError(f"{action} timed out after {err.timeout}s") from err

        output = (result.stdout or "").strip()
        if not output:
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as err:
            raise ServerError(f"{action} returned invalid JSON: {err}") from err

    def _write(self, update_id: str, operation: str, body: str) -> None:
        try:
            self._run(f"{operation} {update_id}", body)
        except ServerError as err:
            raise UpdateOperationError(update_id, operation, str(err)) from err

    @staticmethod
    def _get_update(update_id: str) -> str:
        return (
            f"$u = $wsus.GetUpdate([{ADMIN_NAMESPACE}.UpdateRevisionId]::new("
            f"[guid]{_format_powershell_value(update_id)}))\n"
        )

    # -------------------------------
    # UpdateServer protocol
    # -------------------------------

    def connect(self) -> ServerInfo:
        body = (
            "[pscustomobject]@{\n"
            "    Name = $wsus.Name\n"
            "    Version = $wsus.Version.ToString()\n"
            "    Port = $wsus.PortNumber\n"
            "    UseSsl = $wsus.IsConnectionSecureForApiRemoting\n"
            "} | ConvertTo-Json -Compress\n"
        )
        try:
            data = self._run("connect", body)
        except ServerError as err:
            raise ServerConnectionError(
                f"Cannot connect to WSUS server {self.name}:{self.port}: {err}"
            ) from err
        if not isinstance(data, dict):
            raise ServerConnectionError(
                f"Unexpected response while connecting to {self.name}:{self.port}"
            )

        return ServerInfo(
            name=data.get("Name") or self.name,
            port=int(data.get("Port") or self.port),
            use_ssl=bool(data.get("UseSsl", self.use_ssl)),
            version=str(data.get("Version") or ""),
        )

    def enumerate_all_updates(self) -> list[UpdateRecord]:
        body = "$updates = $wsus.GetUpdates()\n" + _UPDATE_PROJECTION
        return [_parse_update(item) for item in _as_list(self._run("list updates", body))]

    def enumerate_updates(
        self,
        approval_state: ApprovalState | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> list[UpdateRecord]:
        lines = [f"$scope = New-Object {ADMIN_NAMESPACE}.UpdateScope"]
        if approval_state is not None:
            states = _APPROVED_STATES[ApprovalState(approval_state)]
            lines.append(f"$scope.ApprovedStates = {_format_powershell_value(states)}")
        if from_date is not None:
            lines.append(f"$scope.FromArrivalDate = {_format_powershell_value(from_date)}")
        if to_date is not None:
            lines.append(f"$scope.ToArrivalDate = {_format_powershell_value(to_date)}")
        lines.append("$updates = $wsus.GetUpdates($scope)")

        body = "\n".join(lines) + "\n" + _UPDATE_PROJECTION
        return [_parse_update(item) for item in _as_list(self._run("list updates", body))]

    def decline(self, update_id: str) -> None:
        self._write(update_id, "decline", self._get_update(update_id) + "$u.Decline()\n")

    def approve(self, update_id: str, target_group: TargetGroup) -> None:
        body = (
            self._get_update(update_id)
            + "$group = $wsus.GetComputerTargetGroup("
            + f"[guid]{_format_powershell_value(target_group.id)})\n"
            + "if ($u.RequiresLicenseAgreementAcceptance) { $u.AcceptLicenseAgreement() }\n"
            + f"[void]$u.Approve([{ADMIN_NAMESPACE}.UpdateApprovalAction]::Install, $group)\n"
        )
        self._write(update_id, "approve", body)

    def delete(self, update_id: str) -> None:
        body = f"$wsus.DeleteUpdate([guid]{_format_powershell_value(update_id)})\n"
        self._write(update_id, "delete", body)

    def start_synchronization(self) -> None:
        self._run("start synchronization", "$wsus.GetSubscription().StartSynchronization()\n")

    def get_synchronization_phase(self) -> SyncPhase:
        body = (
            "$status = $wsus.GetSubscription().GetSynchronizationStatus()\n"
            "ConvertTo-Json -InputObject $status.ToString() -Compress\n"
        )
        status = self._run("read synchronization status", body)
        try:
            return SyncPhase(status)
        except ValueError as err:
            raise ServerError(f"Unknown synchronization status: {status!r}") from err

    def perform_cleanup(self, scope: CleanupScope) -> CleanupOutcome:
        fmt = _format_powershell_value
        body = (
            f"$scope = New-Object {ADMIN_NAMESPACE}.CleanupScope\n"
            f"$scope.CleanupLocalPublishedContentFiles = {fmt(scope.remove_local_content_files)}\n"
            f"$scope.CleanupObsoleteComputers = {fmt(scope.remove_obsolete_computers)}\n"
            f"$scope.CleanupObsoleteUpdates = {fmt(scope.remove_obsolete_updates)}\n"
            f"$scope.CleanupUnneededContentFiles = {fmt(scope.remove_unneeded_content_files)}\n"
            f"$scope.CompressUpdates = {fmt(scope.compress_revisions)}\n"
            f"$scope.DeclineExpiredUpdates = {fmt(scope.decline_expired)}\n"
            f"$scope.DeclineSupersededUpdates = {fmt(scope.decline_superseded)}\n"
            "$r = $wsus.GetCleanupManager().PerformCleanup($scope)\n"
            "[pscustomobject]@{\n"
            "    DiskSpaceFreed = $r.DiskSpaceFreed\n"
            "    SupersededUpdatesDeclined = $r.SupersededUpdatesDeclined\n"
            "    ExpiredUpdatesDeclined = $r.ExpiredUpdatesDeclined\n"
            "    ObsoleteUpdatesDeleted = $r.ObsoleteUpdatesDeleted\n"
            "    ObsoleteComputersDeleted = $r.ObsoleteComputersDeleted\n"
            "    UpdatesCompressed = $r.UpdatesCompressed\n"
            "} | ConvertTo-Json -Compress\n"
        )
        # Cleanup on a large server can run for hours
        data = self._run("server cleanup", body, timeout=None) or {}

        return CleanupOutcome(
            disk_space_freed=int(data.get("DiskSpaceFreed") or 0),
            superseded_updates_declined=int(data.get("SupersededUpdatesDeclined") or 0),
            expired_updates_declined=int(data.get("ExpiredUpdatesDeclined") or 0),
            obsolete_updates_deleted=int(data.get("ObsoleteUpdatesDeleted") or 0),
            obsolete_computers_deleted=int(data.get("ObsoleteComputersDeleted") or 0),
            updates_compressed=int(data.get("UpdatesCompressed") or 0),
        )

    def enumerate_target_groups(self) -> list[TargetGroup]:
        body = (
            "$items = foreach ($g in $wsus.GetComputerTargetGroups()) {\n"
            "    [pscustomobject]@{ Id = $g.Id.ToString(); Name = $g.Name }\n"
            "}\n"
            "ConvertTo-Json -InputObject @($items) -Compress\n"
        )
        groups = [
            TargetGroup(id=str(item["Id"]), name=item.get("Name") or "")
            for item in _as_list(self._run("list target groups", body))
        ]
        # Keep the built-in "All Computers" group at the front
        groups.sort(key=lambda g: g.id.lower() != ALL_COMPUTERS_GROUP_ID)
        return groups
