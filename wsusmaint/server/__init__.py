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

"""Update server access for wsusmaint.

Modules:

base : module
    UpdateServer protocol and the records it exchanges.
powershell : module
    UpdateServer implementation driving the WSUS administration API.
probe : module
    HTTP reachability check for the WSUS web service.

Example:
    from wsusmaint.server import PowerShellUpdateServer, probe_server

    probe_server("wsus01")
    server = PowerShellUpdateServer("wsus01")
    print(server.connect().version)

"""

from .base import (
    ApprovalState,
    CleanupOutcome,
    CleanupScope,
    ServerInfo,
    SyncPhase,
    TargetGroup,
    UpdateRecord,
    UpdateServer,
)
from .powershell import PowerShellUpdateServer
from .probe import probe_server

__all__ = [
    "ApprovalState",
    "CleanupOutcome",
    "CleanupScope",
    "PowerShellUpdateServer",
    "ServerInfo",
    "SyncPhase",
    "TargetGroup",
    "UpdateRecord",
    "UpdateServer",
    "probe_server",
]
