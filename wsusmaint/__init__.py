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

"""wsusmaint - WSUS maintenance automation

A Python-based CLI tool for keeping a Windows Server Update Services (WSUS)
server tidy: cleanup, synchronization, rule-based declines, deletion of
declined updates, and approvals.

wsusmaint provides:

- Server cleanup wizard with a configurable scope
- Synchronization with a blocking, cancellable wait
- Ordered decline rules (preview/beta, superseded, ARM64, x86, obsolete
  platform versions, language packs, drivers) or a decline-all sweep
- Deletion of declined updates
- Approval of pending updates for a computer target group
- Dry-run mode and YAML configuration

Quick Start:
Sync, decline and approve on the local server:

    $ wsusmaint --wsus-sync --auto-decline --auto-approve

For full CLI documentation:

    $ wsusmaint --help

For more details, see the individual module docstrings.
"""

__version__ = "0.1.0"
__author__ = "Roger Cibrian"
__license__ = "Apache-2.0"
__description__ = "WSUS maintenance automation"

# Re-export commonly used functions for convenience
from wsusmaint.config import load_effective_config
from wsusmaint.core import MaintenanceTasks, run_maintenance
from wsusmaint.exceptions import (
    ConfigError,
    ServerConnectionError,
    ServerError,
    SyncError,
    UpdateOperationError,
    WsusMaintError,
)
from wsusmaint.policy import DeclinePolicy, DeclineReason, classify
from wsusmaint.results import (
    ApproveResult,
    CleanupResult,
    DeclineResult,
    DeleteResult,
    MaintenanceResult,
    SyncResult,
)
from wsusmaint.server import PowerShellUpdateServer, UpdateRecord

__all__ = [
    "__version__",
    "__author__",
    "__license__",
    "__description__",
    "ApproveResult",
    "CleanupResult",
    "DeclineResult",
    "DeleteResult",
    "MaintenanceResult",
    "SyncResult",
    "load_effective_config",
    "run_maintenance",
    "MaintenanceTasks",
    "classify",
    "DeclinePolicy",
    "DeclineReason",
    "PowerShellUpdateServer",
    "UpdateRecord",
    "WsusMaintError",
    "ConfigError",
    "ServerConnectionError",
    "ServerError",
    "SyncError",
    "UpdateOperationError",
]
