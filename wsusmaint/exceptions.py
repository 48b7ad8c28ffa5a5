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

"""Exception hierarchy for wsusmaint.

This module defines a custom exception hierarchy that allows library users
to distinguish between different types of errors:

- ConfigError: Configuration-related errors (YAML parse, invalid values)
- ServerConnectionError: The update server is unreachable or its
    administration API cannot be loaded
- ServerError: A server-wide call failed (enumeration, cleanup, sync)
- UpdateOperationError: A decline, approve, or delete of one update failed
- SyncError: Waiting for synchronization was cancelled or timed out

All exceptions inherit from WsusMaintError, allowing users to catch all
wsusmaint errors with a single except clause if needed.

Example:
    Catching specific error types:
        ```python
        from wsusmaint.core import connect_server
        from wsusmaint.exceptions import ServerConnectionError

        try:
            info = connect_server(server, config)
        except ServerConnectionError as e:
            print(f"Cannot reach WSUS: {e}")
        ```

    Catching all wsusmaint errors:
        ```python
        from wsusmaint.exceptions import WsusMaintError

        try:
            result = run_maintenance(server, config, tasks)
        except WsusMaintError as e:
            print(f"wsusmaint error: {e}")
        ```
"""

from __future__ import annotations

__all__ = [
    "WsusMaintError",
    "ConfigError",
    "ServerConnectionError",
    "ServerError",
    "UpdateOperationError",
    "SyncError",
]


class WsusMaintError(Exception):
    """Base exception for all wsusmaint errors.

    All wsusmaint-specific exceptions inherit from this class, allowing users
    to catch all wsusmaint errors with a single except clause if needed.
    """

    pass


class ConfigError(WsusMaintError):
    """Raised for configuration-related errors.

    This exception is raised when there are problems with:

    - YAML parse errors (syntax errors, non-mapping top level)
    - Missing configuration files passed with --config
    - Invalid values (port out of range, non-positive poll interval,
        unknown on_error policy, wrong value types)
    """

    pass


class ServerConnectionError(WsusMaintError):
    """Raised when the update server cannot be reached.

    This exception is raised when there are problems with:

    - The HTTP reachability probe (connection refused, DNS failure, timeout)
    - Loading the WSUS administration assembly or binding to the server
    - PowerShell itself being unavailable

    The run is aborted before any mutating operation is attempted.
    """

    pass


class ServerError(WsusMaintError):
    """Raised when a server-wide administrative call fails.

    Covers update enumeration, target group lookup, cleanup, and starting
    or polling synchronization. These failures abort the run.
    """

    pass


class UpdateOperationError(WsusMaintError):
    """Raised when a write operation against a single update fails.

    Attributes:
        update_id: Identifier of the update the operation targeted.
        operation: Operation name ("decline", "approve", or "delete").

    Example:
        Inspecting the failed update:
            ```python
            try:
                server.decline(update.id)
            except UpdateOperationError as e:
                print(e.operation, e.update_id)
            ```
    """

    def __init__(self, update_id: str, operation: str, message: str) -> None:
        super().__init__(f"{operation} failed for update {update_id}: {message}")
        self.update_id = update_id
        self.operation = operation


class SyncError(WsusMaintError):
    """Raised when waiting for synchronization is abandoned.

    The server-side synchronization keeps running; only the local wait
    stops (cancellation event set or timeout elapsed).
    """

    pass
