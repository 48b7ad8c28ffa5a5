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

"""Synchronization watcher for wsusmaint.

Starting a WSUS synchronization returns immediately; the catalog download
itself can take anywhere from minutes to hours. SyncWatcher starts the
synchronization and polls the server at a coarse interval until it reports
NotProcessing again.

States:

    IDLE --start()--> SYNCING --status NotProcessing--> DONE

By default the wait is unbounded. Callers may pass a threading.Event to
cancel the wait from another thread (e.g. a signal handler) and/or a timeout.
Either one raises SyncError; the server keeps synchronizing.

Example:
    ```python
    from wsusmaint.sync import wait_for_sync

    result = wait_for_sync(server, poll_interval=60)
    print(f"Synchronized after {result.polls} poll(s)")
    ```
"""

from __future__ import annotations

from collections.abc import Callable
import threading
import time

from wsusmaint.exceptions import SyncError
from wsusmaint.logging import get_global_logger
from wsusmaint.results import SyncResult, SyncState
from wsusmaint.server.base import SyncPhase, UpdateServer

DEFAULT_POLL_INTERVAL = 60.0


class SyncWatcher:
    """Drive one synchronization from IDLE to DONE.

    Args:
        server: Connected update server.
        poll_interval: Seconds between status polls.
        cancel_event: Optional event; when set the wait is abandoned.
        timeout: Optional limit in seconds on the whole wait.
        sleep: Sleep function used when no cancel_event is given.
        clock: Monotonic clock used for timeouts and elapsed time.

    """

    def __init__(
        self,
        server: UpdateServer,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        *,
        cancel_event: threading.Event | None = None,
        timeout: float | None = None,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")
        self.server = server
        self.poll_interval = poll_interval
        self.cancel_event = cancel_event
        self.timeout = timeout
        self._sleep = sleep or time.sleep
        self._clock = clock or time.monotonic
        self.state = SyncState.IDLE
        self.polls = 0
        self._started_at: float | None = None

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    def start(self) -> None:
        """Ask the server to synchronize (IDLE -> SYNCING)."""
        if self.state is not SyncState.IDLE:
            raise SyncError(f"Cannot start synchronization from state {self.state.value}")
        self.server.start_synchronization()
        self._started_at = self._clock()
        self.state = SyncState.SYNCING

    def _wait(self) -> None:
        delay = self.poll_interval
        if self.timeout is not None:
            delay = max(0.0, min(delay, self.timeout - self.elapsed))
        if self.cancel_event is not None:
            self.cancel_event.wait(delay)
        else:
            self._sleep(delay)

    def _check_abandoned(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise SyncError("Waiting for synchronization was cancelled")
        if self.timeout is not None and self.elapsed >= self.timeout:
            raise SyncError(
                f"Synchronization still running after {self.timeout:g}s"
            )

    def poll(self) -> SyncState:
        """Wait one interval and read the server status (SYNCING -> DONE)."""
        if self.state is not SyncState.SYNCING:
            return self.state

        self._wait()
        self._check_abandoned()

        phase = self.server.get_synchronization_phase()
        self.polls += 1
        get_global_logger().verbose(
            "SYNC", f"Status after {self.elapsed:.0f}s: {phase.value}"
        )
        if phase is SyncPhase.NOT_PROCESSING:
            self.state = SyncState.DONE
        return self.state

    def run(self) -> SyncResult:
        """Start synchronization and block until the server is idle again."""
        self.start()
        while self.poll() is not SyncState.DONE:
            pass
        return SyncResult(
            state=self.state, polls=self.polls, elapsed_seconds=self.elapsed
        )


def wait_for_sync(
    server: UpdateServer,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    *,
    cancel_event: threading.Event | None = None,
    timeout: float | None = None,
    sleep: Callable[[float], None] | None = None,
    clock: Callable[[], float] | None = None,
) -> SyncResult:
    """Start a synchronization and wait for it to finish.

    Args:
        server: Connected update server.
        poll_interval: Seconds between status polls.
        cancel_event: Optional event that abandons the wait when set.
        timeout: Optional limit in seconds. None waits indefinitely.
        sleep: Sleep function (injected in tests).
        clock: Monotonic clock (injected in tests).

    Returns:
        SyncResult with state DONE, the number of polls and elapsed time.

    Raises:
        SyncError: If the wait is cancelled or times out.
        ServerError: If the server cannot start or report synchronization.
    """
    watcher = SyncWatcher(
        server,
        poll_interval,
        cancel_event=cancel_event,
        timeout=timeout,
        sleep=sleep,
        clock=clock,
    )
    return watcher.run()
