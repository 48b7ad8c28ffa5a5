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

"""HTTP reachability probe for the WSUS web service.

Binding through PowerShell takes several seconds and reports network
problems poorly, so the CLI first checks that the server's API remoting
endpoint answers over HTTP. Any HTTP response (including 401 or 500) proves
the web service is listening; only transport failures count as unreachable.

Example:
    ```python
    from wsusmaint.server.probe import probe_server

    url = probe_server("wsus01", use_ssl=False, port=8530)
    ```
"""

from __future__ import annotations

import requests

from wsusmaint.exceptions import ServerConnectionError
from wsusmaint.logging import get_global_logger

API_REMOTING_PATH = "/ApiRemoting30/WebService.asmx"


def build_service_url(name: str, use_ssl: bool, port: int) -> str:
    """Return the API remoting URL for a server.

    Example:
        >>> build_service_url("wsus01", False, 8530)
        'http://wsus01:8530/ApiRemoting30/WebService.asmx'
    """
    scheme = "https" if use_ssl else "http"
    return f"{scheme}://{name}:{port}{API_REMOTING_PATH}"


def probe_server(
    name: str,
    use_ssl: bool = False,
    port: int = 8530,
    timeout: float = 10,
) -> str:
    """Check that the WSUS web service answers HTTP requests.

    Args:
        name: Server host name.
        use_ssl: Probe over HTTPS.
        port: Web service port.
        timeout: Seconds to wait for the connection and first byte.

    Returns:
        The probed URL.

    Raises:
        ServerConnectionError: On connection errors, TLS failures, or timeouts.
    """
    logger = get_global_logger()
    url = build_service_url(name, use_ssl, port)
    logger.verbose("PROBE", f"Checking {url}")

    try:
        response = requests.get(url, timeout=timeout, allow_redirects=False)
    except requests.Timeout as err:
        raise ServerConnectionError(
            f"WSUS server {name}:{port} did not respond within {timeout}s"
        ) from err
    except requests.RequestException as err:
        raise ServerConnectionError(
            f"WSUS server {name}:{port} is unreachable: {err}"
        ) from err

    logger.debug("PROBE", f"HTTP {response.status_code} from {url}")
    return url
