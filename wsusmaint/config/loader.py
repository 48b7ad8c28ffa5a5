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

"""Configuration loading and merging for wsusmaint.

This module implements a three-layer configuration system:

Configuration Layers:
    1. **Built-in defaults** (DEFAULT_CONFIG)
       - Server port 8530 without SSL, 60s sync polling, full cleanup scope
       - The stock list of obsolete platform versions and language packs

    2. **Configuration file** (--config path/to/wsusmaint.yaml)
       - Optional; site-specific settings such as the approval target group
         or an extended obsolete version list

    3. **Command-line overrides**
       - Only flags the operator actually passed
       - Override both file and defaults

Merge Behavior:
    The loader performs deep merging with "last wins" semantics:

    - **Dicts**: Recursively merged (keys from overlay override base)
    - **Lists**: Completely replaced (NOT appended/extended)
    - **Scalars**: Overwritten (strings, numbers, booleans)

Dynamic Injection:
    - server.name: Local host name when not configured

Error Handling:
    - ConfigError: Missing file, YAML parse errors, empty files, non-mapping
        top level, unknown keys, or invalid values
    - All errors are chained with "from err" for better debugging

Example:
    Basic usage:
        ```python
        from pathlib import Path
        from wsusmaint.config import load_effective_config

        cfg = load_effective_config(Path("wsusmaint.yaml"))
        print(cfg["server"]["port"])  # Output: 8530
        ```

    With CLI overrides:
        ```python
        cfg = load_effective_config(None, overrides={"server": {"name": "wsus01"}})
        ```

"""

from __future__ import annotations

import copy
from pathlib import Path
import socket
from typing import Any

import yaml

from wsusmaint.exceptions import ConfigError
from wsusmaint.policy.classifier import (
    DEFAULT_LANGUAGE_PACK_MARKERS,
    DEFAULT_OBSOLETE_VERSIONS,
)

ON_ERROR_POLICIES = ("continue", "abort")

DEFAULT_CONFIG: dict[str, Any] = {
    "server": {
        "name": None,
        "use_ssl": False,
        "port": 8530,
        "probe": True,
        "probe_timeout": 10,
    },
    "policy": {
        "obsolete_versions": list(DEFAULT_OBSOLETE_VERSIONS),
        "language_pack_markers": list(DEFAULT_LANGUAGE_PACK_MARKERS),
    },
    "approval": {
        "target_group": None,
    },
    "sync": {
        "poll_interval": 60,
        "timeout": None,
    },
    "cleanup": {
        "remove_local_content_files": True,
        "remove_obsolete_computers": True,
        "remove_obsolete_updates": True,
        "remove_unneeded_content_files": True,
        "compress_revisions": True,
        "decline_expired": True,
        "decline_superseded": True,
    },
    "on_error": "continue",
}

# -------------------------------
# YAML helpers
# -------------------------------


def _load_yaml_file(p: Path) -> Any:
    """Loads a YAML file and returns the parsed Python object.

    Args:
        p: Path to the YAML file.

    Returns:
        Parsed YAML content.

    Raises:
        ConfigError: If the file is missing, unparsable, or empty.
    """
    if not p.exists():
        raise ConfigError(f"file not found: {p}")
    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as err:
        raise ConfigError(f"Error parsing YAML: {p}: {err}") from err
    if data is None:
        raise ConfigError(f"YAML file is empty: {p}")
    return data


# -------------------------------
# Merge logic
# -------------------------------


def _deep_merge_dicts(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge two dicts with "overlay wins".

    Rules:
      - dict + dict -> deep merge
      - list + list -> overlay REPLACES base (not concatenated)
      - everything else -> overlay overwrites base

    This function does not mutate inputs; returns a new dict.
    """
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge_dicts(result[k], v)
        else:
            result[k] = v
    return result


# -------------------------------
# Dynamic injection
# -------------------------------


def _inject_dynamic_values(cfg: dict[str, Any]) -> None:
    """Fill in values that depend on the machine running the tool.

    Currently:
      - server.name = local host name when unset
    """
    server = cfg.setdefault("server", {})
    if not server.get("name"):
        server["name"] = socket.gethostname()


# -------------------------------
# Validation
# -------------------------------


def _require_type(cfg: dict[str, Any], section: str, key: str, types: tuple) -> Any:
    value = cfg.get(section, {}).get(key)
    if not isinstance(value, types) or (isinstance(value, bool) and bool not in types):
        names = " or ".join(t.__name__ for t in types)
        raise ConfigError(
            f"{section}.{key} must be {names}, got {type(value).__name__}: {value!r}"
        )
    return value


def _require_string_list(cfg: dict[str, Any], section: str, key: str) -> None:
    value = cfg.get(section, {}).get(key)
    if not isinstance(value, list) or not all(
        isinstance(item, str) and item.strip() for item in value
    ):
        raise ConfigError(f"{section}.{key} must be a list of non-empty strings")


def _validate_structure(cfg: dict[str, Any]) -> None:
    """Check that every section is a mapping holding only known keys.

    Runs before dynamic injection, which writes into the server section.
    """
    unknown = sorted(set(cfg) - set(DEFAULT_CONFIG))
    if unknown:
        raise ConfigError(f"Unknown configuration key(s): {', '.join(unknown)}")

    for section, defaults in DEFAULT_CONFIG.items():
        if not isinstance(defaults, dict):
            continue
        if not isinstance(cfg.get(section), dict):
            raise ConfigError(f"'{section}' must be a mapping")
        unknown = sorted(set(cfg[section]) - set(defaults))
        if unknown:
            raise ConfigError(
                f"Unknown key(s) in '{section}': {', '.join(unknown)}. "
                f"Allowed: {', '.join(defaults)}"
            )


def validate_config(cfg: dict[str, Any]) -> None:
    """Check merged configuration values.

    Args:
        cfg: Merged configuration.

    Raises:
        ConfigError: On the first invalid value found.
    """
    _validate_structure(cfg)

    _require_type(cfg, "server", "name", (str,))
    _require_type(cfg, "server", "use_ssl", (bool,))
    _require_type(cfg, "server", "probe", (bool,))
    port = _require_type(cfg, "server", "port", (int,))
    if not 1 <= port <= 65535:
        raise ConfigError(f"server.port must be between 1 and 65535, got {port}")
    probe_timeout = _require_type(cfg, "server", "probe_timeout", (int, float))
    if probe_timeout <= 0:
        raise ConfigError(f"server.probe_timeout must be positive, got {probe_timeout}")

    _require_string_list(cfg, "policy", "obsolete_versions")
    _require_string_list(cfg, "policy", "language_pack_markers")

    target_group = cfg["approval"].get("target_group")
    if target_group is not None and not isinstance(target_group, str):
        raise ConfigError("approval.target_group must be a group name or null")

    poll_interval = _require_type(cfg, "sync", "poll_interval", (int, float))
    if poll_interval <= 0:
        raise ConfigError(f"sync.poll_interval must be positive, got {poll_interval}")
    timeout = cfg["sync"].get("timeout")
    if timeout is not None:
        timeout = _require_type(cfg, "sync", "timeout", (int, float))
        if timeout <= 0:
            raise ConfigError(f"sync.timeout must be positive or null, got {timeout}")

    for key in DEFAULT_CONFIG["cleanup"]:
        _require_type(cfg, "cleanup", key, (bool,))

    if cfg.get("on_error") not in ON_ERROR_POLICIES:
        raise ConfigError(
            f"on_error must be one of {', '.join(ON_ERROR_POLICIES)}, "
            f"got {cfg.get('on_error')!r}"
        )


def _print_yaml_content(data: dict[str, Any], indent: int = 0) -> None:
    """Print YAML content in a readable format for debug mode."""
    from wsusmaint.logging import get_global_logger

    logger = get_global_logger()
    yaml_str = yaml.dump(data, default_flow_style=False, sort_keys=False)
    for line in yaml_str.split("\n"):
        if line.strip():
            logger.debug("CONFIG", " " * indent + line)


# -------------------------------
# Public API
# -------------------------------


def load_effective_config(
    config_path: Path | None = None,
    *,
    overrides: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Loads and merges the effective configuration.

    Performs the following operations:

    1. Start from built-in defaults
    2. Merge the configuration file, if given
    3. Merge command-line overrides
    4. Check that sections are mappings with known keys
    5. Inject dynamic fields (server.name = host name if absent)
    6. Validate the result

    Args:
        config_path: Optional path to a YAML configuration file.
        overrides: Optional nested dict of explicitly passed CLI values.

    Returns:
        A merged configuration dict.

    Raises:
        ConfigError: On YAML parse errors, empty or missing files, invalid
            structure, or invalid values.
    """
    from wsusmaint.logging import get_global_logger

    logger = get_global_logger()
    merged = copy.deepcopy(DEFAULT_CONFIG)
    layers_merged = 1

    if config_path is not None:
        config_path = config_path.resolve()
        logger.verbose("CONFIG", f"Loading: {config_path}")
        file_obj = _load_yaml_file(config_path)
        if not isinstance(file_obj, dict):
            raise ConfigError(f"top-level YAML must be a mapping (dict): {config_path}")
        logger.debug("CONFIG", f"--- Content from {config_path.name} ---")
        _print_yaml_content(file_obj)
        merged = _deep_merge_dicts(merged, file_obj)
        layers_merged += 1

    if overrides:
        merged = _deep_merge_dicts(merged, overrides)
        layers_merged += 1

    logger.verbose("CONFIG", f"Deep merging {layers_merged} layer(s)")

    _validate_structure(merged)
    _inject_dynamic_values(merged)
    validate_config(merged)

    logger.debug("CONFIG", "--- Final Merged Configuration ---")
    _print_yaml_content(merged)

    return merged
