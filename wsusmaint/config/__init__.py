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

"""Configuration loading for wsusmaint.

This module loads YAML-based configuration with a layered approach:

  - Built-in defaults
  - Optional configuration file (--config)
  - Command-line overrides

The loader performs deep merging where dicts are merged recursively and
lists/scalars are replaced (last wins).

Public API:

- load_effective_config: Load and merge configuration
- DEFAULT_CONFIG: Built-in defaults

Example:
    Basic usage:

        from pathlib import Path
        from wsusmaint.config import load_effective_config

        config = load_effective_config(Path("wsusmaint.yaml"))
        print(config["approval"]["target_group"])

"""

from .loader import DEFAULT_CONFIG, load_effective_config

__all__ = ["DEFAULT_CONFIG", "load_effective_config"]
