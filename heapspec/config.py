"""HeapSpec Configuration — project-level .heapspecrc.yml support.

Loads configuration from .heapspecrc.yml (or .heapspecrc.yaml,
.heapspecrc.json) in the project root or any parent directory. Allows
projects to configure:
  - The default fuel handed to the Driver
  - The per-query z3 timeout
  - Whether solver "unknown" counts as a failed obligation
  - Whether Bind/Loop family instances are discharged with z3

Example .heapspecrc.yml:
    default_fuel: 50000
    solver_timeout_ms: 5000
    unknown_is_failure: true
    check_instances: true
    log_level: DEBUG
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Optional, Dict, Any

import yaml

logger = logging.getLogger(__name__)


@dataclass
class HeapspecConfig:
    """Process-wide HeapSpec configuration."""
    # Fuel used by drive() when none is given
    default_fuel: int = 10_000
    # z3 timeout per query, milliseconds
    solver_timeout_ms: int = 10_000
    # Treat z3 "unknown" as an unmet obligation
    unknown_is_failure: bool = True
    # Discharge Bind/Loop family instances with z3 as they are built
    check_instances: bool = True
    # Level applied to the "heapspec" logger, empty = leave untouched
    log_level: str = ""

    def apply_logging(self) -> None:
        if self.log_level:
            logging.getLogger("heapspec").setLevel(self.log_level.upper())


# ---------------------------------------------------------------------------
# Config file names (in priority order)
# ---------------------------------------------------------------------------

_CONFIG_FILES = [
    ".heapspecrc.yml",
    ".heapspecrc.yaml",
    ".heapspecrc.json",
]


def find_config(start_dir: str = ".") -> Optional[str]:
    """Find the nearest config file by walking up from start_dir."""
    current = os.path.abspath(start_dir)
    while True:
        for name in _CONFIG_FILES:
            path = os.path.join(current, name)
            if os.path.isfile(path):
                return path
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return None


def load_config(path: Optional[str] = None, start_dir: str = ".") -> HeapspecConfig:
    """Load configuration from a file.

    If no path is given, searches for a config file starting from start_dir.
    If no config file is found, or it cannot be parsed, returns defaults.
    """
    if path is None:
        path = find_config(start_dir)

    if path is None:
        return HeapspecConfig()

    try:
        with open(path, "r") as f:
            content = f.read()
    except OSError as exc:
        logger.warning("cannot read %s: %s", path, exc)
        return HeapspecConfig()

    try:
        if path.endswith(".json"):
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        logger.warning("ignoring malformed config %s: %s", path, exc)
        return HeapspecConfig()

    if not isinstance(data, dict):
        return HeapspecConfig()
    return _dict_to_config(data)


def _dict_to_config(data: Dict[str, Any]) -> HeapspecConfig:
    """Convert a parsed dict to HeapspecConfig."""
    config = HeapspecConfig()

    if "default_fuel" in data:
        config.default_fuel = int(data["default_fuel"])
    if "solver_timeout_ms" in data:
        config.solver_timeout_ms = int(data["solver_timeout_ms"])
    if "unknown_is_failure" in data:
        config.unknown_is_failure = bool(data["unknown_is_failure"])
    if "check_instances" in data:
        config.check_instances = bool(data["check_instances"])
    if "log_level" in data and data["log_level"]:
        config.log_level = str(data["log_level"])

    if config.default_fuel < 0:
        raise ValueError(f"default_fuel must be non-negative, got {config.default_fuel}")
    return config


_active: Optional[HeapspecConfig] = None


def get_config() -> HeapspecConfig:
    """Return the active configuration, loading it on first use."""
    global _active
    if _active is None:
        _active = load_config()
        _active.apply_logging()
    return _active


def set_config(config: Optional[HeapspecConfig]) -> None:
    """Replace the active configuration; None forces a reload on next use."""
    global _active
    _active = config
    if config is not None:
        config.apply_logging()
