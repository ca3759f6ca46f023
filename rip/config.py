"""Load and validate the optional rip config file, and pick the graveyard.

Config lives at ``$RIP_CONFIG`` or ``$XDG_CONFIG_HOME/rip/config.yaml``
(``~/.config/rip/config.yaml`` when XDG_CONFIG_HOME is unset). A missing
file is fine: callers always get a full config dict built from DEFAULTS.
"""

from __future__ import annotations

import copy
import os
import tempfile
from pathlib import Path
from typing import Any, Mapping

import yaml

from rip.graveyard.relocation import BIG_FILE_THRESHOLD


# Default config values
DEFAULTS: dict[str, Any] = {
    "graveyard": None,
    "big_file_threshold": BIG_FILE_THRESHOLD,
    "fast_path": True,
    "inspect": {
        "lines": 6,
        "files": 6,
    },
}

CONFIG_TEMPLATE = """\
# Where buried files rest. RIP_GRAVEYARD and --graveyard take precedence.
graveyard: null

# Files larger than this (bytes) trigger a "delete instead?" prompt when they
# have to be copied across devices.
big_file_threshold: 500000000

# Try a plain rename before falling back to copy + delete.
fast_path: true

inspect:
  lines: 6  # lines of a file shown by --inspect
  files: 6  # children of a directory shown by --inspect
"""


class ConfigError(Exception):
    """Raised when config is invalid."""


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge override into base recursively. Override wins on conflicts."""
    result = copy.deepcopy(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _validate(config: dict) -> None:
    """Validate field types in config."""
    graveyard = config.get("graveyard")
    if graveyard is not None and not isinstance(graveyard, str):
        raise ConfigError("'graveyard' must be a path string or null")

    threshold = config.get("big_file_threshold")
    if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 0:
        raise ConfigError("'big_file_threshold' must be a non-negative integer")

    if not isinstance(config.get("fast_path"), bool):
        raise ConfigError("'fast_path' must be true or false")

    inspect = config.get("inspect")
    if not isinstance(inspect, dict):
        raise ConfigError("'inspect' must be a mapping")
    for key in ("lines", "files"):
        val = inspect.get(key)
        if isinstance(val, bool) or not isinstance(val, int) or val < 0:
            raise ConfigError(f"'inspect.{key}' must be a non-negative integer")


def default_config_path(environ: Mapping[str, str] | None = None) -> Path:
    env = os.environ if environ is None else environ
    if env.get("RIP_CONFIG"):
        return Path(env["RIP_CONFIG"]).expanduser()
    base = env.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base).expanduser() / "rip" / "config.yaml"


def load_config(config_path: Path | None = None) -> dict:
    """Load config from *config_path* (default: :func:`default_config_path`).

    Merges with DEFAULTS so callers always get a full config dict.
    """
    path = Path(config_path) if config_path else default_config_path()
    if not path.exists():
        return copy.deepcopy(DEFAULTS)

    try:
        with open(path) as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config must be a YAML mapping, got {type(raw).__name__}")

    config = _deep_merge(DEFAULTS, raw)
    _validate(config)
    return config


def get_user(environ: Mapping[str, str] | None = None) -> str:
    env = os.environ if environ is None else environ
    return env.get("USER") or env.get("USERNAME") or "unknown"


def resolve_graveyard(
    flag: str | os.PathLike[str] | None = None,
    config: dict | None = None,
    environ: Mapping[str, str] | None = None,
) -> Path:
    """Pick the graveyard root.

    Precedence, first match wins:

    1. ``--graveyard`` flag
    2. ``RIP_GRAVEYARD`` environment variable
    3. ``graveyard`` in the config file
    4. ``$XDG_DATA_HOME/graveyard``
    5. ``<tempdir>/graveyard-<user>``

    The result is always absolute.
    """
    env = os.environ if environ is None else environ
    configured = (config or {}).get("graveyard")

    if flag:
        chosen = Path(flag)
    elif env.get("RIP_GRAVEYARD"):
        chosen = Path(env["RIP_GRAVEYARD"])
    elif configured:
        chosen = Path(configured)
    elif env.get("XDG_DATA_HOME"):
        chosen = Path(env["XDG_DATA_HOME"]) / "graveyard"
    else:
        chosen = Path(tempfile.gettempdir()) / f"graveyard-{get_user(env)}"

    return Path(os.path.abspath(chosen.expanduser()))
