"""Workspace configuration for Beads - locating .beads/ and reading config.json."""

import getpass
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from beads_core.constants import (
    BEADS_DIR_NAME,
    CACHE_FILE_NAME,
    COMPACT_DAYS,
    CONFIG_FILE_NAME,
    LOCK_FILE_NAME,
    LOCK_TIMEOUT,
    LOG_FILE_NAME,
    MAX_HASH_LENGTH,
    MIN_HASH_LENGTH,
)
from beads_core.exceptions import ConfigError
from beads_core.utils import sanitize_prefix

__all__ = [
    "DEFAULT_CONFIG",
    "find_beads_dir",
    "get_log_path",
    "get_cache_path",
    "get_lock_path",
    "load_config",
    "save_config",
    "get_actor",
    "get_lock_timeout",
]

DEFAULT_CONFIG: Dict[str, Any] = {
    "prefix": "bd",
    "id_length": MIN_HASH_LENGTH,
    "lock_timeout": LOCK_TIMEOUT,
    "compact_days": COMPACT_DAYS,
}


def find_beads_dir(cwd: Optional[str] = None) -> Optional[Path]:
    """Locate the workspace directory.

    BEADS_DIR wins when set (used for test isolation and scripting).
    Otherwise walk up from ``cwd`` looking for a ``.beads`` directory,
    the same way git finds ``.git``.

    Returns:
        Path to the .beads directory, or None if not inside a workspace
    """
    beads_dir = os.environ.get("BEADS_DIR")
    if beads_dir:
        return Path(beads_dir)

    current = Path(cwd or os.getcwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / BEADS_DIR_NAME).is_dir():
            return candidate / BEADS_DIR_NAME

    return None


def get_log_path(beads_dir: Path) -> Path:
    """Get the primary append log path (.beads/issues.jsonl)."""
    return Path(beads_dir) / LOG_FILE_NAME


def get_cache_path(beads_dir: Path) -> Path:
    """Get the derived query cache path (.beads/beads.db)."""
    return Path(beads_dir) / CACHE_FILE_NAME


def get_lock_path(beads_dir: Path) -> Path:
    """Get the writer lock path (.beads/.lock)."""
    return Path(beads_dir) / LOCK_FILE_NAME


def load_config(beads_dir: Path) -> Dict[str, Any]:
    """Read .beads/config.json merged over the defaults.

    A missing file yields the defaults with a prefix derived from the
    directory holding .beads. Unknown keys are kept as-is.

    Raises:
        ConfigError: If the file exists but is not a JSON object
    """
    beads_dir = Path(beads_dir)
    config = dict(DEFAULT_CONFIG)
    config["prefix"] = sanitize_prefix(beads_dir.resolve().parent.name)

    config_path = beads_dir / CONFIG_FILE_NAME
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text() or "{}")
        except json.JSONDecodeError as e:
            raise ConfigError(f"Malformed config file {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Malformed config file {config_path}: expected an object")
        config.update(data)

    try:
        length = int(config["id_length"])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"id_length must be an integer, got {config['id_length']!r}") from e
    config["id_length"] = max(MIN_HASH_LENGTH, min(MAX_HASH_LENGTH, length))
    config["prefix"] = sanitize_prefix(str(config["prefix"]))

    return config


def save_config(beads_dir: Path, config: Dict[str, Any]) -> None:
    """Write config.json (sorted keys, trailing newline for clean diffs)."""
    config_path = Path(beads_dir) / CONFIG_FILE_NAME
    config_path.write_text(json.dumps(config, indent=2, sort_keys=True) + "\n")


def get_actor(actor: Optional[str] = None) -> str:
    """Resolve who is performing a mutation.

    Order: explicit argument, BD_ACTOR, the login name, "unknown".
    """
    if actor:
        return actor
    env_actor = os.environ.get("BD_ACTOR")
    if env_actor:
        return env_actor
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def get_lock_timeout(config: Dict[str, Any]) -> float:
    """Lock timeout in seconds, BEADS_LOCK_TIMEOUT overriding config."""
    env_timeout = os.environ.get("BEADS_LOCK_TIMEOUT")
    value = env_timeout if env_timeout else config.get("lock_timeout", LOCK_TIMEOUT)
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"lock_timeout must be a number, got {value!r}") from e
