"""Shared utilities for Beads - timestamps, file locking, atomic writes."""

import fcntl
import json
import os
import re
import tempfile
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator, Union

from beads_core.constants import LOCK_TIMEOUT
from beads_core.exceptions import LockTimeoutError

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

__all__ = [
    "get_iso_timestamp",
    "parse_timestamp",
    "normalize_timestamp",
    "canonical_json",
    "file_lock",
    "atomic_write_bytes",
    "sanitize_prefix",
]


def get_iso_timestamp() -> str:
    """Get current UTC timestamp in ISO format with Z suffix.

    Returns:
        ISO 8601 formatted timestamp string (e.g., "2024-01-15T10:30:00.123456Z")
    """
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp written by get_iso_timestamp()."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def normalize_timestamp(value: str) -> str:
    """Rewrite any ISO UTC timestamp in the fixed-width form, so that string
    order is time order (older logs may omit a zero fraction)."""
    parsed = parse_timestamp(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def canonical_json(data: Any) -> str:
    """Serialize with sorted keys and no whitespace, for hashing and log lines."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@contextmanager
def file_lock(
    lock_path: Union[str, Path], timeout: float = LOCK_TIMEOUT
) -> Generator[object, None, None]:
    """Acquire an exclusive file lock.

    The lock is an flock() on the lock file, so the kernel drops it when the
    holding process dies; a lock file left behind by a crashed writer is
    stale and never blocks the next one. The holder's pid is written into
    the file for diagnostics.

    Args:
        lock_path: Path to lock file
        timeout: Maximum time to wait for lock (seconds)

    Yields:
        The lock file object

    Raises:
        LockTimeoutError: If unable to acquire lock within timeout

    Usage:
        with file_lock(Path(".beads/.lock")):
            # Critical section
            pass
    """
    lock_path = Path(lock_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    # Open without truncating so a waiting process doesn't wipe the holder's pid
    lock_file = open(lock_path, "a+")

    try:
        start_time = time.time()
        while True:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.time() - start_time >= timeout:
                    raise LockTimeoutError(
                        f"Could not acquire lock on {lock_path} within {timeout}s"
                    )
                time.sleep(0.01)

        lock_file.seek(0)
        lock_file.truncate()
        lock_file.write(f"{os.getpid()}\n")
        lock_file.flush()

        yield lock_file

    finally:
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        except OSError:
            pass
        lock_file.close()


def atomic_write_bytes(path: Union[str, Path], payload: bytes) -> None:
    """Replace ``path`` with ``payload`` or leave it untouched.

    Writes to a temp file in the same directory, fsyncs, then renames over
    the target. A crash at any point leaves either the old or the new file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as tmp_file:
            tmp_file.write(payload)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def sanitize_prefix(name: str) -> str:
    """Sanitize a workspace name for use as an id prefix.

    Converts to lowercase, replaces spaces/underscores/dots with hyphens,
    removes special characters, and strips leading/trailing hyphens.

    Examples:
        >>> sanitize_prefix("My Project")
        'my-project'
        >>> sanitize_prefix("my_project")
        'my-project'
        >>> sanitize_prefix("Special!@#Chars")
        'special-chars'
    """
    name = name.lower()

    # Dots are reserved for child indices in ids
    name = re.sub(r"[\s_.]+", "-", name)
    name = re.sub(r"[^a-z0-9-]+", "-", name)
    name = re.sub(r"-+", "-", name)
    name = name.strip("-")

    return name or "bd"
