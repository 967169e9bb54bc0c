"""Query cache for Beads - an explicit, invalidating view over the log.

An IssueCache owns one sqlite connection and knows which log files feed
it. Every read path calls refresh(), which compares a fingerprint of the
log files against the one recorded at the last rebuild and replays the
logs only when they changed underneath it (git pull, another process,
a hand edit).

Every ``*.jsonl`` file in the workspace directory is a log. The primary
``issues.jsonl`` receives this replica's appends; any others (copied in
from other clones) are reconciled with it in memory on every rebuild.
"""

import hashlib
import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional, Union

from beads_core.config import (
    find_beads_dir,
    get_actor,
    get_cache_path,
    get_lock_path,
    get_lock_timeout,
    get_log_path,
    load_config,
)
from beads_core.db import get_metadata, init_database
from beads_core.events import make_event
from beads_core.exceptions import BeadsError, ConfigError
from beads_core.merge import merge_event_sets
from beads_core.store import append_events, last_sequence, read_log, rebuild_cache
from beads_core.utils import file_lock

__all__ = [
    "IssueCache",
    "open_cache",
    "watch",
]

logger = logging.getLogger(__name__)


class IssueCache:
    """Derived sqlite view of a workspace's logs."""

    def __init__(
        self,
        beads_dir: Union[str, Path],
        db_path: Optional[Union[str, Path]] = None,
        actor: Optional[str] = None,
    ):
        self.beads_dir = Path(beads_dir)
        if not self.beads_dir.is_dir():
            raise ConfigError(f"Workspace directory {self.beads_dir} does not exist; run 'bd init'")

        self.config: Dict[str, Any] = load_config(self.beads_dir)
        self.actor = get_actor(actor)
        self.log_path = get_log_path(self.beads_dir)
        self.lock_path = get_lock_path(self.beads_dir)
        self.lock_timeout = get_lock_timeout(self.config)
        self.db = init_database(db_path or get_cache_path(self.beads_dir))

        # Warnings from the most recent rebuild (CorruptRecord, MergeConflict)
        self.warnings: List[BeadsError] = []

    @property
    def prefix(self) -> str:
        return self.config["prefix"]

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> "IssueCache":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def log_paths(self) -> List[Path]:
        """All log files, primary first, the rest by name."""
        others = sorted(p for p in self.beads_dir.glob("*.jsonl") if p != self.log_path)
        return [self.log_path] + others

    def fingerprint(self) -> str:
        """sha256 over the names and contents of every log file."""
        digest = hashlib.sha256()
        for path in self.log_paths():
            if path.exists():
                digest.update(path.name.encode("utf-8") + b"\0")
                digest.update(path.read_bytes())
                digest.update(b"\0")
        return digest.hexdigest()

    def is_stale(self) -> bool:
        return get_metadata(self.db, "log_fingerprint") != self.fingerprint()

    def refresh(self, force: bool = False) -> List[BeadsError]:
        """Rebuild from the logs if they changed since the last rebuild.

        Returns:
            Warnings from the rebuild (empty if nothing was rebuilt)
        """
        if force or self.is_stale():
            return self.rebuild()
        return []

    def rebuild(self) -> List[BeadsError]:
        """Reconcile all logs in memory and replay them into the cache."""
        fingerprint = self.fingerprint()

        event_sets = []
        warnings: List[BeadsError] = []
        for path in self.log_paths():
            events, path_warnings = read_log(path)
            event_sets.append(events)
            warnings.extend(path_warnings)

        if len(event_sets) > 1:
            report = merge_event_sets(*event_sets)
            warnings.extend(report.conflicts)
            events = report.events
        else:
            events = event_sets[0]

        rebuild_cache(self.db, events, fingerprint=fingerprint)
        logger.debug("Rebuilt cache from %d log file(s)", len(event_sets))

        self.warnings = warnings
        return warnings

    @contextmanager
    def writing(self) -> Generator["IssueCache", None, None]:
        """Hold the workspace lock with a fresh cache for read-validate-append.

        Validation inside the block sees every event already on disk; the
        cache is refreshed again once the appended events have landed.
        """
        with file_lock(self.lock_path, timeout=self.lock_timeout):
            self.refresh()
            yield self
            self.refresh()

    def append(
        self,
        op: str,
        issue_id: str,
        data: Optional[Dict[str, Any]] = None,
        origin: Optional[str] = None,
        ts: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Append one event to the primary log. Call inside writing()."""
        event = make_event(op, issue_id, self.actor, data=data, origin=origin, ts=ts)
        return append_events(self.log_path, [event])[0]

    def next_seq(self) -> int:
        """Sequence number the next appended event will get. Call inside writing()."""
        return last_sequence(self.log_path) + 1

    def append_many(self, events: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Append pre-built events in one atomic write. Call inside writing()."""
        return append_events(self.log_path, events)


def open_cache(
    beads_dir: Optional[Union[str, Path]] = None,
    actor: Optional[str] = None,
) -> IssueCache:
    """Open the cache for the workspace containing the current directory.

    Raises:
        ConfigError: If no workspace can be found
    """
    if beads_dir is None:
        beads_dir = find_beads_dir()
        if beads_dir is None:
            raise ConfigError("Not in a beads workspace; run 'bd init' first")
    cache = IssueCache(beads_dir, actor=actor)
    cache.refresh()
    return cache


def watch(
    cache: IssueCache,
    interval: float = 2.0,
    iterations: Optional[int] = None,
    on_rebuild: Optional[Callable[[List[BeadsError]], None]] = None,
) -> int:
    """Keep the cache warm, rebuilding whenever the log changes.

    Reads only; the log is never written, so the loop can be killed at any
    point. Runs forever unless ``iterations`` is given.

    Returns:
        Number of rebuilds performed
    """
    rebuilds = 0
    count = 0
    while iterations is None or count < iterations:
        if cache.is_stale():
            warnings = cache.rebuild()
            rebuilds += 1
            logger.info("Log changed; cache rebuilt (%d warning(s))", len(warnings))
            if on_rebuild is not None:
                on_rebuild(warnings)
        count += 1
        if iterations is None or count < iterations:
            time.sleep(interval)
    return rebuilds
