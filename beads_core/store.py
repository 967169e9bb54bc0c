"""Issue store for Beads - the append-only JSONL log and its replay.

The log is the source of truth. Lines are only ever added (compaction and
migration are the explicit, audited exceptions), and every write goes
through a temp file plus atomic rename, so a crash never leaves a
half-written line behind.
"""

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from beads_core.constants import (
    CONFLICT_MARKERS,
    DEFAULT_ISSUE_TYPE,
    DEFAULT_PRIORITY,
    LOCK_FILE_NAME,
    LOCK_TIMEOUT,
    LOG_FILE_NAME,
    MUTABLE_FIELDS,
)
from beads_core.events import (
    event_origin,
    event_sort_key,
    make_event,
    stamp_event,
    validate_event,
)
from beads_core.exceptions import CorruptRecordError
from beads_core.utils import (
    atomic_write_bytes,
    canonical_json,
    file_lock,
    get_iso_timestamp,
    normalize_timestamp,
    parse_timestamp,
)

__all__ = [
    "LogState",
    "read_log",
    "write_log",
    "set_aside_lines",
    "last_sequence",
    "append_events",
    "append",
    "replay_events",
    "rebuild_cache",
    "compact_log",
]

logger = logging.getLogger(__name__)

# Description kept in a compacted summary record
SUMMARY_LENGTH = 200

# Unreadable lines removed by a log rewrite are kept in <log>.rejected
REJECTED_SUFFIX = ".rejected"


@dataclass
class LogState:
    """Result of replaying a log: the current issue set plus its edges."""

    issues: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    dependencies: Dict[Tuple[str, str], Dict[str, Any]] = field(default_factory=dict)
    comments: List[Dict[str, Any]] = field(default_factory=list)
    tombstones: Set[str] = field(default_factory=set)
    warnings: List[str] = field(default_factory=list)

    def blocks_adjacency(self) -> Dict[str, List[str]]:
        """dependent -> [dependency] over blocks edges only."""
        adjacency: Dict[str, List[str]] = {}
        for (issue_id, depends_on_id), dep in sorted(self.dependencies.items()):
            if dep["type"] == "blocks":
                adjacency.setdefault(issue_id, []).append(depends_on_id)
        return adjacency


def read_log(path: Union[str, Path]) -> Tuple[List[Dict[str, Any]], List[CorruptRecordError]]:
    """Read and validate every event in a log file.

    Malformed lines are skipped and reported, never fatal. Git conflict
    markers are skipped too; the records on both sides of them are kept,
    which reads a textually-conflicted log as the union of both sides.

    Returns:
        (events in file order, warnings)
    """
    path = Path(path)
    events: List[Dict[str, Any]] = []
    warnings: List[CorruptRecordError] = []

    if not path.exists():
        return events, warnings

    with path.open("r", encoding="utf-8") as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue

            if line.startswith(CONFLICT_MARKERS):
                warnings.append(CorruptRecordError(str(path), line_num, "git conflict marker"))
                continue

            try:
                events.append(validate_event(json.loads(line)))
            except (json.JSONDecodeError, ValueError) as e:
                warnings.append(CorruptRecordError(str(path), line_num, str(e)))

    for warning in warnings:
        logger.warning("Skipping corrupt record %s", warning)

    return events, warnings


def _encode(events: Iterable[Dict[str, Any]]) -> bytes:
    return b"".join(canonical_json(e).encode("utf-8") + b"\n" for e in events)


def write_log(
    path: Union[str, Path],
    events: Iterable[Dict[str, Any]],
    dropped: Iterable[CorruptRecordError] = (),
) -> None:
    """Atomically replace a log with ``events`` (used by merge, compact, migrate).

    ``dropped`` are the read_log() warnings for lines that will not survive
    the rewrite. Their raw text is appended to ``<path>.rejected`` first, so
    a hand-edited line that failed to parse can still be recovered.
    """
    set_aside_lines(path, dropped)
    atomic_write_bytes(path, _encode(events))


def set_aside_lines(path: Union[str, Path], dropped: Iterable[CorruptRecordError]) -> int:
    """Copy the raw text of unreadable log lines to ``<path>.rejected``.

    Returns:
        Number of lines set aside
    """
    by_source: Dict[str, List[int]] = {}
    for warning in dropped:
        by_source.setdefault(warning.path, []).append(warning.line_num)

    rejected: List[str] = []
    for source, line_nums in sorted(by_source.items()):
        source_path = Path(source)
        if not source_path.exists():
            continue
        lines = source_path.read_text(encoding="utf-8").splitlines()
        rejected.extend(lines[n - 1] for n in sorted(line_nums) if 0 < n <= len(lines))

    if not rejected:
        return 0

    rejected_path = Path(f"{path}{REJECTED_SUFFIX}")
    with rejected_path.open("a", encoding="utf-8") as f:
        f.write("\n".join(rejected) + "\n")
    logger.warning(
        "Moved %d unreadable line(s) out of %s into %s", len(rejected), path, rejected_path
    )
    return len(rejected)


def _max_seq(raw_log: bytes) -> int:
    last_seq = 0
    for raw in raw_log.splitlines():
        try:
            last_seq = max(last_seq, int(json.loads(raw).get("seq", 0)))
        except (ValueError, AttributeError, TypeError):
            continue
    return last_seq


def last_sequence(path: Union[str, Path]) -> int:
    """Highest sequence number in a log (0 for a missing or empty log)."""
    path = Path(path)
    if not path.exists():
        return 0
    return _max_seq(path.read_bytes())


def append_events(
    path: Union[str, Path], events: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """Append events to a log. The caller must hold the workspace lock.

    Assigns each event the next local sequence number and its event_id,
    then rewrites the file as old bytes + new lines via atomic rename.
    Existing lines are carried over byte for byte.

    Returns:
        The events as written
    """
    path = Path(path)
    existing = path.read_bytes() if path.exists() else b""

    last_seq = _max_seq(existing)
    written = [stamp_event(event, last_seq + offset) for offset, event in enumerate(events, 1)]

    if existing and not existing.endswith(b"\n"):
        existing += b"\n"

    atomic_write_bytes(path, existing + _encode(written))
    logger.debug("Appended %d event(s) to %s", len(written), path)
    return written


def append(
    beads_dir: Union[str, Path],
    event: Dict[str, Any],
    log_name: str = LOG_FILE_NAME,
    timeout: float = LOCK_TIMEOUT,
) -> Dict[str, Any]:
    """Append a single event under the workspace lock."""
    beads_dir = Path(beads_dir)
    with file_lock(beads_dir / LOCK_FILE_NAME, timeout=timeout):
        return append_events(beads_dir / log_name, [event])[0]


def _new_issue(event: Dict[str, Any]) -> Dict[str, Any]:
    data = event["data"]
    created_at = normalize_timestamp(data.get("created_at", event["ts"]))
    return {
        "id": event["issue_id"],
        "origin": event_origin(event),
        "title": data.get("title", ""),
        "description": data.get("description", ""),
        "status": data.get("status", "open"),
        "priority": data.get("priority", DEFAULT_PRIORITY),
        "issue_type": data.get("issue_type", DEFAULT_ISSUE_TYPE),
        "assignee": data.get("assignee"),
        "labels": set(data.get("labels", [])),
        "parent_id": data.get("parent_id"),
        "parent_origin": data.get("parent_origin"),
        "external_ref": data.get("external_ref"),
        "created_at": created_at,
        "updated_at": normalize_timestamp(data.get("updated_at", created_at)),
        "closed_at": data.get("closed_at"),
        "close_reason": data.get("close_reason"),
        "created_by": data.get("created_by", event["actor"]),
        "compacted": bool(data.get("compacted", False)),
    }


def _apply(state: LogState, event: Dict[str, Any]) -> None:
    op = event["op"]
    issue_id = event["issue_id"]
    data = event["data"]
    ts = normalize_timestamp(event["ts"])

    if issue_id in state.tombstones:
        return

    if op == "create":
        if issue_id in state.issues:
            state.warnings.append(f"Duplicate create for {issue_id} ignored")
            return
        state.issues[issue_id] = _new_issue(event)
        return

    if op == "compacted":
        issue = _new_issue(event)
        issue["compacted"] = True
        state.issues[issue_id] = issue
        for key in [k for k in state.dependencies if k[0] == issue_id]:
            del state.dependencies[key]
        for dep in data.get("dependencies", []):
            state.dependencies[(issue_id, dep["depends_on_id"])] = {
                "type": dep["type"],
                "created_at": dep.get("created_at", ts),
                "created_by": dep.get("created_by", event["actor"]),
            }
        return

    issue = state.issues.get(issue_id)
    if issue is None:
        logger.debug("Event %s on unknown issue %s ignored", event["event_id"], issue_id)
        return

    if op == "update":
        for name in MUTABLE_FIELDS:
            if name in data:
                issue[name] = data[name]
        if "status" in data:
            if data["status"] == "closed":
                issue["closed_at"] = issue["closed_at"] or ts
            else:
                issue["closed_at"] = None
                issue["close_reason"] = None
    elif op == "close":
        issue["status"] = "closed"
        issue["closed_at"] = data.get("closed_at", ts)
        issue["close_reason"] = data.get("reason")
    elif op == "reopen":
        issue["status"] = "open"
        issue["closed_at"] = None
        issue["close_reason"] = None
    elif op == "delete":
        del state.issues[issue_id]
        state.tombstones.add(issue_id)
        return
    elif op == "dep_add":
        state.dependencies[(issue_id, data["depends_on_id"])] = {
            "type": data.get("type", "blocks"),
            "created_at": ts,
            "created_by": event["actor"],
        }
    elif op == "dep_remove":
        state.dependencies.pop((issue_id, data["depends_on_id"]), None)
    elif op == "label_add":
        issue["labels"].add(data["label"])
    elif op == "label_remove":
        issue["labels"].discard(data["label"])
    elif op == "comment":
        state.comments.append(
            {
                "event_id": event["event_id"],
                "issue_id": issue_id,
                "author": event["actor"],
                "text": data.get("text", ""),
                "created_at": ts,
            }
        )

    issue["updated_at"] = max(issue["updated_at"], ts)


def replay_events(events: Iterable[Dict[str, Any]]) -> LogState:
    """Replay events into the current issue set.

    Order is independent of input order: events are sorted by
    (ts, actor, seq, event_id) first, so independent events commute and
    events on one issue apply in timestamp order. Duplicate event_ids are
    applied once. Edges whose endpoints no longer exist are dropped.
    """
    unique: Dict[str, Dict[str, Any]] = {}
    for event in events:
        unique.setdefault(event["event_id"], event)

    state = LogState()
    for event in sorted(unique.values(), key=event_sort_key):
        try:
            _apply(state, event)
        except (KeyError, TypeError, ValueError) as e:
            state.warnings.append(f"Event {event.get('event_id')} not applied: {e}")

    for key in [k for k in state.dependencies if k[0] not in state.issues or k[1] not in state.issues]:
        del state.dependencies[key]
    state.comments = [c for c in state.comments if c["issue_id"] in state.issues]

    for warning in state.warnings:
        logger.warning(warning)

    return state


def rebuild_cache(
    db: sqlite3.Connection,
    events: Iterable[Dict[str, Any]],
    fingerprint: str = "",
) -> LogState:
    """Replay events and replace the cache contents with the result.

    Idempotent: rows are written in a fixed order with no rebuild-time
    values, so rebuilding twice from the same log gives identical content.
    """
    state = replay_events(events)

    with db:
        db.execute("DELETE FROM tombstones")
        db.execute("DELETE FROM comments")
        db.execute("DELETE FROM dependencies")
        db.execute("DELETE FROM labels")
        db.execute("DELETE FROM issues")

        for issue_id in sorted(state.issues):
            issue = state.issues[issue_id]
            db.execute(
                """INSERT INTO issues
                   (id, origin, title, description, status, priority, issue_type,
                    assignee, parent_id, external_ref, created_at, updated_at,
                    closed_at, close_reason, created_by, compacted)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    issue["id"],
                    issue["origin"],
                    issue["title"],
                    issue["description"],
                    issue["status"],
                    issue["priority"],
                    issue["issue_type"],
                    issue["assignee"],
                    issue["parent_id"],
                    issue["external_ref"],
                    issue["created_at"],
                    issue["updated_at"],
                    issue["closed_at"],
                    issue["close_reason"],
                    issue["created_by"],
                    int(issue["compacted"]),
                ),
            )
            for label in sorted(issue["labels"]):
                db.execute(
                    "INSERT INTO labels (issue_id, label) VALUES (?, ?)",
                    (issue_id, label),
                )

        for (issue_id, depends_on_id), dep in sorted(state.dependencies.items()):
            db.execute(
                """INSERT INTO dependencies (issue_id, depends_on_id, type, created_at, created_by)
                   VALUES (?, ?, ?, ?, ?)""",
                (issue_id, depends_on_id, dep["type"], dep["created_at"], dep["created_by"]),
            )

        for comment in sorted(state.comments, key=lambda c: (c["issue_id"], c["created_at"], c["event_id"])):
            db.execute(
                """INSERT INTO comments (event_id, issue_id, author, text, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    comment["event_id"],
                    comment["issue_id"],
                    comment["author"],
                    comment["text"],
                    comment["created_at"],
                ),
            )

        for issue_id in sorted(state.tombstones):
            db.execute("INSERT INTO tombstones (id) VALUES (?)", (issue_id,))

        db.execute(
            "INSERT OR REPLACE INTO metadata (key, value) VALUES ('log_fingerprint', ?)",
            (fingerprint,),
        )

    return state


def compact_log(
    log_path: Union[str, Path],
    older_than_days: int,
    actor: str,
    now: Optional[str] = None,
) -> List[str]:
    """Fold old closed issues into one summary record each.

    The caller must hold the workspace lock. For every issue closed more
    than ``older_than_days`` ago, its own events are replaced by a single
    ``compacted`` event keeping the id, final status, a shortened
    description, labels and its edges to issues that are not being
    compacted in the same pass. Events of other issues are left alone, so
    their edges onto the compacted issue survive too.

    Returns:
        Sorted ids of the issues compacted in this pass
    """
    events, warnings = read_log(log_path)
    state = replay_events(events)

    now = now or get_iso_timestamp()
    cutoff = parse_timestamp(now) - timedelta(days=older_than_days)

    targets = {
        issue_id: issue
        for issue_id, issue in state.issues.items()
        if issue["status"] == "closed"
        and not issue["compacted"]
        and issue["closed_at"]
        and parse_timestamp(issue["closed_at"]) <= cutoff
    }
    if not targets:
        return []

    origins = {issue["origin"] for issue in targets.values()}
    kept = [e for e in events if event_origin(e) not in origins]

    summaries = []
    for issue_id in sorted(targets):
        issue = targets[issue_id]
        description = issue["description"]
        if len(description) > SUMMARY_LENGTH:
            description = description[:SUMMARY_LENGTH].rstrip() + "..."

        dependencies = [
            {
                "depends_on_id": depends_on_id,
                "target_origin": state.issues[depends_on_id]["origin"],
                "type": dep["type"],
                "created_at": dep["created_at"],
                "created_by": dep["created_by"],
            }
            for (dependent, depends_on_id), dep in sorted(state.dependencies.items())
            if dependent == issue_id and depends_on_id not in targets
        ]

        data = {
            key: issue[key]
            for key in (
                "title",
                "status",
                "priority",
                "issue_type",
                "assignee",
                "parent_id",
                "external_ref",
                "created_at",
                "updated_at",
                "closed_at",
                "close_reason",
                "created_by",
            )
        }
        if issue["parent_origin"]:
            data["parent_origin"] = issue["parent_origin"]
        data["description"] = description
        data["labels"] = sorted(issue["labels"])
        data["dependencies"] = dependencies
        summaries.append(
            make_event("compacted", issue_id, actor, data=data, origin=issue["origin"], ts=now)
        )

    last_seq = max((int(e["seq"]) for e in events), default=0)
    summaries = [stamp_event(e, last_seq + offset) for offset, e in enumerate(summaries, 1)]

    write_log(log_path, kept + summaries, dropped=warnings)
    logger.info("Compacted %d closed issue(s) in %s", len(targets), log_path)
    return sorted(targets)
