"""Sync module for Beads - replica reconciliation, git merge driver, JSONL export/import."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Set, Union

from beads_core.cache import IssueCache
from beads_core.constants import (
    DEFAULT_ISSUE_TYPE,
    DEFAULT_PRIORITY,
    PRIORITY_RANGE,
    VALID_DEPENDENCY_TYPES,
    VALID_ISSUE_TYPES,
    VALID_STATUSES,
)
from beads_core.dependencies import blocks_adjacency
from beads_core.events import make_event, stamp_event
from beads_core.exceptions import CorruptRecordError, ValidationError
from beads_core.graph import find_path
from beads_core.ids import id_depth
from beads_core.issues import get_issue, issue_to_record
from beads_core.merge import MergeReport, merge_event_sets
from beads_core.query import query_issues
from beads_core.store import read_log, write_log
from beads_core.utils import atomic_write_bytes, canonical_json, file_lock

__all__ = [
    "sync_from",
    "merge_files",
    "export_issues",
    "import_issues",
]

logger = logging.getLogger(__name__)


def _lines(events: List[Dict[str, Any]]) -> Set[str]:
    return {canonical_json(e) for e in events}


def sync_from(cache: IssueCache, paths: List[Union[str, Path]]) -> MergeReport:
    """Reconcile other replicas' logs into the primary log.

    Rewrites the primary log only when the merge changed something, so
    running it again on an already-merged state is a no-op.

    Returns:
        MergeReport with renames, conflicts and corrupt-line warnings
    """
    with file_lock(cache.lock_path, timeout=cache.lock_timeout):
        local, local_warnings = read_log(cache.log_path)
        warnings = list(local_warnings)
        event_sets = [local]
        for path in paths:
            events, path_warnings = read_log(path)
            event_sets.append(events)
            warnings.extend(path_warnings)

        report = merge_event_sets(*event_sets)
        report.warnings = warnings

        if _lines(report.events) != _lines(local):
            write_log(cache.log_path, report.events, dropped=local_warnings)
            logger.info(
                "Synced %d log(s) into %s: %d event(s), %d rename(s)",
                len(paths),
                cache.log_path,
                len(report.events),
                len(report.renamed),
            )

    cache.refresh()
    return report


def merge_files(
    base: Union[str, Path],
    ours: Union[str, Path],
    theirs: Union[str, Path],
    output: Union[str, Path, None] = None,
) -> MergeReport:
    """Three-way merge of log files, usable as a git merge driver.

    Configure with::

        git config merge.beads.driver "bd merge %O %A %B"
        echo ".beads/*.jsonl merge=beads" >> .gitattributes

    Events present in ``base`` but missing from one side were removed
    deliberately there (compaction, migration) and stay removed. Everything
    else is the union of both sides, reconciled. The result is written to
    ``output`` (default: ``ours``, as git expects).
    """
    base_events, _ = read_log(base)
    ours_events, ours_warnings = read_log(ours)
    theirs_events, theirs_warnings = read_log(theirs)

    base_ids = {e["event_id"] for e in base_events}
    ours_ids = {e["event_id"] for e in ours_events}
    theirs_ids = {e["event_id"] for e in theirs_events}
    removed = (base_ids - ours_ids) | (base_ids - theirs_ids)

    report = merge_event_sets(
        [e for e in ours_events if e["event_id"] not in removed],
        [e for e in theirs_events if e["event_id"] not in removed],
    )
    report.warnings = ours_warnings + theirs_warnings

    write_log(output or ours, report.events, dropped=report.warnings)
    return report


def export_issues(cache: IssueCache, path: Union[str, Path]) -> int:
    """Export a snapshot: one issue per line, sorted by id, with edges and comments.

    Returns:
        Number of issues written
    """
    lines = []
    for issue in query_issues(cache):
        record = issue_to_record(cache, issue)
        comments = cache.db.execute(
            "SELECT author, text, created_at FROM comments WHERE issue_id = ? ORDER BY created_at, event_id",
            (issue["id"],),
        ).fetchall()
        record["comments"] = [
            {"author": row[0], "text": row[1], "created_at": row[2]} for row in comments
        ]
        lines.append(json.dumps(record, sort_keys=True, ensure_ascii=False) + "\n")

    atomic_write_bytes(path, "".join(lines).encode("utf-8"))
    return len(lines)


def _validate_record(record: Any) -> Dict[str, Any]:
    if not isinstance(record, dict):
        raise ValidationError("record is not a JSON object")
    for key in ("id", "title"):
        if not record.get(key):
            raise ValidationError(f"missing '{key}'")
    if record.get("status", "open") not in VALID_STATUSES:
        raise ValidationError(f"invalid status {record.get('status')!r}")
    if record.get("type", DEFAULT_ISSUE_TYPE) not in VALID_ISSUE_TYPES:
        raise ValidationError(f"invalid type {record.get('type')!r}")
    priority = record.get("priority", DEFAULT_PRIORITY)
    if not isinstance(priority, int) or not (PRIORITY_RANGE[0] <= priority <= PRIORITY_RANGE[1]):
        raise ValidationError(f"invalid priority {priority!r}")
    return record


def _import_data(record: Dict[str, Any]) -> Dict[str, Any]:
    data = {
        "title": record["title"],
        "description": record.get("description") or "",
        "status": record.get("status", "open"),
        "priority": record.get("priority", DEFAULT_PRIORITY),
        "issue_type": record.get("type", DEFAULT_ISSUE_TYPE),
        "labels": sorted(set(record.get("labels") or [])),
    }
    for key in ("assignee", "external_ref", "created_at", "updated_at", "closed_at", "close_reason"):
        if record.get(key):
            data[key] = record[key]
    return data


def import_issues(
    cache: IssueCache,
    path: Union[str, Path],
    update: bool = False,
) -> Dict[str, int]:
    """Import a snapshot written by export_issues().

    Args:
        cache: Open issue cache
        path: Snapshot JSONL file
        update: Update issues that already exist instead of skipping them

    Returns:
        Dict with stats: created, updated, skipped, errors

    Notes:
        - Issues keep their ids; parents are created before children
        - Malformed or invalid lines are counted as errors and skipped, as
          are duplicate ids and ids of deleted issues (never reused)
        - Dependencies are added after all issues, skipping unknown targets
          and any blocks edge that would close a cycle
    """
    stats = {"created": 0, "updated": 0, "skipped": 0, "errors": 0}
    path = Path(path)

    if not path.exists():
        return stats

    records = []
    with path.open("r", encoding="utf-8") as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                records.append(_validate_record(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning("Skipping %s", CorruptRecordError(str(path), line_num, str(e)))
                stats["errors"] += 1

    records.sort(key=lambda r: (id_depth(r["id"]), r["id"]))

    with cache.writing():
        seq = cache.next_seq()
        events: List[Dict[str, Any]] = []
        origins: Dict[str, str] = {}
        touched: Set[str] = set()
        deleted = {row[0] for row in cache.db.execute("SELECT id FROM tombstones")}

        def stage(event: Dict[str, Any]) -> Dict[str, Any]:
            stamped = stamp_event(event, seq + len(events))
            events.append(stamped)
            return stamped

        for record in records:
            issue_id = record["id"]
            if issue_id in deleted:
                logger.warning("Skipping %s: the id belongs to a deleted issue", issue_id)
                stats["errors"] += 1
                continue
            if issue_id in origins:
                logger.warning("Skipping %s: duplicate record", issue_id)
                stats["errors"] += 1
                continue

            existing = get_issue(cache, issue_id)

            if existing is None:
                data = _import_data(record)
                parent_id = record.get("parent_id")
                if parent_id:
                    parent_origin = origins.get(parent_id)
                    if parent_origin is None:
                        parent = get_issue(cache, parent_id)
                        parent_origin = parent["origin"] if parent else None
                    if parent_origin is None:
                        logger.warning("Skipping %s: parent %s not found", issue_id, parent_id)
                        stats["errors"] += 1
                        continue
                    data["parent_id"] = parent_id
                    data["parent_origin"] = parent_origin
                create = stage(make_event("create", issue_id, cache.actor, data=data))
                origins[issue_id] = create["event_id"]
                touched.add(issue_id)
                stats["created"] += 1
            elif update:
                origins[issue_id] = existing["origin"]
                touched.add(issue_id)
                data = _import_data(record)
                changes = {
                    name: data.get(name)
                    for name in ("title", "description", "status", "priority", "issue_type", "assignee", "external_ref")
                    if existing[name] != data.get(name)
                }
                if changes:
                    stage(make_event("update", issue_id, cache.actor, data=changes, origin=existing["origin"]))
                for label in sorted(set(data["labels"]) - set(existing["labels"])):
                    stage(make_event("label_add", issue_id, cache.actor, data={"label": label}, origin=existing["origin"]))
                for label in sorted(set(existing["labels"]) - set(data["labels"])):
                    stage(make_event("label_remove", issue_id, cache.actor, data={"label": label}, origin=existing["origin"]))
                stats["updated"] += 1
            else:
                origins[issue_id] = existing["origin"]
                stats["skipped"] += 1

        adjacency = blocks_adjacency(cache)
        for record in records:
            issue_id = record["id"]
            if issue_id not in touched:
                continue
            for dep in record.get("dependencies") or []:
                target_id = dep.get("depends_on_id")
                dep_type = dep.get("type", "blocks")
                target_origin = origins.get(target_id)
                if target_origin is None:
                    target = get_issue(cache, target_id) if target_id else None
                    target_origin = target["origin"] if target else None
                if target_origin is None or dep_type not in VALID_DEPENDENCY_TYPES or target_id == issue_id:
                    logger.warning("Skipping dependency %s -> %s", issue_id, target_id)
                    continue
                existing_edge = cache.db.execute(
                    "SELECT type FROM dependencies WHERE issue_id = ? AND depends_on_id = ?",
                    (issue_id, target_id),
                ).fetchone()
                if existing_edge is not None and existing_edge[0] == dep_type:
                    continue
                if dep_type == "blocks":
                    if find_path(adjacency, target_id, issue_id) is not None:
                        logger.warning("Skipping dependency %s -> %s: would create a cycle", issue_id, target_id)
                        stats["errors"] += 1
                        continue
                    adjacency.setdefault(issue_id, []).append(target_id)
                stage(
                    make_event(
                        "dep_add",
                        issue_id,
                        cache.actor,
                        data={"depends_on_id": target_id, "target_origin": target_origin, "type": dep_type},
                        origin=origins[issue_id],
                    )
                )

        if events:
            cache.append_many(events)

    return stats
