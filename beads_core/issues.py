"""Issue management for Beads - create, update, close, reopen, delete.

Every mutation runs under IssueCache.writing(): validate against a fresh
cache, then append events. A failed validation appends nothing.
"""

from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from beads_core.cache import IssueCache
from beads_core.constants import (
    DEFAULT_ISSUE_TYPE,
    DEFAULT_PRIORITY,
    PRIORITY_RANGE,
    VALID_DEPENDENCY_TYPES,
    VALID_ISSUE_TYPES,
    VALID_STATUSES,
)
from beads_core.events import make_event, stamp_event
from beads_core.exceptions import (
    InvalidEdgeError,
    InvalidParentError,
    NotFoundError,
    ValidationError,
)
from beads_core.ids import allocate_id
from beads_core.store import compact_log

__all__ = [
    "create_issue",
    "get_issue",
    "require_issue",
    "resolve_issue_id",
    "known_ids",
    "update_issue",
    "close_issue",
    "reopen_issue",
    "delete_issue",
    "add_label",
    "remove_label",
    "add_comment",
    "get_comments",
    "issue_to_record",
    "compact_issues",
]


def _validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Must be one of {sorted(VALID_STATUSES)}")


def _validate_priority(priority: int) -> None:
    min_priority, max_priority = PRIORITY_RANGE
    if not (min_priority <= priority <= max_priority):
        raise ValidationError(f"Priority must be between {min_priority} and {max_priority}, got {priority}")


def _validate_type(issue_type: str) -> None:
    if issue_type not in VALID_ISSUE_TYPES:
        raise ValidationError(f"Invalid type: {issue_type}. Must be one of {sorted(VALID_ISSUE_TYPES)}")


def known_ids(cache: IssueCache) -> Set[str]:
    """Ids of live and deleted issues; none of them may be allocated again."""
    cursor = cache.db.execute("SELECT id FROM issues UNION SELECT id FROM tombstones")
    return {row[0] for row in cursor.fetchall()}


def get_issue(cache: IssueCache, issue_id: str) -> Optional[Dict[str, Any]]:
    """Get issue by ID.

    Returns:
        Dict with issue data and a sorted ``labels`` list, or None if not found
    """
    cursor = cache.db.execute("SELECT * FROM issues WHERE id = ?", (issue_id,))
    row = cursor.fetchone()

    if row is None:
        return None

    issue = dict(row)
    issue["compacted"] = bool(issue["compacted"])
    cursor = cache.db.execute(
        "SELECT label FROM labels WHERE issue_id = ? ORDER BY label", (issue_id,)
    )
    issue["labels"] = [r[0] for r in cursor.fetchall()]
    return issue


def require_issue(cache: IssueCache, issue_id: str) -> Dict[str, Any]:
    """get_issue() that raises NotFoundError instead of returning None."""
    issue = get_issue(cache, issue_id)
    if issue is None:
        raise NotFoundError(issue_id)
    return issue


def resolve_issue_id(cache: IssueCache, partial: str) -> str:
    """Expand a possibly abbreviated id.

    Accepts the full id, the id without its prefix (``a3f8``), or a unique
    leading fragment of either.

    Raises:
        NotFoundError: If nothing matches
        ValidationError: If the fragment is ambiguous
    """
    if get_issue(cache, partial) is not None:
        return partial

    candidates = [partial, f"{cache.prefix}-{partial}"]
    matches: Set[str] = set()
    for candidate in candidates:
        pattern = candidate.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        cursor = cache.db.execute(
            "SELECT id FROM issues WHERE id LIKE ? ESCAPE '\\'", (pattern,)
        )
        matches.update(row[0] for row in cursor.fetchall())

    exact = f"{cache.prefix}-{partial}"
    if exact in matches:
        return exact
    if not matches:
        raise NotFoundError(partial)
    if len(matches) > 1:
        raise ValidationError(f"Ambiguous id {partial}: matches {', '.join(sorted(matches))}")
    return matches.pop()


def create_issue(
    cache: IssueCache,
    title: str,
    description: str = "",
    priority: int = DEFAULT_PRIORITY,
    issue_type: str = DEFAULT_ISSUE_TYPE,
    status: str = "open",
    assignee: Optional[str] = None,
    labels: Optional[Iterable[str]] = None,
    parent_id: Optional[str] = None,
    external_ref: Optional[str] = None,
    dependencies: Optional[Iterable[Tuple[str, str]]] = None,
) -> Dict[str, Any]:
    """Create a new issue.

    Args:
        cache: Open issue cache
        title: Issue title (required)
        description: Optional detailed description
        priority: Priority 0-4 (0=critical, 4=backlog)
        issue_type: bug, feature, task, epic or chore
        status: Initial status
        assignee: Optional actor the issue is assigned to
        labels: Initial labels
        parent_id: Parent issue; the new id becomes ``parent_id.N``
        external_ref: Link to an external tracker (e.g. "gh-42")
        dependencies: (type, depends_on_id) pairs to add at creation

    Returns:
        Dict with created issue data

    Raises:
        ValidationError: If title, status, priority or type is invalid
        InvalidParentError: If the parent is missing or too deeply nested
        NotFoundError: If a dependency target does not exist
        InvalidEdgeError: If a dependency type is unknown
    """
    if not title or not title.strip():
        raise ValidationError("Title is required")
    _validate_status(status)
    _validate_priority(priority)
    _validate_type(issue_type)

    dependencies = list(dependencies or [])
    for dep_type, _ in dependencies:
        if dep_type not in VALID_DEPENDENCY_TYPES:
            raise InvalidEdgeError(
                f"Invalid dependency type: {dep_type}. Must be one of {sorted(VALID_DEPENDENCY_TYPES)}"
            )

    with cache.writing():
        parent = None
        if parent_id is not None:
            parent = get_issue(cache, parent_id)
            if parent is None:
                raise InvalidParentError(f"Parent issue {parent_id} not found")

        existing = known_ids(cache)
        issue_id = allocate_id(
            cache.prefix,
            existing,
            parent_id=parent_id,
            title=title,
            min_length=cache.config["id_length"],
        )

        data: Dict[str, Any] = {
            "title": title,
            "description": description,
            "status": status,
            "priority": priority,
            "issue_type": issue_type,
            "labels": sorted(set(labels or [])),
        }
        if assignee:
            data["assignee"] = assignee
        if external_ref:
            data["external_ref"] = external_ref
        if parent is not None:
            data["parent_id"] = parent["id"]
            data["parent_origin"] = parent["origin"]

        targets = []
        for dep_type, depends_on_id in dependencies:
            target = require_issue(cache, depends_on_id)
            targets.append((dep_type, target))

        seq = cache.next_seq()
        create = stamp_event(make_event("create", issue_id, cache.actor, data=data), seq)
        events = [create]
        for dep_type, target in targets:
            events.append(
                make_event(
                    "dep_add",
                    issue_id,
                    cache.actor,
                    data={
                        "depends_on_id": target["id"],
                        "target_origin": target["origin"],
                        "type": dep_type,
                    },
                    origin=create["event_id"],
                    ts=create["ts"],
                )
            )
        cache.append_many(events)

    return require_issue(cache, issue_id)


def update_issue(
    cache: IssueCache,
    issue_id: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[int] = None,
    issue_type: Optional[str] = None,
    assignee: Optional[str] = None,
    external_ref: Optional[str] = None,
) -> Dict[str, Any]:
    """Update issue fields.

    Only fields that actually change are written. Pass ``assignee=""`` to
    unassign. Setting status to closed records closed_at; moving away from
    closed clears it.

    Raises:
        NotFoundError: If the issue does not exist
        ValidationError: If status, priority or type is invalid
    """
    if title is not None and not title.strip():
        raise ValidationError("Title cannot be empty")
    if status is not None:
        _validate_status(status)
    if priority is not None:
        _validate_priority(priority)
    if issue_type is not None:
        _validate_type(issue_type)

    requested: Dict[str, Any] = {
        "title": title,
        "description": description,
        "status": status,
        "priority": priority,
        "issue_type": issue_type,
        "external_ref": external_ref,
    }
    if assignee is not None:
        requested["assignee"] = assignee or None

    with cache.writing():
        issue = require_issue(cache, issue_id)
        changes = {
            name: value
            for name, value in requested.items()
            if (value is not None or name == "assignee") and issue[name] != value
        }
        if changes:
            cache.append("update", issue_id, data=changes, origin=issue["origin"])

    return require_issue(cache, issue_id)


def close_issue(cache: IssueCache, issue_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
    """Close an issue. Closing a closed issue is a no-op."""
    with cache.writing():
        issue = require_issue(cache, issue_id)
        if issue["status"] != "closed":
            data = {"reason": reason} if reason else {}
            cache.append("close", issue_id, data=data, origin=issue["origin"])

    return require_issue(cache, issue_id)


def reopen_issue(cache: IssueCache, issue_id: str) -> Dict[str, Any]:
    """Reopen a closed issue: status back to open, closed_at cleared."""
    with cache.writing():
        issue = require_issue(cache, issue_id)
        if issue["status"] == "closed":
            cache.append("reopen", issue_id, origin=issue["origin"])

    return require_issue(cache, issue_id)


def _deletion_set(cache: IssueCache, issue_id: str, cascade: bool) -> List[str]:
    """The issue plus, with cascade, its children and blocks-dependents, recursively."""
    ordered = [issue_id]
    if not cascade:
        return ordered

    seen = {issue_id}
    queue = [issue_id]
    while queue:
        current = queue.pop(0)
        cursor = cache.db.execute(
            """SELECT id FROM issues WHERE parent_id = ?
               UNION
               SELECT issue_id FROM dependencies WHERE depends_on_id = ? AND type = 'blocks'
               ORDER BY 1""",
            (current, current),
        )
        for row in cursor.fetchall():
            if row[0] not in seen:
                seen.add(row[0])
                ordered.append(row[0])
                queue.append(row[0])
    return ordered


def delete_issue(cache: IssueCache, issue_id: str, cascade: bool = False) -> List[str]:
    """Delete an issue (audited: a delete event records who and when).

    Edges touching deleted issues disappear with them. Without ``cascade``
    an issue that still has children cannot be deleted; with it, children
    and issues blocked by the issue are deleted too.

    Returns:
        Ids deleted, the requested issue first

    Raises:
        NotFoundError: If the issue does not exist
        ValidationError: If the issue has children and cascade is False
    """
    with cache.writing():
        require_issue(cache, issue_id)

        if not cascade:
            cursor = cache.db.execute(
                "SELECT id FROM issues WHERE parent_id = ? ORDER BY id", (issue_id,)
            )
            children = [row[0] for row in cursor.fetchall()]
            if children:
                raise ValidationError(
                    f"Cannot delete {issue_id}: it has children ({', '.join(children)}); use cascade"
                )

        doomed = _deletion_set(cache, issue_id, cascade)
        events = []
        for doomed_id in doomed:
            issue = require_issue(cache, doomed_id)
            events.append(
                make_event(
                    "delete",
                    doomed_id,
                    cache.actor,
                    data={"cascade_from": issue_id} if doomed_id != issue_id else {},
                    origin=issue["origin"],
                )
            )
        cache.append_many(events)

    return doomed


def add_label(cache: IssueCache, issue_id: str, label: str) -> Dict[str, Any]:
    """Add a label (no-op if already present)."""
    if not label.strip():
        raise ValidationError("Label cannot be empty")
    with cache.writing():
        issue = require_issue(cache, issue_id)
        if label not in issue["labels"]:
            cache.append("label_add", issue_id, data={"label": label}, origin=issue["origin"])
    return require_issue(cache, issue_id)


def remove_label(cache: IssueCache, issue_id: str, label: str) -> Dict[str, Any]:
    """Remove a label (no-op if absent)."""
    with cache.writing():
        issue = require_issue(cache, issue_id)
        if label in issue["labels"]:
            cache.append("label_remove", issue_id, data={"label": label}, origin=issue["origin"])
    return require_issue(cache, issue_id)


def add_comment(cache: IssueCache, issue_id: str, text: str) -> Dict[str, Any]:
    """Add a comment to an issue.

    Comments are append-only - no edit or delete operations.
    """
    if not text.strip():
        raise ValidationError("Comment text cannot be empty")
    with cache.writing():
        issue = require_issue(cache, issue_id)
        event = cache.append("comment", issue_id, data={"text": text}, origin=issue["origin"])

    return {
        "id": event["event_id"],
        "issue_id": issue_id,
        "author": event["actor"],
        "text": text,
        "created_at": event["ts"],
    }


def get_comments(cache: IssueCache, issue_id: str) -> List[Dict[str, Any]]:
    """Get all comments for an issue, oldest first."""
    cursor = cache.db.execute(
        """SELECT event_id, issue_id, author, text, created_at
           FROM comments
           WHERE issue_id = ?
           ORDER BY created_at ASC, event_id ASC""",
        (issue_id,),
    )
    return [
        {
            "id": row[0],
            "issue_id": row[1],
            "author": row[2],
            "text": row[3],
            "created_at": row[4],
        }
        for row in cursor.fetchall()
    ]


def issue_to_record(cache: IssueCache, issue: Dict[str, Any]) -> Dict[str, Any]:
    """The structured-output shape of an issue, with its edges in both directions."""
    deps = cache.db.execute(
        "SELECT depends_on_id, type FROM dependencies WHERE issue_id = ? ORDER BY depends_on_id",
        (issue["id"],),
    ).fetchall()
    dependents = cache.db.execute(
        "SELECT issue_id, type FROM dependencies WHERE depends_on_id = ? ORDER BY issue_id",
        (issue["id"],),
    ).fetchall()

    return {
        "id": issue["id"],
        "title": issue["title"],
        "description": issue["description"],
        "status": issue["status"],
        "priority": issue["priority"],
        "type": issue["issue_type"],
        "assignee": issue["assignee"],
        "labels": list(issue["labels"]),
        "parent_id": issue["parent_id"],
        "created_at": issue["created_at"],
        "updated_at": issue["updated_at"],
        "closed_at": issue["closed_at"],
        "close_reason": issue["close_reason"],
        "external_ref": issue["external_ref"],
        "dependencies": [{"depends_on_id": r[0], "type": r[1]} for r in deps],
        "dependents": [{"issue_id": r[0], "type": r[1]} for r in dependents],
    }


def compact_issues(cache: IssueCache, older_than_days: Optional[int] = None) -> List[str]:
    """Fold issues closed more than ``older_than_days`` ago into summaries.

    Defaults to the workspace's ``compact_days`` setting.

    Returns:
        Ids compacted
    """
    if older_than_days is None:
        older_than_days = int(cache.config["compact_days"])
    if older_than_days < 0:
        raise ValidationError(f"older_than_days must be non-negative, got {older_than_days}")

    with cache.writing():
        compacted = compact_log(cache.log_path, older_than_days, cache.actor)
    return compacted
