"""Dependency management for Beads - edges, readiness, trees and cycles.

An edge (issue_id, depends_on_id, type) reads "issue_id depends on
depends_on_id". Only ``blocks`` edges gate readiness, and only they must
stay acyclic; ``related`` and ``discovered-from`` edges may form cycles.
"""

from typing import Any, Dict, List, Optional, Set

from beads_core.cache import IssueCache
from beads_core.constants import VALID_DEPENDENCY_TYPES
from beads_core.exceptions import CycleDetectedError, InvalidEdgeError
from beads_core.graph import find_cycles, find_path
from beads_core.issues import get_issue, require_issue
from beads_core.query import IssueQuery, query_issues

__all__ = [
    "add_dependency",
    "remove_dependency",
    "get_dependencies",
    "get_dependents",
    "get_children",
    "get_blockers",
    "is_blocked",
    "is_ready",
    "compute_ready",
    "get_blocked_issues",
    "STATUS_MARKERS",
    "blocks_adjacency",
    "detect_cycles",
    "dependency_tree",
    "render_tree",
]

STATUS_MARKERS = {
    "open": "○",
    "in_progress": "◐",
    "closed": "●",
    "blocked": "⊘",
}


def blocks_adjacency(cache: IssueCache) -> Dict[str, List[str]]:
    """issue_id -> [depends_on_id] over blocks edges."""
    adjacency: Dict[str, List[str]] = {}
    cursor = cache.db.execute(
        "SELECT issue_id, depends_on_id FROM dependencies WHERE type = 'blocks' ORDER BY 1, 2"
    )
    for issue_id, depends_on_id in cursor.fetchall():
        adjacency.setdefault(issue_id, []).append(depends_on_id)
    return adjacency


def add_dependency(
    cache: IssueCache,
    issue_id: str,
    depends_on_id: str,
    dep_type: str = "blocks",
) -> None:
    """Add a dependency between two issues.

    Re-adding an existing edge with a different type changes its type.

    Args:
        cache: Open issue cache
        issue_id: Issue that has the dependency
        depends_on_id: Issue that is depended upon
        dep_type: Type of dependency (blocks, discovered-from, related)

    Raises:
        InvalidEdgeError: For a self-edge or an unknown type
        NotFoundError: If either issue does not exist
        CycleDetectedError: If a blocks edge would close a cycle
    """
    if dep_type not in VALID_DEPENDENCY_TYPES:
        raise InvalidEdgeError(
            f"Invalid dependency type: {dep_type}. Must be one of {sorted(VALID_DEPENDENCY_TYPES)}"
        )
    if issue_id == depends_on_id:
        raise InvalidEdgeError(f"Issue {issue_id} cannot depend on itself")

    with cache.writing():
        issue = require_issue(cache, issue_id)
        target = require_issue(cache, depends_on_id)

        existing = cache.db.execute(
            "SELECT type FROM dependencies WHERE issue_id = ? AND depends_on_id = ?",
            (issue_id, depends_on_id),
        ).fetchone()
        if existing is not None and existing[0] == dep_type:
            return

        if dep_type == "blocks":
            # The new edge closes a cycle iff depends_on_id already reaches issue_id
            path = find_path(blocks_adjacency(cache), depends_on_id, issue_id)
            if path is not None:
                cycle = [issue_id] + path
                raise CycleDetectedError(
                    f"Adding {issue_id} -> {depends_on_id} would create a cycle: " + " -> ".join(cycle),
                    path=cycle,
                )

        cache.append(
            "dep_add",
            issue_id,
            data={
                "depends_on_id": depends_on_id,
                "target_origin": target["origin"],
                "type": dep_type,
            },
            origin=issue["origin"],
        )


def remove_dependency(cache: IssueCache, issue_id: str, depends_on_id: str) -> bool:
    """Remove a dependency. Idempotent: removing an absent edge is not an error.

    Returns:
        True if an edge was removed
    """
    with cache.writing():
        row = cache.db.execute(
            """SELECT i.origin, t.origin FROM dependencies d
               JOIN issues i ON d.issue_id = i.id
               JOIN issues t ON d.depends_on_id = t.id
               WHERE d.issue_id = ? AND d.depends_on_id = ?""",
            (issue_id, depends_on_id),
        ).fetchone()
        if row is None:
            return False

        cache.append(
            "dep_remove",
            issue_id,
            data={"depends_on_id": depends_on_id, "target_origin": row[1]},
            origin=row[0],
        )
    return True


def get_dependencies(cache: IssueCache, issue_id: str) -> List[Dict[str, Any]]:
    """Edges out of an issue: what it depends on."""
    cursor = cache.db.execute(
        """SELECT depends_on_id, type, created_at, created_by FROM dependencies
           WHERE issue_id = ? ORDER BY depends_on_id""",
        (issue_id,),
    )
    return [dict(row) for row in cursor.fetchall()]


def get_dependents(cache: IssueCache, issue_id: str) -> List[Dict[str, Any]]:
    """Edges into an issue: what depends on it."""
    cursor = cache.db.execute(
        """SELECT issue_id, type, created_at, created_by FROM dependencies
           WHERE depends_on_id = ? ORDER BY issue_id""",
        (issue_id,),
    )
    return [dict(row) for row in cursor.fetchall()]


def get_children(cache: IssueCache, parent_id: str) -> List[Dict[str, Any]]:
    """Child issues of a parent, in id order."""
    return IssueQuery(cache, parent_id=parent_id).all()


def get_blockers(cache: IssueCache, issue_id: str) -> List[Dict[str, Any]]:
    """Issues that still block this one (open blocks-type dependencies)."""
    cursor = cache.db.execute(
        """SELECT i.id FROM issues i
           JOIN dependencies d ON i.id = d.depends_on_id
           WHERE d.issue_id = ? AND d.type = 'blocks' AND i.status != 'closed'
           ORDER BY i.id""",
        (issue_id,),
    )
    return [get_issue(cache, row[0]) for row in cursor.fetchall()]


def is_blocked(cache: IssueCache, issue_id: str) -> bool:
    """True if blocked by at least one issue that is not closed."""
    cursor = cache.db.execute(
        """SELECT COUNT(*) FROM dependencies d
           JOIN issues i ON d.depends_on_id = i.id
           WHERE d.issue_id = ? AND d.type = 'blocks' AND i.status != 'closed'""",
        (issue_id,),
    )
    return cursor.fetchone()[0] > 0


def is_ready(cache: IssueCache, issue_id: str) -> bool:
    """True iff the issue is not closed and none of its blockers is open.

    Readiness depends on blocks edges only, so an issue whose status was set
    to blocked by hand is still ready here. compute_ready() leaves such
    issues out by default through its status filter, not through this check.
    """
    issue = require_issue(cache, issue_id)
    return issue["status"] != "closed" and not is_blocked(cache, issue_id)


def compute_ready(
    cache: IssueCache,
    limit: Optional[int] = None,
    **filters: Any,
) -> List[Dict[str, Any]]:
    """Ready work: unblocked issues ordered by priority, then age, then id.

    ``status`` defaults to open and in_progress, so issues explicitly set
    to blocked stay out unless asked for. Other filters as for IssueQuery.
    """
    filters.setdefault("status", ["open", "in_progress"])
    filters["sort"] = "priority"

    ready = []
    for issue in query_issues(cache, **filters):
        if issue["status"] != "closed" and not is_blocked(cache, issue["id"]):
            ready.append(issue)
            if limit is not None and len(ready) >= limit:
                break
    return ready


def get_blocked_issues(cache: IssueCache, **filters: Any) -> List[Dict[str, Any]]:
    """Open issues with open blockers or an explicit blocked status.

    Each issue dict gains a ``blocked_by`` list of blocker ids.
    """
    filters.setdefault("status", ["open", "in_progress", "blocked"])
    filters.setdefault("sort", "priority")

    blocked = []
    for issue in query_issues(cache, **filters):
        blockers = [b["id"] for b in get_blockers(cache, issue["id"])]
        if blockers or issue["status"] == "blocked":
            issue["blocked_by"] = blockers
            blocked.append(issue)
    return blocked


def detect_cycles(cache: IssueCache) -> List[List[str]]:
    """Every cycle in the blocks subgraph, e.g. after a merge."""
    cache.refresh()
    return find_cycles(blocks_adjacency(cache))


def dependency_tree(cache: IssueCache, issue_id: str, max_depth: int = 10) -> Dict[str, Any]:
    """Nested view of an issue's children and dependencies.

    Each node has ``id``, ``title``, ``status``, ``priority``, ``relation``
    (None at the root, "child" or the edge type), and ``nodes``. An issue
    already shown elsewhere in the tree is listed again with ``repeat``
    set and not expanded, so cycles through related edges terminate.
    """
    cache.refresh()
    require_issue(cache, issue_id)
    visited: Set[str] = set()

    def build(current_id: str, relation: Optional[str], depth: int) -> Dict[str, Any]:
        issue = require_issue(cache, current_id)
        node: Dict[str, Any] = {
            "id": issue["id"],
            "title": issue["title"],
            "status": issue["status"],
            "priority": issue["priority"],
            "relation": relation,
            "nodes": [],
        }
        if current_id in visited:
            node["repeat"] = True
            return node
        visited.add(current_id)

        if depth >= max_depth:
            node["truncated"] = True
            return node

        for child in get_children(cache, current_id):
            node["nodes"].append(build(child["id"], "child", depth + 1))
        for dep in get_dependencies(cache, current_id):
            node["nodes"].append(build(dep["depends_on_id"], dep["type"], depth + 1))
        return node

    return build(issue_id, None, 0)


def render_tree(node: Dict[str, Any], prefix: str = "", is_last: bool = True, is_root: bool = True) -> List[str]:
    """Render a dependency_tree() as text lines with box-drawing connectors."""
    marker = STATUS_MARKERS.get(node["status"], "?")
    connector = "" if is_root else ("└─ " if is_last else "├─ ")
    relation = f"({node['relation']}) " if node["relation"] and node["relation"] != "child" else ""
    suffix = " ↻" if node.get("repeat") else (" …" if node.get("truncated") else "")

    lines = [f"{prefix}{connector}{relation}{marker} {node['id']} - {node['title']} [P{node['priority']}]{suffix}"]

    child_prefix = prefix if is_root else prefix + ("   " if is_last else "│  ")
    for i, child in enumerate(node["nodes"]):
        lines.extend(render_tree(child, child_prefix, i == len(node["nodes"]) - 1, False))
    return lines
