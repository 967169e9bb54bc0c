"""Query engine for Beads - read-only filtering and sorting over the cache."""

from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from beads_core.cache import IssueCache
from beads_core.exceptions import ValidationError

__all__ = [
    "SORT_ORDERS",
    "IssueQuery",
    "query_issues",
    "list_issues",
    "get_statistics",
]

SORT_ORDERS = {
    "id": "id ASC",
    "priority": "priority ASC, created_at ASC, id ASC",
    "created": "created_at ASC, id ASC",
    "updated": "updated_at DESC, id ASC",
}

Filter = Optional[Union[str, int, Sequence[Any]]]


def _as_list(value: Filter) -> Optional[List[Any]]:
    if value is None:
        return None
    if isinstance(value, (str, int)):
        return [value]
    return list(value)


class IssueQuery:
    """A re-runnable query over the cache.

    Filters combine with AND. ``labels`` requires every label, ``labels_any``
    at least one. Iterating executes the query against the cache as it is
    at that moment, so the same object can be iterated again for fresh
    results. Without an explicit sort, results come back ordered by id.
    """

    def __init__(
        self,
        cache: IssueCache,
        status: Filter = None,
        priority: Filter = None,
        issue_type: Filter = None,
        assignee: Optional[str] = None,
        labels: Optional[Sequence[str]] = None,
        labels_any: Optional[Sequence[str]] = None,
        text: Optional[str] = None,
        parent_id: Optional[str] = None,
        sort: str = "id",
        limit: Optional[int] = None,
    ):
        if sort not in SORT_ORDERS:
            raise ValidationError(f"Invalid sort: {sort}. Must be one of {sorted(SORT_ORDERS)}")
        if limit is not None and limit < 0:
            raise ValidationError(f"Limit must be non-negative, got {limit}")

        self.cache = cache
        self.status = _as_list(status)
        self.priority = _as_list(priority)
        self.issue_type = _as_list(issue_type)
        self.assignee = assignee
        self.labels = list(labels or [])
        self.labels_any = list(labels_any or [])
        self.text = text
        self.parent_id = parent_id
        self.sort = sort
        self.limit = limit

    def _sql(self):
        query = "SELECT * FROM issues WHERE 1=1"
        params: List[Any] = []

        for column, values in (
            ("status", self.status),
            ("priority", self.priority),
            ("issue_type", self.issue_type),
        ):
            if values is not None:
                placeholders = ",".join("?" * len(values))
                query += f" AND {column} IN ({placeholders})"
                params.extend(values)

        if self.assignee is not None:
            query += " AND assignee = ?"
            params.append(self.assignee)

        for label in self.labels:
            query += " AND EXISTS (SELECT 1 FROM labels l WHERE l.issue_id = issues.id AND l.label = ?)"
            params.append(label)

        if self.labels_any:
            placeholders = ",".join("?" * len(self.labels_any))
            query += (
                " AND EXISTS (SELECT 1 FROM labels l WHERE l.issue_id = issues.id"
                f" AND l.label IN ({placeholders}))"
            )
            params.extend(self.labels_any)

        if self.text:
            escaped = self.text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            query += " AND title LIKE ? ESCAPE '\\'"
            params.append(f"%{escaped}%")

        if self.parent_id is not None:
            query += " AND parent_id = ?"
            params.append(self.parent_id)

        query += f" ORDER BY {SORT_ORDERS[self.sort]}"

        if self.limit is not None:
            query += " LIMIT ?"
            params.append(self.limit)

        return query, params

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        query, params = self._sql()
        for row in self.cache.db.execute(query, params):
            issue = dict(row)
            issue["compacted"] = bool(issue["compacted"])
            labels = self.cache.db.execute(
                "SELECT label FROM labels WHERE issue_id = ? ORDER BY label", (issue["id"],)
            )
            issue["labels"] = [r[0] for r in labels.fetchall()]
            yield issue

    def all(self) -> List[Dict[str, Any]]:
        return list(self)

    def count(self) -> int:
        return sum(1 for _ in self)


def query_issues(cache: IssueCache, **filters: Any) -> IssueQuery:
    """Build a query after bringing the cache up to date with the log."""
    cache.refresh()
    return IssueQuery(cache, **filters)


def list_issues(cache: IssueCache, **filters: Any) -> List[Dict[str, Any]]:
    """List issues with optional filtering (see IssueQuery for filters)."""
    return query_issues(cache, **filters).all()


def get_statistics(cache: IssueCache) -> Dict[str, int]:
    """Counts by status, plus how many open issues are ready or blocked.

    ``blocked_total`` counts every issue that is blocked by status or by an
    open blocker, each once."""
    cache.refresh()

    stats = {"total": 0, "open": 0, "in_progress": 0, "blocked": 0, "closed": 0}
    for row in cache.db.execute("SELECT status, COUNT(*) FROM issues GROUP BY status"):
        stats[row[0]] = row[1]
        stats["total"] += row[1]

    cursor = cache.db.execute(
        """SELECT COUNT(*) FROM issues i
           WHERE i.status IN ('open', 'in_progress')
             AND NOT EXISTS (
               SELECT 1 FROM dependencies d JOIN issues b ON d.depends_on_id = b.id
               WHERE d.issue_id = i.id AND d.type = 'blocks' AND b.status != 'closed')"""
    )
    stats["ready"] = cursor.fetchone()[0]

    cursor = cache.db.execute(
        """SELECT COUNT(DISTINCT d.issue_id) FROM dependencies d
           JOIN issues i ON d.issue_id = i.id
           JOIN issues b ON d.depends_on_id = b.id
           WHERE d.type = 'blocks' AND i.status != 'closed' AND b.status != 'closed'"""
    )
    stats["blocked_by_dependencies"] = cursor.fetchone()[0]

    # Each issue once, whether its status says blocked, its blockers do, or both
    cursor = cache.db.execute(
        """SELECT COUNT(*) FROM issues i
           WHERE i.status = 'blocked'
              OR (i.status != 'closed' AND EXISTS (
                SELECT 1 FROM dependencies d JOIN issues b ON d.depends_on_id = b.id
                WHERE d.issue_id = i.id AND d.type = 'blocks' AND b.status != 'closed'))"""
    )
    stats["blocked_total"] = cursor.fetchone()[0]

    return stats
