"""Database module for Beads - schema and initialization of the query cache.

The sqlite file is derived state: it can be deleted at any time and is
rebuilt from the JSONL log on the next command.
"""

import sqlite3
from pathlib import Path
from typing import Optional, Union

__all__ = [
    "init_database",
    "get_metadata",
    "set_metadata",
    "SCHEMA_VERSION",
]

# SQL schema for issues table
ISSUES_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS issues (
    id TEXT PRIMARY KEY,
    origin TEXT,
    title TEXT NOT NULL,
    description TEXT DEFAULT '',
    status TEXT DEFAULT 'open',
    priority INTEGER DEFAULT 2,
    issue_type TEXT DEFAULT 'task',
    assignee TEXT,
    parent_id TEXT,
    external_ref TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    closed_at TEXT,
    close_reason TEXT,
    created_by TEXT,
    compacted INTEGER DEFAULT 0
);
"""

# SQL schema for labels table
LABELS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS labels (
    issue_id TEXT NOT NULL,
    label TEXT NOT NULL,

    PRIMARY KEY (issue_id, label),
    FOREIGN KEY (issue_id) REFERENCES issues(id) ON DELETE CASCADE
);
"""

# SQL schema for dependencies table
DEPENDENCIES_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS dependencies (
    issue_id TEXT NOT NULL,
    depends_on_id TEXT NOT NULL,
    type TEXT NOT NULL,
    created_at TEXT NOT NULL,
    created_by TEXT,

    PRIMARY KEY (issue_id, depends_on_id),
    FOREIGN KEY (issue_id) REFERENCES issues(id) ON DELETE CASCADE,
    FOREIGN KEY (depends_on_id) REFERENCES issues(id) ON DELETE CASCADE,
    CHECK (type IN ('blocks', 'discovered-from', 'related'))
);
"""

# SQL schema for comments table (keyed by event id so rebuilds are stable)
COMMENTS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS comments (
    event_id TEXT PRIMARY KEY,
    issue_id TEXT NOT NULL,
    author TEXT NOT NULL,
    text TEXT NOT NULL,
    created_at TEXT NOT NULL,

    FOREIGN KEY (issue_id) REFERENCES issues(id) ON DELETE CASCADE
);
"""

# SQL schema for tombstones table (ids of deleted issues are never reused)
TOMBSTONES_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS tombstones (
    id TEXT PRIMARY KEY
);
"""

# SQL schema for metadata table
METADATA_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

# SQL for creating indexes
INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_issues_status ON issues(status);
CREATE INDEX IF NOT EXISTS idx_issues_priority ON issues(priority);
CREATE INDEX IF NOT EXISTS idx_issues_assignee ON issues(assignee);
CREATE INDEX IF NOT EXISTS idx_issues_parent ON issues(parent_id);
CREATE INDEX IF NOT EXISTS idx_labels_label ON labels(label);
CREATE INDEX IF NOT EXISTS idx_deps_issue ON dependencies(issue_id);
CREATE INDEX IF NOT EXISTS idx_deps_depends ON dependencies(depends_on_id);
CREATE INDEX IF NOT EXISTS idx_comments_issue ON comments(issue_id);
"""

# Current schema version
SCHEMA_VERSION = 1


def init_database(db_path: Union[str, Path]) -> sqlite3.Connection:
    """Initialize the cache database with schema.

    Creates all tables, indexes, and metadata if they don't exist.
    Safe to call multiple times (idempotent). A cache written by a
    different schema version is dropped and recreated empty, since
    everything in it can be rebuilt from the log.

    Args:
        db_path: Path to SQLite database file (":memory:" for tests)

    Returns:
        SQLite database connection

    Schema:
        - issues: Current state of every live issue
        - labels: Issue labels
        - dependencies: Edges between issues
        - comments: Notes attached to issues
        - tombstones: Ids of deleted issues
        - metadata: Schema version and log fingerprint
    """
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")

    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='metadata'"
    )
    if cursor.fetchone() is not None:
        version = get_metadata(conn, "schema_version")
        if version is not None and int(version) != SCHEMA_VERSION:
            _drop_all(conn)

    conn.executescript(
        f"""
        -- Issues: current state derived from the log
        {ISSUES_TABLE_SQL}

        -- Labels: many per issue
        {LABELS_TABLE_SQL}

        -- Dependencies: Relationships between issues
        {DEPENDENCIES_TABLE_SQL}

        -- Comments: Annotations on issues
        {COMMENTS_TABLE_SQL}

        -- Tombstones: Deleted issue ids
        {TOMBSTONES_TABLE_SQL}

        -- Metadata: System state
        {METADATA_TABLE_SQL}

        -- Indexes for performance
        {INDEXES_SQL}
        """
    )

    if get_metadata(conn, "schema_version") is None:
        set_metadata(conn, "schema_version", str(SCHEMA_VERSION))

    return conn


def _drop_all(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        DROP TABLE IF EXISTS tombstones;
        DROP TABLE IF EXISTS comments;
        DROP TABLE IF EXISTS dependencies;
        DROP TABLE IF EXISTS labels;
        DROP TABLE IF EXISTS issues;
        DROP TABLE IF EXISTS metadata;
        """
    )


def get_metadata(conn: sqlite3.Connection, key: str) -> Optional[str]:
    """Read a metadata value, or None if unset."""
    cursor = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,))
    row = cursor.fetchone()
    return row[0] if row else None


def set_metadata(conn: sqlite3.Connection, key: str, value: str) -> None:
    """Write a metadata value."""
    conn.execute(
        "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
        (key, value),
    )
    conn.commit()
