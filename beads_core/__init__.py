"""Beads - git-backed, dependency-aware issue tracker for AI agent workflows.

This package provides the core functionality for the beads issue tracker.
Import from here for the public API.
"""

from beads_core.exceptions import (
    BeadsError,
    NotFoundError,
    InvalidParentError,
    InvalidEdgeError,
    CycleDetectedError,
    CorruptRecordError,
    LockTimeoutError,
    MergeConflict,
    IDCollisionError,
    ConfigError,
    ValidationError,
)
from beads_core.constants import (
    VALID_STATUSES,
    VALID_ISSUE_TYPES,
    VALID_DEPENDENCY_TYPES,
    PRIORITY_RANGE,
    MAX_NESTING_DEPTH,
    MAX_ID_RETRIES,
    LOCK_TIMEOUT,
    VERSION,
)
from beads_core.utils import (
    get_iso_timestamp,
    normalize_timestamp,
    file_lock,
    atomic_write_bytes,
    sanitize_prefix,
)
from beads_core.config import (
    find_beads_dir,
    load_config,
    save_config,
    get_actor,
)
from beads_core.ids import (
    generate_id,
    derive_id,
    allocate_id,
    next_child_id,
    is_sequential_id,
)
from beads_core.events import make_event, stamp_event
from beads_core.db import init_database
from beads_core.store import (
    read_log,
    write_log,
    append,
    append_events,
    replay_events,
    rebuild_cache,
    compact_log,
)
from beads_core.merge import (
    MergeReport,
    merge_event_sets,
    merge_logs,
)
from beads_core.cache import IssueCache, open_cache, watch
from beads_core.issues import (
    create_issue,
    get_issue,
    known_ids,
    resolve_issue_id,
    update_issue,
    close_issue,
    reopen_issue,
    delete_issue,
    add_label,
    remove_label,
    add_comment,
    get_comments,
    compact_issues,
)
from beads_core.query import (
    IssueQuery,
    query_issues,
    list_issues,
    get_statistics,
)
from beads_core.dependencies import (
    add_dependency,
    remove_dependency,
    get_dependencies,
    get_dependents,
    get_children,
    get_blockers,
    is_blocked,
    is_ready,
    compute_ready,
    get_blocked_issues,
    detect_cycles,
    dependency_tree,
)
from beads_core.sync import (
    sync_from,
    merge_files,
    export_issues,
    import_issues,
)
from beads_core.migrate import migrate_to_hash_ids
from beads_core.cli import app, main

__version__ = VERSION

__all__ = [
    "__version__",
    # Exceptions
    "BeadsError",
    "NotFoundError",
    "InvalidParentError",
    "InvalidEdgeError",
    "CycleDetectedError",
    "CorruptRecordError",
    "LockTimeoutError",
    "MergeConflict",
    "IDCollisionError",
    "ConfigError",
    "ValidationError",
    # Constants
    "VALID_STATUSES",
    "VALID_ISSUE_TYPES",
    "VALID_DEPENDENCY_TYPES",
    "PRIORITY_RANGE",
    "MAX_NESTING_DEPTH",
    "MAX_ID_RETRIES",
    "LOCK_TIMEOUT",
    # Utils
    "get_iso_timestamp",
    "normalize_timestamp",
    "file_lock",
    "atomic_write_bytes",
    "sanitize_prefix",
    # Config
    "find_beads_dir",
    "load_config",
    "save_config",
    "get_actor",
    # IDs
    "generate_id",
    "derive_id",
    "allocate_id",
    "next_child_id",
    "is_sequential_id",
    # Events and log
    "make_event",
    "stamp_event",
    "read_log",
    "write_log",
    "append",
    "append_events",
    "replay_events",
    "rebuild_cache",
    "compact_log",
    # Database
    "init_database",
    # Merge
    "MergeReport",
    "merge_event_sets",
    "merge_logs",
    # Cache
    "IssueCache",
    "open_cache",
    "watch",
    # Issues
    "create_issue",
    "get_issue",
    "known_ids",
    "resolve_issue_id",
    "update_issue",
    "close_issue",
    "reopen_issue",
    "delete_issue",
    "add_label",
    "remove_label",
    "add_comment",
    "get_comments",
    "compact_issues",
    # Queries
    "IssueQuery",
    "query_issues",
    "list_issues",
    "get_statistics",
    # Dependencies
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
    "detect_cycles",
    "dependency_tree",
    # Sync
    "sync_from",
    "merge_files",
    "export_issues",
    "import_issues",
    # Migration
    "migrate_to_hash_ids",
    # CLI
    "app",
    "main",
]
